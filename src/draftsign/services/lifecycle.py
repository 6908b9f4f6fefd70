"""
Contract lifecycle controller.

The single mutation entry point for contracts. Every operation loads the
authoritative record from the persistence gateway, checks that the
mutation is legal for the contract's status and signature state, applies
it (through the edit reconciler for text changes) and writes the record
back with the version it read. Each mutating operation returns the
post-mutation contract.

Status flow: generating -> draft -> sent -> pending -> completed.
"""

import asyncio
from dataclasses import dataclass
from functools import partial
from typing import Callable
from uuid import UUID

import structlog

from draftsign.exceptions import (
    ConcurrentModification,
    ContractLocked,
    InvalidTransition,
    OutOfRange,
    PartyMismatch,
    SignatureInvalidationRisk,
    SlotAlreadySigned,
    StaleDraft,
    TokenContractMismatch,
    ValidationError,
)
from draftsign.logging_config import token_hint
from draftsign.models.contract import (
    Block,
    Contract,
    ContractStatus,
    EditKind,
    Party,
    SignatureSlot,
    party_index,
    party_key,
)
from draftsign.models.token import SigningToken
from draftsign.services.document import (
    create_placeholder,
    derive_unknowns,
    infer_document_type,
)
from draftsign.services.drafting_service import DraftingContext, DraftingService
from draftsign.services.export_service import render_to_pdf
from draftsign.services.notification_service import NotificationService
from draftsign.services.reconciler import EditReconciler, neutralize_signature_markers
from draftsign.services.token_service import TokenService
from draftsign.storage.gateway import PersistenceGateway
from draftsign.storage.redis_cache import DraftSequencer

logger = structlog.get_logger(__name__)

SENDABLE_STATUSES = {ContractStatus.DRAFT, ContractStatus.SENT, ContractStatus.PENDING}
TOKEN_SIGNABLE_STATUSES = {ContractStatus.SENT, ContractStatus.PENDING}

# The creating user signs in-app as the first party; everyone else needs a link
OWNER_PARTY = party_key(0)

DEFAULT_TITLES = {
    "service": "Service Agreement",
    "nda": "Non-Disclosure Agreement",
    "employment": "Employment Agreement",
    "lease": "Lease Agreement",
    "custom": "Contract",
}

# Post-consume writes are re-applied on a fresh read this many times
SIGNATURE_WRITE_ATTEMPTS = 3


@dataclass
class SendResult:
    """Outcome of sending a contract for signature."""

    contract: Contract
    token: SigningToken
    signing_url: str
    notified: bool


@dataclass
class SigningSession:
    """Read-only view handed to a signing page."""

    contract: Contract
    token: SigningToken


def can_edit(contract: Contract, kind: EditKind) -> None:
    """
    Reject a mutation that is not legal in the contract's current state.

    Raises:
        ContractLocked: content edit on a completed contract
        SignatureInvalidationRisk: content edit after any party has signed
        InvalidTransition: content edit while the first draft is generating
    """
    if not kind.is_content_edit:
        return

    if contract.is_locked:
        raise ContractLocked(
            "Cannot edit a completed contract",
            {"contract_id": str(contract.id), "edit": kind.value},
        )

    if contract.has_signatures or any(slot.is_signed for _, _, slot in contract.iter_slots()):
        raise SignatureInvalidationRisk(
            "Cannot edit a contract that already has signatures",
            {"contract_id": str(contract.id), "edit": kind.value},
        )

    if contract.status == ContractStatus.GENERATING:
        raise InvalidTransition(
            "Contract is still being generated",
            {"contract_id": str(contract.id), "edit": kind.value},
        )


class ContractLifecycleController:
    """
    Orchestrates contract mutations, signing and notifications.

    Collaborators are injected; the controller holds no contract state
    between calls.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        drafting: DraftingService,
        tokens: TokenService,
        notifier: NotificationService,
        sequencer: DraftSequencer,
        exporter: Callable[[Contract], bytes] = render_to_pdf,
    ):
        self.gateway = gateway
        self.drafting = drafting
        self.tokens = tokens
        self.notifier = notifier
        self.sequencer = sequencer
        self.exporter = exporter
        self.reconciler = EditReconciler(drafting)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_contract(self, contract_id: UUID) -> Contract:
        return await self.gateway.get_contract(contract_id)

    async def export_pdf(self, contract_id: UUID) -> bytes:
        """Render the current contract as PDF bytes."""
        contract = await self.gateway.get_contract(contract_id)
        return self.exporter(contract)

    async def open_signing_link(self, token: str) -> SigningSession:
        """
        Resolve a signing link for read-only rendering.

        The token is validated but not consumed.
        """
        record = await self.tokens.validate(token)
        contract = await self.gateway.get_contract(record.contract_id)
        logger.info(
            "signing_link_opened",
            contract_id=str(contract.id),
            party=record.party,
            token=token_hint(token),
        )
        return SigningSession(contract=contract, token=record)

    # =========================================================================
    # Creation and drafting
    # =========================================================================

    async def create_contract(
        self,
        prompt: str,
        owner_id: str,
        owner_name: str | None = None,
    ) -> Contract:
        """Persist a placeholder contract in generating status."""
        contract = create_placeholder(
            infer_document_type(prompt),
            owner_name,
            owner_id,
            requirements=prompt,
        )
        contract = await self.gateway.save_contract(contract)

        logger.info(
            "contract_created",
            contract_id=str(contract.id),
            document_type=contract.document_type.value,
            anonymous=contract.is_anonymous,
        )
        return contract

    async def complete_initial_draft(self, contract_id: UUID) -> Contract:
        """
        Draft the first version of a generating contract and move it to draft.

        On DraftingUnavailable the contract stays in generating.
        """
        contract = await self.gateway.get_contract(contract_id)
        if contract.status != ContractStatus.GENERATING:
            raise InvalidTransition(
                "Contract has already been drafted",
                {"contract_id": str(contract_id), "status": contract.status.value},
            )

        sequence = self.sequencer.next_sequence(contract_id)
        context = DraftingContext(
            contract_type=contract.document_type.value,
            dismissed_unknowns=list(contract.dismissed_unknowns),
            anonymous_owner=contract.is_anonymous,
        )
        text = await self.drafting.draft(contract.requirements, None, context)
        self._ensure_current(contract_id, sequence)

        fallback_title = DEFAULT_TITLES.get(contract.document_type.value, "Contract")
        contract.title = await self.drafting.generate_title(text, fallback_title)
        contract.blocks = [Block(text=neutralize_signature_markers(text), signatures=[])]
        contract.unknowns = derive_unknowns(contract)
        contract.status = ContractStatus.DRAFT
        contract.touch()

        contract = await self.gateway.save_contract(contract)
        logger.info(
            "initial_draft_completed",
            contract_id=str(contract_id),
            unknowns=len(contract.unknowns),
        )
        return contract

    def _ensure_current(self, contract_id: UUID, sequence: int) -> None:
        if not self.sequencer.is_current(contract_id, sequence):
            logger.info("stale_draft_discarded", contract_id=str(contract_id), sequence=sequence)
            raise StaleDraft(
                "A newer drafting request superseded this one",
                {"contract_id": str(contract_id), "sequence": sequence},
            )

    # =========================================================================
    # Content edits
    # =========================================================================

    async def manual_edit(self, contract_id: UUID, block_index: int, new_text: str) -> Contract:
        contract = await self.gateway.get_contract(contract_id)
        can_edit(contract, EditKind.MANUAL)
        self.reconciler.apply_manual_edit(contract, block_index, new_text)
        return await self.gateway.save_contract(contract)

    async def regenerate(
        self,
        contract_id: UUID,
        instruction: str,
        block_index: int | None = None,
    ) -> Contract:
        """
        Regenerate the document or one block from a chat instruction.

        A response superseded by a newer request for the same contract is
        discarded with StaleDraft. A response whose contract changed while
        drafting was in flight is rejected with ConcurrentModification.
        """
        contract = await self.gateway.get_contract(contract_id)
        can_edit(contract, EditKind.AI_REGENERATION)

        sequence = self.sequencer.next_sequence(contract_id)
        await self.reconciler.apply_ai_regeneration(
            contract,
            block_index,
            instruction,
            still_current=partial(self.sequencer.is_current, contract_id, sequence),
        )
        return await self.gateway.save_contract(contract)

    async def substitute_unknowns(
        self,
        contract_id: UUID,
        replacements: dict[str, str],
        dismissed: list[str] | None = None,
        block_index: int | None = None,
    ) -> Contract:
        contract = await self.gateway.get_contract(contract_id)
        can_edit(contract, EditKind.UNKNOWN_SUBSTITUTION)
        self.reconciler.apply_unknown_substitution(contract, block_index, replacements, dismissed)
        return await self.gateway.save_contract(contract)

    async def update_title(self, contract_id: UUID, title: str) -> Contract:
        contract = await self.gateway.get_contract(contract_id)
        can_edit(contract, EditKind.TITLE)

        title = title.strip()
        if not title:
            raise ValidationError("Title cannot be empty", {"contract_id": str(contract_id)})

        contract.title = title
        contract.touch()
        return await self.gateway.save_contract(contract)

    async def delete_contract(self, contract_id: UUID) -> None:
        await self.gateway.delete_contract(contract_id)

    # =========================================================================
    # Parties
    # =========================================================================

    async def update_parties(self, contract_id: UUID, parties: list[Party]) -> Contract:
        """
        Replace the party roster.

        Allowed in every status. Entries that have already signed cannot be
        changed or removed, and no entry can be marked signed here; only
        signature capture does that.
        """
        contract = await self.gateway.get_contract(contract_id)
        can_edit(contract, EditKind.PARTIES)

        existing = contract.parties
        updated: list[Party] = []

        for index, party in enumerate(existing):
            if not party.signed:
                continue
            incoming = parties[index] if index < len(parties) else None
            if incoming is None or (
                incoming.name, incoming.email, incoming.role, incoming.signed
            ) != (party.name, party.email, party.role, True):
                raise ContractLocked(
                    "Cannot change a party that has already signed",
                    {"contract_id": str(contract_id), "party": party_key(index)},
                )

        if contract.is_locked and len(parties) != len(existing):
            raise ContractLocked(
                "Cannot change the parties of a completed contract",
                {"contract_id": str(contract_id)},
            )

        highest_slot_index = max(
            (party_index(slot.party) or 0 for _, _, slot in contract.iter_slots()),
            default=-1,
        )
        if len(parties) <= highest_slot_index:
            raise ValidationError(
                "Cannot remove a party that has signature fields in the document",
                {"contract_id": str(contract_id), "party": party_key(highest_slot_index)},
            )

        for index, incoming in enumerate(parties):
            current = existing[index] if index < len(existing) else None
            if current is not None and current.signed:
                updated.append(current.model_copy())
                continue
            if incoming.signed:
                raise InvalidTransition(
                    "A party can only be marked signed by signing",
                    {"contract_id": str(contract_id), "party": party_key(index)},
                )
            updated.append(incoming.model_copy(update={"signature_id": None}))

        contract.parties = updated
        contract.unknowns = derive_unknowns(contract)
        contract.touch()

        contract = await self.gateway.save_contract(contract)
        logger.info("parties_updated", contract_id=str(contract_id), count=len(updated))
        return contract

    async def prepare_signatures(self, contract_id: UUID) -> Contract:
        """Append signature fields for every party that has none yet."""
        contract = await self.gateway.get_contract(contract_id)
        self._require_signable(contract)
        before = len(contract.blocks)
        self.reconciler.append_signature_page(contract)
        if len(contract.blocks) == before:
            return contract
        return await self.gateway.save_contract(contract)

    @staticmethod
    def _require_signable(contract: Contract) -> None:
        if contract.is_locked:
            raise ContractLocked("Contract is already completed", {"contract_id": str(contract.id)})
        if contract.status == ContractStatus.GENERATING:
            raise InvalidTransition(
                "Contract is still being generated", {"contract_id": str(contract.id)}
            )

    # =========================================================================
    # Sending
    # =========================================================================

    async def send_contract(
        self,
        contract_id: UUID,
        recipient_email: str,
        party: str = "PartyB",
    ) -> SendResult:
        """
        Send a contract to a counterparty for signature.

        Mints a fresh signing token on every send; earlier tokens stay valid
        until used or expired. A failed email is logged and reported in the
        result, never rolled back.
        """
        contract = await self.gateway.get_contract(contract_id)
        self._require_signable(contract)
        if contract.status not in SENDABLE_STATUSES:
            raise InvalidTransition(
                f"Cannot send a contract in {contract.status.value} status",
                {"contract_id": str(contract_id)},
            )

        counterparty = contract.party_for(party)
        if counterparty is None:
            raise ValidationError(
                f"Unknown party {party}", {"contract_id": str(contract_id), "party": party}
            )
        if counterparty.signed:
            raise InvalidTransition(
                f"{party} has already signed", {"contract_id": str(contract_id), "party": party}
            )

        self.reconciler.append_signature_page(contract)
        if counterparty.email is None:
            counterparty.email = recipient_email
        contract.recipient_email = recipient_email
        if contract.status == ContractStatus.DRAFT:
            contract.status = ContractStatus.SENT
            self._apply_status_rule(contract)
        contract.touch()

        signing_token = await self.tokens.issue(contract_id, party, recipient_email)
        contract = await self.gateway.save_contract(contract)

        signing_url = self.tokens.signing_url(signing_token.token)
        notified = await asyncio.to_thread(
            self.notifier.send_signing_request,
            recipient_email,
            signing_url,
            contract.title,
            signing_token.expires_at,
        )
        if not notified:
            logger.warning("signing_request_not_delivered", contract_id=str(contract_id))

        logger.info(
            "contract_sent",
            contract_id=str(contract_id),
            party=party,
            token=token_hint(signing_token.token),
        )
        return SendResult(
            contract=contract,
            token=signing_token,
            signing_url=signing_url,
            notified=notified,
        )

    # =========================================================================
    # Signing
    # =========================================================================

    async def capture_signature(
        self,
        contract_id: UUID,
        party: str | None,
        block_index: int,
        slot_index: int,
        image_data: str,
        signer_name: str,
        signed_date: str,
        token: str | None = None,
        ip_address: str | None = None,
    ) -> Contract:
        """
        Fill one signature slot.

        With a token the signer acts as the token's party, whatever party
        the caller claims, and the token is consumed before the contract is
        written. Without a token only the owner (PartyA) can sign, in-app.

        Args:
            contract_id: Contract to sign
            party: Acting party key, ignored when a token is given
            block_index: Block holding the slot
            slot_index: Slot position within the block
            image_data: Signature image payload
            signer_name: Name typed by the signer
            signed_date: Date string shown next to the signature
            token: Signing link token for anonymous counterparties
            ip_address: Recorded on the consumed token

        Returns:
            The updated contract
        """
        if not image_data:
            raise ValidationError("Signature image is required", {"contract_id": str(contract_id)})

        contract = await self.gateway.get_contract(contract_id)

        if token is not None:
            record = await self.tokens.validate(token)
            if record.contract_id != contract_id:
                raise TokenContractMismatch(
                    "Signing link does not belong to this contract",
                    {"contract_id": str(contract_id), "token": token_hint(token)},
                )
            acting_party = record.party
        elif party == OWNER_PARTY:
            acting_party = party
        elif party:
            raise PartyMismatch(
                f"{party} can only sign through a signing link",
                {"contract_id": str(contract_id), "acting_party": party},
            )
        else:
            raise ValidationError("Acting party is required", {"contract_id": str(contract_id)})

        self._check_signature_target(contract, acting_party, block_index, slot_index, token)

        if token is None:
            self._fill_slot(contract, acting_party, block_index, slot_index, image_data, signer_name, signed_date)
            contract = await self.gateway.save_contract(contract)
        else:
            await self.tokens.consume(token, contract_id, ip_address)
            contract = await self._write_token_signature(
                contract, acting_party, block_index, slot_index, image_data, signer_name, signed_date, token
            )

        logger.info(
            "signature_captured",
            contract_id=str(contract_id),
            party=acting_party,
            block_index=block_index,
            slot_index=slot_index,
            status=contract.status.value,
        )

        if contract.status == ContractStatus.COMPLETED:
            await self.finalize(contract_id, contract)
        return contract

    async def _write_token_signature(
        self,
        contract: Contract,
        acting_party: str,
        block_index: int,
        slot_index: int,
        image_data: str,
        signer_name: str,
        signed_date: str,
        token: str,
    ) -> Contract:
        """
        Persist a signature whose token is already spent.

        A concurrent write to the same contract is reconciled by re-reading
        and re-checking the slot, since the token cannot be reissued.
        """
        attempt = 1
        while True:
            self._fill_slot(contract, acting_party, block_index, slot_index, image_data, signer_name, signed_date)
            try:
                return await self.gateway.save_contract(contract)
            except ConcurrentModification:
                logger.warning(
                    "signature_write_conflict",
                    contract_id=str(contract.id),
                    attempt=attempt,
                )
                if attempt >= SIGNATURE_WRITE_ATTEMPTS:
                    raise

            attempt += 1
            contract = await self.gateway.get_contract(contract.id)
            self._check_signature_target(contract, acting_party, block_index, slot_index, token)

    @staticmethod
    def _check_signature_target(
        contract: Contract,
        acting_party: str,
        block_index: int,
        slot_index: int,
        token: str | None,
    ) -> SignatureSlot:
        if contract.is_locked:
            raise ContractLocked("Contract is already completed", {"contract_id": str(contract.id)})

        allowed = TOKEN_SIGNABLE_STATUSES if token is not None else SENDABLE_STATUSES
        if contract.status not in allowed:
            raise InvalidTransition(
                f"Cannot sign a contract in {contract.status.value} status",
                {"contract_id": str(contract.id)},
            )

        block = contract.block(block_index)
        if not 0 <= slot_index < len(block.signatures):
            raise OutOfRange(
                f"Signature index {slot_index} is out of range",
                {"block_index": block_index, "slot_index": slot_index},
            )

        slot = block.signatures[slot_index]
        if slot.party != acting_party:
            raise PartyMismatch(
                "This signature field belongs to another party",
                {"slot_party": slot.party, "acting_party": acting_party},
            )
        if slot.is_signed:
            raise SlotAlreadySigned(
                "This signature field has already been signed",
                {"block_index": block_index, "slot_index": slot_index},
            )
        if contract.party_for(acting_party) is None:
            raise PartyMismatch(
                f"{acting_party} is not a party to this contract",
                {"acting_party": acting_party},
            )
        return slot

    @staticmethod
    def _fill_slot(
        contract: Contract,
        acting_party: str,
        block_index: int,
        slot_index: int,
        image_data: str,
        signer_name: str,
        signed_date: str,
    ) -> None:
        slot = contract.block(block_index).signatures[slot_index]
        slot.fill(image_data, signer_name, signed_date)

        party = contract.party_for(acting_party)
        if all(s.is_signed for s in contract.slots_for(acting_party)):
            party.signed = True
            party.signature_id = slot.signature_id

        ContractLifecycleController._apply_status_rule(contract)
        contract.touch()

    @staticmethod
    def _apply_status_rule(contract: Contract) -> None:
        if contract.all_signed:
            contract.status = ContractStatus.COMPLETED
        elif contract.has_signatures and contract.status == ContractStatus.SENT:
            contract.status = ContractStatus.PENDING

    async def redo_signature(
        self,
        contract_id: UUID,
        party: str,
        block_index: int,
        slot_index: int,
    ) -> Contract:
        """
        Clear a filled slot so it can be signed again.

        Only the owner can do this, and only before completion. A pending
        contract with no remaining signed party goes back to sent.
        """
        if party != OWNER_PARTY:
            raise PartyMismatch(
                "Only the owner can clear a signature",
                {"contract_id": str(contract_id), "acting_party": party},
            )

        contract = await self.gateway.get_contract(contract_id)
        if contract.is_locked:
            raise ContractLocked("Contract is already completed", {"contract_id": str(contract_id)})

        block = contract.block(block_index)
        if not 0 <= slot_index < len(block.signatures):
            raise OutOfRange(
                f"Signature index {slot_index} is out of range",
                {"block_index": block_index, "slot_index": slot_index},
            )

        slot = block.signatures[slot_index]
        if slot.party != party:
            raise PartyMismatch(
                "This signature field belongs to another party",
                {"slot_party": slot.party, "acting_party": party},
            )
        if not slot.is_signed:
            raise InvalidTransition(
                "This signature field has not been signed",
                {"block_index": block_index, "slot_index": slot_index},
            )

        slot.clear()
        signer = contract.party_for(party)
        if signer is not None:
            signer.signed = False
            signer.signature_id = None

        if contract.status == ContractStatus.PENDING and not contract.has_signatures:
            contract.status = ContractStatus.SENT
        contract.touch()

        contract = await self.gateway.save_contract(contract)
        logger.info(
            "signature_cleared",
            contract_id=str(contract_id),
            party=party,
            block_index=block_index,
            slot_index=slot_index,
        )
        return contract

    # =========================================================================
    # Completion
    # =========================================================================

    async def finalize(self, contract_id: UUID, contract: Contract | None = None) -> bool:
        """
        Email the signed PDF to every party and the recipient.

        Delivery failures are logged and reported, never raised.
        """
        if contract is None:
            contract = await self.gateway.get_contract(contract_id)
        if contract.status != ContractStatus.COMPLETED:
            raise InvalidTransition(
                "Only a completed contract can be finalized",
                {"contract_id": str(contract_id), "status": contract.status.value},
            )

        recipients = [party.email for party in contract.parties if party.email]
        if contract.recipient_email:
            recipients.append(contract.recipient_email)

        try:
            pdf_bytes = self.exporter(contract)
        except Exception as e:
            logger.error("finalized_pdf_failed", contract_id=str(contract_id), error=str(e))
            return False

        delivered = await asyncio.to_thread(
            self.notifier.send_finalized_copy, recipients, pdf_bytes, contract.title
        )
        if not delivered:
            logger.warning("finalized_copy_not_delivered", contract_id=str(contract_id))
        else:
            logger.info("contract_finalized", contract_id=str(contract_id))
        return delivered
