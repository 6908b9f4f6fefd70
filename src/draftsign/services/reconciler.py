"""
Collaborative edit reconciler.

The only code path that co-mutates block text and signature slots. Three
edit sources go through it: manual block edits, unknown substitution and
AI regeneration. The reconciler never changes contract status and never
checks whether an edit is allowed; the lifecycle controller does both.
"""

import re
from typing import Callable

import structlog

from draftsign.exceptions import StaleDraft
from draftsign.models.contract import (
    SIGNATURE_MARKER,
    SIGNATURE_MARKER_LENGTH,
    Block,
    Contract,
    SignatureSlot,
    party_key,
)
from draftsign.services import placeholders
from draftsign.services.document import derive_unknowns
from draftsign.services.drafting_service import DraftingContext, DraftingService

logger = structlog.get_logger(__name__)

# Runs long enough to read as a signature marker
_MARKER_RUN_PATTERN = re.compile(r"_{%d,}" % SIGNATURE_MARKER_LENGTH)
BLANK_LINE = "_" * (SIGNATURE_MARKER_LENGTH // 2)


def neutralize_signature_markers(text: str) -> str:
    """Shorten underscore runs so drafted text carries no signature markers."""
    return _MARKER_RUN_PATTERN.sub(BLANK_LINE, text)


class EditReconciler:
    """Applies text edits to a contract while keeping blocks aligned."""

    def __init__(self, drafting: DraftingService):
        self.drafting = drafting

    def apply_manual_edit(self, contract: Contract, block_index: int, new_text: str) -> Contract:
        """
        Replace one block's text, carrying its signature slots over.

        Fails with SignatureAlignmentMismatch if the edit changed the
        number of signature markers in the block.
        """
        contract.replace_block_text(block_index, new_text)
        contract.unknowns = derive_unknowns(contract)

        logger.info(
            "manual_edit_applied",
            contract_id=str(contract.id),
            block_index=block_index,
        )
        return contract

    def apply_unknown_substitution(
        self,
        contract: Contract,
        block_index: int | None,
        replacements: dict[str, str],
        dismissed: list[str] | None = None,
    ) -> Contract:
        """
        Substitute placeholder values and record dismissals.

        Args:
            contract: Contract to mutate
            block_index: Block to substitute in, or None for every block.
                Bracketed party names are substituted either way.
            replacements: Placeholder key (raw bracket contents or display
                label) to value
            dismissed: Labels to drop from active tracking

        Replacements in the same call are applied before dismissals, so a
        label that is both replaced and dismissed is substituted and then
        no longer tracked.
        """
        indexes = range(len(contract.blocks)) if block_index is None else [block_index]

        for index in indexes:
            block = contract.block(index)
            resolved = self._resolve_keys(block.text, replacements)
            new_text = placeholders.replace(block.text, resolved)
            if new_text != block.text:
                contract.replace_block_text(index, new_text)

        for party in contract.parties:
            if party.signed:
                continue
            resolved = self._resolve_keys(party.name, replacements)
            party.name = placeholders.replace(party.name, resolved)

        tracker = placeholders.UnknownTracker(dismissed=list(contract.dismissed_unknowns))
        for label in dismissed or []:
            tracker.dismiss(label)
        contract.dismissed_unknowns = tracker.dismissed

        contract.unknowns = derive_unknowns(contract)
        contract.touch()

        logger.info(
            "unknowns_substituted",
            contract_id=str(contract.id),
            replaced=len(replacements),
            dismissed=len(dismissed or []),
            remaining=len(contract.unknowns),
        )
        return contract

    @staticmethod
    def _resolve_keys(text: str, replacements: dict[str, str]) -> dict[str, str]:
        """Map each supplied key onto the raw placeholder spellings in text."""
        resolved: dict[str, str] = {}
        for key, value in replacements.items():
            if f"[{key}]" in text:
                resolved[key] = value
                continue
            for raw in placeholders.raw_forms_for_label(text, key):
                resolved.setdefault(raw, value)
        return resolved

    async def apply_ai_regeneration(
        self,
        contract: Contract,
        block_index: int | None,
        instruction: str,
        still_current: Callable[[], bool] | None = None,
    ) -> Contract:
        """
        Regenerate a block (or the whole document) through the drafting service.

        A None block index means the whole document body, which is block 0;
        an appended signature page is neither sent to the drafter nor replaced.
        The affected block's signature slots are always reset to an empty
        list. On drafting failure the contract is left untouched.

        Args:
            contract: Contract to mutate
            block_index: Block to regenerate, or None for the whole document
            instruction: What the user asked for
            still_current: Checked after the draft returns; False discards
                the response with StaleDraft
        """
        target = 0 if block_index is None else block_index
        block = contract.block(target)

        context = DraftingContext(
            contract_type=contract.document_type.value,
            dismissed_unknowns=list(contract.dismissed_unknowns),
            anonymous_owner=contract.is_anonymous,
        )
        text = await self.drafting.draft(instruction, block.text, context)

        if still_current is not None and not still_current():
            logger.info("stale_draft_discarded", contract_id=str(contract.id))
            raise StaleDraft(
                "A newer drafting request superseded this one",
                {"contract_id": str(contract.id)},
            )

        contract.blocks[target] = Block(text=neutralize_signature_markers(text), signatures=[])
        contract.dismissed_unknowns = []
        contract.unknowns = derive_unknowns(contract)
        contract.touch()

        logger.info(
            "ai_regeneration_applied",
            contract_id=str(contract.id),
            block_index=target,
            discarded_slots=len(block.signatures),
        )
        return contract

    def append_signature_page(self, contract: Contract) -> Contract:
        """
        Append a block with one signature slot per party that has none.

        Existing blocks and slots are never touched, so this is safe after
        signatures have been captured. A contract whose parties all have
        slots is returned unchanged.
        """
        missing = [
            (index, party)
            for index, party in enumerate(contract.parties)
            if not contract.slots_for(party_key(index))
        ]
        if not missing:
            return contract

        lines = ["**Signatures**"]
        slots = []
        for index, party in missing:
            label = neutralize_signature_markers(party.role or party.name)
            name = neutralize_signature_markers(party.name)
            lines.append(f"\n{label}: {name}\nSignature: {SIGNATURE_MARKER}")
            slots.append(SignatureSlot(party=party_key(index)))

        contract.blocks.append(Block(text="\n".join(lines), signatures=slots))
        contract.touch()

        logger.info(
            "signature_page_appended",
            contract_id=str(contract.id),
            parties=[party_key(index) for index, _ in missing],
        )
        return contract
