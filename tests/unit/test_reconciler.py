"""Tests for draftsign/services/reconciler.py: manual edits, substitution, regeneration."""

import asyncio
import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from draftsign.exceptions import (
    DraftingUnavailable,
    OutOfRange,
    SignatureAlignmentMismatch,
    StaleDraft,
)
from draftsign.models.contract import (
    SIGNATURE_MARKER,
    SIGNATURE_MARKER_LENGTH,
    Block,
    Contract,
    ContractStatus,
    Party,
    SignatureSlot,
    count_signature_markers,
)
from draftsign.services.reconciler import (
    BLANK_LINE,
    EditReconciler,
    neutralize_signature_markers,
)


def signed_slot(party: str) -> SignatureSlot:
    slot = SignatureSlot(party=party)
    slot.fill("img", party, "Jan 1")
    return slot


@pytest.fixture
def drafting():
    service = MagicMock()
    service.draft = AsyncMock(return_value="Regenerated text for [Client Name].")
    return service


@pytest.fixture
def reconciler(drafting):
    return EditReconciler(drafting)


@pytest.fixture
def contract():
    return Contract(
        owner_id="user-1",
        title="Services",
        status=ContractStatus.DRAFT,
        blocks=[
            Block(text="Services for [Client Name] starting [Start Date]."),
            Block(
                text=f"Client: {SIGNATURE_MARKER}\nProvider: {SIGNATURE_MARKER}",
                signatures=[SignatureSlot(party="PartyA"), SignatureSlot(party="PartyB")],
            ),
        ],
        parties=[Party(name="Alice", role="Client"), Party(name="Bob", role="Provider")],
        unknowns=["Client Name", "Start Date"],
    )


class TestManualEdit:

    def test_replaces_text_and_rederives_unknowns(self, reconciler, contract):
        reconciler.apply_manual_edit(contract, 0, "Services for Acme starting [Start Date].")

        assert contract.blocks[0].text == "Services for Acme starting [Start Date]."
        assert contract.unknowns == ["Start Date"]

    def test_carries_slots_over(self, reconciler, contract):
        contract.blocks[1].signatures[0].fill("img", "Alice", "Jan 1")

        reconciler.apply_manual_edit(
            contract, 1, f"Client signature: {SIGNATURE_MARKER}\nProvider signature: {SIGNATURE_MARKER}"
        )

        assert contract.blocks[1].signatures[0].image_data == "img"
        assert contract.blocks[1].signatures[1].party == "PartyB"

    def test_marker_change_rejected(self, reconciler, contract):
        with pytest.raises(SignatureAlignmentMismatch):
            reconciler.apply_manual_edit(contract, 1, "Signatures removed")
        assert len(contract.blocks[1].signatures) == 2

    def test_bad_index(self, reconciler, contract):
        with pytest.raises(OutOfRange):
            reconciler.apply_manual_edit(contract, 5, "x")

    def test_status_untouched(self, reconciler, contract):
        reconciler.apply_manual_edit(contract, 0, "Rewritten.")
        assert contract.status == ContractStatus.DRAFT


class TestUnknownSubstitution:

    def test_exact_key(self, reconciler, contract):
        reconciler.apply_unknown_substitution(contract, 0, {"Client Name": "Acme"})

        assert contract.blocks[0].text == "Services for Acme starting [Start Date]."
        assert contract.unknowns == ["Start Date"]

    def test_label_matches_raw_spelling(self, reconciler, contract):
        contract.blocks[0] = Block(text="Services for [client name].")

        reconciler.apply_unknown_substitution(contract, 0, {"Client Name": "Acme"})

        assert contract.blocks[0].text == "Services for Acme."

    def test_all_blocks_when_index_omitted(self, reconciler, contract):
        contract.blocks[1] = Block(
            text=f"[Client Name]: {SIGNATURE_MARKER}\nProvider: {SIGNATURE_MARKER}",
            signatures=[SignatureSlot(party="PartyA"), SignatureSlot(party="PartyB")],
        )

        reconciler.apply_unknown_substitution(contract, None, {"Client Name": "Acme"})

        assert "[Client Name]" not in contract.document_text
        assert len(contract.blocks[1].signatures) == 2

    def test_replace_and_dismiss_same_label(self, reconciler, contract):
        reconciler.apply_unknown_substitution(
            contract, 0, {"Start Date": "Jan 1"}, dismissed=["Start Date"]
        )

        assert "Jan 1" in contract.blocks[0].text
        assert contract.dismissed_unknowns == ["Start Date"]
        assert "Start Date" not in contract.unknowns

    def test_dismiss_keeps_text(self, reconciler, contract):
        reconciler.apply_unknown_substitution(contract, 0, {}, dismissed=["client name"])

        assert "[Client Name]" in contract.blocks[0].text
        assert contract.unknowns == ["Start Date"]
        assert contract.dismissed_unknowns == ["Client Name"]

    def test_party_names_substituted(self, reconciler, contract):
        contract.parties[1].name = "[Your Name]"
        contract.unknowns = ["Client Name", "Start Date", "Your Name"]

        reconciler.apply_unknown_substitution(contract, 0, {"Your Name": "Bob"})

        assert contract.parties[1].name == "Bob"
        assert "Your Name" not in contract.unknowns

    def test_signed_party_name_kept(self, reconciler, contract):
        contract.parties[1].name = "[Your Name]"
        contract.parties[1].signed = True

        reconciler.apply_unknown_substitution(contract, None, {"Your Name": "Bob"})

        assert contract.parties[1].name == "[Your Name]"

    def test_value_with_marker_rejected(self, reconciler, contract):
        with pytest.raises(SignatureAlignmentMismatch):
            reconciler.apply_unknown_substitution(contract, 0, {"Client Name": SIGNATURE_MARKER})


class TestAiRegeneration:

    def test_resets_filled_signatures(self, reconciler, drafting, contract):
        contract.blocks[1] = Block(
            text=f"Client: {SIGNATURE_MARKER}\nProvider: {SIGNATURE_MARKER}",
            signatures=[signed_slot("PartyA"), signed_slot("PartyB")],
        )
        drafting.draft.return_value = "Fresh signature block."

        asyncio.run(reconciler.apply_ai_regeneration(contract, 1, "Rewrite signatures"))

        assert contract.blocks[1].signatures == []
        assert contract.blocks[1].text == "Fresh signature block."

    def test_resets_even_when_marker_count_matches(self, reconciler, drafting, contract):
        contract.blocks[1] = Block(
            text=f"{SIGNATURE_MARKER} {SIGNATURE_MARKER}",
            signatures=[signed_slot("PartyA"), signed_slot("PartyB")],
        )
        drafting.draft.return_value = f"{SIGNATURE_MARKER} {SIGNATURE_MARKER}"

        asyncio.run(reconciler.apply_ai_regeneration(contract, 1, "Keep it"))

        block = contract.blocks[1]
        assert block.signatures == []
        assert count_signature_markers(block.text) == 0

    def test_whole_document_lands_in_block_zero(self, reconciler, drafting, contract):
        body = contract.blocks[0].text

        asyncio.run(reconciler.apply_ai_regeneration(contract, None, "Make it formal"))

        args = drafting.draft.call_args.args
        assert args[0] == "Make it formal"
        assert args[1] == body
        assert contract.blocks[0].text == "Regenerated text for [Client Name]."
        assert len(contract.blocks) == 2
        assert len(contract.blocks[1].signatures) == 2

    def test_whole_document_leaves_signature_page_alone(self, reconciler, drafting):
        contract = Contract(
            owner_id="u",
            blocks=[Block(text="Terms.")],
            parties=[Party(name="Alice", role="Client"), Party(name="Bob", role="Provider")],
        )
        reconciler.append_signature_page(contract)
        page = contract.blocks[-1].model_copy(deep=True)
        drafting.draft.side_effect = lambda instruction, text, context: text

        asyncio.run(reconciler.apply_ai_regeneration(contract, None, "Tidy up"))

        assert drafting.draft.call_args.args[1] == "Terms."
        assert len(contract.blocks) == 2
        assert contract.blocks[-1] == page
        assert contract.document_text.count("Client: Alice") == 1

    def test_sends_dismissed_unknowns_and_clears_them(self, reconciler, drafting, contract):
        contract.dismissed_unknowns = ["Start Date"]

        asyncio.run(reconciler.apply_ai_regeneration(contract, 0, "Shorter"))

        context = drafting.draft.call_args.args[2]
        assert context.dismissed_unknowns == ["Start Date"]
        assert context.contract_type == "custom"
        assert contract.dismissed_unknowns == []
        assert contract.unknowns == ["Client Name"]

    def test_drafting_failure_leaves_contract_untouched(self, reconciler, drafting, contract):
        drafting.draft.side_effect = DraftingUnavailable("down")
        before = contract.model_copy(deep=True)

        with pytest.raises(DraftingUnavailable):
            asyncio.run(reconciler.apply_ai_regeneration(contract, 0, "Anything"))

        assert contract.blocks == before.blocks
        assert contract.updated_at == before.updated_at

    def test_stale_response_discarded(self, reconciler, contract):
        before = contract.blocks[0].text

        with pytest.raises(StaleDraft):
            asyncio.run(
                reconciler.apply_ai_regeneration(contract, 0, "x", still_current=lambda: False)
            )

        assert contract.blocks[0].text == before

    def test_status_untouched(self, reconciler, contract):
        asyncio.run(reconciler.apply_ai_regeneration(contract, 0, "x"))
        assert contract.status == ContractStatus.DRAFT


class TestSignaturePage:

    def test_appends_slots_for_parties_without_any(self, reconciler):
        contract = Contract(
            owner_id="u",
            blocks=[Block(text="Terms.")],
            parties=[Party(name="Alice", role="Client"), Party(name="Bob", role="Provider")],
        )

        reconciler.append_signature_page(contract)

        page = contract.blocks[-1]
        assert [s.party for s in page.signatures] == ["PartyA", "PartyB"]
        assert page.marker_count == 2
        assert "Client: Alice" in page.text

    def test_noop_when_every_party_has_a_slot(self, reconciler, contract):
        reconciler.append_signature_page(contract)
        assert len(contract.blocks) == 2

    def test_only_missing_parties(self, reconciler, contract):
        contract.parties.append(Party(name="Carol", role="Guarantor"))

        reconciler.append_signature_page(contract)

        assert [s.party for s in contract.blocks[-1].signatures] == ["PartyC"]


def test_neutralize_signature_markers():
    assert neutralize_signature_markers("a " + "_" * 45 + " b") == "a __________ b"
    assert neutralize_signature_markers("short ___") == "short ___"


def test_neutralize_threshold_is_marker_length():
    just_short = "_" * (SIGNATURE_MARKER_LENGTH - 1)

    assert neutralize_signature_markers(SIGNATURE_MARKER) == BLANK_LINE
    assert neutralize_signature_markers(just_short) == just_short
    assert count_signature_markers(BLANK_LINE) == 0


def test_alignment_holds_across_random_edits(reconciler, drafting, contract):
    """Every block stays aligned after each accepted or rejected edit."""
    rng = random.Random(7)
    texts = [
        "Plain clause.",
        f"One marker {SIGNATURE_MARKER}",
        f"Two {SIGNATURE_MARKER} markers {SIGNATURE_MARKER}",
        "Run " + "_" * 45,
        "Mention [Client Name] and [Fee].",
    ]

    async def scenario():
        for _ in range(200):
            block_index = rng.randrange(len(contract.blocks))
            text = rng.choice(texts)
            try:
                if rng.random() < 0.5:
                    reconciler.apply_manual_edit(contract, block_index, text)
                else:
                    drafting.draft.return_value = text
                    await reconciler.apply_ai_regeneration(contract, block_index, "edit")
            except SignatureAlignmentMismatch:
                pass

            for block in contract.blocks:
                assert count_signature_markers(block.text) == len(block.signatures)

    asyncio.run(scenario())
