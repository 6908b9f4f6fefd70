"""
Construction and read-only projections of the contract document.
"""

from dataclasses import dataclass
from typing import Iterator, Union

from draftsign.models.contract import (
    SIGNATURE_MARKER_PATTERN,
    Block,
    Contract,
    ContractStatus,
    DocumentType,
    Party,
    SignatureSlot,
)
from draftsign.services.placeholders import extract_unknowns

PLACEHOLDER_TITLE = "Generating Contract..."
PLACEHOLDER_TEXT = "Contract is being generated..."
ANONYMOUS_PARTY_NAME = "[Your Name]"
COUNTERPARTY_NAME = "[Other Party Name]"

DOCUMENT_TYPE_KEYWORDS = [
    (DocumentType.NDA, ["nda", "non-disclosure", "nondisclosure"]),
    (DocumentType.EMPLOYMENT, ["employment", "employee", "hire"]),
    (DocumentType.LEASE, ["lease", "rent", "tenant", "landlord"]),
    (DocumentType.SERVICE, ["service"]),
]


def infer_document_type(prompt: str) -> DocumentType:
    """Pick a document type from keywords in the drafting prompt."""
    lowered = prompt.lower()
    for document_type, keywords in DOCUMENT_TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return document_type
    return DocumentType.CUSTOM


def create_placeholder(
    document_type: DocumentType,
    owner_party_name: str | None,
    owner_id: str,
    requirements: str = "",
) -> Contract:
    """
    Build a contract in generating status, ready to be drafted.

    The single block holds a progress message and no signature markers.
    An owner without a known name is represented by a placeholder party.
    """
    is_anonymous = not owner_party_name
    parties = [
        Party(name=owner_party_name or ANONYMOUS_PARTY_NAME, role="Party 1"),
        Party(name=COUNTERPARTY_NAME, role="Party 2"),
    ]
    roster_text = " ".join(party.name for party in parties)

    return Contract(
        owner_id=owner_id,
        title=PLACEHOLDER_TITLE,
        document_type=document_type,
        status=ContractStatus.GENERATING,
        blocks=[Block(text=PLACEHOLDER_TEXT, signatures=[])],
        parties=parties,
        unknowns=extract_unknowns(roster_text),
        requirements=requirements,
        is_anonymous=is_anonymous,
    )


# =============================================================================
# Display projection
# =============================================================================


@dataclass(frozen=True)
class TextSegment:
    text: str
    kind: str = "text"


@dataclass(frozen=True)
class SignatureSegment:
    slot_index: int
    slot: SignatureSlot
    kind: str = "signature"

    @property
    def party(self) -> str:
        return self.slot.party


Segment = Union[TextSegment, SignatureSegment]


def render_for_display(block: Block) -> Iterator[Segment]:
    """
    Yield literal text and signature slots in reading order.

    Each signature marker in the text is replaced by the slot aligned with
    it, so a UI can alternate prose with interactive signature fields.
    """
    last_index = 0
    for slot_index, match in enumerate(SIGNATURE_MARKER_PATTERN.finditer(block.text)):
        if match.start() > last_index:
            yield TextSegment(block.text[last_index:match.start()])
        yield SignatureSegment(slot_index=slot_index, slot=block.signatures[slot_index])
        last_index = match.end()

    if last_index < len(block.text):
        yield TextSegment(block.text[last_index:])


def segments_to_dict(segments: Iterator[Segment]) -> list[dict]:
    """Serialize display segments for API responses."""
    rendered = []
    for segment in segments:
        if isinstance(segment, TextSegment):
            rendered.append({"kind": segment.kind, "text": segment.text})
        else:
            rendered.append({
                "kind": segment.kind,
                "slot_index": segment.slot_index,
                "party": segment.party,
                "signed": segment.slot.is_signed,
                "signer_name": segment.slot.signer_name,
                "signed_date": segment.slot.signed_date,
            })
    return rendered


def derive_unknowns(contract: Contract) -> list[str]:
    """
    Active unknowns across the party roster and all blocks, minus
    dismissed labels.
    """
    dismissed = {label.casefold() for label in contract.dismissed_unknowns}
    roster_text = " ".join(party.name for party in contract.parties)
    return [
        label for label in extract_unknowns(f"{roster_text}\n{contract.document_text}")
        if label.casefold() not in dismissed
    ]
