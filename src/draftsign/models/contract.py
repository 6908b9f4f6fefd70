"""
Contract models for representing drafted documents.

A contract is an ordered list of blocks. Each block carries its prose and
the signature slots embedded in it; slots line up one-to-one, left to
right, with the signature markers found in the block text.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from draftsign.exceptions import OutOfRange, SignatureAlignmentMismatch

SIGNATURE_MARKER_LENGTH = 20
SIGNATURE_MARKER = "_" * SIGNATURE_MARKER_LENGTH
SIGNATURE_MARKER_PATTERN = re.compile(r"_{%d}" % SIGNATURE_MARKER_LENGTH)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def count_signature_markers(text: str) -> int:
    """Count non-overlapping signature markers in block text."""
    return len(SIGNATURE_MARKER_PATTERN.findall(text or ""))


def party_key(index: int) -> str:
    """Logical party identifier for a roster position (0 -> PartyA)."""
    return f"Party{chr(ord('A') + index)}"


def party_index(key: str) -> int | None:
    """Roster position for a logical party identifier, or None."""
    if len(key) != 6 or not key.startswith("Party"):
        return None
    index = ord(key[-1]) - ord("A")
    return index if 0 <= index < 26 else None


class DocumentType(str, Enum):
    """Kind of contract, fixed at creation."""

    SERVICE = "service"
    NDA = "nda"
    EMPLOYMENT = "employment"
    LEASE = "lease"
    CUSTOM = "custom"


class ContractStatus(str, Enum):
    """Lifecycle status of a contract."""

    GENERATING = "generating"
    DRAFT = "draft"
    SENT = "sent"
    PENDING = "pending"
    COMPLETED = "completed"


class EditKind(str, Enum):
    """The kind of mutation a caller is asking to perform."""

    MANUAL = "manual"
    AI_REGENERATION = "ai_regeneration"
    UNKNOWN_SUBSTITUTION = "unknown_substitution"
    TITLE = "title"
    PARTIES = "parties"

    @property
    def is_content_edit(self) -> bool:
        return self is not EditKind.PARTIES


class SignatureSlot(BaseModel):
    """A signature field embedded in a block, owned by one logical party."""

    model_config = ConfigDict(from_attributes=True)

    party: str = Field(..., description="Logical party identifier, e.g. PartyA")
    image_data: str = Field(default="", description="Signature image payload")
    signer_name: str = ""
    signed_date: str = ""
    signature_id: str | None = None
    signed_at: datetime | None = None

    @property
    def is_signed(self) -> bool:
        return bool(self.image_data)

    def fill(self, image_data: str, signer_name: str, signed_date: str) -> None:
        self.image_data = image_data
        self.signer_name = signer_name
        self.signed_date = signed_date
        self.signature_id = uuid4().hex
        self.signed_at = utcnow()

    def clear(self) -> None:
        self.image_data = ""
        self.signer_name = ""
        self.signed_date = ""
        self.signature_id = None
        self.signed_at = None


class Block(BaseModel):
    """An ordered unit of contract prose with its signature slots."""

    model_config = ConfigDict(from_attributes=True)

    text: str
    signatures: list[SignatureSlot] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_alignment(self) -> "Block":
        markers = count_signature_markers(self.text)
        if markers != len(self.signatures):
            raise ValueError(
                f"block has {markers} signature markers but {len(self.signatures)} slots"
            )
        return self

    @property
    def marker_count(self) -> int:
        return count_signature_markers(self.text)


class Party(BaseModel):
    """A named participant in the contract."""

    model_config = ConfigDict(from_attributes=True)

    name: str
    email: str | None = None
    role: str = ""
    signed: bool = False
    signature_id: str | None = None


class Contract(BaseModel):
    """
    Root aggregate for a drafted contract.

    The persistence gateway owns the authoritative copy; instances are
    read, mutated and written back within a single request.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., description="Creating user, possibly anonymous")
    title: str = ""
    document_type: DocumentType = DocumentType.CUSTOM
    status: ContractStatus = ContractStatus.GENERATING

    # Content
    blocks: list[Block] = Field(default_factory=list)
    parties: list[Party] = Field(default_factory=list)
    unknowns: list[str] = Field(default_factory=list)
    dismissed_unknowns: list[str] = Field(default_factory=list)

    # Metadata
    requirements: str = Field(default="", description="Original drafting instruction")
    recipient_email: str | None = None
    is_anonymous: bool = False

    # Optimistic concurrency; 0 means never persisted
    version: int = 0

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self) -> None:
        self.updated_at = utcnow()

    def block(self, block_index: int) -> Block:
        """Get a block by index, failing OutOfRange for a bad index."""
        if not 0 <= block_index < len(self.blocks):
            raise OutOfRange(
                f"Block index {block_index} is out of range",
                {"block_index": block_index, "block_count": len(self.blocks)},
            )
        return self.blocks[block_index]

    def replace_block_text(
        self,
        block_index: int,
        new_text: str,
        signatures: list[SignatureSlot] | None = None,
    ) -> Block:
        """
        Replace the text of one block.

        Without an explicit signature list the existing slots are kept, which
        is only legal when the marker count is unchanged. With one, its
        length must match the markers in new_text.
        """
        block = self.block(block_index)
        markers = count_signature_markers(new_text)
        slots = block.signatures if signatures is None else signatures

        if markers != len(slots):
            raise SignatureAlignmentMismatch(
                "Signature markers in the new text do not match the block's signature slots",
                {
                    "block_index": block_index,
                    "markers": markers,
                    "slots": len(slots),
                },
            )

        updated = Block(text=new_text, signatures=[slot.model_copy() for slot in slots])
        self.blocks[block_index] = updated
        self.touch()
        return updated

    # =========================================================================
    # Derived views
    # =========================================================================

    @property
    def document_text(self) -> str:
        return "\n\n".join(block.text for block in self.blocks)

    @property
    def has_signatures(self) -> bool:
        return any(party.signed for party in self.parties)

    @property
    def all_signed(self) -> bool:
        return bool(self.parties) and all(party.signed for party in self.parties)

    @property
    def is_locked(self) -> bool:
        return self.status == ContractStatus.COMPLETED

    def iter_slots(self) -> Iterator[tuple[int, int, SignatureSlot]]:
        """Yield (block_index, slot_index, slot) in reading order."""
        for block_index, block in enumerate(self.blocks):
            for slot_index, slot in enumerate(block.signatures):
                yield block_index, slot_index, slot

    def slots_for(self, key: str) -> list[SignatureSlot]:
        return [slot for _, _, slot in self.iter_slots() if slot.party == key]

    def party_for(self, key: str) -> Party | None:
        index = party_index(key)
        if index is None or index >= len(self.parties):
            return None
        return self.parties[index]
