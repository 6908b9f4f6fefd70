"""
API request and response models.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from draftsign.models.contract import Contract, Party


# =============================================================================
# Contract Models
# =============================================================================


class CreateContractRequest(BaseModel):
    """Request model for creating a contract from a prompt."""

    prompt: str = Field(..., description="What the contract should cover", min_length=1)
    owner_id: str = Field(..., description="Creating user", min_length=1)
    owner_name: str | None = Field(default=None, description="Owner's name, if known")


class UpdateTitleRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class ManualEditRequest(BaseModel):
    """Request model for a direct block edit."""

    text: str = Field(..., description="New block text")


class RegenerateRequest(BaseModel):
    """Request model for chat-driven regeneration."""

    instruction: str = Field(..., min_length=1, description="User instruction")
    block_index: int | None = Field(
        default=None, ge=0, description="Block to regenerate; whole document when omitted"
    )


class SubstituteUnknownsRequest(BaseModel):
    """Request model for unknown-placeholder substitution."""

    replacements: dict[str, str] = Field(
        default_factory=dict, description="Placeholder label to value"
    )
    dismissed: list[str] = Field(
        default_factory=list, description="Labels to stop tracking"
    )
    block_index: int | None = Field(
        default=None, ge=0, description="Block to substitute in; all blocks when omitted"
    )


class UpdatePartiesRequest(BaseModel):
    parties: list[Party] = Field(..., min_length=1)


class SendContractRequest(BaseModel):
    """Request model for sending a contract for signature."""

    recipient_email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    party: str = Field(default="PartyB", description="Party the recipient signs as")


class SendContractResponse(BaseModel):
    contract: Contract
    signing_url: str
    expires_at: datetime
    notified: bool


class SignatureRequest(BaseModel):
    """Request model for an in-app signature."""

    party: str = Field(default="PartyA", description="Signing party; only the owner signs in-app")
    block_index: int = Field(..., ge=0)
    slot_index: int = Field(..., ge=0)
    image_data: str = Field(..., min_length=1, description="Signature image payload")
    signer_name: str = Field(default="")
    signed_date: str = Field(default="")


class UnknownItem(BaseModel):
    label: str
    category: str


class UnknownsResponse(BaseModel):
    contract_id: UUID
    unknowns: list[UnknownItem] = Field(default_factory=list)
    dismissed: list[str] = Field(default_factory=list)


class DisplayResponse(BaseModel):
    """Blocks rendered as alternating text and signature segments."""

    contract_id: UUID
    blocks: list[list[dict[str, Any]]] = Field(default_factory=list)


class SigningRequestSummary(BaseModel):
    """A signing token as shown to the contract owner."""

    party: str
    recipient_email: str
    used: bool
    used_at: datetime | None = None
    expires_at: datetime
    created_at: datetime


# =============================================================================
# Signing Models
# =============================================================================


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


class TokenValidationResponse(BaseModel):
    contract_id: UUID
    party: str
    recipient_email: str
    expires_at: datetime


class SigningSessionResponse(BaseModel):
    """Read-only contract view for a signing link."""

    contract: Contract
    party: str
    blocks: list[list[dict[str, Any]]] = Field(default_factory=list)


class TokenSignatureRequest(BaseModel):
    """Request model for signing through a signing link."""

    token: str = Field(..., min_length=1)
    contract_id: UUID
    block_index: int = Field(..., ge=0)
    slot_index: int = Field(..., ge=0)
    image_data: str = Field(..., min_length=1)
    signer_name: str = Field(default="")
    signed_date: str = Field(default="")


# =============================================================================
# Health Models
# =============================================================================


class HealthResponse(BaseModel):
    status: str
    services: dict[str, Any] = Field(default_factory=dict)
