"""
Pydantic models for DraftSign.

- Contract models for the structured document and its parties
- Signing token model
- API models for request/response schemas
"""

from draftsign.models.contract import (
    Block,
    Contract,
    ContractStatus,
    DocumentType,
    EditKind,
    Party,
    SignatureSlot,
)
from draftsign.models.token import SigningToken

__all__ = [
    "Block",
    "Contract",
    "ContractStatus",
    "DocumentType",
    "EditKind",
    "Party",
    "SignatureSlot",
    "SigningToken",
]
