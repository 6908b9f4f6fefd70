"""
Error taxonomy for DraftSign.

Every failure in the document, signing and lifecycle layers is raised as a
subclass of DraftSignError. The family a class belongs to decides how the
API layer reports it:

- ValidationError: caller error, never retried.
- StateError: business-rule rejection shown to the user.
- TransientError: infrastructure failure, caller may retry with backoff.
- ConcurrencyError: re-fetch and reconcile, never blind retry.
- NotFound: the referenced record does not exist.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class DraftSignError(Exception):
    """
    Base exception for all DraftSign errors.

    Attributes:
        message: Human-readable error description.
        details: Additional structured context for logging and API responses.
    """

    message: str
    details: dict[str, Any] = field(default_factory=dict)

    code = "draftsign_error"
    status_code = 500

    def __post_init__(self):
        if self.details is None:
            self.details = {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error": self.message,
            "code": self.code,
            "detail": self.details or None,
        }


# =============================================================================
# Families
# =============================================================================


@dataclass
class ValidationError(DraftSignError):
    code = "validation_error"
    status_code = 400


@dataclass
class StateError(DraftSignError):
    code = "state_error"
    status_code = 409


@dataclass
class TransientError(DraftSignError):
    code = "transient_error"
    status_code = 503


@dataclass
class ConcurrencyError(DraftSignError):
    code = "concurrency_error"
    status_code = 409


@dataclass
class NotFound(DraftSignError):
    code = "not_found"
    status_code = 404


# =============================================================================
# Validation errors
# =============================================================================


@dataclass
class OutOfRange(ValidationError):
    code = "out_of_range"


@dataclass
class SignatureAlignmentMismatch(ValidationError):
    """Block text and its signature slot list disagree on marker count."""

    code = "signature_alignment_mismatch"


@dataclass
class TokenContractMismatch(ValidationError):
    code = "token_contract_mismatch"


@dataclass
class PartyMismatch(ValidationError):
    """The acting party is not the party a signature slot is assigned to."""

    code = "party_mismatch"
    status_code = 403


# =============================================================================
# State errors
# =============================================================================


@dataclass
class ContractLocked(StateError):
    code = "contract_locked"


@dataclass
class SignatureInvalidationRisk(StateError):
    code = "signature_invalidation_risk"


@dataclass
class InvalidOrExpired(StateError):
    """Signing link is unknown, already used or past its expiry."""

    code = "invalid_or_expired"
    status_code = 410


@dataclass
class SlotAlreadySigned(StateError):
    code = "slot_already_signed"


@dataclass
class InvalidTransition(StateError):
    code = "invalid_transition"


# =============================================================================
# Transient errors
# =============================================================================


@dataclass
class DraftingUnavailable(TransientError):
    code = "drafting_unavailable"


@dataclass
class StorageError(TransientError):
    code = "storage_error"


# =============================================================================
# Concurrency errors
# =============================================================================


@dataclass
class ConcurrentModification(ConcurrencyError):
    code = "concurrent_modification"


@dataclass
class StaleDraft(ConcurrencyError):
    """A newer drafting request superseded this one before it returned."""

    code = "stale_draft"


# =============================================================================
# Lookups
# =============================================================================


@dataclass
class ContractNotFound(NotFound):
    code = "contract_not_found"


@dataclass
class TokenNotFound(NotFound):
    code = "token_not_found"
