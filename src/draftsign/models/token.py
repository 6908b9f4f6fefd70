"""
Signing token model.
"""

from datetime import datetime, timedelta
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from draftsign.models.contract import utcnow

DEFAULT_TOKEN_TTL = timedelta(hours=72)


class SigningToken(BaseModel):
    """
    Single-use, time-bounded credential letting an anonymous counterparty
    sign one contract as one logical party.
    """

    model_config = ConfigDict(from_attributes=True)

    token: str = Field(..., description="Opaque random token")
    contract_id: UUID
    party: str = Field(..., description="Logical party the token signs as")
    recipient_email: str

    used: bool = False
    used_at: datetime | None = None
    ip_address: str | None = None

    expires_at: datetime = Field(default_factory=lambda: utcnow() + DEFAULT_TOKEN_TTL)
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())

    def is_usable(self, now: datetime | None = None) -> bool:
        return not self.used and not self.is_expired(now)
