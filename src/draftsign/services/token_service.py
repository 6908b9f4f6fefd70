"""
Signing token service.

Issues, validates and consumes the single-use links that let an anonymous
counterparty sign a contract as one party.
"""

import secrets
from datetime import timedelta
from uuid import UUID

import structlog

from draftsign.config import get_settings
from draftsign.exceptions import InvalidOrExpired, TokenContractMismatch, TokenNotFound
from draftsign.logging_config import token_hint
from draftsign.models.contract import utcnow
from draftsign.models.token import SigningToken
from draftsign.storage.gateway import PersistenceGateway

logger = structlog.get_logger(__name__)

TOKEN_BYTES = 32


class TokenService:
    """
    Signing token lifecycle on top of the persistence gateway.

    Validation is read-only so a signing page can load the contract before
    the signature is submitted; consumption is the single atomic write.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        ttl: timedelta | None = None,
        public_base_url: str | None = None,
    ):
        settings = get_settings()
        self.gateway = gateway
        self.ttl = ttl or timedelta(hours=settings.signing_token_ttl_hours)
        self.public_base_url = public_base_url or settings.public_base_url

    def signing_url(self, token: str) -> str:
        return f"{self.public_base_url}/contracts/sign?token={token}"

    async def issue(self, contract_id: UUID, party: str, recipient_email: str) -> SigningToken:
        """
        Mint and persist a new signing token.

        Args:
            contract_id: Contract the token grants access to
            party: Logical party the holder signs as
            recipient_email: Address the link is sent to

        Returns:
            The stored token record
        """
        now = utcnow()
        signing_token = SigningToken(
            token=secrets.token_hex(TOKEN_BYTES),
            contract_id=contract_id,
            party=party,
            recipient_email=recipient_email,
            created_at=now,
            expires_at=now + self.ttl,
        )
        await self.gateway.save_token(signing_token)

        logger.info(
            "signing_token_issued",
            contract_id=str(contract_id),
            party=party,
            token=token_hint(signing_token.token),
            expires_at=signing_token.expires_at.isoformat(),
        )
        return signing_token

    async def validate(self, token: str) -> SigningToken:
        """Return the token if it is unused and unexpired, without using it."""
        try:
            record = await self.gateway.get_token(token)
        except TokenNotFound as e:
            raise InvalidOrExpired(
                "This signing link is invalid or has expired", {"token": token_hint(token)}
            ) from e

        if not record.is_usable(utcnow()):
            logger.info(
                "signing_token_rejected",
                token=token_hint(token),
                used=record.used,
                expired=record.is_expired(),
            )
            raise InvalidOrExpired(
                "This signing link is invalid or has expired", {"token": token_hint(token)}
            )
        return record

    async def consume(
        self,
        token: str,
        contract_id: UUID,
        ip_address: str | None = None,
    ) -> SigningToken:
        """
        Atomically mark a token used.

        Exactly one of any number of concurrent calls for the same token
        succeeds. The losers get InvalidOrExpired, or TokenContractMismatch
        when the token belongs to a different contract.
        """
        consumed = await self.gateway.atomic_consume_token(
            token, contract_id, ip_address, utcnow()
        )
        if consumed is not None:
            logger.info(
                "signing_token_consumed",
                contract_id=str(contract_id),
                party=consumed.party,
                token=token_hint(token),
            )
            return consumed

        try:
            record = await self.gateway.get_token(token)
        except TokenNotFound:
            record = None

        if record is not None and record.contract_id != contract_id:
            raise TokenContractMismatch(
                "Signing link does not belong to this contract",
                {"contract_id": str(contract_id), "token": token_hint(token)},
            )
        raise InvalidOrExpired(
            "This signing link is invalid or has expired", {"token": token_hint(token)}
        )

    async def find_for_contract(self, contract_id: UUID) -> list[SigningToken]:
        """Tokens ever issued for a contract, oldest first."""
        return await self.gateway.tokens_for_contract(contract_id)

    async def purge_expired(self) -> int:
        removed = await self.gateway.purge_expired_tokens(utcnow())
        logger.info("signing_tokens_purged", count=removed)
        return removed
