"""
Persistence gateway interface and the in-memory implementation.

The gateway owns the authoritative Contract and SigningToken records.
Callers read a copy, mutate it and write it back; nothing caches a
mutable record across requests.
"""

import asyncio
from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

import structlog

from draftsign.exceptions import ConcurrentModification, ContractNotFound, TokenNotFound
from draftsign.logging_config import token_hint
from draftsign.models.contract import Contract, utcnow
from draftsign.models.token import SigningToken

logger = structlog.get_logger(__name__)


@runtime_checkable
class PersistenceGateway(Protocol):
    """Storage interface consumed by the lifecycle controller."""

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def health_check(self) -> bool: ...

    async def get_contract(self, contract_id: UUID) -> Contract:
        """Return a copy of the contract or raise ContractNotFound."""
        ...

    async def save_contract(self, contract: Contract) -> Contract:
        """
        Insert (version 0) or conditionally update (version = stored version).

        On success the contract's version is advanced and the contract is
        returned. A stale version raises ConcurrentModification.
        """
        ...

    async def delete_contract(self, contract_id: UUID) -> None: ...

    async def get_token(self, token: str) -> SigningToken:
        """Return the token record or raise TokenNotFound."""
        ...

    async def save_token(self, signing_token: SigningToken) -> None: ...

    async def atomic_consume_token(
        self,
        token: str,
        contract_id: UUID,
        ip_address: str | None,
        now: datetime,
    ) -> SigningToken | None:
        """
        Mark a token used in one conditional operation.

        Returns the consumed record, or None when no unused, unexpired
        token bound to contract_id exists.
        """
        ...

    async def tokens_for_contract(self, contract_id: UUID) -> list[SigningToken]: ...

    async def purge_expired_tokens(self, now: datetime | None = None) -> int: ...


class InMemoryGateway:
    """
    Process-local gateway.

    A single asyncio lock serializes every read-check-write so conditional
    updates behave atomically under concurrent coroutines.
    """

    def __init__(self):
        self._contracts: dict[UUID, Contract] = {}
        self._tokens: dict[str, SigningToken] = {}
        # Index: contract_id -> list of tokens
        self._contract_tokens: dict[UUID, list[str]] = {}
        self._lock = asyncio.Lock()

    async def open(self) -> None:
        logger.info("memory_gateway_opened")

    async def close(self) -> None:
        logger.info("memory_gateway_closed")

    async def health_check(self) -> bool:
        return True

    # =========================================================================
    # Contract Operations
    # =========================================================================

    async def get_contract(self, contract_id: UUID) -> Contract:
        async with self._lock:
            stored = self._contracts.get(contract_id)
            if stored is None:
                raise ContractNotFound(
                    f"Contract {contract_id} not found", {"contract_id": str(contract_id)}
                )
            return stored.model_copy(deep=True)

    async def save_contract(self, contract: Contract) -> Contract:
        async with self._lock:
            stored = self._contracts.get(contract.id)
            current_version = stored.version if stored else 0

            if contract.version != current_version:
                raise ConcurrentModification(
                    "Contract was modified by another request",
                    {
                        "contract_id": str(contract.id),
                        "expected_version": contract.version,
                        "current_version": current_version,
                    },
                )

            contract.version = current_version + 1
            self._contracts[contract.id] = contract.model_copy(deep=True)

        logger.debug("contract_saved", contract_id=str(contract.id), version=contract.version)
        return contract

    async def delete_contract(self, contract_id: UUID) -> None:
        async with self._lock:
            if self._contracts.pop(contract_id, None) is None:
                raise ContractNotFound(
                    f"Contract {contract_id} not found", {"contract_id": str(contract_id)}
                )
            for token in self._contract_tokens.pop(contract_id, []):
                self._tokens.pop(token, None)

        logger.info("contract_deleted", contract_id=str(contract_id))

    # =========================================================================
    # Token Operations
    # =========================================================================

    async def get_token(self, token: str) -> SigningToken:
        async with self._lock:
            stored = self._tokens.get(token)
            if stored is None:
                raise TokenNotFound("Signing token not found", {"token": token_hint(token)})
            return stored.model_copy()

    async def save_token(self, signing_token: SigningToken) -> None:
        async with self._lock:
            self._tokens[signing_token.token] = signing_token.model_copy()
            index = self._contract_tokens.setdefault(signing_token.contract_id, [])
            if signing_token.token not in index:
                index.append(signing_token.token)

    async def atomic_consume_token(
        self,
        token: str,
        contract_id: UUID,
        ip_address: str | None,
        now: datetime,
    ) -> SigningToken | None:
        async with self._lock:
            stored = self._tokens.get(token)
            if (
                stored is None
                or stored.contract_id != contract_id
                or not stored.is_usable(now)
            ):
                return None

            stored.used = True
            stored.used_at = now
            stored.ip_address = ip_address
            return stored.model_copy()

    async def tokens_for_contract(self, contract_id: UUID) -> list[SigningToken]:
        async with self._lock:
            return [
                self._tokens[token].model_copy()
                for token in self._contract_tokens.get(contract_id, [])
                if token in self._tokens
            ]

    async def purge_expired_tokens(self, now: datetime | None = None) -> int:
        """Drop expired tokens; returns the number removed."""
        now = now or utcnow()
        async with self._lock:
            expired = [t for t, record in self._tokens.items() if record.is_expired(now)]
            for token in expired:
                record = self._tokens.pop(token)
                index = self._contract_tokens.get(record.contract_id, [])
                if token in index:
                    index.remove(token)
        return len(expired)
