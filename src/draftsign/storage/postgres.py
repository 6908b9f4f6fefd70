"""
PostgreSQL persistence gateway using SQLAlchemy async.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator
from uuid import UUID

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from draftsign.config import get_settings
from draftsign.exceptions import ConcurrentModification, ContractNotFound, StorageError, TokenNotFound
from draftsign.logging_config import token_hint
from draftsign.models.contract import Block, Contract, ContractStatus, DocumentType, Party, utcnow
from draftsign.models.token import SigningToken

logger = structlog.get_logger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS contracts (
        id UUID PRIMARY KEY,
        owner_id TEXT NOT NULL,
        title TEXT NOT NULL,
        document_type TEXT NOT NULL,
        status TEXT NOT NULL,
        blocks JSONB NOT NULL,
        parties JSONB NOT NULL,
        unknowns JSONB NOT NULL,
        dismissed_unknowns JSONB NOT NULL,
        requirements TEXT NOT NULL DEFAULT '',
        recipient_email TEXT,
        is_anonymous BOOLEAN NOT NULL DEFAULT FALSE,
        version INTEGER NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS signing_tokens (
        token TEXT PRIMARY KEY,
        contract_id UUID NOT NULL REFERENCES contracts(id) ON DELETE CASCADE,
        party TEXT NOT NULL,
        recipient_email TEXT NOT NULL,
        used BOOLEAN NOT NULL DEFAULT FALSE,
        used_at TIMESTAMPTZ,
        ip_address TEXT,
        expires_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_signing_tokens_contract ON signing_tokens (contract_id)",
]


class PostgresGateway:
    """
    PostgreSQL persistence gateway.

    Contract content is stored as JSON columns and (de)serialized only at
    this boundary. The engine is created by open() and disposed by close().
    """

    def __init__(self, database_url: str | None = None):
        settings = get_settings()
        self.database_url = database_url or settings.postgres_url
        self.echo = settings.debug
        self.engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None

    async def open(self) -> None:
        """Create the engine and session factory."""
        if self.engine is not None:
            return

        self.engine = create_async_engine(
            self.database_url,
            echo=self.echo,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
        )
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("postgres_gateway_opened")

    async def close(self) -> None:
        """Close database connections."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
            logger.info("postgres_gateway_closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session, translating driver failures to StorageError."""
        if self.session_factory is None:
            raise StorageError("Postgres gateway is not open")

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("postgres_operation_failed", error=str(e))
                raise StorageError("Storage operation failed", {"error": str(e)}) from e
            except Exception:
                await session.rollback()
                raise

    async def create_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        async with self.session() as session:
            for statement in SCHEMA_STATEMENTS:
                await session.execute(text(statement))
        logger.info("postgres_schema_created")

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except StorageError as e:
            logger.error("postgres_health_check_failed", error=str(e))
            return False

    # =========================================================================
    # Contract Operations
    # =========================================================================

    async def get_contract(self, contract_id: UUID) -> Contract:
        """Get a contract by ID."""
        async with self.session() as session:
            result = await session.execute(
                text("SELECT * FROM contracts WHERE id = :id"),
                {"id": str(contract_id)},
            )
            row = result.mappings().fetchone()

        if row is None:
            raise ContractNotFound(
                f"Contract {contract_id} not found", {"contract_id": str(contract_id)}
            )
        return self._row_to_contract(row)

    async def save_contract(self, contract: Contract) -> Contract:
        """Insert a new contract or update it if the stored version matches."""
        params = self._contract_to_params(contract)

        async with self.session() as session:
            if contract.version == 0:
                params["version"] = 1
                await session.execute(
                    text("""
                        INSERT INTO contracts (
                            id, owner_id, title, document_type, status, blocks, parties,
                            unknowns, dismissed_unknowns, requirements, recipient_email,
                            is_anonymous, version, created_at, updated_at
                        ) VALUES (
                            :id, :owner_id, :title, :document_type, :status,
                            CAST(:blocks AS JSONB), CAST(:parties AS JSONB),
                            CAST(:unknowns AS JSONB), CAST(:dismissed_unknowns AS JSONB),
                            :requirements, :recipient_email, :is_anonymous, :version,
                            :created_at, :updated_at
                        )
                    """),
                    params,
                )
            else:
                params["expected_version"] = contract.version
                result = await session.execute(
                    text("""
                        UPDATE contracts SET
                            title = :title,
                            status = :status,
                            blocks = CAST(:blocks AS JSONB),
                            parties = CAST(:parties AS JSONB),
                            unknowns = CAST(:unknowns AS JSONB),
                            dismissed_unknowns = CAST(:dismissed_unknowns AS JSONB),
                            requirements = :requirements,
                            recipient_email = :recipient_email,
                            version = version + 1,
                            updated_at = :updated_at
                        WHERE id = :id AND version = :expected_version
                    """),
                    params,
                )
                if result.rowcount == 0:
                    raise ConcurrentModification(
                        "Contract was modified by another request",
                        {"contract_id": str(contract.id), "expected_version": contract.version},
                    )

        contract.version += 1
        logger.debug("contract_saved", contract_id=str(contract.id), version=contract.version)
        return contract

    async def delete_contract(self, contract_id: UUID) -> None:
        """Delete a contract; its tokens go with it."""
        async with self.session() as session:
            result = await session.execute(
                text("DELETE FROM contracts WHERE id = :id"),
                {"id": str(contract_id)},
            )
            if result.rowcount == 0:
                raise ContractNotFound(
                    f"Contract {contract_id} not found", {"contract_id": str(contract_id)}
                )
        logger.info("contract_deleted", contract_id=str(contract_id))

    # =========================================================================
    # Token Operations
    # =========================================================================

    async def get_token(self, token: str) -> SigningToken:
        async with self.session() as session:
            result = await session.execute(
                text("SELECT * FROM signing_tokens WHERE token = :token"),
                {"token": token},
            )
            row = result.mappings().fetchone()

        if row is None:
            raise TokenNotFound("Signing token not found", {"token": token_hint(token)})
        return self._row_to_token(row)

    async def save_token(self, signing_token: SigningToken) -> None:
        async with self.session() as session:
            await session.execute(
                text("""
                    INSERT INTO signing_tokens (
                        token, contract_id, party, recipient_email, used, used_at,
                        ip_address, expires_at, created_at
                    ) VALUES (
                        :token, :contract_id, :party, :recipient_email, :used, :used_at,
                        :ip_address, :expires_at, :created_at
                    )
                """),
                {
                    "token": signing_token.token,
                    "contract_id": str(signing_token.contract_id),
                    "party": signing_token.party,
                    "recipient_email": signing_token.recipient_email,
                    "used": signing_token.used,
                    "used_at": signing_token.used_at,
                    "ip_address": signing_token.ip_address,
                    "expires_at": signing_token.expires_at,
                    "created_at": signing_token.created_at,
                },
            )
        logger.info(
            "signing_token_saved",
            token=token_hint(signing_token.token),
            contract_id=str(signing_token.contract_id),
        )

    async def atomic_consume_token(
        self,
        token: str,
        contract_id: UUID,
        ip_address: str | None,
        now: datetime,
    ) -> SigningToken | None:
        """Single conditional UPDATE; the row count decides the winner."""
        async with self.session() as session:
            result = await session.execute(
                text("""
                    UPDATE signing_tokens
                    SET used = TRUE, used_at = :now, ip_address = :ip_address
                    WHERE token = :token
                      AND contract_id = :contract_id
                      AND used = FALSE
                      AND expires_at > :now
                    RETURNING *
                """),
                {
                    "token": token,
                    "contract_id": str(contract_id),
                    "ip_address": ip_address,
                    "now": now,
                },
            )
            row = result.mappings().fetchone()

        return self._row_to_token(row) if row is not None else None

    async def tokens_for_contract(self, contract_id: UUID) -> list[SigningToken]:
        async with self.session() as session:
            result = await session.execute(
                text("""
                    SELECT * FROM signing_tokens
                    WHERE contract_id = :contract_id
                    ORDER BY created_at
                """),
                {"contract_id": str(contract_id)},
            )
            rows = result.mappings().fetchall()
        return [self._row_to_token(row) for row in rows]

    async def purge_expired_tokens(self, now: datetime | None = None) -> int:
        async with self.session() as session:
            result = await session.execute(
                text("DELETE FROM signing_tokens WHERE expires_at <= :now"),
                {"now": now or utcnow()},
            )
        logger.info("expired_tokens_purged", count=result.rowcount)
        return result.rowcount or 0

    # =========================================================================
    # Helper Methods
    # =========================================================================

    @staticmethod
    def _contract_to_params(contract: Contract) -> dict[str, Any]:
        return {
            "id": str(contract.id),
            "owner_id": contract.owner_id,
            "title": contract.title,
            "document_type": contract.document_type.value,
            "status": contract.status.value,
            "blocks": json.dumps([b.model_dump(mode="json") for b in contract.blocks]),
            "parties": json.dumps([p.model_dump(mode="json") for p in contract.parties]),
            "unknowns": json.dumps(contract.unknowns),
            "dismissed_unknowns": json.dumps(contract.dismissed_unknowns),
            "requirements": contract.requirements,
            "recipient_email": contract.recipient_email,
            "is_anonymous": contract.is_anonymous,
            "created_at": contract.created_at,
            "updated_at": contract.updated_at,
        }

    @staticmethod
    def _load_json(value: Any) -> Any:
        return json.loads(value) if isinstance(value, str) else value

    def _row_to_contract(self, row: Any) -> Contract:
        """Convert database row to Contract model."""
        return Contract(
            id=UUID(str(row["id"])),
            owner_id=row["owner_id"],
            title=row["title"],
            document_type=DocumentType(row["document_type"]),
            status=ContractStatus(row["status"]),
            blocks=[Block.model_validate(b) for b in self._load_json(row["blocks"])],
            parties=[Party.model_validate(p) for p in self._load_json(row["parties"])],
            unknowns=self._load_json(row["unknowns"]),
            dismissed_unknowns=self._load_json(row["dismissed_unknowns"]),
            requirements=row["requirements"],
            recipient_email=row.get("recipient_email"),
            is_anonymous=row["is_anonymous"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_token(row: Any) -> SigningToken:
        return SigningToken(
            token=row["token"],
            contract_id=UUID(str(row["contract_id"])),
            party=row["party"],
            recipient_email=row["recipient_email"],
            used=row["used"],
            used_at=row.get("used_at"),
            ip_address=row.get("ip_address"),
            expires_at=row["expires_at"],
            created_at=row["created_at"],
        )
