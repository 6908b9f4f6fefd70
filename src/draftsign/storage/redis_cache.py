"""
Redis-backed drafting sequence numbers.

Every regeneration request takes the next number for its contract before
the drafting call is dispatched. When the response lands, a number lower
than the current one means a newer request superseded it.
"""

from functools import lru_cache
from uuid import UUID

import structlog
from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from draftsign.config import get_settings
from draftsign.exceptions import StorageError

logger = structlog.get_logger(__name__)


class DraftSequencer:
    """
    Monotonic per-contract drafting sequence numbers.

    Uses Redis INCR when enabled so several API workers share one counter.
    With Redis disabled the counters live in this process only.
    """

    def __init__(self, url: str | None = None, enabled: bool | None = None):
        settings = get_settings()
        self.url = url or settings.redis_url
        self.enabled = settings.redis_enabled if enabled is None else enabled
        self._client: Redis | None = None
        self._local: dict[str, int] = {}

        # Counters outlive any realistic drafting round trip
        self.key_ttl = 86400

    def connect(self) -> Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = Redis.from_url(
                self.url,
                decode_responses=True,
            )
            logger.info("redis_connected", url=self.url)
        return self._client

    @property
    def client(self) -> Redis:
        return self.connect()

    def close(self) -> None:
        """Close the Redis connection."""
        if self._client:
            self._client.close()
            self._client = None

    def health_check(self) -> bool:
        """Check Redis connectivity."""
        if not self.enabled:
            return True
        try:
            self.client.ping()
            return True
        except RedisConnectionError as e:
            logger.error("redis_health_check_failed", error=str(e))
            return False

    @staticmethod
    def _key(contract_id: UUID | str) -> str:
        return f"draft_seq:{contract_id}"

    def next_sequence(self, contract_id: UUID | str) -> int:
        """Take the next drafting sequence number for a contract."""
        key = self._key(contract_id)
        if not self.enabled:
            self._local[key] = self._local.get(key, 0) + 1
            return self._local[key]

        try:
            value = self.client.incr(key)
            self.client.expire(key, self.key_ttl)
            return int(value)
        except RedisError as e:
            logger.error("draft_sequence_incr_failed", key=key, error=str(e))
            raise StorageError("Drafting sequencer unavailable", {"error": str(e)}) from e

    def current_sequence(self, contract_id: UUID | str) -> int:
        """Latest sequence number issued for a contract, 0 if none."""
        key = self._key(contract_id)
        if not self.enabled:
            return self._local.get(key, 0)

        try:
            value = self.client.get(key)
            return int(value) if value else 0
        except RedisError as e:
            logger.error("draft_sequence_get_failed", key=key, error=str(e))
            raise StorageError("Drafting sequencer unavailable", {"error": str(e)}) from e

    def is_current(self, contract_id: UUID | str, sequence: int) -> bool:
        return sequence >= self.current_sequence(contract_id)


@lru_cache()
def get_draft_sequencer() -> DraftSequencer:
    """Get cached sequencer instance."""
    return DraftSequencer()
