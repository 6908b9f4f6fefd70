"""Tests for draftsign/storage/redis_cache.py: drafting sequence numbers."""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from draftsign.exceptions import StorageError
from draftsign.storage.redis_cache import DraftSequencer, get_draft_sequencer


class TestLocalCounters:

    def test_monotonic_per_contract(self):
        sequencer = DraftSequencer(enabled=False)
        a, b = uuid4(), uuid4()

        assert sequencer.next_sequence(a) == 1
        assert sequencer.next_sequence(a) == 2
        assert sequencer.next_sequence(b) == 1
        assert sequencer.current_sequence(a) == 2

    def test_only_latest_is_current(self):
        sequencer = DraftSequencer(enabled=False)
        contract_id = uuid4()

        first = sequencer.next_sequence(contract_id)
        second = sequencer.next_sequence(contract_id)

        assert not sequencer.is_current(contract_id, first)
        assert sequencer.is_current(contract_id, second)

    def test_health_check_without_redis(self):
        assert DraftSequencer(enabled=False).health_check() is True


class TestRedisCounters:

    @pytest.fixture
    def redis_client(self):
        return MagicMock()

    @pytest.fixture
    def sequencer(self, redis_client):
        sequencer = DraftSequencer(url="redis://test:6379/0", enabled=True)
        sequencer._client = redis_client
        return sequencer

    def test_incr_with_expiry(self, sequencer, redis_client):
        contract_id = uuid4()
        redis_client.incr.return_value = 3

        assert sequencer.next_sequence(contract_id) == 3
        redis_client.incr.assert_called_once_with(f"draft_seq:{contract_id}")
        redis_client.expire.assert_called_once_with(f"draft_seq:{contract_id}", 86400)

    def test_current_from_redis(self, sequencer, redis_client):
        redis_client.get.return_value = "5"
        assert sequencer.current_sequence(uuid4()) == 5
        redis_client.get.return_value = None
        assert sequencer.current_sequence(uuid4()) == 0

    def test_redis_failure_is_storage_error(self, sequencer, redis_client):
        redis_client.incr.side_effect = RedisConnectionError("refused")
        with pytest.raises(StorageError):
            sequencer.next_sequence(uuid4())

    def test_health_check(self, sequencer, redis_client):
        assert sequencer.health_check() is True
        redis_client.ping.side_effect = RedisConnectionError("refused")
        assert sequencer.health_check() is False

    def test_close(self, sequencer, redis_client):
        sequencer.close()
        redis_client.close.assert_called_once()
        assert sequencer._client is None


def test_factory_follows_settings(monkeypatch):
    monkeypatch.setenv("REDIS_ENABLED", "false")
    sequencer = get_draft_sequencer()
    assert sequencer.enabled is False
    assert get_draft_sequencer() is sequencer
