"""
Storage adapters for DraftSign.

Provides the persistence gateway interface and its implementations.
"""

from draftsign.storage.gateway import InMemoryGateway, PersistenceGateway
from draftsign.storage.postgres import PostgresGateway
from draftsign.storage.redis_cache import DraftSequencer, get_draft_sequencer

__all__ = [
    "PersistenceGateway",
    "InMemoryGateway",
    "PostgresGateway",
    "DraftSequencer",
    "get_draft_sequencer",
]
