"""Shared pytest fixtures and mocks for the DraftSign test suite."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from draftsign.services.lifecycle import ContractLifecycleController
from draftsign.services.token_service import TokenService
from draftsign.storage.gateway import InMemoryGateway
from draftsign.storage.redis_cache import DraftSequencer

SAMPLE_DRAFT = (
    "**Services**\n"
    "The Provider will deliver consulting services to [Client Name] from [Start Date].\n\n"
    "**Payment**\n"
    "Fees of [Amount] are due on the first day of each month."
)


def run(coro):
    """Drive a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Singleton cache clearing (autouse)
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def clear_singletons(monkeypatch):
    """Clear all @lru_cache singletons and force in-memory storage."""
    from draftsign.config import get_settings
    from draftsign.services.drafting_service import get_drafting_service
    from draftsign.services.llm_service import get_llm_service
    from draftsign.services.notification_service import get_notification_service
    from draftsign.storage.redis_cache import get_draft_sequencer

    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.setenv("REDIS_ENABLED", "false")

    for factory in (
        get_settings,
        get_llm_service,
        get_drafting_service,
        get_notification_service,
        get_draft_sequencer,
    ):
        factory.cache_clear()
    yield
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Collaborator fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def mock_drafting():
    """Drafting service returning SAMPLE_DRAFT and a fixed title."""
    drafting = MagicMock()
    drafting.draft = AsyncMock(return_value=SAMPLE_DRAFT)
    drafting.generate_title = AsyncMock(return_value="Consulting Services Agreement")
    drafting.llm.health_check.return_value = {"anthropic": True, "openai": False}
    return drafting


@pytest.fixture
def mock_notifier():
    notifier = MagicMock()
    notifier.send_signing_request.return_value = True
    notifier.send_finalized_copy.return_value = True
    return notifier


@pytest.fixture
def sequencer():
    return DraftSequencer(enabled=False)


@pytest.fixture
def token_service(gateway):
    return TokenService(gateway, ttl=timedelta(hours=72), public_base_url="https://sign.example.com")


@pytest.fixture
def controller(gateway, mock_drafting, token_service, mock_notifier, sequencer):
    return ContractLifecycleController(
        gateway=gateway,
        drafting=mock_drafting,
        tokens=token_service,
        notifier=mock_notifier,
        sequencer=sequencer,
        exporter=lambda contract: b"%PDF-1.4 test",
    )


@pytest.fixture
def drafted_contract(controller):
    """A contract that has completed its initial draft (status draft)."""
    async def build():
        contract = await controller.create_contract("Draft a service agreement", owner_id="user-1")
        return await controller.complete_initial_draft(contract.id)

    return run(build())
