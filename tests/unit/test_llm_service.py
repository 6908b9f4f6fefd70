"""Tests for draftsign/services/llm_service.py: generate, retry, fallback."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from tenacity import wait_none

from draftsign.services.llm_service import LLMService, get_llm_service


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(LLMService._call_anthropic.retry, "wait", wait_none())
    monkeypatch.setattr(LLMService._call_openai.retry, "wait", wait_none())


@pytest.fixture
def llm_service():
    """LLMService with mocked Anthropic/OpenAI clients."""
    mock_settings = MagicMock()
    mock_settings.llm_max_tokens = 1024
    mock_settings.llm_temperature = 0.2

    svc = LLMService.__new__(LLMService)
    svc.settings = mock_settings
    svc.primary_provider = "anthropic"
    svc.primary_model = "claude-test"
    svc.fallback_provider = "openai"
    svc.fallback_model = "gpt-test"

    # Mock Anthropic client
    mock_anthropic = MagicMock()
    mock_response = MagicMock()
    mock_response.content = [MagicMock(text="Test response")]
    mock_anthropic.messages.create = AsyncMock(return_value=mock_response)
    svc._anthropic = mock_anthropic

    # Mock OpenAI client
    mock_openai = MagicMock()
    mock_oi_response = MagicMock()
    mock_oi_response.choices = [MagicMock(message=MagicMock(content="Fallback response"))]
    mock_openai.chat.completions.create = AsyncMock(return_value=mock_oi_response)
    svc._openai = mock_openai

    return svc


class TestGenerate:

    def test_returns_text(self, llm_service):
        text, model = asyncio.run(llm_service.generate("system", "user"))
        assert text == "Test response"
        assert model == "claude-test"

    def test_passes_prompts_and_limits(self, llm_service):
        asyncio.run(llm_service.generate("system", "user", max_tokens=50))

        kwargs = llm_service._anthropic.messages.create.call_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "user"}]
        assert kwargs["max_tokens"] == 50
        assert kwargs["model"] == "claude-test"

    def test_retry_on_api_error(self, llm_service):
        """Simulate 1 failure then success."""
        good = llm_service._anthropic.messages.create.return_value
        llm_service._anthropic.messages.create.side_effect = [Exception("API error"), good]

        text, model = asyncio.run(llm_service.generate("system", "user"))

        assert text == "Test response"
        assert llm_service._anthropic.messages.create.await_count == 2

    def test_fallback_to_openai(self, llm_service):
        """Primary always fails, fallback succeeds."""
        llm_service._anthropic.messages.create.side_effect = Exception("Always fails")

        text, model = asyncio.run(llm_service.generate("system", "user"))

        assert text == "Fallback response"
        assert model == "gpt-test"
        assert llm_service._anthropic.messages.create.await_count == 3

    def test_no_fallback_reraises(self, llm_service):
        llm_service._anthropic.messages.create.side_effect = RuntimeError("down")

        with pytest.raises(RuntimeError):
            asyncio.run(llm_service.generate("system", "user", use_fallback=False))
        llm_service._openai.chat.completions.create.assert_not_awaited()

    def test_all_providers_fail(self, llm_service):
        llm_service._anthropic.messages.create.side_effect = Exception("Fail")
        llm_service._openai.chat.completions.create.side_effect = Exception("Also fail")

        with pytest.raises(Exception):
            asyncio.run(llm_service.generate("system", "user"))

    def test_unconfigured_primary_uses_fallback(self, llm_service):
        llm_service._anthropic = None

        text, model = asyncio.run(llm_service.generate("system", "user"))
        assert model == "gpt-test"

    def test_nothing_configured(self, llm_service):
        llm_service._anthropic = None
        llm_service._openai = None

        with pytest.raises(ValueError):
            asyncio.run(llm_service.generate("system", "user"))


class TestClients:

    def test_unconfigured_client_property(self, llm_service):
        llm_service._openai = None
        with pytest.raises(ValueError):
            llm_service.openai

    def test_health_check(self, llm_service):
        llm_service._openai = None
        assert llm_service.health_check() == {"anthropic": True, "openai": False}

    def test_no_keys_means_no_clients(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "")
        monkeypatch.setenv("OPENAI_API_KEY", "")

        svc = get_llm_service()

        assert svc.health_check() == {"anthropic": False, "openai": False}
        assert get_llm_service() is svc
