"""
LLM client wrapper.

Supports Claude (Anthropic) and GPT-4o (OpenAI) with automatic fallback.
"""

from functools import lru_cache

import structlog
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from draftsign.config import get_settings

logger = structlog.get_logger(__name__)


class LLMService:
    """
    LLM text generation with a primary and a fallback provider.

    Each provider call is retried with exponential backoff; when the
    primary provider still fails the fallback provider is tried.
    """

    def __init__(self):
        settings = get_settings()
        self.settings = settings

        self._anthropic: AsyncAnthropic | None = None
        self._openai: AsyncOpenAI | None = None

        if settings.anthropic_api_key:
            self._anthropic = AsyncAnthropic(
                api_key=settings.anthropic_api_key, timeout=settings.llm_timeout
            )
        if settings.openai_api_key:
            self._openai = AsyncOpenAI(
                api_key=settings.openai_api_key, timeout=settings.llm_timeout
            )

        self.primary_provider = settings.primary_llm_provider
        self.primary_model = settings.primary_llm_model
        self.fallback_provider = settings.fallback_llm_provider
        self.fallback_model = settings.fallback_llm_model

    @property
    def anthropic(self) -> AsyncAnthropic:
        if not self._anthropic:
            raise ValueError("Anthropic client not configured. Set ANTHROPIC_API_KEY.")
        return self._anthropic

    @property
    def openai(self) -> AsyncOpenAI:
        if not self._openai:
            raise ValueError("OpenAI client not configured. Set OPENAI_API_KEY.")
        return self._openai

    def health_check(self) -> dict[str, bool]:
        """Report which providers are configured."""
        return {
            "anthropic": self._anthropic is not None,
            "openai": self._openai is not None,
        }

    # =========================================================================
    # Core LLM Calls
    # =========================================================================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _call_anthropic(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
    ) -> str:
        """Call Anthropic Claude API."""
        response = await self.anthropic.messages.create(
            model=model,
            max_tokens=max_tokens or self.settings.llm_max_tokens,
            temperature=self.settings.llm_temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return response.content[0].text

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _call_openai(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
    ) -> str:
        """Call OpenAI chat completions API."""
        response = await self.openai.chat.completions.create(
            model=model,
            max_tokens=max_tokens or self.settings.llm_max_tokens,
            temperature=self.settings.llm_temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )
        return response.choices[0].message.content or ""

    async def _call(
        self,
        provider: str,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None,
    ) -> str | None:
        if provider == "anthropic" and self._anthropic:
            return await self._call_anthropic(model, system_prompt, user_prompt, max_tokens)
        if provider == "openai" and self._openai:
            return await self._call_openai(model, system_prompt, user_prompt, max_tokens)
        return None

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
        use_fallback: bool = True,
    ) -> tuple[str, str]:
        """
        Generate LLM response with automatic fallback.

        Returns (response_text, model_used).
        """
        try:
            response = await self._call(
                self.primary_provider, self.primary_model, system_prompt, user_prompt, max_tokens
            )
            if response is not None:
                return response, self.primary_model
        except Exception as e:
            logger.warning(
                "primary_llm_failed",
                provider=self.primary_provider,
                error=str(e),
            )
            if not use_fallback:
                raise

        try:
            response = await self._call(
                self.fallback_provider, self.fallback_model, system_prompt, user_prompt, max_tokens
            )
            if response is not None:
                return response, self.fallback_model
        except Exception as e:
            logger.error(
                "fallback_llm_failed",
                provider=self.fallback_provider,
                error=str(e),
            )
            raise

        raise ValueError("No LLM provider available")


@lru_cache()
def get_llm_service() -> LLMService:
    """Get cached LLM service instance."""
    return LLMService()
