"""
Contract drafting adapter.

Turns a natural-language instruction plus the current document into new
contract text. The adapter knows nothing about blocks or signature slots;
callers decide where the returned text goes.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache

import structlog

from draftsign.exceptions import DraftingUnavailable
from draftsign.services.llm_service import LLMService, get_llm_service

logger = structlog.get_logger(__name__)

TRAILING_MARKER_PATTERN = re.compile(
    r"\[End of Document\]|END OF CONTRACT|END OF DOCUMENT",
    re.IGNORECASE,
)

MAX_TITLE_LENGTH = 120

DRAFTING_SYSTEM_PROMPT = """You are a professional contract lawyer. Draft or revise the contract according to the user's instructions.

CRITICAL REQUIREMENTS:
1. Write in clear, professional legal language
2. Use standard contract formatting with clear sections and numbered clauses where appropriate
3. Use **bold text** for section headings
4. Explicitly bracket any information you were not given, e.g. [Date], [Amount], [Name], [Email]. Never invent facts.
5. Do NOT include a title at the beginning; the title is handled separately
6. Do NOT include signature blocks, "IN WITNESS WHEREOF" or any concluding statement
7. Do NOT end with "[End of Document]", "END OF CONTRACT" or similar
8. End with the last substantive clause"""

TITLE_SYSTEM_PROMPT = """You name legal documents. Reply with a short title for the contract (at most eight words). Reply with the title only, without quotes."""


@dataclass
class DraftingContext:
    """Advisory context sent with every drafting request."""

    contract_type: str = "custom"
    dismissed_unknowns: list[str] = field(default_factory=list)
    anonymous_owner: bool = False


def clean_draft(text: str) -> str:
    """Strip end-of-document markers and surrounding whitespace."""
    return TRAILING_MARKER_PATTERN.sub("", text or "").strip()


class DraftingService:
    """
    Drafting service backed by the LLM client.

    Every failure of the underlying client is surfaced as DraftingUnavailable
    so callers can leave the document untouched.
    """

    def __init__(self, llm: LLMService | None = None):
        self.llm = llm or get_llm_service()

    def _build_system_prompt(self, context: DraftingContext) -> str:
        prompt = DRAFTING_SYSTEM_PROMPT
        prompt += f"\n\nContract type: {context.contract_type}"

        if context.anonymous_owner:
            prompt += (
                "\n\nThe user has not given their name. Refer to them as [Your Name] "
                "and to the other party as [Other Party Name]."
            )

        if context.dismissed_unknowns:
            dismissed = "\n".join(f"- {label}" for label in context.dismissed_unknowns)
            prompt += (
                "\n\nIMPORTANT: The user has dismissed the following unknowns and wants "
                f"them removed from the contract:\n{dismissed}\n\n"
                "Remove any clauses that reference these unknowns and do not reintroduce them."
            )
        return prompt

    async def draft(
        self,
        instruction: str,
        current_document: str | None,
        context: DraftingContext | None = None,
    ) -> str:
        """
        Produce new contract text.

        Args:
            instruction: What the user asked for
            current_document: Text of the existing document, None for a first draft
            context: Contract type and dismissed unknowns

        Returns:
            Cleaned contract text
        """
        context = context or DraftingContext()
        system_prompt = self._build_system_prompt(context)

        if current_document:
            user_prompt = (
                f"User instructions: {instruction}\n\n"
                f"Current contract:\n{current_document}\n\n"
                "Return the complete revised contract text."
            )
        else:
            user_prompt = f"Draft a contract for the following request:\n\n{instruction}"

        try:
            response, model = await self.llm.generate(system_prompt, user_prompt)
        except Exception as e:
            logger.error("drafting_failed", contract_type=context.contract_type, error=str(e))
            raise DraftingUnavailable("Drafting service unavailable", {"error": str(e)}) from e

        text = clean_draft(response)
        if not text:
            raise DraftingUnavailable("Drafting service returned no content", {"model": model})

        logger.info("draft_generated", model=model, length=len(text))
        return text

    async def generate_title(self, document_text: str, fallback: str) -> str:
        """Ask for a short title; falls back to the given title on failure."""
        try:
            response, _ = await self.llm.generate(
                TITLE_SYSTEM_PROMPT, document_text[:4000], max_tokens=50
            )
        except Exception as e:
            logger.warning("title_generation_failed", error=str(e))
            return fallback

        title = response.strip().strip('"').strip()
        return title[:MAX_TITLE_LENGTH] or fallback


@lru_cache()
def get_drafting_service() -> DraftingService:
    """Get cached drafting service instance."""
    return DraftingService()
