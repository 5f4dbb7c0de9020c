"""Page summary generation for the summarize stage."""

from __future__ import annotations

from bookmark_pipeline.interfaces.llm_provider import ChatMessage, ILLMProvider
from bookmark_pipeline.utils.errors import LLMError
from bookmark_pipeline.utils.logging import get_logger

MAX_CONTENT_CHARS = 16_000
TRUNCATION_MARKER = "\n\n[Content truncated...]"

_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes web pages. "
    "Write clear, informative summaries that capture the key points."
)

_USER_PROMPT = """\
Summarize this webpage in 3-5 sentences. Focus on:
1. What the page is about
2. Key information or takeaways

Title: {title}

Content:
{content}

Write only the summary, nothing else."""


def truncate_content(markdown: str, limit: int = MAX_CONTENT_CHARS) -> str:
    """Cut *markdown* to *limit* characters, appending a truncation marker."""
    if len(markdown) <= limit:
        return markdown
    return markdown[:limit] + TRUNCATION_MARKER


class Summarizer:
    """Generates a short summary of a bookmark's markdown."""

    def __init__(
        self,
        llm_provider: ILLMProvider,
        max_tokens: int = 300,
        temperature: float = 0.3,
    ) -> None:
        self._llm = llm_provider
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._logger = get_logger(__name__)

    async def summarize(self, title: str, markdown: str) -> str:
        """Return a 3-5 sentence summary.

        Raises
        ------
        LLMError
            If the provider fails or returns only whitespace.
        """
        user_prompt = _USER_PROMPT.format(title=title, content=truncate_content(markdown))
        summary = await self._llm.chat(
            [
                ChatMessage(role="system", content=_SYSTEM_PROMPT),
                ChatMessage(role="user", content=user_prompt),
            ],
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        summary = summary.strip()
        if not summary:
            raise LLMError(
                message="Summary was empty",
                provider_name=self._llm.get_provider_name(),
            )
        self._logger.info("summary_generated", chars=len(summary), truncated=len(markdown) > MAX_CONTENT_CHARS)
        return summary
