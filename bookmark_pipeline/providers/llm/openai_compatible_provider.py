"""OpenAI-compatible LLM provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.  The
client points at OpenRouter by default (``llm_base_url``), but any
OpenAI-compatible chat completions endpoint works.

Structured generation asks for a JSON object (``response_format``), embeds
the pydantic schema in the system message and validates the reply with
``schema.model_validate_json``.  Replies wrapped in a markdown code fence
are unwrapped first.

Retries are owned by :class:`~bookmark_pipeline.utils.retry.RetryPolicy`;
the SDK's own retry loop is disabled so the two do not multiply.
"""

from __future__ import annotations

import json
import re
from typing import TypeVar

import openai
import structlog
from pydantic import BaseModel, ValidationError

from bookmark_pipeline.config.settings import Settings
from bookmark_pipeline.interfaces.llm_provider import ChatMessage, ILLMProvider
from bookmark_pipeline.utils.errors import LLMError
from bookmark_pipeline.utils.retry import RetryPolicy

logger = structlog.get_logger(logger_name=__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

# ```json ... ``` (or bare ```) fences some models put around JSON output.
_JSON_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


def _strip_json_fence(text: str) -> str:
    match = _JSON_FENCE_RE.match(text)
    return match.group(1) if match else text.strip()


class OpenAICompatibleLLMProvider(ILLMProvider):
    """LLM provider backed by an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        settings: Settings,
        client: openai.AsyncOpenAI | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._api_key = settings.openrouter_api_key
        self._model = settings.llm_model
        self._client = client or openai.AsyncOpenAI(
            api_key=self._api_key or "not-configured",
            base_url=settings.llm_base_url,
            timeout=openai.Timeout(settings.llm_timeout_seconds, connect=5.0),
            max_retries=0,
        )
        self._provider_label = "openrouter" if "openrouter.ai" in settings.llm_base_url else "openai-compatible"
        self._create = (retry_policy or settings.retry_policy())(self._create_once)

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        stop_sequences: list[str] | None = None,
    ) -> str:
        return await self.chat(
            [ChatMessage(role="user", content=prompt)],
            temperature=temperature,
            max_tokens=max_tokens,
            stop_sequences=stop_sequences,
        )

    async def chat(
        self,
        messages: list[ChatMessage],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        stop_sequences: list[str] | None = None,
    ) -> str:
        return await self._request(
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            stop_sequences=stop_sequences,
        )

    async def generate_structured(
        self,
        messages: list[ChatMessage],
        schema: type[_ModelT],
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> _ModelT:
        schema_json = json.dumps(schema.model_json_schema())
        instruction = (
            "Respond with a single JSON object that validates against this JSON schema. "
            f"Do not include any other text.\n\nSchema:\n{schema_json}"
        )
        augmented = [ChatMessage(role="system", content=instruction), *messages]
        raw = await self._request(
            augmented,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=True,
        )
        try:
            return schema.model_validate_json(_strip_json_fence(raw))
        except ValidationError as exc:
            logger.warning(
                "llm_structured_output_invalid",
                schema=schema.__name__,
                provider=self._provider_label,
                error_count=exc.error_count(),
            )
            raise LLMError(
                message=f"Response did not match {schema.__name__}: {exc.error_count()} validation errors",
                provider_name=self.get_provider_name(),
            ) from exc

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(
        self,
        messages: list[ChatMessage],
        temperature: float,
        max_tokens: int,
        stop_sequences: list[str] | None = None,
        json_mode: bool = False,
    ) -> str:
        try:
            return await self._create(messages, temperature, max_tokens, stop_sequences, json_mode)
        except openai.APITimeoutError as exc:
            raise LLMError(
                message=f"{self._provider_label} request timed out",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise LLMError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def _create_once(
        self,
        messages: list[ChatMessage],
        temperature: float,
        max_tokens: int,
        stop_sequences: list[str] | None,
        json_mode: bool,
    ) -> str:
        kwargs: dict = {
            "model": self._model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if stop_sequences:
            kwargs["stop"] = stop_sequences
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self._client.chat.completions.create(**kwargs)
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "llm_completion",
            model=self._model,
            provider=self._provider_label,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content
