"""Abstract base class for LLM service providers.

Defines the contract for any large-language-model backend used for page
summaries, entity extraction and candidate disambiguation.  The concrete
adapter wraps an OpenAI-compatible chat API (OpenRouter by default); every
call-site stays provider-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, TypeVar

from pydantic import BaseModel

_ModelT = TypeVar("_ModelT", bound=BaseModel)


@dataclass(frozen=True)
class ChatMessage:
    """One message of a chat conversation."""

    role: Literal["system", "user", "assistant"]
    content: str


# Concrete implementation: OpenAICompatibleLLMProvider
# Located in: bookmark_pipeline/providers/llm/
class ILLMProvider(ABC):
    """Contract for LLM services used throughout the pipeline."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        stop_sequences: list[str] | None = None,
    ) -> str:
        """Generate a completion for a single user prompt.

        Parameters
        ----------
        prompt:
            The user prompt.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.
        stop_sequences:
            Optional sequences at which generation stops.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        bookmark_pipeline.utils.errors.LLMError
            If the API call fails or returns an empty response.
        """

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        stop_sequences: list[str] | None = None,
    ) -> str:
        """Generate the next assistant message for a conversation.

        Raises
        ------
        bookmark_pipeline.utils.errors.LLMError
            If the API call fails or returns an empty response.
        """

    @abstractmethod
    async def generate_structured(
        self,
        messages: list[ChatMessage],
        schema: type[_ModelT],
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> _ModelT:
        """Generate a response and validate it against a pydantic *schema*.

        Parameters
        ----------
        messages:
            The conversation to send.
        schema:
            A pydantic model class describing the expected JSON object.
        temperature:
            Sampling temperature.
        max_tokens:
            Upper bound on the number of tokens in the response.

        Returns
        -------
        _ModelT
            A validated instance of *schema*.

        Raises
        ------
        bookmark_pipeline.utils.errors.LLMError
            If the call fails or the response does not validate.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openrouter"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider has credentials configured."""
