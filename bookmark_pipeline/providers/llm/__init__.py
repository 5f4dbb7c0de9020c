"""LLM provider adapters.

One concrete implementation of ILLMProvider
(bookmark_pipeline/interfaces/llm_provider.py):
    - OpenAICompatibleLLMProvider -- OpenRouter or any OpenAI-compatible endpoint
"""

from bookmark_pipeline.providers.llm.openai_compatible_provider import OpenAICompatibleLLMProvider

__all__ = ["OpenAICompatibleLLMProvider"]
