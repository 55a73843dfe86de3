"""
Embedding Providers

Text-to-vector clients used to index schema documents and embed questions.

Providers:
    - OpenAIEmbeddingProvider: text-embedding-3-small via AsyncOpenAI
    - GoogleEmbeddingProvider: text-embedding-004 via google-generativeai

Usage:
    provider = create_embedding_provider(settings.embeddings, settings.llm)
    vector = await provider.embed("How many customers are there?")
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import google.generativeai as genai
from openai import AsyncOpenAI

from sqlagent.config import EmbeddingSettings, LLMSettings

logger = logging.getLogger(__name__)


class BaseEmbeddingProvider(ABC):
    """Abstract embedding client."""

    def __init__(self, provider_name: str, model: str):
        self.provider_name = provider_name
        self.model = model

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        pass  # pragma: no cover - abstract method

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts, preserving order."""
        return [await self.embed(text) for text in texts]

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} model={self.model}>"


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    """OpenAI embeddings API."""

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", timeout: int = 30):
        super().__init__(provider_name="openai", model=model)
        self.client = AsyncOpenAI(api_key=api_key, timeout=float(timeout))

    async def embed(self, text: str) -> list[float]:
        response = await self.client.embeddings.create(model=self.model, input=text)
        return list(response.data[0].embedding)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        response = await self.client.embeddings.create(model=self.model, input=texts)
        ordered = sorted(response.data, key=lambda item: item.index)
        logger.debug(f"Embedded batch of {len(texts)} texts", extra={"model": self.model})
        return [list(item.embedding) for item in ordered]


class GoogleEmbeddingProvider(BaseEmbeddingProvider):
    """Gemini embeddings. The SDK call is synchronous and runs in a worker thread."""

    def __init__(self, api_key: str, model: str = "models/text-embedding-004"):
        super().__init__(provider_name="google", model=model)
        genai.configure(api_key=api_key)

    async def embed(self, text: str) -> list[float]:
        result = await asyncio.to_thread(
            genai.embed_content,
            model=self.model,
            content=text,
            task_type="retrieval_document",
        )
        return list(result["embedding"])


def create_embedding_provider(
    config: EmbeddingSettings,
    llm_config: LLMSettings,
) -> BaseEmbeddingProvider:
    """
    Create the configured embedding provider, reusing the LLM API keys.

    Raises:
        ValueError: If the provider's API key is missing
    """
    logger.info(
        f"Creating {config.provider} embedding provider",
        extra={"provider": config.provider},
    )
    if config.provider == "openai":
        if not llm_config.openai_api_key:
            raise ValueError("OpenAI API key is required for embeddings but not configured")
        return OpenAIEmbeddingProvider(
            api_key=llm_config.openai_api_key,
            model=config.openai_model,
            timeout=llm_config.timeout,
        )
    if not llm_config.google_api_key:
        raise ValueError("Google API key is required for embeddings but not configured")
    return GoogleEmbeddingProvider(api_key=llm_config.google_api_key, model=config.google_model)
