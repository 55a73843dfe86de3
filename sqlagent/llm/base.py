"""
Base LLM Provider

A provider turns one LLMRequest into one LLMResponse. Providers raise
their SDK's exceptions unchanged; classification and retries belong to
LLMClient and its LLMHandler.
"""

import logging
import time
from abc import ABC, abstractmethod

from sqlagent.llm.models import LLMRequest, LLMResponse

logger = logging.getLogger(__name__)


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Attributes:
        provider_name: Key used in settings and log records ("openai", "google")
        model: Model used when a request names none
        temperature: Sampling temperature used when a request sets none
        max_tokens: Completion ceiling used when a request sets none
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        provider_name: str,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout: int = 30,
    ):
        self.provider_name = provider_name
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

        logger.info(
            f"Initialized {provider_name} provider ({model})",
            extra={"provider": provider_name, "model": model, "timeout": timeout},
        )

    @abstractmethod
    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Send ``request`` and return the first candidate's reply."""

    def count_tokens(self, text: str) -> int:
        """Approximate token count (four characters per token)."""
        return len(text) // 4

    def model_for(self, request: LLMRequest) -> str:
        return request.model or self.model

    def temperature_for(self, request: LLMRequest) -> float:
        return self.temperature if request.temperature is None else request.temperature

    def max_tokens_for(self, request: LLMRequest) -> int:
        return request.max_tokens or self.max_tokens

    def _log_exchange(self, request: LLMRequest, response: LLMResponse, started: float) -> None:
        logger.debug(
            f"{self.provider_name} replied in {(time.perf_counter() - started) * 1000:.0f}ms",
            extra={
                "provider": self.provider_name,
                "model": response.model,
                "messages": len(request.messages),
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "finish_reason": response.finish_reason,
            },
        )
        if response.truncated:
            logger.warning(
                f"{self.provider_name} reply truncated at {self.max_tokens_for(request)} tokens",
                extra={"provider": self.provider_name, "model": response.model},
            )
