"""
LLM Client

Text-generation capability used by every pipeline stage:
``complete(system_prompt, user_prompt) -> str``. Calls go to a provider
through an LLMHandler, so rate limits, transient outages and timeouts are
retried per policy while quota and auth failures surface immediately.
"""

import logging

from sqlagent.llm.base import BaseLLMProvider
from sqlagent.llm.models import LLMMessage, LLMRequest, LLMResponse
from sqlagent.resilience.llm import LLMHandler

logger = logging.getLogger(__name__)


class LLMClient:
    """
    Resilient wrapper around a BaseLLMProvider.

    Several clients may share one LLMHandler so they also share its
    rate-limit cooldown.
    """

    def __init__(self, provider: BaseLLMProvider, handler: LLMHandler | None = None):
        self.provider = provider
        self.handler = handler or LLMHandler()

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Send a system + user prompt pair and return the reply text."""
        response = await self.generate(LLMRequest.from_prompts(system_prompt, user_prompt))
        return response.content

    async def complete_messages(self, messages: list[LLMMessage]) -> str:
        """Send an arbitrary conversation (used for re-asks)."""
        response = await self.generate(LLMRequest(messages=messages))
        return response.content

    async def generate(self, request: LLMRequest) -> LLMResponse:
        await self.handler.wait_for_cooldown()

        async def call() -> LLMResponse:
            return await self.provider.generate(request.model_copy(deep=True))

        try:
            return await call()
        except Exception as exc:
            logger.warning(
                f"LLM call failed: {exc}",
                extra={"provider": self.provider.provider_name, "error_type": type(exc).__name__},
            )
            return await self.handler.handle_llm_error(call, exc)
