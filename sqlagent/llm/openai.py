"""
OpenAI Provider

Chat completions through the async openai SDK; token counts via tiktoken.
"""

import logging
import time

import openai
import tiktoken
from openai import AsyncOpenAI

from sqlagent.llm.base import BaseLLMProvider
from sqlagent.llm.models import FinishReason, LLMRequest, LLMResponse, LLMUsage

logger = logging.getLogger(__name__)

# Tool and function calls are never requested, so they read as a normal stop.
_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": "stop",
    "length": "length",
    "content_filter": "content_filter",
}


class OpenAIProvider(BaseLLMProvider):
    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout: int = 30,
    ):
        super().__init__(
            provider_name="openai",
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
        self.client = AsyncOpenAI(api_key=api_key, timeout=float(timeout))
        self._encoding: tiktoken.Encoding | None = None

    async def generate(self, request: LLMRequest) -> LLMResponse:
        started = time.perf_counter()
        try:
            completion = await self.client.chat.completions.create(
                model=self.model_for(request),
                messages=[message.model_dump() for message in request.messages],
                temperature=self.temperature_for(request),
                max_tokens=self.max_tokens_for(request),
                **request.options,
            )
        except openai.APIError as e:
            logger.error(f"OpenAI request failed: {e}", extra={"model": self.model_for(request)})
            raise

        choice = completion.choices[0]
        usage = completion.usage
        response = LLMResponse(
            content=choice.message.content or "",
            model=completion.model,
            provider=self.provider_name,
            usage=LLMUsage(
                prompt_tokens=usage.prompt_tokens, completion_tokens=usage.completion_tokens
            )
            if usage
            else LLMUsage(),
            finish_reason=_FINISH_REASONS.get(choice.finish_reason, "stop"),
            response_id=completion.id,
        )
        self._log_exchange(request, response, started)
        return response

    def count_tokens(self, text: str) -> int:
        if self._encoding is None:
            try:
                self._encoding = tiktoken.encoding_for_model(self.model)
            except KeyError:
                self._encoding = tiktoken.get_encoding("cl100k_base")
        return len(self._encoding.encode(text))
