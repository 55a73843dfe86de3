"""
Google Provider

Gemini models through google-generativeai. The system prompt becomes the
model's system instruction; the remaining turns are sent as user/model
contents.
"""

import logging
import time
from typing import Any

import google.generativeai as genai

from sqlagent.llm.base import BaseLLMProvider
from sqlagent.llm.models import FinishReason, LLMRequest, LLMResponse, LLMUsage

logger = logging.getLogger(__name__)


class GoogleProvider(BaseLLMProvider):
    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout: int = 30,
    ):
        super().__init__(
            provider_name="google",
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
        genai.configure(api_key=api_key)

    async def generate(self, request: LLMRequest) -> LLMResponse:
        started = time.perf_counter()
        model_name = self.model_for(request)
        client = genai.GenerativeModel(model_name, system_instruction=request.system_prompt or None)
        contents = [
            {"role": "model" if turn.role == "assistant" else "user", "parts": [turn.content]}
            for turn in request.turns
        ]

        try:
            reply = await client.generate_content_async(
                contents,
                generation_config=genai.types.GenerationConfig(
                    temperature=self.temperature_for(request),
                    max_output_tokens=self.max_tokens_for(request),
                ),
                request_options={"timeout": self.timeout},
            )
        except Exception as e:
            logger.error(f"Gemini request failed: {e}", extra={"model": model_name})
            raise

        text = self._reply_text(reply)
        counts = getattr(reply, "usage_metadata", None)
        response = LLMResponse(
            content=text,
            model=model_name,
            provider=self.provider_name,
            usage=LLMUsage(
                prompt_tokens=getattr(counts, "prompt_token_count", None)
                or self.count_tokens(request.system_prompt + " ".join(t.content for t in request.turns)),
                completion_tokens=getattr(counts, "candidates_token_count", None)
                or self.count_tokens(text),
            ),
            finish_reason=self._finish_reason(reply),
        )
        self._log_exchange(request, response, started)
        return response

    @staticmethod
    def _reply_text(reply: Any) -> str:
        try:
            text = reply.text
        except ValueError:
            # Blocked candidates carry no parts
            return ""
        return text if isinstance(text, str) else str(text or "")

    @staticmethod
    def _finish_reason(reply: Any) -> FinishReason:
        candidates = getattr(reply, "candidates", None) or []
        raw = str(getattr(candidates[0], "finish_reason", "") if candidates else "").lower()
        if "max_tokens" in raw or "length" in raw:
            return "length"
        if any(token in raw for token in ("safety", "blocked", "recitation")):
            return "content_filter"
        return "stop"
