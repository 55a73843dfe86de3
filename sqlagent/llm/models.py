"""
LLM Messages

Chat payloads exchanged with the providers. Every pipeline stage sends a
system prompt carrying the schema context and a user prompt carrying the
question; the intent extractor's re-ask appends an assistant/user pair.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant"]
FinishReason = Literal["stop", "length", "content_filter", "error"]


class LLMMessage(BaseModel):
    role: Role
    content: str = Field(..., min_length=1)


class LLMRequest(BaseModel):
    """A conversation plus optional overrides of the provider defaults."""

    messages: list[LLMMessage] = Field(..., min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    model: str | None = None
    options: dict[str, Any] = Field(
        default_factory=dict, description="Extra keyword arguments for the SDK call"
    )

    @classmethod
    def from_prompts(cls, system_prompt: str, user_prompt: str, **kwargs: Any) -> "LLMRequest":
        return cls(
            messages=[
                LLMMessage(role="system", content=system_prompt),
                LLMMessage(role="user", content=user_prompt),
            ],
            **kwargs,
        )

    @property
    def system_prompt(self) -> str:
        return "\n\n".join(m.content for m in self.messages if m.role == "system")

    @property
    def turns(self) -> list[LLMMessage]:
        """Messages after the system prompt, in order."""
        return [m for m in self.messages if m.role != "system"]


class LLMUsage(BaseModel):
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMResponse(BaseModel):
    """Reply text plus the bookkeeping the pipeline logs."""

    content: str
    model: str
    provider: str
    usage: LLMUsage = Field(default_factory=LLMUsage)
    finish_reason: FinishReason = "stop"
    response_id: str | None = None

    @property
    def truncated(self) -> bool:
        """The reply hit the token ceiling, so generated SQL may be cut off."""
        return self.finish_reason == "length"
