"""
Base Agent Framework

Shared plumbing for the LLM-backed pipeline stages (intent extraction,
SQL generation, SQL correction): a named agent owning an LLMClient and a
PromptLoader, with per-call metadata (LLM calls, timing, last error).

Metadata lives in a ContextVar, so questions running concurrently on one
agent each see their own invocation.

Usage:
    class MyAgent(BaseAgent):
        def __init__(self, llm: LLMClient):
            super().__init__(name="MyAgent", llm=llm)

        async def run(self, question: str) -> str:
            self._start()
            return await self._complete("You are ...", question)
"""

import logging
from contextvars import ContextVar
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from sqlagent.llm.client import LLMClient
from sqlagent.prompts.loader import PromptLoader

logger = logging.getLogger(__name__)

DIALECT_LABELS = {
    "sqlserver": "SQL Server (T-SQL)",
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "sqlite": "SQLite",
}


class AgentMetadata(BaseModel):
    """Metadata about one agent invocation."""

    agent_name: str
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None
    duration_ms: float | None = None
    llm_calls: int = 0
    error: str | None = None

    model_config = ConfigDict(frozen=False)

    def mark_complete(self) -> None:
        """Mark execution as complete and calculate duration."""
        self.completed_at = datetime.utcnow()
        if self.started_at:
            delta = self.completed_at - self.started_at
            self.duration_ms = delta.total_seconds() * 1000


class BaseAgent:
    """
    Base class for LLM-backed agents.

    Attributes:
        name: Unique identifier for this agent
        llm: Resilient LLM client
        prompts: Template loader
        dialect: Target SQL dialect key
    """

    def __init__(
        self,
        name: str,
        llm: LLMClient,
        prompts: PromptLoader | None = None,
        dialect: str = "sqlserver",
    ):
        self.name = name
        self.llm = llm
        self.prompts = prompts or PromptLoader()
        self.dialect = dialect
        self._metadata: ContextVar[AgentMetadata] = ContextVar(
            f"{name}_metadata", default=AgentMetadata(agent_name=name)
        )

        logger.info(f"Initialized {self.name}", extra={"agent": self.name, "dialect": dialect})

    @property
    def metadata(self) -> AgentMetadata:
        """Metadata of the invocation running in the current context."""
        return self._metadata.get()

    @property
    def dialect_label(self) -> str:
        return DIALECT_LABELS.get(self.dialect, self.dialect)

    def _start(self) -> None:
        """Begin fresh metadata for this invocation."""
        self._metadata.set(AgentMetadata(agent_name=self.name))

    def _finish(self, error: Exception | None = None) -> None:
        self.metadata.mark_complete()
        if error is not None:
            self.metadata.error = str(error)
        logger.info(
            f"Completed {self.name}",
            extra={
                "agent": self.name,
                "success": error is None,
                "duration_ms": self.metadata.duration_ms,
                "llm_calls": self.metadata.llm_calls,
            },
        )

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        """Call the LLM with a system/user prompt pair and track the call."""
        self._track_llm_call()
        return await self.llm.complete(system_prompt, user_prompt)

    def _track_llm_call(self) -> None:
        """Track an LLM API call in metadata."""
        self.metadata.llm_calls += 1
        logger.debug(
            f"LLM call tracked for {self.name}",
            extra={"agent": self.name, "total_llm_calls": self.metadata.llm_calls},
        )
