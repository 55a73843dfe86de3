"""
Intent Extractor

Asks the LLM what the question wants (operation kind, target table,
metrics, filters, clarification need) and decodes the JSON reply into an
IntentAnalysis. A reply that does not decode is re-asked once with the
parse error attached; a second failure raises LLMResponseError.
"""

import logging

from pydantic import ValidationError

from sqlagent.agents.base import BaseAgent
from sqlagent.llm.client import LLMClient
from sqlagent.llm.models import LLMMessage
from sqlagent.models.errors import LLMResponseError
from sqlagent.models.query import IntentAnalysis
from sqlagent.models.schema import last_segment
from sqlagent.prompts.loader import PromptLoader
from sqlagent.utils.llm_output import parse_json_object

logger = logging.getLogger(__name__)

REASK_PROMPT = (
    "Your previous reply could not be parsed ({error}). "
    "Reply again with ONLY the JSON object, no markdown and no commentary."
)


class IntentExtractor(BaseAgent):
    """Extracts structured intent from a normalized question."""

    def __init__(self, llm: LLMClient, prompts: PromptLoader | None = None, dialect: str = "sqlserver"):
        super().__init__(name="IntentExtractor", llm=llm, prompts=prompts, dialect=dialect)

    async def extract(self, question: str, table_names: list[str]) -> IntentAnalysis:
        """
        Extract intent for ``question`` given the candidate table names.

        Raises:
            LLMResponseError: Reply still not decodable after one re-ask
        """
        self._start()
        system_prompt, user_prompt = self.prompts.render_pair(
            "intent.md", question=question, tables=table_names
        )

        raw = await self._complete(system_prompt, user_prompt)
        try:
            intent = self._decode(raw)
        except LLMResponseError as first_error:
            logger.warning(
                f"Intent reply not decodable, re-asking once: {first_error}",
                extra={"agent": self.name, "raw_response": raw[:200]},
            )
            self._track_llm_call()
            raw = await self.llm.complete_messages(
                [
                    LLMMessage(role="system", content=system_prompt),
                    LLMMessage(role="user", content=user_prompt),
                    LLMMessage(role="assistant", content=raw or "(empty reply)"),
                    LLMMessage(role="user", content=REASK_PROMPT.format(error=first_error.message)),
                ]
            )
            try:
                intent = self._decode(raw)
            except LLMResponseError as e:
                self._finish(e)
                raise

        intent = self._canonical_target(intent, table_names)
        logger.info(
            f"Intent: {intent.intent.value}, Target: {intent.target}",
            extra={"agent": self.name, "needs_clarification": intent.needs_clarification},
        )
        self._finish()
        return intent

    def _decode(self, raw: str) -> IntentAnalysis:
        payload = parse_json_object(raw)
        try:
            return IntentAnalysis.model_validate(payload)
        except ValidationError as e:
            raise LLMResponseError(
                f"Intent JSON has the wrong shape: {e.error_count()} validation errors",
                raw_response=raw,
            ) from e

    @staticmethod
    def _canonical_target(intent: IntentAnalysis, table_names: list[str]) -> IntentAnalysis:
        """Replace the target with the exact table name when it matches one."""
        wanted = last_segment(intent.target) if intent.target else ""
        for name in table_names:
            if wanted and last_segment(name) == wanted and name != intent.target:
                return intent.model_copy(update={"target": name})
        return intent
