"""
Agents Module

Pipeline stages for natural language to SQL conversion.

Available Agents:
    - QuestionNormalizer: Whitespace/abbreviation cleanup and language detection
    - IntentExtractor: Operation kind, target table, metrics and filters (LLM)
    - SqlGenerator: SELECT generation plus the safety validator and row cap (LLM)
    - SqlExecutor: Statement execution with timeout and transient retry
    - SqlCorrector: Repair of failed statements (LLM)

Usage:
    from sqlagent.agents import IntentExtractor, SqlGenerator

    intent = await IntentExtractor(llm).extract(question, table_names)
    sql = await SqlGenerator(llm).generate(question, intent, context)
"""

from sqlagent.agents.base import AgentMetadata, BaseAgent
from sqlagent.agents.corrector import SqlCorrector
from sqlagent.agents.executor import SqlExecutor
from sqlagent.agents.generator import SqlGenerator, ensure_limit, validate_sql
from sqlagent.agents.intent import IntentExtractor
from sqlagent.agents.normalizer import QuestionNormalizer

__all__ = [
    "AgentMetadata",
    "BaseAgent",
    "QuestionNormalizer",
    "IntentExtractor",
    "SqlGenerator",
    "SqlExecutor",
    "SqlCorrector",
    "validate_sql",
    "ensure_limit",
]
