"""
Pipeline Module

The question-answering state machine, its schema cache and the bounded
self-correction loop.

Usage:
    from sqlagent.pipeline import QueryOrchestrator

    orchestrator = QueryOrchestrator.from_settings()
    response = await orchestrator.process_query("How many orders shipped last week?")
"""

from sqlagent.pipeline.cache import SchemaCache
from sqlagent.pipeline.correction import CorrectionOutcome, SelfCorrectionLoop
from sqlagent.pipeline.orchestrator import (
    PipelineState,
    QueryOrchestrator,
    build_fallback_context,
    format_answer,
)

__all__ = [
    "SchemaCache",
    "CorrectionOutcome",
    "SelfCorrectionLoop",
    "PipelineState",
    "QueryOrchestrator",
    "build_fallback_context",
    "format_answer",
]
