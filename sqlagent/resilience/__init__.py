"""
Resilience Module

Error classification and strategy-driven retry around the three external
dependencies: the relational database, the vector store and the LLM API.

Usage:
    from sqlagent.resilience import ConnectionHandler, SqlErrorAnalyzer

    handler = ConnectionHandler()
    schema = await handler.call(introspector.scan)
"""

from sqlagent.resilience.analyzer import SqlErrorAnalyzer
from sqlagent.resilience.base import BaseErrorHandler
from sqlagent.resilience.connection import ConnectionHandler
from sqlagent.resilience.llm import LLMHandler
from sqlagent.resilience.outcome import Err, Ok, Outcome
from sqlagent.resilience.sql import SqlHandler
from sqlagent.resilience.vector_store import VectorStoreHandler

__all__ = [
    "SqlErrorAnalyzer",
    "BaseErrorHandler",
    "ConnectionHandler",
    "LLMHandler",
    "SqlHandler",
    "VectorStoreHandler",
    "Ok",
    "Err",
    "Outcome",
]
