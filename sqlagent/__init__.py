"""
sqlagent

Natural-language to read-only SQL with retrieval-augmented schema context,
bounded self-correction and resilient access to the database, vector store
and LLM provider.
"""

__version__ = "0.1.0"
