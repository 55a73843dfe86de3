"""Shared helpers."""

from sqlagent.utils.llm_output import clean_sql, parse_json_object, strip_code_fences

__all__ = ["clean_sql", "parse_json_object", "strip_code_fences"]
