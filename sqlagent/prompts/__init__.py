"""Prompt templates and loader."""

from sqlagent.prompts.loader import PromptLoader

__all__ = ["PromptLoader"]
