"""
LLM Provider Module

Multi-provider LLM abstraction (OpenAI, Google Gemini) plus the resilient
text-generation client used by the pipeline agents.

Usage:
    from sqlagent.llm import LLMClient, LLMProviderFactory
    from sqlagent.config import get_settings

    provider = LLMProviderFactory.create_default_provider(get_settings().llm)
    client = LLMClient(provider)
    text = await client.complete("You write SQL.", "Count customers")
"""

from sqlagent.llm.base import BaseLLMProvider
from sqlagent.llm.client import LLMClient
from sqlagent.llm.factory import LLMProviderFactory
from sqlagent.llm.google import GoogleProvider
from sqlagent.llm.models import LLMMessage, LLMRequest, LLMResponse, LLMUsage
from sqlagent.llm.openai import OpenAIProvider

__all__ = [
    "BaseLLMProvider",
    "LLMClient",
    "LLMProviderFactory",
    "LLMMessage",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    "OpenAIProvider",
    "GoogleProvider",
]
