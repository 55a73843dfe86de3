"""
LLM Provider Factory

Creates LLM provider instances from configuration, with per-agent
provider overrides (intent_provider, sql_provider, corrector_provider).
"""

import logging

from sqlagent.config import LLMSettings, ProviderName
from sqlagent.llm.base import BaseLLMProvider
from sqlagent.llm.google import GoogleProvider
from sqlagent.llm.openai import OpenAIProvider

logger = logging.getLogger(__name__)


class LLMProviderFactory:
    """Factory for creating LLM provider instances."""

    PROVIDERS = {
        "openai": OpenAIProvider,
        "google": GoogleProvider,
    }

    @staticmethod
    def create_provider(provider_type: ProviderName, config: LLMSettings) -> BaseLLMProvider:
        """
        Create an LLM provider instance.

        Raises:
            ValueError: If provider type is unknown or its API key is missing
        """
        if provider_type not in LLMProviderFactory.PROVIDERS:
            raise ValueError(
                f"Unknown provider type: {provider_type}. "
                f"Available providers: {list(LLMProviderFactory.PROVIDERS.keys())}"
            )

        logger.info(f"Creating {provider_type} provider", extra={"provider": provider_type})

        if provider_type == "openai":
            return LLMProviderFactory._create_openai(config)
        return LLMProviderFactory._create_google(config)

    @staticmethod
    def create_default_provider(config: LLMSettings) -> BaseLLMProvider:
        return LLMProviderFactory.create_provider(config.default_provider, config)

    @staticmethod
    def create_agent_provider(agent_name: str, config: LLMSettings) -> BaseLLMProvider:
        """
        Create provider for a specific agent with override support.

        Args:
            agent_name: Agent key ("intent", "sql", "corrector")
            config: LLM configuration
        """
        override_attr = f"{agent_name}_provider"
        override = getattr(config, override_attr, None)
        provider_type = override or config.default_provider

        logger.info(
            f"Creating provider for {agent_name} agent",
            extra={"agent": agent_name, "provider": provider_type, "has_override": override is not None},
        )

        return LLMProviderFactory.create_provider(provider_type, config)

    @staticmethod
    def _create_openai(config: LLMSettings) -> OpenAIProvider:
        if not config.openai_api_key:
            raise ValueError("OpenAI API key is required but not configured")
        return OpenAIProvider(
            api_key=config.openai_api_key,
            model=config.openai_model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
        )

    @staticmethod
    def _create_google(config: LLMSettings) -> GoogleProvider:
        if not config.google_api_key:
            raise ValueError("Google API key is required but not configured")
        return GoogleProvider(
            api_key=config.google_api_key,
            model=config.google_model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
        )
