"""LLM provider factory."""

from advisor.core.config import Settings, settings
from advisor.services.llm.base import BaseLLMProvider


def get_llm_provider(config: Settings = settings) -> BaseLLMProvider:
    """Build the provider named by ``config.llm_provider``."""
    if config.llm_provider == "gemini":
        from advisor.services.llm.gemini import GeminiProvider
        return GeminiProvider(api_key=config.gemini_api_key, model=config.llm_model)
    raise ValueError(f"Unknown LLM provider: {config.llm_provider}")
