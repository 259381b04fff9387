"""
Provider router — selects the correct LLM client by provider name.

Supported providers:
  "anthropic"  — Claude via Anthropic SDK (tool_use structured output)
  "openai"     — GPT via OpenAI SDK + Instructor (TOOLS mode)
"""

import logging

from src.agents.llm.base_llm_client import BaseLLMClient

logger = logging.getLogger(__name__)


def get_llm_client(
    provider: str = "anthropic",
    model_name: str | None = None,
    temperature: float = 0.1,
    max_tokens: int = 2000,
) -> BaseLLMClient:
    """
    Factory: returns the appropriate LLM client for the given provider.

    Args:
        provider: "anthropic" | "openai"
        model_name: Model identifier. Defaults per provider:
                    anthropic → claude-haiku-4-5-20251001
                    openai    → gpt-4o-mini
        temperature: Sampling temperature
        max_tokens: Max response tokens

    Returns:
        Concrete BaseLLMClient instance (may report is_available=False if
        the provider is missing an API key)
    """
    provider = provider.lower().strip()

    if provider == "openai":
        from src.agents.llm.openai_client import OpenAILLMClient

        return OpenAILLMClient(
            model_name=model_name or "gpt-4o-mini",
            temperature=temperature,
            max_tokens=max_tokens,
        )

    if provider != "anthropic":
        logger.warning(
            f"Unknown LLM provider '{provider}'. Supported: anthropic, openai. Defaulting to anthropic."
        )

    from src.agents.llm.anthropic_client import AnthropicLLMClient

    return AnthropicLLMClient(
        model_name=model_name or "claude-haiku-4-5-20251001",
        temperature=temperature,
        max_tokens=max_tokens,
    )
