"""
LLM access layer.

Architecture:
  llm/ — BaseLLMClient, AnthropicLLMClient, OpenAILLMClient, provider_router

Entry points:
  from src.agents.llm import get_llm_client
"""
