from src.agents.llm.base_llm_client import BaseLLMClient, LLMClientError
from src.agents.llm.provider_router import get_llm_client

__all__ = ["BaseLLMClient", "LLMClientError", "get_llm_client"]
