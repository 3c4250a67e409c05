"""Model invocation clients."""

from streamchat.llm.client import LiteLLMClient, MockLLMClient
from streamchat.llm.interface import LLMClientInterface

__all__ = [
    "LLMClientInterface",
    "LiteLLMClient",
    "MockLLMClient",
]
