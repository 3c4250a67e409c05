"""Streaming chat service with durable, budget-aware conversation sessions."""

from streamchat.llm.client import LiteLLMClient, MockLLMClient
from streamchat.retrieval import QdrantVectorStore, RetrievalAugmenter
from streamchat.session import (
    ContextTrimmer,
    ConversationManager,
    HistoryStore,
    Summarizer,
    TokenEstimator,
    TurnRequest,
    TurnStream,
)
from streamchat.tools import CatalogStore, ToolRegistry

__version__ = "0.1.0"

__all__ = [
    # Session management
    "ConversationManager",
    "TurnStream",
    "TurnRequest",
    "HistoryStore",
    "TokenEstimator",
    "ContextTrimmer",
    "Summarizer",
    # LLM clients
    "LiteLLMClient",
    "MockLLMClient",
    # Retrieval
    "RetrievalAugmenter",
    "QdrantVectorStore",
    # Tools
    "ToolRegistry",
    "CatalogStore",
]
