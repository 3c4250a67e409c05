"""Configuration module for streamchat."""

from streamchat.config.settings import (
    ChatSettings,
    RetrievalSettings,
    get_retrieval_settings,
    get_settings,
)

__all__ = [
    "ChatSettings",
    "RetrievalSettings",
    "get_settings",
    "get_retrieval_settings",
]
