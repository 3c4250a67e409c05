"""Core streamchat components."""

from streamchat.core.exceptions import (
    ChatError,
    ConfigurationError,
    ModelInvocationError,
    PersistenceError,
    RetrievalError,
    ValidationError,
)
from streamchat.core.logging import configure_logging

__all__ = [
    "ChatError",
    "ValidationError",
    "PersistenceError",
    "ModelInvocationError",
    "RetrievalError",
    "ConfigurationError",
    "configure_logging",
]
