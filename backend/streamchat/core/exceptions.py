"""Custom exceptions for streamchat."""


class ChatError(Exception):
    """Base exception for streamchat errors."""
    pass


class ValidationError(ChatError):
    """Raised when a request is missing required input."""
    pass


class PersistenceError(ChatError):
    """Raised when the relational store is unreachable or a write fails."""

    def __init__(self, message: str, operation: str = ""):
        super().__init__(message)
        self.operation = operation


class ModelInvocationError(ChatError):
    """Raised when a model call fails or times out."""

    def __init__(self, message: str, provider: str = "", model: str = ""):
        super().__init__(message)
        self.provider = provider
        self.model = model


class RetrievalError(ChatError):
    """Raised when the vector store cannot be queried."""
    pass


class ConfigurationError(ChatError):
    """Raised when configuration is invalid."""
    pass


class ToolError(ChatError):
    """Raised by a tool that cannot produce a result for the model."""

    def __init__(self, message: str, tool_name: str = ""):
        super().__init__(message)
        self.tool_name = tool_name
