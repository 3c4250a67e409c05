"""API routes for the chat service."""

from streamchat.api.routes.chat import router as chat_router

__all__ = [
    "chat_router",
]
