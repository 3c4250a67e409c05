"""FastAPI dependencies shared by the routes."""

from fastapi import HTTPException, Request

from streamchat.session.manager import ConversationManager


def get_conversation_manager(request: Request) -> ConversationManager:
    """Get the conversation manager created at application startup."""
    manager = getattr(request.app.state, "conversation_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Conversation manager is not initialized")
    return manager
