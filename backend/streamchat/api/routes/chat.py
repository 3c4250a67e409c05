"""API routes for streamed chat and conversation history.

Provides endpoints for:
- Submitting a user turn and streaming the reply (server-sent events)
- Reading a session's history
- Listing and deleting an owner's sessions
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from streamchat.api.dependencies import get_conversation_manager
from streamchat.core.exceptions import ModelInvocationError, PersistenceError, ValidationError
from streamchat.session.manager import ConversationManager
from streamchat.session.types import ToolEvent, TurnRequest, TurnRole, normalize_content

logger = structlog.get_logger()

router = APIRouter(prefix="/chat", tags=["chat"])

SESSION_ID_HEADER = "x-session-id"
DONE_EVENT = "data: [DONE]\n\n"


# Request/Response Models

class IncomingMessage(BaseModel):
    """The user message of a chat request."""
    role: str = Field("user", description="Message role; only user turns are accepted")
    text: Optional[str] = Field(None, description="Plain message text")
    parts: Optional[List[Dict[str, Any]]] = Field(None, description="UI message parts")


class ChatRequest(BaseModel):
    """Request to submit one chat turn."""
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(None, alias="sessionId", description="Existing session")
    owner_id: Optional[str] = Field(None, alias="ownerId", description="Owner of a new session")
    message: IncomingMessage


class HistoryResponse(BaseModel):
    """Session history response."""
    messages: List[Dict[str, Any]]


class SessionListResponse(BaseModel):
    """Session list response."""
    sessions: List[Dict[str, Any]]
    total: int


def _message_text(message: IncomingMessage) -> str:
    if message.role != TurnRole.USER.value:
        raise ValidationError(f"Only user messages can be submitted, got {message.role!r}")
    if message.text is not None:
        return message.text
    if message.parts is not None:
        return normalize_content(message.parts).as_text()
    raise ValidationError("message text is required")


def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _event_payload(item: Union[str, ToolEvent]) -> Dict[str, Any]:
    if isinstance(item, ToolEvent):
        return item.to_dict()
    return {"type": "text-delta", "delta": item}


# Endpoints

@router.post("")
async def chat(
    request: ChatRequest,
    manager: ConversationManager = Depends(get_conversation_manager),
) -> StreamingResponse:
    """Submit a user turn and stream the assistant reply.

    The reply is sent as server-sent events of the form
    ``{"type": "text-delta", "delta": ...}`` terminated by ``[DONE]``, with
    ``{"type": "tool-start", "toolName": ...}`` events when the model calls a
    tool. The session id (new or existing) is returned in the
    ``x-session-id`` header.
    """
    try:
        text = _message_text(request.message)
        stream = await manager.submit_turn(
            TurnRequest(text=text, session_id=request.session_id, owner_id=request.owner_id)
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        logger.error("chat_turn_not_stored", session_id=request.session_id, error=str(e))
        raise HTTPException(status_code=503, detail=f"Failed to store message: {str(e)}")

    headers = {SESSION_ID_HEADER: stream.session_id, "Cache-Control": "no-cache"}
    items = stream.events()

    # A failure before the first item is still reportable as a status code
    try:
        first: Optional[Union[str, ToolEvent]] = await items.__anext__()
    except StopAsyncIteration:
        first = None
    except ModelInvocationError as e:
        logger.error("chat_model_failed", session_id=stream.session_id, error=str(e))
        raise HTTPException(status_code=502, detail=f"Model invocation failed: {str(e)}", headers=headers)

    async def event_stream() -> AsyncIterator[str]:
        try:
            if first is not None:
                yield _sse(_event_payload(first))
            async for item in items:
                yield _sse(_event_payload(item))
        except ModelInvocationError as e:
            logger.error("chat_stream_failed", session_id=stream.session_id, error=str(e))
            yield _sse({"type": "error", "errorText": str(e)})
        finally:
            await items.aclose()
        yield DONE_EVENT

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=headers)


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    manager: ConversationManager = Depends(get_conversation_manager),
) -> HistoryResponse:
    """Get a session's turns, oldest first."""
    if not session_id:
        raise HTTPException(status_code=400, detail="sessionId is required")

    try:
        turns = await manager.get_history(session_id)
    except PersistenceError as e:
        logger.error("get_history_failed", session_id=session_id, error=str(e))
        raise HTTPException(status_code=503, detail=f"Failed to load history: {str(e)}")

    return HistoryResponse(messages=[turn.to_dict() for turn in turns])


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    limit: int = Query(100, ge=1, le=1000),
    manager: ConversationManager = Depends(get_conversation_manager),
) -> SessionListResponse:
    """List an owner's sessions, newest first."""
    if not owner_id:
        raise HTTPException(status_code=400, detail="ownerId is required")

    try:
        sessions = await manager.list_sessions(owner_id, limit=limit)
    except PersistenceError as e:
        logger.error("list_sessions_failed", owner_id=owner_id, error=str(e))
        raise HTTPException(status_code=503, detail=f"Failed to list sessions: {str(e)}")

    return SessionListResponse(
        sessions=[session.to_dict() for session in sessions],
        total=len(sessions),
    )


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    manager: ConversationManager = Depends(get_conversation_manager),
) -> Dict[str, str]:
    """Delete a session and all of its turns."""
    try:
        deleted = await manager.delete_session(session_id)
    except PersistenceError as e:
        logger.error("delete_session_failed", session_id=session_id, error=str(e))
        raise HTTPException(status_code=503, detail=f"Failed to delete session: {str(e)}")

    if not deleted:
        raise HTTPException(status_code=404, detail="Session not found")

    return {"status": "deleted", "session_id": session_id}
