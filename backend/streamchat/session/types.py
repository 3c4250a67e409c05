"""Type definitions for conversation sessions."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from streamchat.core.exceptions import ValidationError


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TurnRole(str, Enum):
    """Roles for conversation turns."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class TurnStage(str, Enum):
    """Stages a single submitted turn moves through."""

    RESOLVING_SESSION = "resolving_session"
    LOADING_HISTORY = "loading_history"
    BUDGETING = "budgeting"
    RETRIEVING = "retrieving"
    INVOKING = "invoking"
    CALLING_TOOLS = "calling_tools"
    STREAMING = "streaming"
    PERSISTING = "persisting"
    SUMMARIZING = "summarizing"
    DONE = "done"


@dataclass(frozen=True)
class TextContent:
    """Plain text payload."""

    text: str
    kind: str = field(default="text", init=False)

    def as_text(self) -> str:
        return self.text

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.kind, "text": self.text}


@dataclass(frozen=True)
class ToolResultContent:
    """Structured result returned by a tool, serialized to text for the model."""

    tool_name: str
    result: Any
    tool_call_id: Optional[str] = None
    kind: str = field(default="tool_result", init=False)

    def as_text(self) -> str:
        if isinstance(self.result, str):
            return self.result
        return json.dumps(self.result, ensure_ascii=False, default=str)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "tool_name": self.tool_name,
            "tool_call_id": self.tool_call_id,
            "result": self.result,
        }


TurnContent = Union[TextContent, ToolResultContent]


def content_from_payload(payload: Any) -> TurnContent:
    """Rebuild a content variant from its stored JSON payload."""
    return normalize_content(payload)


def normalize_content(raw: Any) -> TurnContent:
    """Coerce an incoming message shape into a content variant.

    Accepted shapes:
    - a string
    - a tagged dict: ``{"type": "text", "text": ...}`` or
      ``{"type": "tool_result", "tool_name": ..., "result": ...}``
    - a list of UI parts; the ``text`` parts are concatenated as-is and
      other part types are ignored

    Args:
        raw: Incoming content

    Returns:
        TextContent or ToolResultContent

    Raises:
        ValidationError: If the shape is not one of the above
    """
    if isinstance(raw, (TextContent, ToolResultContent)):
        return raw

    if isinstance(raw, str):
        return TextContent(text=raw)

    if isinstance(raw, dict):
        kind = raw.get("type")
        if kind == "text" and isinstance(raw.get("text"), str):
            return TextContent(text=raw["text"])
        if kind == "tool_result" and isinstance(raw.get("tool_name"), str):
            return ToolResultContent(
                tool_name=raw["tool_name"],
                result=raw.get("result"),
                tool_call_id=raw.get("tool_call_id"),
            )
        raise ValidationError(f"Unsupported content object of type {kind!r}")

    if isinstance(raw, list):
        texts = []
        for part in raw:
            if not isinstance(part, dict):
                raise ValidationError("Content parts must be objects")
            if part.get("type") == "text":
                if not isinstance(part.get("text"), str):
                    raise ValidationError("Text part is missing its text")
                texts.append(part["text"])
        return TextContent(text="".join(texts))

    raise ValidationError(f"Unsupported content shape: {type(raw).__name__}")


@dataclass
class Turn:
    """One role-tagged message in a session's history."""

    session_id: str
    role: TurnRole
    content: TurnContent
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    @property
    def text(self) -> str:
        return self.content.as_text()

    @classmethod
    def user(cls, session_id: str, text: str) -> "Turn":
        return cls(session_id=session_id, role=TurnRole.USER, content=TextContent(text))

    @classmethod
    def assistant(cls, session_id: str, text: str) -> "Turn":
        return cls(session_id=session_id, role=TurnRole.ASSISTANT, content=TextContent(text))

    @classmethod
    def tool(
        cls,
        session_id: str,
        tool_name: str,
        result: Any,
        tool_call_id: Optional[str] = None,
    ) -> "Turn":
        return cls(
            session_id=session_id,
            role=TurnRole.TOOL,
            content=ToolResultContent(tool_name=tool_name, result=result, tool_call_id=tool_call_id),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the history wire format."""
        data = {
            "id": self.id,
            "role": self.role.value,
            "content": self.text,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if isinstance(self.content, ToolResultContent):
            data["toolName"] = self.content.tool_name
        return data


@dataclass
class SessionRecord:
    """A durable conversation thread."""

    id: str
    owner_id: str
    title: str
    summary: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "title": self.title,
            "summary": self.summary,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class TurnRequest:
    """One incoming chat turn."""

    text: str
    session_id: Optional[str] = None
    owner_id: Optional[str] = None


@dataclass
class TrimResult:
    """Split of a history into the context window and the overflow."""

    windowed: List[Turn]
    overflow: List[Turn]


@dataclass(frozen=True)
class ToolEvent:
    """Notification that the model started a tool call during a turn."""

    tool_name: str
    tool_call_id: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "tool-start",
            "toolName": self.tool_name,
            "toolCallId": self.tool_call_id,
            "input": self.arguments,
        }
