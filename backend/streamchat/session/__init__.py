"""Conversation sessions: durable history, context trimming and summaries."""

from streamchat.session.history import HistoryStore
from streamchat.session.manager import ConversationManager, TurnStream, derive_title
from streamchat.session.summarizer import Summarizer, format_transcript
from streamchat.session.tokens import TokenEstimator
from streamchat.session.trimmer import ContextTrimmer, requires_user_first
from streamchat.session.types import (
    SessionRecord,
    TextContent,
    ToolEvent,
    ToolResultContent,
    TrimResult,
    Turn,
    TurnRequest,
    TurnRole,
    TurnStage,
    normalize_content,
)

__all__ = [
    # Manager
    "ConversationManager",
    "TurnStream",
    "derive_title",
    # Components
    "HistoryStore",
    "TokenEstimator",
    "ContextTrimmer",
    "requires_user_first",
    "Summarizer",
    "format_transcript",
    # Types
    "Turn",
    "TurnRole",
    "TurnStage",
    "TurnRequest",
    "TextContent",
    "ToolEvent",
    "ToolResultContent",
    "SessionRecord",
    "TrimResult",
    "normalize_content",
]
