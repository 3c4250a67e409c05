"""Shared type definitions for streamchat."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Provider-neutral chat message: {"role": ..., "content": ...}, plus
# "tool_calls" / "tool_call_id" on the messages of a tool round
ChatMessage = Dict[str, Any]


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_litellm(self) -> Dict[str, Any]:
        """Convert to the OpenAI/LiteLLM ``tool_calls`` entry."""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments, ensure_ascii=False),
            },
        }

    @classmethod
    def from_litellm(cls, raw: Any) -> ToolCall:
        """Parse a ``tool_calls`` entry from a LiteLLM response."""
        if hasattr(raw, "model_dump"):
            raw = raw.model_dump()
        function = raw.get("function") or {}
        raw_arguments = function.get("arguments") or "{}"
        try:
            arguments = json.loads(raw_arguments) if isinstance(raw_arguments, str) else raw_arguments
        except json.JSONDecodeError:
            arguments = {"_raw": raw_arguments}
        if not isinstance(arguments, dict):
            arguments = {"_raw": arguments}

        return cls(
            id=raw.get("id") or str(uuid.uuid4()),
            name=function.get("name") or "unknown",
            arguments=arguments,
        )


@dataclass
class LLMResponse:
    """Response from a non-streaming LLM call."""

    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)
    finish_reason: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class RetrievedPassage:
    """A passage returned by the vector store."""

    content: str
    score: float
    source: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
