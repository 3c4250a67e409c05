"""Tool interface and registry for model tool calling."""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import structlog

from streamchat.core.exceptions import ToolError
from streamchat.types import ToolCall

logger = structlog.get_logger()


class BaseTool(ABC):
    """A capability the model can invoke by name.

    Each tool defines:
    - name: identifier the model uses in its tool calls
    - description: shown to the model so it knows when to call the tool
    - parameters: JSON Schema for the call arguments

    ``execute`` returns plain text that is fed back to the model. A tool
    that cannot answer raises ``ToolError`` with a message the model may
    relay to the user.
    """

    name: str
    description: str
    parameters: Dict[str, Any]

    @abstractmethod
    async def execute(self, arguments: Dict[str, Any]) -> str:
        """Run the tool with decoded call arguments."""
        ...

    def to_openai_tool(self) -> Dict[str, Any]:
        """Convert to an OpenAI-compatible function definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def require_text(arguments: Dict[str, Any], key: str, tool_name: str) -> str:
    """Get a required, non-blank string argument."""
    value = arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolError(f"'{key}' must be a non-empty string", tool_name=tool_name)
    return value.strip()


class ToolRegistry:
    """Tools offered to the model, executed by name.

    Execution never raises for tool-side problems: an unknown tool, a
    ``ToolError``, a timeout or a crash all come back as text so the model
    can react to them within the same turn.

    Example:
        ```python
        registry = ToolRegistry(timeout=15.0)
        registry.register(SearchDocumentsTool(augmenter))

        response = await llm_client.complete(messages, tools=registry.get_openai_tools())
        for call in response.tool_calls:
            output = await registry.execute(call)
        ```
    """

    def __init__(self, timeout: float = 15.0) -> None:
        """Initialize registry.

        Args:
            timeout: Seconds before one tool execution is abandoned
        """
        self.timeout = timeout
        self._tools: Dict[str, BaseTool] = {}

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, tool: BaseTool) -> None:
        """Register a tool instance, replacing one with the same name."""
        if tool.name in self._tools:
            logger.warning("tool_duplicate", tool=tool.name)
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool=tool.name)

    def get(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def get_openai_tools(self) -> List[Dict[str, Any]]:
        """Function definitions for the model's ``tools`` parameter."""
        return [tool.to_openai_tool() for tool in self._tools.values()]

    async def execute(self, call: ToolCall) -> str:
        """Run one tool call and return the text for the model."""
        tool = self.get(call.name)
        if tool is None:
            logger.warning("tool_unknown", tool=call.name)
            return f"Unknown tool: {call.name}"

        logger.info("tool_called", tool=call.name, arguments=call.arguments)
        start_time = time.time()

        try:
            output = await asyncio.wait_for(tool.execute(call.arguments), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("tool_timeout", tool=call.name, timeout=self.timeout)
            return f"Tool {call.name} timed out after {self.timeout}s"
        except ToolError as e:
            logger.warning("tool_failed", tool=call.name, error=str(e))
            return f"Tool {call.name} failed: {e}"
        except Exception as e:
            logger.error("tool_crashed", tool=call.name, error=str(e), exc_info=e)
            return f"Tool {call.name} failed unexpectedly: {e}"

        logger.info(
            "tool_executed",
            tool=call.name,
            output_chars=len(output),
            duration_ms=(time.time() - start_time) * 1000,
        )
        return output
