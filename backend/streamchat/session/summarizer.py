"""Running summary maintenance for overflowed history."""

import asyncio
from typing import Sequence

import structlog

from streamchat.core.exceptions import ModelInvocationError
from streamchat.llm.interface import LLMClientInterface
from streamchat.llm.prompts import get_summary_instruction, get_summary_request
from streamchat.session.types import Turn, TurnRole

logger = structlog.get_logger()

_SPEAKER_LABELS = {
    TurnRole.USER: "User",
    TurnRole.ASSISTANT: "Assistant",
    TurnRole.SYSTEM: "System",
}


def format_transcript(turns: Sequence[Turn]) -> str:
    """Serialize turns as ``Speaker: text`` lines."""
    lines = []
    for turn in turns:
        if turn.role == TurnRole.TOOL:
            tool_name = getattr(turn.content, "tool_name", "tool")
            label = f"Tool ({tool_name})"
        else:
            label = _SPEAKER_LABELS[turn.role]
        lines.append(f"{label}: {turn.text}")
    return "\n".join(lines)


class Summarizer:
    """Folds turns that fell out of the context window into a summary.

    Summarization is best-effort: any model failure or timeout leaves the
    previous summary in place.

    Example:
        ```python
        summarizer = Summarizer(llm_client, max_words=200)
        summary = await summarizer.update(session_summary, overflow_turns)
        ```
    """

    def __init__(
        self,
        llm_client: LLMClientInterface,
        max_words: int = 200,
        timeout: float = 30.0,
    ) -> None:
        """Initialize summarizer.

        Args:
            llm_client: Client used for the summary call
            max_words: Target upper bound for the summary length
            timeout: Seconds before the call is abandoned
        """
        self.llm_client = llm_client
        self.max_words = max_words
        self.timeout = timeout

    async def update(self, old_summary: str, overflow_turns: Sequence[Turn]) -> str:
        """Produce an updated summary.

        Args:
            old_summary: Current running summary (may be empty)
            overflow_turns: Turns to fold in, oldest first

        Returns:
            The new summary, or ``old_summary`` when there is nothing to fold
            in or the model call fails
        """
        if not overflow_turns:
            return old_summary

        messages = [
            {"role": "system", "content": get_summary_instruction(self.max_words)},
            {
                "role": "user",
                "content": get_summary_request(old_summary, format_transcript(overflow_turns)),
            },
        ]

        try:
            response = await asyncio.wait_for(
                self.llm_client.complete(messages, temperature=0.1),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "summary_generation_timeout",
                timeout=self.timeout,
                turns=len(overflow_turns),
            )
            return old_summary
        except ModelInvocationError as e:
            logger.warning(
                "summary_generation_failed",
                error=str(e),
                turns=len(overflow_turns),
            )
            return old_summary
        except Exception as e:
            logger.error(
                "summary_generation_failed",
                error=str(e),
                error_type=type(e).__name__,
                turns=len(overflow_turns),
                exc_info=e,
            )
            return old_summary

        summary = (response.content or "").strip()
        if not summary:
            logger.warning("summary_generation_empty", turns=len(overflow_turns))
            return old_summary

        logger.info(
            "summary_generated",
            turns=len(overflow_turns),
            old_chars=len(old_summary),
            new_chars=len(summary),
        )
        return summary
