"""Tests for running summary maintenance."""

from streamchat.core.exceptions import ModelInvocationError
from streamchat.llm.client import MockLLMClient
from streamchat.session.summarizer import Summarizer, format_transcript
from streamchat.session.types import ToolResultContent, Turn, TurnRole


def _overflow():
    return [
        Turn.user("s1", "My name is Ana and I live in Lisbon."),
        Turn.assistant("s1", "Nice to meet you, Ana!"),
    ]


class TestFormatTranscript:
    """Test turn serialization for the summary prompt."""

    def test_speaker_labels(self):
        """Test each role gets its label."""
        tool_turn = Turn(
            session_id="s1",
            role=TurnRole.TOOL,
            content=ToolResultContent(tool_name="weather", result="sunny"),
        )
        transcript = format_transcript(_overflow() + [tool_turn])

        assert transcript.splitlines() == [
            "User: My name is Ana and I live in Lisbon.",
            "Assistant: Nice to meet you, Ana!",
            "Tool (weather): sunny",
        ]


class TestSummarizer:
    """Test summary updates."""

    async def test_empty_overflow_skips_model(self):
        """Test no model call when nothing overflowed."""
        client = MockLLMClient()
        summarizer = Summarizer(client)

        assert await summarizer.update("old summary", []) == "old summary"
        assert client.call_count == 0

    async def test_update_uses_old_summary_and_turns(self):
        """Test the prompt carries old summary, transcript and word limit."""
        client = MockLLMClient(complete_replies=["Ana lives in Lisbon."])
        summarizer = Summarizer(client, max_words=120)

        summary = await summarizer.update("User is planning a trip.", _overflow())

        assert summary == "Ana lives in Lisbon."
        [call] = client.calls_of("complete")
        system, request = call["messages"]
        assert "120 words" in system["content"]
        assert "User is planning a trip." in request["content"]
        assert "User: My name is Ana and I live in Lisbon." in request["content"]

    async def test_model_failure_keeps_old_summary(self):
        """Test a failed call leaves the summary unchanged."""
        client = MockLLMClient(complete_error=ModelInvocationError("quota exceeded"))
        summarizer = Summarizer(client)

        assert await summarizer.update("old", _overflow()) == "old"

    async def test_unexpected_client_error_keeps_old_summary(self):
        """Test errors outside the client's error contract are contained."""
        client = MockLLMClient(complete_error=IndexError("list index out of range"))
        summarizer = Summarizer(client)

        assert await summarizer.update("old", _overflow()) == "old"

    async def test_timeout_keeps_old_summary(self):
        """Test a slow call is abandoned."""
        client = MockLLMClient(complete_replies=["too late"], delay=0.5)
        summarizer = Summarizer(client, timeout=0.05)

        assert await summarizer.update("old", _overflow()) == "old"

    async def test_blank_reply_keeps_old_summary(self):
        """Test an empty model reply is ignored."""
        client = MockLLMClient(complete_replies=["   "])
        summarizer = Summarizer(client)

        assert await summarizer.update("old", _overflow()) == "old"
