"""Tests for token estimation."""

from streamchat.session.tokens import TokenEstimator
from streamchat.session.types import Turn


class TestHeuristicEstimates:
    """Test the character-based fallback."""

    def test_empty_text(self, estimator):
        """Test empty text costs nothing."""
        assert estimator.count_text("") == 0

    def test_character_ratio(self, estimator):
        """Test len // 4 + 1."""
        assert estimator.count_text("abcd") == 2
        assert estimator.count_text("a" * 40) == 11

    def test_monotonic_in_length(self, estimator):
        """Test longer text never costs less."""
        counts = [estimator.count_text("x" * n) for n in range(0, 200, 7)]
        assert counts == sorted(counts)

    def test_deterministic(self, estimator):
        """Test repeated calls agree."""
        text = "The quick brown fox jumps over the lazy dog"
        assert estimator.count_text(text) == estimator.count_text(text)

    def test_turn_includes_role_label(self, estimator):
        """Test turn cost is role label plus content."""
        turn = Turn.user("s1", "a" * 40)
        assert estimator.count_turn(turn) == estimator.count_text("user") + 11

    def test_estimate_dispatches(self, estimator):
        """Test estimate accepts text or turns."""
        turns = [Turn.user("s1", "hello"), Turn.assistant("s1", "hi")]
        assert estimator.estimate("hello") == estimator.count_text("hello")
        assert estimator.estimate(turns) == estimator.count_turns(turns)
        assert estimator.encoding_name is None


class TestTruncate:
    """Test clipping text into a token budget."""

    def test_short_text_untouched(self, estimator):
        """Test text within budget is returned as is."""
        assert estimator.truncate("short", 10) == "short"

    def test_keeps_tail(self, estimator):
        """Test the newest part of the text survives."""
        text = "old " * 50 + "newest facts"
        clipped = estimator.truncate(text, 10)
        assert clipped.endswith("newest facts")
        assert estimator.count_text(clipped) <= 10

    def test_zero_budget(self, estimator):
        """Test non-positive budget yields empty text."""
        assert estimator.truncate("anything", 0) == ""


class TestTokenizerFallback:
    """Test recovery when no tiktoken encoding is available."""

    def test_unknown_model_never_raises(self, monkeypatch):
        """Test the estimator degrades to the heuristic."""
        import tiktoken

        def fail(*args, **kwargs):
            raise KeyError("no encoding")

        monkeypatch.setattr(tiktoken, "encoding_for_model", fail)
        monkeypatch.setattr(tiktoken, "get_encoding", fail)

        estimator = TokenEstimator(model="not-a-real-model")
        assert estimator.count_text("abcdefgh") == 3
        assert estimator.encoding_name is None


class FakeEncoding:
    """Minimal stand-in for a tiktoken encoding."""

    name = "fake_base"

    def encode(self, text, disallowed_special=()):
        return text.split()

    def decode(self, tokens):
        return " ".join(tokens)


class TestWarmUp:
    """Test loading the encoder off the event loop."""

    async def test_loads_encoder_in_worker_thread(self, monkeypatch):
        """Test warm_up loads once, away from the loop thread."""
        import threading

        import tiktoken

        loop_thread = threading.get_ident()
        load_threads = []

        def encoding_for_model(model):
            load_threads.append(threading.get_ident())
            return FakeEncoding()

        monkeypatch.setattr(tiktoken, "encoding_for_model", encoding_for_model)

        estimator = TokenEstimator(model="gpt-4o")
        assert not estimator.loaded

        assert await estimator.warm_up() == "fake_base"
        assert await estimator.warm_up() == "fake_base"

        assert estimator.loaded
        assert len(load_threads) == 1
        assert load_threads[0] != loop_thread
        assert estimator.count_text("three short words") == 3

    async def test_heuristic_needs_no_loading(self, estimator):
        """Test a heuristic estimator is ready immediately."""
        assert estimator.loaded
        assert await estimator.warm_up() is None
