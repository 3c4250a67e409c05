"""Token estimation for context window budgeting."""

import asyncio
from typing import List, Optional, Sequence, Union

import structlog
import tiktoken

from streamchat.session.types import Turn

logger = structlog.get_logger()


class TokenEstimator:
    """Approximates token counts for texts and turn sequences.

    Uses a tiktoken encoding as a proxy for whatever model is actually
    serving the conversation. Counts only need to be good enough to budget
    a context window, so when no encoding can be loaded the estimator
    falls back to a character ratio instead of failing the request.

    Example:
        ```python
        estimator = TokenEstimator(model="gpt-4o")
        estimator.estimate("Hello world")
        estimator.estimate(turns)
        ```
    """

    # Characters per token for the heuristic fallback
    CHARS_PER_TOKEN = 4
    FALLBACK_ENCODING = "cl100k_base"

    def __init__(
        self,
        model: str = "gpt-4o",
        use_tiktoken: bool = True,
    ) -> None:
        """Initialize token estimator.

        Args:
            model: Model whose tokenizer approximates the real one
            use_tiktoken: Disable to always use the character heuristic
        """
        self.model = model
        self.use_tiktoken = use_tiktoken
        self._encoder: Optional[tiktoken.Encoding] = None
        self._encoder_loaded = not use_tiktoken

    @property
    def encoding_name(self) -> Optional[str]:
        """Name of the loaded encoding, None when using the heuristic."""
        encoder = self._get_encoder()
        return encoder.name if encoder else None

    @property
    def loaded(self) -> bool:
        """Whether the encoder lookup has already run."""
        return self._encoder_loaded

    async def warm_up(self) -> Optional[str]:
        """Load the encoder in a worker thread.

        tiktoken may fetch BPE files on first use, which would otherwise
        block the event loop inside the first budgeted turn.

        Returns:
            The loaded encoding name, or None when using the heuristic
        """
        if not self._encoder_loaded:
            await asyncio.to_thread(self._get_encoder)
        return self._encoder.name if self._encoder else None

    def _get_encoder(self) -> Optional[tiktoken.Encoding]:
        if self._encoder_loaded:
            return self._encoder

        self._encoder = self._load_encoder()
        self._encoder_loaded = True
        return self._encoder

    def _load_encoder(self) -> Optional[tiktoken.Encoding]:
        try:
            return tiktoken.encoding_for_model(self.model)
        except Exception as e:
            logger.warning(
                "tiktoken_model_encoding_unavailable",
                model=self.model,
                error=str(e),
                fallback=self.FALLBACK_ENCODING,
            )

        try:
            return tiktoken.get_encoding(self.FALLBACK_ENCODING)
        except Exception as e:
            logger.warning(
                "tiktoken_unavailable",
                error=str(e),
                fallback="character_based",
            )
            return None

    def count_text(self, text: str) -> int:
        """Estimate tokens for a text."""
        if not text:
            return 0

        encoder = self._get_encoder()
        if encoder is not None:
            try:
                return len(encoder.encode(text, disallowed_special=()))
            except Exception as e:
                logger.warning("tiktoken_encode_failed", error=str(e))

        return len(text) // self.CHARS_PER_TOKEN + 1

    def count_turn(self, turn: Turn) -> int:
        """Estimate tokens for one turn: role label plus content."""
        return self.count_text(turn.role.value) + self.count_text(turn.text)

    def count_turns(self, turns: Sequence[Turn]) -> int:
        """Estimate tokens for a sequence of turns."""
        return sum(self.count_turn(turn) for turn in turns)

    def estimate(self, value: Union[str, Sequence[Turn]]) -> int:
        """Estimate tokens for either a text or a sequence of turns."""
        if isinstance(value, str):
            return self.count_text(value)
        return self.count_turns(value)

    def truncate(self, text: str, max_tokens: int) -> str:
        """Keep the tail of a text so that it fits ``max_tokens``."""
        if max_tokens <= 0:
            return ""
        if self.count_text(text) <= max_tokens:
            return text

        encoder = self._get_encoder()
        if encoder is not None:
            try:
                tokens = encoder.encode(text, disallowed_special=())
                return encoder.decode(tokens[-max_tokens:])
            except Exception as e:
                logger.warning("tiktoken_truncate_failed", error=str(e))

        max_chars = max(0, (max_tokens - 1) * self.CHARS_PER_TOKEN)
        return text[-max_chars:] if max_chars else ""
