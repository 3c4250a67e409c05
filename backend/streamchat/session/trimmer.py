"""Context window trimming."""

from typing import List, Optional, Sequence

import structlog

from streamchat.session.tokens import TokenEstimator
from streamchat.session.types import TrimResult, Turn, TurnRole

logger = structlog.get_logger()

# Providers that reject a history whose first message is not from the user
_USER_FIRST_MODEL_MARKERS = ("gemini", "vertex_ai", "palm")


def requires_user_first(model: str) -> bool:
    """Whether a model's provider needs history to open with a user turn."""
    model_lower = model.lower()
    return any(marker in model_lower for marker in _USER_FIRST_MODEL_MARKERS)


class ContextTrimmer:
    """Selects the newest suffix of a history that fits a token budget.

    Turns are scanned newest to oldest. The first turn that would push the
    running total over the budget, and every turn older than it, become
    overflow. ``overflow + windowed`` is always the original history.

    Example:
        ```python
        trimmer = ContextTrimmer(TokenEstimator())
        result = trimmer.trim(history, token_budget=3000)
        prompt_turns = result.windowed
        ```
    """

    def __init__(
        self,
        estimator: Optional[TokenEstimator] = None,
        require_user_first: bool = False,
    ) -> None:
        """Initialize trimmer.

        Args:
            estimator: Token estimator
            require_user_first: Move leading assistant/tool turns of the
                window into the overflow
        """
        self.estimator = estimator or TokenEstimator()
        self.require_user_first = require_user_first

    def trim(self, history: Sequence[Turn], token_budget: int) -> TrimResult:
        """Split a history into window and overflow.

        Args:
            history: Full history, oldest first
            token_budget: Maximum estimated tokens for the window

        Returns:
            TrimResult with ``windowed`` and ``overflow``, both oldest first
        """
        history = list(history)
        used = 0
        split = len(history)

        for index in range(len(history) - 1, -1, -1):
            cost = self.estimator.count_turn(history[index])
            if used + cost > token_budget:
                break
            used += cost
            split = index

        overflow: List[Turn] = history[:split]
        windowed: List[Turn] = history[split:]

        if self.require_user_first:
            while windowed and windowed[0].role in (TurnRole.ASSISTANT, TurnRole.TOOL):
                overflow.append(windowed.pop(0))

        if overflow:
            logger.debug(
                "history_trimmed",
                total_turns=len(history),
                windowed_turns=len(windowed),
                overflow_turns=len(overflow),
                token_budget=token_budget,
                window_tokens=self.estimator.count_turns(windowed),
            )

        return TrimResult(windowed=windowed, overflow=overflow)
