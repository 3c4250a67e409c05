"""LLM client interface."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, List, Optional

from streamchat.types import ChatMessage, LLMResponse


class LLMClientInterface(ABC):
    """Abstract interface for LLM clients.

    The conversation manager only needs two capabilities from a provider:
    a one-shot completion (used for summaries) and a streamed completion
    (used for the reply itself).
    """

    @abstractmethod
    async def complete(
        self,
        messages: List[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion for a message sequence.

        Args:
            messages: Ordered chat messages
            temperature: Sampling temperature (client default when None)
            max_tokens: Maximum tokens to generate
            **kwargs: Additional provider-specific parameters

        Returns:
            LLMResponse with content and metadata

        Raises:
            ModelInvocationError: If the provider call fails
        """
        ...

    @abstractmethod
    def stream(
        self,
        messages: List[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """Generate a streaming completion for a message sequence.

        Args:
            messages: Ordered chat messages
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            **kwargs: Additional provider-specific parameters

        Yields:
            Text increments as they are produced

        Raises:
            ModelInvocationError: If the provider call fails
        """
        ...

    @abstractmethod
    def get_model_name(self) -> str:
        """Get the name of the model being used."""
        ...
