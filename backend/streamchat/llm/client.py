"""LLM client implementation using LiteLLM."""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import litellm
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from streamchat.config import get_settings
from streamchat.core.exceptions import ModelInvocationError
from streamchat.llm.interface import LLMClientInterface
from streamchat.types import ChatMessage, LLMResponse, ToolCall

logger = structlog.get_logger()


class LiteLLMClient(LLMClientInterface):
    """LLM client using LiteLLM for unified provider support.

    Supports OpenAI, Anthropic, Google Gemini / Vertex AI, Azure and local
    servers through one interface. Credentials come from the provider's
    usual environment variables (OPENAI_API_KEY, GEMINI_API_KEY, ...).
    """

    def __init__(
        self,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        api_base: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        """Initialize the LiteLLM client.

        Args:
            model: Model name (e.g., 'gemini-2.5-flash', 'gpt-4o-mini')
            provider: Provider name (e.g., 'gemini', 'openai')
            api_base: Custom API base URL
            temperature: Default sampling temperature
            max_tokens: Default maximum output tokens
            timeout: Request timeout in seconds
            max_retries: Retry attempts for non-streaming calls
        """
        settings = get_settings()

        self.model = model or settings.model
        self.provider = provider or settings.provider
        self.api_base = api_base or settings.api_base
        self.temperature = settings.temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.max_output_tokens
        self.timeout = timeout or settings.llm_timeout
        self.max_retries = settings.retry_count if max_retries is None else max_retries

        self._full_model = self._build_model_string()

        logger.info(
            "litellm_client_initialized",
            model=self.model,
            provider=self.provider,
            full_model=self._full_model,
        )

    def _build_model_string(self) -> str:
        """Build the full model string for LiteLLM.

        LiteLLM uses format: "provider/model" or just "model" for OpenAI
        """
        if "/" in self.model:
            return self.model

        if self.provider == "openai":
            return self.model

        return f"{self.provider}/{self.model}"

    def _request_kwargs(
        self,
        messages: List[ChatMessage],
        temperature: Optional[float],
        max_tokens: Optional[int],
        **kwargs: Any,
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": self._full_model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
            "timeout": self.timeout,
        }
        if self.api_base:
            request["api_base"] = self.api_base
        request.update(kwargs)
        return request

    async def complete(
        self,
        messages: List[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion using LiteLLM.

        Pass ``tools=[...]`` (OpenAI function schemas) to let the model
        request tool calls; they are returned in ``LLMResponse.tool_calls``.
        """
        request = self._request_kwargs(messages, temperature, max_tokens, **kwargs)

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(Exception),
                stop=stop_after_attempt(self.max_retries + 1),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                reraise=True,
            ):
                with attempt:
                    response = await litellm.acompletion(**request)

            if not response.choices:
                raise ValueError("response contained no choices")

            choice = response.choices[0]
            content = choice.message.content or ""
            tool_calls = [
                ToolCall.from_litellm(raw)
                for raw in (getattr(choice.message, "tool_calls", None) or [])
            ]

            usage = {}
            if getattr(response, "usage", None):
                usage = {
                    "prompt_tokens": response.usage.prompt_tokens,
                    "completion_tokens": response.usage.completion_tokens,
                    "total_tokens": response.usage.total_tokens,
                }
        except Exception as e:
            logger.error(
                "llm_generation_failed",
                model=self._full_model,
                error=str(e),
            )
            raise ModelInvocationError(
                f"Model call failed: {e}",
                provider=self.provider,
                model=self._full_model,
            ) from e

        logger.debug(
            "llm_generation_complete",
            model=self._full_model,
            tokens_used=usage.get("total_tokens", 0),
            tool_calls=len(tool_calls),
        )

        return LLMResponse(
            content=content,
            model=self._full_model,
            usage=usage,
            finish_reason=choice.finish_reason,
            tool_calls=tool_calls,
        )

    async def stream(
        self,
        messages: List[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """Generate a streaming completion using LiteLLM."""
        request = self._request_kwargs(messages, temperature, max_tokens, **kwargs)

        try:
            response = await litellm.acompletion(stream=True, **request)

            async for chunk in response:
                if chunk.choices and chunk.choices[0].delta:
                    content = chunk.choices[0].delta.content
                    if content:
                        yield content

        except Exception as e:
            logger.error(
                "llm_streaming_failed",
                model=self._full_model,
                error=str(e),
            )
            raise ModelInvocationError(
                f"Model stream failed: {e}",
                provider=self.provider,
                model=self._full_model,
            ) from e

    def get_model_name(self) -> str:
        """Get the model name."""
        return self._full_model


class MockLLMClient(LLMClientInterface):
    """Mock LLM client for tests and offline development.

    Streams scripted replies word by word (falling back to a template that
    echoes the last message), and can be told to fail.
    """

    def __init__(
        self,
        stream_replies: Optional[List[str]] = None,
        complete_replies: Optional[List[Union[str, LLMResponse]]] = None,
        response_template: str = "Mock response for: {prompt}",
        stream_error: Optional[Exception] = None,
        stream_error_after: int = 0,
        complete_error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        """Initialize mock client.

        Args:
            stream_replies: Replies returned by successive ``stream`` calls
            complete_replies: Replies returned by successive ``complete`` calls;
                an ``LLMResponse`` entry is returned as is (e.g. to script tool calls)
            response_template: Template used once scripted replies run out
            stream_error: Exception raised by ``stream``
            stream_error_after: Chunks emitted before ``stream_error`` is raised
            complete_error: Exception raised by ``complete``
            delay: Artificial delay per chunk/call in seconds
        """
        self.stream_replies = list(stream_replies or [])
        self.complete_replies = list(complete_replies or [])
        self.response_template = response_template
        self.stream_error = stream_error
        self.stream_error_after = stream_error_after
        self.complete_error = complete_error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def calls_of(self, kind: str) -> List[Dict[str, Any]]:
        """Recorded calls of one kind ("stream" or "complete")."""
        return [call for call in self.calls if call["kind"] == kind]

    def _default_reply(self, messages: List[ChatMessage]) -> str:
        prompt = (messages[-1].get("content") or "") if messages else ""
        return self.response_template.format(prompt=prompt[:100])

    async def complete(
        self,
        messages: List[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a mock completion."""
        self.calls.append({"kind": "complete", "messages": list(messages), "kwargs": kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.complete_error is not None:
            raise self.complete_error

        reply = self.complete_replies.pop(0) if self.complete_replies else self._default_reply(messages)
        if isinstance(reply, LLMResponse):
            return reply
        return LLMResponse(content=reply, model="mock-model")

    async def stream(
        self,
        messages: List[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """Generate a mock streaming completion."""
        self.calls.append({"kind": "stream", "messages": list(messages), "kwargs": kwargs})

        if self.stream_replies:
            content = self.stream_replies.pop(0)
        else:
            content = self._default_reply(messages)

        words = content.split(" ")
        for index, word in enumerate(words):
            if self.stream_error is not None and index >= self.stream_error_after:
                raise self.stream_error
            if self.delay:
                await asyncio.sleep(self.delay)
            yield word if index == len(words) - 1 else word + " "

        if self.stream_error is not None:
            raise self.stream_error

    def get_model_name(self) -> str:
        """Get the model name."""
        return "mock-model"
