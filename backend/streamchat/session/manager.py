"""Conversation session manager."""

import asyncio
import weakref
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Coroutine, List, Optional, Set, Tuple, Union

import structlog

from streamchat.config import ChatSettings, get_settings
from streamchat.core.exceptions import ModelInvocationError, PersistenceError, ValidationError
from streamchat.llm.interface import LLMClientInterface
from streamchat.llm.prompts import get_system_prompt
from streamchat.retrieval.augmenter import RetrievalAugmenter
from streamchat.session.history import HistoryStore
from streamchat.session.summarizer import Summarizer
from streamchat.session.tokens import TokenEstimator
from streamchat.session.trimmer import ContextTrimmer, requires_user_first
from streamchat.session.types import (
    SessionRecord,
    ToolEvent,
    Turn,
    TurnRequest,
    TurnRole,
    TurnStage,
)
from streamchat.tools.base import ToolRegistry
from streamchat.types import ChatMessage, ToolCall

logger = structlog.get_logger()

DEFAULT_TITLE = "New Chat"

# Marks the end of a successful stream in a TurnStream queue
_END_OF_STREAM = object()


def derive_title(text: str, max_chars: int = 50) -> str:
    """Derive a session title from the first user turn."""
    flattened = " ".join(text.split())
    if not flattened:
        return DEFAULT_TITLE
    if len(flattened) <= max_chars:
        return flattened
    return flattened[:max_chars] + "..."


@dataclass
class _TurnContext:
    """State carried from submission to the background part of a turn."""

    session_id: str
    summary: str
    user_turn: Turn
    messages: List[ChatMessage]
    overflow: List[Turn]
    lock: Optional[asyncio.Lock] = None
    stage: TurnStage = TurnStage.INVOKING
    chunks: List[str] = field(default_factory=list)
    tool_turns: List[Turn] = field(default_factory=list)
    terminated: bool = False


class TurnStream:
    """Streamed reply to one submitted turn.

    Iterating yields text increments as the model produces them. A model
    failure is raised from the iteration as ``ModelInvocationError``.
    Stopping early (or the caller going away) does not stop the reply from
    being accumulated and persisted.

    ``events()`` is the same stream with ``ToolEvent`` notifications
    interleaved, for callers that show tool activity. A stream can be
    consumed only once, either way.

    Example:
        ```python
        stream = await manager.submit_turn(TurnRequest(text="Hello", owner_id="u1"))
        async for delta in stream:
            send(delta)
        reply = await stream.completion()
        ```
    """

    def __init__(
        self,
        session_id: str,
        created: bool,
        queue: "asyncio.Queue[Any]",
        producer: "asyncio.Task[Optional[str]]",
        on_detach: Any,
    ) -> None:
        self.session_id = session_id
        self.created = created
        self._queue = queue
        self._producer = producer
        self._on_detach = on_detach
        self._iterated = False
        self._finished = False

    def __aiter__(self) -> AsyncIterator[str]:
        return self._start(include_events=False)

    def events(self) -> AsyncIterator[Union[str, ToolEvent]]:
        """Iterate text increments and tool notifications in order."""
        return self._start(include_events=True)

    def _start(self, include_events: bool) -> AsyncIterator[Any]:
        if self._iterated:
            raise RuntimeError("TurnStream can only be iterated once")
        self._iterated = True
        return self._iterate(include_events)

    async def _iterate(self, include_events: bool) -> AsyncIterator[Any]:
        try:
            while True:
                item = await self._queue.get()
                if item is _END_OF_STREAM:
                    self._finished = True
                    return
                if isinstance(item, ModelInvocationError):
                    self._finished = True
                    raise item
                if isinstance(item, ToolEvent) and not include_events:
                    continue
                yield item
        finally:
            if not self._finished:
                self._detach()

    def _detach(self) -> None:
        if not self._producer.done():
            self._on_detach(self)

    async def aclose(self) -> None:
        """Stop forwarding; the reply keeps being accumulated and persisted."""
        if self._finished:
            return
        self._finished = True
        self._detach()

    async def read_all(self) -> str:
        """Consume the whole stream and return the concatenated text."""
        return "".join([chunk async for chunk in self])

    async def completion(self) -> Optional[str]:
        """Wait until the reply is persisted.

        Returns:
            The assistant text, or None when the model failed or was cut off
        """
        try:
            return await asyncio.shield(self._producer)
        except asyncio.CancelledError:
            if self._producer.cancelled():
                return None
            raise


class ConversationManager:
    """Turns a stateless sequence of chat turns into a durable conversation.

    Per submitted turn: resolve or create the session, load history and the
    running summary, trim history to the token budget, optionally retrieve
    document context, persist the user turn, then stream the model reply to
    the caller while accumulating it. With a tool registry the model may
    first call tools; each result is persisted as a tool turn and fed back
    to the model before it answers. Once the stream completes the
    assistant turn is persisted and, when history overflowed the budget, the
    summary is refreshed in the background.

    All collaborators are injected, so the manager can run against fakes.

    Example:
        ```python
        store = HistoryStore.from_url("sqlite+aiosqlite:///./data/chat.db")
        await store.initialize()
        manager = ConversationManager(store=store, llm_client=LiteLLMClient())

        stream = await manager.submit_turn(TurnRequest(text="Hello", owner_id="u1"))
        async for delta in stream:
            print(delta, end="")
        ```
    """

    def __init__(
        self,
        store: HistoryStore,
        llm_client: LLMClientInterface,
        estimator: Optional[TokenEstimator] = None,
        trimmer: Optional[ContextTrimmer] = None,
        summarizer: Optional[Summarizer] = None,
        retriever: Optional[RetrievalAugmenter] = None,
        tools: Optional[ToolRegistry] = None,
        settings: Optional[ChatSettings] = None,
    ) -> None:
        """Initialize conversation manager.

        Args:
            store: Durable history store
            llm_client: Client for the primary streamed reply
            estimator: Token estimator (built from settings if None)
            trimmer: Context trimmer (built from settings if None)
            summarizer: Summarizer (uses ``llm_client`` if None)
            retriever: Retrieval augmenter; None disables RAG
            tools: Tools the model may call before replying; None disables tool calling
            settings: Chat settings (global settings if None)
        """
        self.settings = settings or get_settings()
        self.store = store
        self.llm_client = llm_client
        self.estimator = estimator or TokenEstimator(model=self.settings.tokenizer_model)

        if trimmer is None:
            user_first = self.settings.history_must_start_with_user
            if user_first is None:
                user_first = requires_user_first(llm_client.get_model_name())
            trimmer = ContextTrimmer(self.estimator, require_user_first=user_first)
        self.trimmer = trimmer

        self.summarizer = summarizer or Summarizer(
            llm_client,
            max_words=self.settings.summary_max_words,
            timeout=self.settings.summary_timeout,
        )
        self.retriever = retriever
        self.tools = tools if tools else None

        self._background_tasks: Set[asyncio.Task] = set()
        self._session_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

        logger.info(
            "conversation_manager_initialized",
            model=llm_client.get_model_name(),
            history_token_budget=self.settings.history_token_budget,
            require_user_first=self.trimmer.require_user_first,
            rag_enabled=retriever is not None,
            tools=self.tools.names() if self.tools else [],
        )

    # ==================== Turn submission ====================

    async def submit_turn(self, request: TurnRequest) -> TurnStream:
        """Submit one user turn and start streaming the reply.

        Args:
            request: Incoming turn

        Returns:
            TurnStream carrying the session id and the reply increments

        Raises:
            ValidationError: Empty text, or no owner id for a new session
            PersistenceError: The session or the user turn could not be stored
        """
        text = request.text or ""
        if not text.strip():
            raise ValidationError("message text is required")
        if not request.session_id and not request.owner_id:
            raise ValidationError("owner id required for new session")

        session_id, created = await self._resolve_session(request, text)

        with structlog.contextvars.bound_contextvars(session_id=session_id):
            lock = await self._acquire_session_lock(session_id)
            try:
                context = await self._prepare_turn(session_id, text)
            except BaseException:
                if lock is not None:
                    lock.release()
                raise
            context.lock = lock

            queue: "asyncio.Queue[Any]" = asyncio.Queue()
            producer = self._supervise(
                self._run_turn(context, queue),
                name=f"turn:{session_id}",
            )
            producer.add_done_callback(lambda _task: self._finish_turn(context, queue))

        return TurnStream(
            session_id=session_id,
            created=created,
            queue=queue,
            producer=producer,
            on_detach=self._on_stream_detached,
        )

    async def _resolve_session(self, request: TurnRequest, text: str) -> Tuple[str, bool]:
        if request.session_id:
            return request.session_id, False

        record = await self.store.create_session(
            owner_id=request.owner_id,
            title=derive_title(text, self.settings.title_max_chars),
        )
        return record.id, True

    async def _prepare_turn(self, session_id: str, text: str) -> _TurnContext:
        stage = TurnStage.LOADING_HISTORY
        try:
            history = await self.store.load_all(session_id)
            summary = await self.store.get_summary(session_id)

            stage = TurnStage.BUDGETING
            if not self.estimator.loaded:
                await self.estimator.warm_up()
            trimmed = self.trimmer.trim(history, self.settings.history_token_budget)

            document_context = None
            if self.retriever is not None:
                stage = TurnStage.RETRIEVING
                document_context = await self.retriever.build_context(text)

            messages = self._build_messages(summary, document_context, trimmed.windowed, text)

            stage = TurnStage.PERSISTING
            user_turn = await self.store.append(session_id, Turn.user(session_id, text))
        except PersistenceError as e:
            logger.error("turn_rejected", stage=stage.value, operation=e.operation, error=str(e))
            raise

        logger.info(
            "turn_prepared",
            history_turns=len(history),
            windowed_turns=len(trimmed.windowed),
            overflow_turns=len(trimmed.overflow),
            prompt_messages=len(messages),
        )

        return _TurnContext(
            session_id=session_id,
            summary=summary,
            user_turn=user_turn,
            messages=messages,
            overflow=trimmed.overflow,
        )

    def _build_messages(
        self,
        summary: str,
        document_context: Optional[str],
        windowed: List[Turn],
        text: str,
    ) -> List[ChatMessage]:
        """Assemble system context, windowed history and the new user turn."""
        tool_names = self.tools.names() if self.tools else None
        summary_budget = self.settings.system_token_reservation - self.estimator.count_text(
            get_system_prompt("", tool_names=tool_names)
        )
        clipped_summary = self.estimator.truncate(summary, summary_budget) if summary else ""

        messages: List[ChatMessage] = [
            {
                "role": "system",
                "content": get_system_prompt(clipped_summary, document_context, tool_names),
            }
        ]
        for turn in windowed:
            if turn.role == TurnRole.TOOL:
                tool_name = getattr(turn.content, "tool_name", "tool")
                messages.append({"role": "system", "content": f"Tool result ({tool_name}): {turn.text}"})
            else:
                messages.append({"role": turn.role.value, "content": turn.text})
        messages.append({"role": "user", "content": text})
        return messages

    # ==================== Streaming ====================

    async def _run_turn(self, context: _TurnContext, queue: "asyncio.Queue[Any]") -> Optional[str]:
        """Stream the reply into ``queue``, then persist and summarize."""
        with structlog.contextvars.bound_contextvars(session_id=context.session_id):
            if self.tools is not None:
                text = await self._reply_with_tools(context, queue)
            else:
                text = await self._stream_reply(context, queue)
            if text is None:
                return None

            context.stage = TurnStage.PERSISTING
            if text:
                await self._persist_reply(context, text)
            else:
                logger.warning("model_reply_empty")

            if text and context.overflow:
                context.stage = TurnStage.SUMMARIZING
                await self._refresh_summary(context, text)

            context.stage = TurnStage.DONE
            return text

    async def _reply_with_tools(self, context: _TurnContext, queue: "asyncio.Queue[Any]") -> Optional[str]:
        """Let the model call tools, then deliver its answer.

        Each round is one non-streamed completion offered the tools. An
        answer without tool calls is forwarded as a single increment. When
        the rounds run out, or the model answers with nothing, the final
        answer is streamed with tool calls switched off.
        """
        context.stage = TurnStage.CALLING_TOOLS
        schemas = self.tools.get_openai_tools()

        for round_number in range(1, self.settings.max_tool_rounds + 1):
            try:
                response = await self.llm_client.complete(
                    context.messages,
                    temperature=self.settings.temperature,
                    max_tokens=self.settings.max_output_tokens,
                    tools=schemas,
                )
            except ModelInvocationError as e:
                self._fail_stream(context, queue, e)
                return None
            except Exception as e:
                error = ModelInvocationError(
                    f"Model call failed: {e}",
                    model=self.llm_client.get_model_name(),
                )
                error.__cause__ = e
                self._fail_stream(context, queue, error)
                return None

            if not response.has_tool_calls:
                if response.content:
                    context.chunks.append(response.content)
                    queue.put_nowait(response.content)
                    return self._end_stream(context, queue)
                break

            logger.info(
                "tool_round",
                round=round_number,
                tools=[call.name for call in response.tool_calls],
            )
            await self._run_tool_calls(context, queue, response.content, response.tool_calls)
        else:
            logger.warning("tool_rounds_exhausted", rounds=self.settings.max_tool_rounds)

        return await self._stream_reply(context, queue, tools=schemas, tool_choice="none")

    async def _run_tool_calls(
        self,
        context: _TurnContext,
        queue: "asyncio.Queue[Any]",
        content: str,
        calls: List[ToolCall],
    ) -> None:
        context.messages.append(
            {
                "role": "assistant",
                "content": content or None,
                "tool_calls": [call.to_litellm() for call in calls],
            }
        )
        for call in calls:
            queue.put_nowait(
                ToolEvent(tool_name=call.name, tool_call_id=call.id, arguments=call.arguments)
            )
            output = await self.tools.execute(call)
            context.messages.append(
                {"role": "tool", "tool_call_id": call.id, "name": call.name, "content": output}
            )

            turn = Turn.tool(context.session_id, call.name, output, tool_call_id=call.id)
            context.tool_turns.append(turn)
            try:
                await self.store.append(context.session_id, turn)
            except PersistenceError as e:
                logger.error("tool_turn_not_persisted", tool=call.name, error=str(e))

    async def _stream_reply(
        self,
        context: _TurnContext,
        queue: "asyncio.Queue[Any]",
        **request_kwargs: Any,
    ) -> Optional[str]:
        context.stage = TurnStage.INVOKING
        stream: Optional[AsyncIterator[str]] = None

        try:
            stream = self.llm_client.stream(
                context.messages,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_output_tokens,
                **request_kwargs,
            )
            iterator = stream.__aiter__()

            context.stage = TurnStage.STREAMING
            while True:
                try:
                    chunk = await asyncio.wait_for(
                        iterator.__anext__(),
                        timeout=self.settings.stream_chunk_timeout,
                    )
                except StopAsyncIteration:
                    break
                if chunk:
                    context.chunks.append(chunk)
                    queue.put_nowait(chunk)

        except asyncio.TimeoutError:
            error = ModelInvocationError(
                f"Model produced no output for {self.settings.stream_chunk_timeout}s",
                model=self.llm_client.get_model_name(),
            )
            self._fail_stream(context, queue, error)
            return None

        except ModelInvocationError as e:
            self._fail_stream(context, queue, e)
            return None

        except Exception as e:
            error = ModelInvocationError(
                f"Model stream failed: {e}",
                model=self.llm_client.get_model_name(),
            )
            error.__cause__ = e
            self._fail_stream(context, queue, error)
            return None

        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        return self._end_stream(context, queue)

    def _end_stream(self, context: _TurnContext, queue: "asyncio.Queue[Any]") -> str:
        context.terminated = True
        queue.put_nowait(_END_OF_STREAM)
        text = "".join(context.chunks)
        logger.info(
            "model_stream_complete",
            chunks=len(context.chunks),
            reply_chars=len(text),
            tool_calls=len(context.tool_turns),
        )
        return text

    def _fail_stream(
        self,
        context: _TurnContext,
        queue: "asyncio.Queue[Any]",
        error: ModelInvocationError,
    ) -> None:
        logger.error(
            "model_stream_failed",
            stage=context.stage.value,
            chunks_forwarded=len(context.chunks),
            error=str(error),
        )
        context.terminated = True
        queue.put_nowait(error)

    async def _persist_reply(self, context: _TurnContext, text: str) -> None:
        try:
            await self.store.append(context.session_id, Turn.assistant(context.session_id, text))
        except PersistenceError as e:
            logger.error("assistant_turn_not_persisted", stage=context.stage.value, error=str(e))

    async def _refresh_summary(self, context: _TurnContext, text: str) -> None:
        turns = list(context.overflow) + [context.user_turn] + context.tool_turns + [
            Turn.assistant(context.session_id, text),
        ]
        summary = await self.summarizer.update(context.summary, turns)
        if summary == context.summary:
            return

        try:
            await self.store.update_summary(context.session_id, summary)
        except PersistenceError as e:
            logger.error("summary_not_persisted", stage=context.stage.value, error=str(e))

    def _on_stream_detached(self, stream: TurnStream) -> None:
        logger.info("caller_detached", session_id=stream.session_id)
        self._supervise(
            self._bound_detached_turn(stream),
            name=f"detached:{stream.session_id}",
        )

    async def _bound_detached_turn(self, stream: TurnStream) -> None:
        """Give a detached turn a bounded time to finish, else cancel it."""
        timeout = self.settings.stream_completion_timeout
        try:
            await asyncio.wait_for(asyncio.shield(stream._producer), timeout=timeout)
        except asyncio.TimeoutError:
            stream._producer.cancel()
            logger.warning(
                "detached_turn_cancelled",
                session_id=stream.session_id,
                timeout=timeout,
            )

    def _finish_turn(self, context: _TurnContext, queue: "asyncio.Queue[Any]") -> None:
        if not context.terminated:
            # Cancelled or crashed before the stream ended
            context.terminated = True
            queue.put_nowait(ModelInvocationError("Turn was interrupted before the reply completed"))
        if context.lock is not None:
            context.lock.release()
            context.lock = None

    # ==================== Session locking ====================

    async def _acquire_session_lock(self, session_id: str) -> Optional[asyncio.Lock]:
        if not self.settings.serialize_session_turns:
            return None

        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock

        if lock.locked():
            logger.info("turn_waiting_for_session")
        await lock.acquire()
        return lock

    # ==================== Background tasks ====================

    def _supervise(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Run a detached task whose failure is logged, never lost."""
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            logger.info("background_task_cancelled", task=task.get_name())
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(error),
                exc_info=error,
            )

    async def wait_for_background(self) -> None:
        """Wait until every in-flight turn and summary refresh has finished."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Drain background work, cancelling whatever outlives ``timeout``."""
        pending = list(self._background_tasks)
        if not pending:
            return

        _done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

        logger.info(
            "conversation_manager_shutdown",
            drained=len(pending) - len(still_running),
            cancelled=len(still_running),
        )

    # ==================== History ====================

    async def get_history(self, session_id: str) -> List[Turn]:
        """Get a session's turns, oldest first."""
        return await self.store.load_all(session_id)

    async def list_sessions(self, owner_id: str, limit: int = 100) -> List[SessionRecord]:
        """List an owner's sessions, newest first."""
        return await self.store.list_sessions(owner_id, limit=limit)

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its turns."""
        return await self.store.delete_session(session_id)
