"""Durable history store for sessions and their turns."""

from typing import List, Optional

import structlog
from sqlalchemy import delete, desc, select, update
from sqlalchemy.exc import ArgumentError, InvalidRequestError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from streamchat.core.exceptions import ConfigurationError, PersistenceError
from streamchat.session.models import ChatSession, ChatTurn, init_database
from streamchat.session.types import SessionRecord, Turn, utcnow

logger = structlog.get_logger()


class HistoryStore:
    """Append-only turn log plus session rows, backed by SQLAlchemy.

    Every operation checks out its own database session and releases it
    before returning, so no connection is held across model calls.
    Driver failures are raised as ``PersistenceError``.

    Example:
        ```python
        store = HistoryStore.from_url("sqlite+aiosqlite:///./data/chat.db")
        await store.initialize()

        session = await store.create_session("u1", "Hello")
        await store.append(session.id, Turn.user(session.id, "Hello"))
        turns = await store.load_all(session.id)
        ```
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: Optional[AsyncEngine] = None,
    ) -> None:
        """Initialize history store.

        Args:
            session_factory: Factory producing async database sessions
            engine: Engine to create tables on and dispose at shutdown
        """
        self.session_factory = session_factory
        self.engine = engine
        self._initialized = False

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "HistoryStore":
        """Build a store with its own engine.

        Raises:
            ConfigurationError: If the URL is malformed or names a sync driver
        """
        try:
            engine = create_async_engine(database_url, echo=echo)
        except (ArgumentError, InvalidRequestError) as e:
            raise ConfigurationError(f"Invalid database URL {database_url!r}: {e}") from e

        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return cls(factory, engine=engine)

    async def initialize(self) -> None:
        """Create tables if needed."""
        if self._initialized or self.engine is None:
            return

        try:
            await init_database(self.engine)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to initialize database: {e}", operation="initialize") from e

        self._initialized = True
        logger.info("history_store_initialized", url=self.engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        """Dispose the engine."""
        if self.engine is not None:
            await self.engine.dispose()

    # ==================== Sessions ====================

    async def create_session(self, owner_id: str, title: str) -> SessionRecord:
        """Insert a new session row.

        Args:
            owner_id: Owning user
            title: Display title

        Returns:
            The created SessionRecord
        """
        try:
            async with self.session_factory() as db:
                row = ChatSession(owner_id=owner_id, title=title, summary="", created_at=utcnow())
                db.add(row)
                await db.commit()
                record = row.to_record()
        except (SQLAlchemyError, OSError) as e:
            logger.error("create_session_failed", owner_id=owner_id, error=str(e))
            raise PersistenceError(f"Failed to create session: {e}", operation="create_session") from e

        logger.info("session_created", session_id=record.id, owner_id=owner_id)
        return record

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Get a session by id, None when unknown."""
        try:
            async with self.session_factory() as db:
                row = await db.get(ChatSession, session_id)
                return row.to_record() if row else None
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to load session: {e}", operation="get_session") from e

    async def get_summary(self, session_id: str) -> str:
        """Get the running summary; empty for unknown sessions."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(ChatSession.summary).where(ChatSession.id == session_id)
                )
                return result.scalar_one_or_none() or ""
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to load summary: {e}", operation="get_summary") from e

    async def update_summary(self, session_id: str, summary: str) -> None:
        """Overwrite the running summary of a session."""
        try:
            async with self.session_factory() as db:
                await db.execute(
                    update(ChatSession)
                    .where(ChatSession.id == session_id)
                    .values(summary=summary)
                )
                await db.commit()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to update summary: {e}", operation="update_summary") from e

        logger.debug("summary_updated", session_id=session_id, summary_chars=len(summary))

    async def list_sessions(self, owner_id: str, limit: int = 100) -> List[SessionRecord]:
        """List an owner's sessions, newest first."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(ChatSession)
                    .where(ChatSession.owner_id == owner_id)
                    .order_by(desc(ChatSession.created_at))
                    .limit(limit)
                )
                return [row.to_record() for row in result.scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to list sessions: {e}", operation="list_sessions") from e

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and all its turns.

        Returns:
            True if deleted, False if not found
        """
        try:
            async with self.session_factory() as db:
                row = await db.get(ChatSession, session_id)
                if row is None:
                    return False
                await db.execute(delete(ChatTurn).where(ChatTurn.session_id == session_id))
                await db.execute(delete(ChatSession).where(ChatSession.id == session_id))
                await db.commit()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to delete session: {e}", operation="delete_session") from e

        logger.info("session_deleted", session_id=session_id)
        return True

    # ==================== Turns ====================

    async def append(self, session_id: str, turn: Turn) -> Turn:
        """Durably store one turn.

        Args:
            session_id: Owning session
            turn: Turn to store

        Returns:
            The stored turn, with its assigned id and timestamp
        """
        try:
            async with self.session_factory() as db:
                row = ChatTurn(
                    session_id=session_id,
                    role=turn.role.value,
                    content=turn.content.to_payload(),
                    created_at=turn.created_at or utcnow(),
                )
                db.add(row)
                await db.commit()
                stored = row.to_turn()
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "turn_append_failed",
                session_id=session_id,
                role=turn.role.value,
                error=str(e),
            )
            raise PersistenceError(f"Failed to append turn: {e}", operation="append") from e

        logger.debug(
            "turn_appended",
            session_id=session_id,
            turn_id=stored.id,
            role=stored.role.value,
        )
        return stored

    async def load_all(self, session_id: str) -> List[Turn]:
        """Load every turn of a session, oldest first."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(ChatTurn)
                    .where(ChatTurn.session_id == session_id)
                    .order_by(ChatTurn.created_at, ChatTurn.id)
                )
                return [row.to_turn() for row in result.scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to load history: {e}", operation="load_all") from e
