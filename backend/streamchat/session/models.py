"""SQLAlchemy models for chat sessions and turns."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from streamchat.session.types import (
    SessionRecord,
    Turn,
    TurnRole,
    content_from_payload,
    utcnow,
)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ChatSession(Base):
    """Session row: one conversation owned by a user."""

    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    title: Mapped[str] = mapped_column(String(255), default="New Chat")
    summary: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    turns: Mapped[List["ChatTurn"]] = relationship(
        "ChatTurn",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChatTurn.id",
    )

    def __repr__(self) -> str:
        return f"<ChatSession(id={self.id}, owner={self.owner_id}, title={self.title})>"

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            id=self.id,
            owner_id=self.owner_id,
            title=self.title,
            summary=self.summary or "",
            created_at=self.created_at,
        )


class ChatTurn(Base):
    """Turn row. Append-only; ``content`` holds the structured payload."""

    __tablename__ = "chat_turns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("chat_sessions.id", ondelete="CASCADE"), index=True
    )
    role: Mapped[str] = mapped_column(String(20))
    content: Mapped[Dict[str, Any]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    session: Mapped["ChatSession"] = relationship("ChatSession", back_populates="turns")

    def __repr__(self) -> str:
        return f"<ChatTurn(id={self.id}, session={self.session_id}, role={self.role})>"

    def to_turn(self) -> Turn:
        return Turn(
            id=self.id,
            session_id=self.session_id,
            role=TurnRole(self.role),
            content=content_from_payload(self.content),
            created_at=self.created_at,
        )


async def init_database(engine: AsyncEngine) -> None:
    """Create all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
