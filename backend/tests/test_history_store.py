"""Tests for the durable history store."""

import pytest

from streamchat.core.exceptions import ConfigurationError, PersistenceError
from streamchat.session import HistoryStore
from streamchat.session.types import ToolResultContent, Turn, TurnRole


class TestSessions:
    """Test session rows."""

    async def test_create_and_get_session(self, history_store):
        """Test creating and retrieving a session."""
        created = await history_store.create_session(owner_id="u1", title="Hello")

        assert created.id
        assert created.summary == ""

        retrieved = await history_store.get_session(created.id)
        assert retrieved is not None
        assert retrieved.owner_id == "u1"
        assert retrieved.title == "Hello"

    async def test_get_nonexistent_session(self, history_store):
        """Test unknown session id."""
        assert await history_store.get_session("nonexistent-id") is None
        assert await history_store.get_summary("nonexistent-id") == ""

    async def test_update_summary(self, history_store):
        """Test overwriting the running summary."""
        session = await history_store.create_session(owner_id="u1", title="Summary")

        await history_store.update_summary(session.id, "User likes tea.")
        assert await history_store.get_summary(session.id) == "User likes tea."

        await history_store.update_summary(session.id, "User likes coffee now.")
        assert await history_store.get_summary(session.id) == "User likes coffee now."

    async def test_list_sessions_by_owner(self, history_store):
        """Test sessions are listed per owner."""
        mine = [await history_store.create_session(owner_id="u1", title=f"S{i}") for i in range(3)]
        await history_store.create_session(owner_id="u2", title="Other")

        listed = await history_store.list_sessions("u1")
        assert {s.id for s in listed} == {s.id for s in mine}

        limited = await history_store.list_sessions("u1", limit=2)
        assert len(limited) == 2

    async def test_delete_session_removes_turns(self, history_store):
        """Test deleting a session deletes its turns."""
        session = await history_store.create_session(owner_id="u1", title="To Delete")
        await history_store.append(session.id, Turn.user(session.id, "Hi"))

        assert await history_store.delete_session(session.id) is True
        assert await history_store.get_session(session.id) is None
        assert await history_store.load_all(session.id) == []

    async def test_delete_nonexistent_session(self, history_store):
        """Test deleting an unknown session."""
        assert await history_store.delete_session("nonexistent") is False


class TestTurns:
    """Test the append-only turn log."""

    async def test_append_assigns_id(self, history_store):
        """Test appended turns come back with an id."""
        session = await history_store.create_session(owner_id="u1", title="Turns")

        stored = await history_store.append(session.id, Turn.user(session.id, "Hello"))

        assert stored.id is not None
        assert stored.role == TurnRole.USER
        assert stored.text == "Hello"

    async def test_load_all_in_order(self, history_store):
        """Test turns are returned oldest first."""
        session = await history_store.create_session(owner_id="u1", title="Order")
        for i in range(6):
            turn = Turn.user(session.id, f"q{i}") if i % 2 == 0 else Turn.assistant(session.id, f"a{i}")
            await history_store.append(session.id, turn)

        turns = await history_store.load_all(session.id)

        assert [t.text for t in turns] == ["q0", "a1", "q2", "a3", "q4", "a5"]
        assert [t.id for t in turns] == sorted(t.id for t in turns)

    async def test_load_unknown_session(self, history_store):
        """Test unknown session has empty history."""
        assert await history_store.load_all("nonexistent") == []

    async def test_tool_result_roundtrip(self, history_store):
        """Test structured content survives storage."""
        session = await history_store.create_session(owner_id="u1", title="Tools")
        content = ToolResultContent(tool_name="weather", result={"temp_c": 21}, tool_call_id="c1")
        await history_store.append(
            session.id,
            Turn(session_id=session.id, role=TurnRole.TOOL, content=content),
        )

        [turn] = await history_store.load_all(session.id)
        assert turn.role == TurnRole.TOOL
        assert turn.content == content


class TestFailures:
    """Test driver failures surface as PersistenceError."""

    async def test_unreachable_database(self, tmp_path):
        """Test an unopenable database file."""
        store = HistoryStore.from_url(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/chat.db")

        with pytest.raises(PersistenceError) as exc_info:
            await store.initialize()
        assert exc_info.value.operation == "initialize"

        with pytest.raises(PersistenceError):
            await store.load_all("s1")

        await store.close()

    def test_sync_driver_rejected(self):
        """Test a non-async driver is a configuration error."""
        with pytest.raises(ConfigurationError):
            HistoryStore.from_url("sqlite:///chat.db")
