"""Shared fixtures for the streamchat test suite."""

import os
import tempfile

# Use litellm's bundled model cost map instead of fetching it over the network at import.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

import pytest
import pytest_asyncio

from streamchat.config import ChatSettings
from streamchat.session import HistoryStore, TokenEstimator


@pytest_asyncio.fixture
async def temp_db_path():
    """Create temporary database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    # Cleanup
    if os.path.exists(path):
        os.unlink(path)


@pytest_asyncio.fixture
async def history_store(temp_db_path):
    """Create history store on a temporary SQLite database."""
    store = HistoryStore.from_url(f"sqlite+aiosqlite:///{temp_db_path}")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def estimator():
    """Token estimator using the character heuristic (no tokenizer download)."""
    return TokenEstimator(use_tiktoken=False)


@pytest.fixture
def chat_settings():
    """Chat settings with small, test-friendly limits."""
    return ChatSettings(
        database_url="sqlite+aiosqlite:///:memory:",
        history_token_budget=3000,
        system_token_reservation=800,
        stream_chunk_timeout=5.0,
        stream_completion_timeout=5.0,
        summary_timeout=5.0,
        history_must_start_with_user=False,
        serialize_session_turns=True,
    )
