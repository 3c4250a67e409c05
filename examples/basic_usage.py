"""
Example: Basic streamchat Usage

This example demonstrates a multi-turn conversation with the
ConversationManager: a new session, streamed replies, history that
overflows a small token budget, and the running summary that replaces it.
"""

import asyncio
import tempfile
from pathlib import Path

from streamchat import ConversationManager, HistoryStore, MockLLMClient, TokenEstimator, TurnRequest
from streamchat.config import ChatSettings


async def conversation_example():
    """Multi-turn conversation with a mock model."""
    print("=" * 60)
    print("Basic streamchat Example")
    print("=" * 60)

    db_path = Path(tempfile.mkdtemp()) / "chat.db"
    store = HistoryStore.from_url(f"sqlite+aiosqlite:///{db_path}")
    await store.initialize()

    # Small budget so the summary kicks in after a few turns
    settings = ChatSettings(history_token_budget=100, history_must_start_with_user=False)

    # Mock client (for trying things out without API keys)
    llm_client = MockLLMClient(
        response_template="Noted: {prompt}",
        complete_replies=["The user introduced themselves and listed favourite foods."] * 10,
    )

    manager = ConversationManager(
        store=store,
        llm_client=llm_client,
        estimator=TokenEstimator(use_tiktoken=False),
        settings=settings,
    )

    questions = [
        "Hi, my name is Ana and I live in Lisbon.",
        "I really like grilled sardines.",
        "I also enjoy pastel de nata with coffee.",
        "And on Sundays I cook bacalhau for the family.",
        "What do you remember about me?",
    ]

    session_id = None
    for question in questions:
        stream = await manager.submit_turn(
            TurnRequest(text=question, session_id=session_id, owner_id="ana")
        )
        session_id = stream.session_id

        print(f"\n> {question}")
        print("< ", end="")
        async for delta in stream:
            print(delta, end="", flush=True)
        print()

        await manager.wait_for_background()

    history = await manager.get_history(session_id)
    summary = await store.get_summary(session_id)

    print(f"\n✓ Session ID: {session_id}")
    print(f"✓ Stored turns: {len(history)}")
    print(f"✓ Running summary: {summary or '(none yet)'}")

    await manager.shutdown()
    await store.close()


if __name__ == "__main__":
    asyncio.run(conversation_example())
