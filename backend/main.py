"""Main FastAPI application entry point for the streamchat service.

This module initializes the FastAPI application, wires the conversation
manager and its collaborators, configures middleware, and includes all
API routes.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import make_url

from streamchat import __version__
from streamchat.api.routes import chat_router
from streamchat.config import ChatSettings, RetrievalSettings, get_retrieval_settings, get_settings
from streamchat.core.logging import configure_logging
from streamchat.llm.client import LiteLLMClient
from streamchat.retrieval import QdrantVectorStore, RetrievalAugmenter
from streamchat.session import (
    ContextTrimmer,
    ConversationManager,
    HistoryStore,
    Summarizer,
    TokenEstimator,
    requires_user_first,
)
from streamchat.tools import (
    CatalogStore,
    GetProductInfoTool,
    GetSalesDataTool,
    SearchDocumentsTool,
    ToolRegistry,
)

logger = structlog.get_logger()


def _ensure_sqlite_directory(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def build_tool_registry(
    settings: ChatSettings,
    retriever: Optional[RetrievalAugmenter],
    catalog: Optional[CatalogStore],
) -> ToolRegistry:
    """Register the tools whose backends are configured."""
    registry = ToolRegistry(timeout=settings.tool_timeout)
    if retriever is not None:
        registry.register(SearchDocumentsTool(retriever))
    if catalog is not None:
        registry.register(GetProductInfoTool(catalog))
        registry.register(GetSalesDataTool(catalog))
    return registry


def build_conversation_manager(
    store: HistoryStore,
    settings: ChatSettings,
    retrieval_settings: RetrievalSettings,
    catalog: Optional[CatalogStore] = None,
) -> ConversationManager:
    """Build the conversation manager and its collaborators from settings.

    Args:
        store: Initialized history store
        settings: Chat settings
        retrieval_settings: Retrieval settings
        catalog: Initialized product catalog, offered as tools when enabled

    Returns:
        ConversationManager ready to accept turns
    """
    llm_client = LiteLLMClient()

    summary_client = llm_client
    if settings.summary_model:
        summary_client = LiteLLMClient(model=settings.summary_model, temperature=0.1)

    estimator = TokenEstimator(model=settings.tokenizer_model)

    user_first = settings.history_must_start_with_user
    if user_first is None:
        user_first = requires_user_first(llm_client.get_model_name())

    augmenter = None
    if retrieval_settings.enabled:
        augmenter = RetrievalAugmenter(
            QdrantVectorStore(),
            top_k=retrieval_settings.top_k,
            timeout=retrieval_settings.timeout,
        )

    # Document search is either injected every turn or offered as a tool
    retriever = augmenter
    tools = None
    if settings.tools_enabled:
        search_tool_backend = None
        if augmenter is not None and retrieval_settings.as_tool:
            search_tool_backend = augmenter
            retriever = None
        tools = build_tool_registry(settings, search_tool_backend, catalog)

    return ConversationManager(
        store=store,
        llm_client=llm_client,
        estimator=estimator,
        trimmer=ContextTrimmer(estimator, require_user_first=user_first),
        summarizer=Summarizer(
            summary_client,
            max_words=settings.summary_max_words,
            timeout=settings.summary_timeout,
        ),
        retriever=retriever,
        tools=tools,
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Builds the conversation manager on startup (unless one was injected)
    and drains in-flight turns on shutdown.

    Args:
        app: FastAPI application instance

    Yields:
        None
    """
    settings = get_settings()
    configure_logging(settings.log_level, settings.json_logs)

    if getattr(app.state, "conversation_manager", None) is not None:
        yield
        return

    logger.info("streamchat_starting", version=__version__, model=settings.model)

    _ensure_sqlite_directory(settings.database_url)
    store = HistoryStore.from_url(settings.database_url)
    await store.initialize()

    catalog = None
    if settings.tools_enabled:
        catalog = CatalogStore(store.session_factory, engine=store.engine)
        await catalog.initialize()

    manager = build_conversation_manager(store, settings, get_retrieval_settings(), catalog)
    app.state.conversation_manager = manager

    encoding = await manager.estimator.warm_up()
    logger.info("tokenizer_ready", encoding=encoding or "character_based")

    logger.info("streamchat_started")

    yield

    logger.info("streamchat_shutting_down")
    await manager.shutdown(timeout=settings.stream_completion_timeout)
    augmenters = [manager.retriever]
    search_tool = manager.tools.get(SearchDocumentsTool.name) if manager.tools else None
    if isinstance(search_tool, SearchDocumentsTool):
        augmenters.append(search_tool.augmenter)
    for augmenter in augmenters:
        if augmenter is not None and isinstance(augmenter.store, QdrantVectorStore):
            await augmenter.store.close()
    await store.close()
    app.state.conversation_manager = None
    logger.info("streamchat_shutdown_complete")


def create_app(conversation_manager: Optional[ConversationManager] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        conversation_manager: Prebuilt manager; built from settings at
            startup when None

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="streamchat",
        description="Streaming chat with durable, budget-aware conversation sessions",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.state.conversation_manager = conversation_manager

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-session-id"],
    )

    app.include_router(chat_router, prefix="/api/v1")

    @app.get("/api/health")
    async def health_check() -> dict:
        """Health check endpoint.

        Returns:
            Health status information
        """
        return {
            "status": "healthy",
            "version": __version__,
            "service": "streamchat",
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
