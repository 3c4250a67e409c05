"""Vector store collaborators for retrieval."""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

import litellm
import structlog
from qdrant_client import AsyncQdrantClient

from streamchat.config import get_retrieval_settings
from streamchat.types import RetrievedPassage

logger = structlog.get_logger()


class VectorStoreInterface(ABC):
    """Abstract top-k passage search."""

    @abstractmethod
    async def search(self, query: str, k: int) -> List[RetrievedPassage]:
        """Return up to ``k`` passages relevant to ``query``.

        Args:
            query: Search text
            k: Maximum number of passages

        Returns:
            Passages with relevance scores
        """
        ...


class QdrantVectorStore(VectorStoreInterface):
    """Passage search over a Qdrant collection.

    The query is embedded through LiteLLM, so any embedding provider LiteLLM
    supports can be used as long as it matches the vectors already stored
    in the collection.

    Example:
        ```python
        store = QdrantVectorStore(collection_name="documents")
        passages = await store.search("refund policy", k=3)
        ```
    """

    def __init__(
        self,
        client: Optional[AsyncQdrantClient] = None,
        collection_name: Optional[str] = None,
        embedding_model: Optional[str] = None,
        content_field: Optional[str] = None,
        source_field: Optional[str] = None,
    ) -> None:
        """Initialize Qdrant store.

        Args:
            client: Async Qdrant client (created from settings if None)
            collection_name: Collection holding the document chunks
            embedding_model: LiteLLM embedding model for query vectors
            content_field: Payload key holding passage text
            source_field: Payload key naming the source document
        """
        settings = get_retrieval_settings()

        self.client = client or AsyncQdrantClient(
            host=settings.qdrant_host,
            port=settings.qdrant_port,
            https=settings.qdrant_https,
            api_key=settings.qdrant_api_key,
        )
        self.collection_name = collection_name or settings.collection
        self.embedding_model = embedding_model or settings.embedding_model
        self.content_field = content_field or settings.content_field
        self.source_field = source_field or settings.source_field

        logger.info(
            "qdrant_store_initialized",
            collection=self.collection_name,
            embedding_model=self.embedding_model,
        )

    async def _embed(self, text: str) -> List[float]:
        response = await litellm.aembedding(model=self.embedding_model, input=[text])
        item: Any = response.data[0]
        if isinstance(item, dict):
            return item["embedding"]
        return item.embedding

    async def search(self, query: str, k: int) -> List[RetrievedPassage]:
        """Embed the query and run a nearest-neighbour search."""
        vector = await self._embed(query)

        result = await self.client.query_points(
            collection_name=self.collection_name,
            query=vector,
            limit=k,
            with_payload=True,
        )

        passages = []
        for point in result.points:
            payload = point.payload or {}
            passages.append(
                RetrievedPassage(
                    content=str(payload.get(self.content_field, "")),
                    score=float(point.score),
                    source=payload.get(self.source_field),
                    metadata={
                        key: value
                        for key, value in payload.items()
                        if key not in (self.content_field, self.source_field)
                    },
                )
            )
        return passages

    async def close(self) -> None:
        """Close the underlying client."""
        await self.client.close()
