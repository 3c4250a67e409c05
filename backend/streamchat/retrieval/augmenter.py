"""Retrieval augmentation for RAG-enabled conversations."""

import asyncio
import time
from typing import List, Optional, Sequence

import structlog

from streamchat.core.exceptions import RetrievalError
from streamchat.llm.prompts import NO_DOCUMENTS_MARKER, RETRIEVAL_UNAVAILABLE_PLACEHOLDER
from streamchat.retrieval.store import VectorStoreInterface
from streamchat.types import RetrievedPassage

logger = structlog.get_logger()


def format_passages(passages: Sequence[RetrievedPassage]) -> str:
    """Render passages as a prompt context block."""
    blocks = []
    for passage in passages:
        source = passage.source or "unknown source"
        blocks.append(
            f"Source: {source}\n"
            f"Content: {passage.content}\n"
            f"Relevance: {passage.score * 100:.1f}%"
        )
    return "\n\n---\n\n".join(blocks)


class RetrievalAugmenter:
    """Fetches passages for the latest user turn.

    ``retrieve`` raises ``RetrievalError``; ``build_context`` never raises and
    always yields text for the prompt's context slot.

    Example:
        ```python
        augmenter = RetrievalAugmenter(QdrantVectorStore(), top_k=3)
        context = await augmenter.build_context("What is the refund policy?")
        ```
    """

    def __init__(
        self,
        store: VectorStoreInterface,
        top_k: int = 3,
        timeout: float = 10.0,
    ) -> None:
        """Initialize augmenter.

        Args:
            store: Vector store to search
            top_k: Default number of passages
            timeout: Seconds before a search is abandoned
        """
        self.store = store
        self.top_k = top_k
        self.timeout = timeout

    async def retrieve(self, query: str, k: Optional[int] = None) -> List[RetrievedPassage]:
        """Retrieve passages ordered by descending relevance.

        Args:
            query: Search text
            k: Number of passages (default ``top_k``)

        Returns:
            Passages, most relevant first; empty when nothing matches

        Raises:
            RetrievalError: If the store is unreachable or times out
        """
        k = k or self.top_k
        start_time = time.time()

        try:
            passages = await asyncio.wait_for(self.store.search(query, k), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise RetrievalError(f"Document search timed out after {self.timeout}s") from e
        except RetrievalError:
            raise
        except Exception as e:
            raise RetrievalError(f"Document search failed: {e}") from e

        passages = sorted(passages, key=lambda p: p.score, reverse=True)[:k]

        logger.info(
            "retrieval_complete",
            passages_found=len(passages),
            retrieval_time_ms=(time.time() - start_time) * 1000,
        )
        return passages

    async def build_context(self, query: str) -> str:
        """Get the prompt context for a query.

        Returns:
            Formatted passages, ``NO_DOCUMENTS_MARKER`` when nothing matched,
            or ``RETRIEVAL_UNAVAILABLE_PLACEHOLDER`` when the search failed
        """
        try:
            passages = await self.retrieve(query)
        except RetrievalError as e:
            logger.warning("retrieval_degraded", error=str(e))
            return RETRIEVAL_UNAVAILABLE_PLACEHOLDER

        if not passages:
            return NO_DOCUMENTS_MARKER
        return format_passages(passages)
