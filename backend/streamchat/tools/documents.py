"""Document search exposed to the model as a tool."""

from typing import Any, Dict, Sequence

from streamchat.core.exceptions import RetrievalError, ToolError
from streamchat.retrieval.augmenter import RetrievalAugmenter
from streamchat.tools.base import BaseTool, require_text
from streamchat.types import RetrievedPassage

MAX_LIMIT = 20


def _passage_label(passage: RetrievedPassage) -> str:
    source = passage.source or "unknown file"
    kind = str(passage.metadata.get("type") or "unknown").upper()
    return f"{source} ({kind})"


def format_search_results(query: str, passages: Sequence[RetrievedPassage], preview_chars: int = 200) -> str:
    """Render search hits for the model.

    A single hit is shown in full; several hits are listed with previews.
    """
    if len(passages) == 1:
        passage = passages[0]
        return (
            f'Found a document about "{query}":\n\n'
            f"**File:** {_passage_label(passage)}\n"
            f"**Content:** {passage.content}\n"
            f"**Relevance:** {passage.score * 100:.1f}%"
        )

    entries = []
    for index, passage in enumerate(passages, start=1):
        preview = passage.content
        if len(preview) > preview_chars:
            preview = preview[:preview_chars] + "..."
        entries.append(
            f"**{index}. {_passage_label(passage)}** - relevance {passage.score * 100:.1f}%\n{preview}"
        )
    return f'Found {len(passages)} documents about "{query}":\n\n' + "\n\n".join(entries)


class SearchDocumentsTool(BaseTool):
    """Vector search over the uploaded documents."""

    name = "search_documents"
    description = (
        "Search the uploaded documents (PDF, CSV, TXT) for information such as "
        "store details, products, prices, sales or anything else stored there."
    )
    parameters = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "What to look for, e.g. 'store opening hours' or 'laptop prices'",
            },
            "limit": {
                "type": "integer",
                "description": "Number of results to return (default 5)",
                "minimum": 1,
                "maximum": MAX_LIMIT,
            },
        },
        "required": ["query"],
    }

    def __init__(self, augmenter: RetrievalAugmenter, default_limit: int = 5) -> None:
        self.augmenter = augmenter
        self.default_limit = default_limit

    def _limit(self, value: Any) -> int:
        try:
            limit = int(value) if value is not None else self.default_limit
        except (TypeError, ValueError):
            limit = self.default_limit
        return max(1, min(limit, MAX_LIMIT))

    async def execute(self, arguments: Dict[str, Any]) -> str:
        query = require_text(arguments, "query", self.name)
        limit = self._limit(arguments.get("limit"))

        try:
            passages = await self.augmenter.retrieve(query, k=limit)
        except RetrievalError as e:
            raise ToolError(
                "The document search service is unavailable right now, please try again later",
                tool_name=self.name,
            ) from e

        if not passages:
            return f'No documents matched "{query}".'
        return format_search_results(query, passages)
