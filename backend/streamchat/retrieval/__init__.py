"""Retrieval-augmented generation support."""

from streamchat.retrieval.augmenter import RetrievalAugmenter, format_passages
from streamchat.retrieval.store import QdrantVectorStore, VectorStoreInterface

__all__ = [
    "RetrievalAugmenter",
    "VectorStoreInterface",
    "QdrantVectorStore",
    "format_passages",
]
