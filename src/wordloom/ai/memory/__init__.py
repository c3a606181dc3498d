"""Caches and semantic retrieval helpers."""

from .embeddings import (
    EmbeddingExcerptRetriever,
    EmbeddingProvider,
    LocalEmbeddingProvider,
    OpenAIEmbeddingProvider,
)
from .result_cache import BoundedResultCache, CacheStats, CompletionCache, SummaryCache

__all__ = [
    "BoundedResultCache",
    "CacheStats",
    "CompletionCache",
    "EmbeddingExcerptRetriever",
    "EmbeddingProvider",
    "LocalEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "SummaryCache",
]
