"""Embedding providers and the semantic excerpt retriever for long documents."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Protocol, Sequence

from openai import AsyncOpenAI

from ...services.telemetry import emit
from ..ai_types import ExcerptQuery

LOGGER = logging.getLogger(__name__)
Vector = tuple[float, ...]

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
DEFAULT_CHUNK_CHARS = 600
_MAX_MEMOIZED_VECTORS = 4_096


class EmbeddingProvider(Protocol):
    """Protocol implemented by embedding backends."""

    name: str
    max_batch_size: int

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        """Return embeddings for document chunks."""

    async def embed_query(self, text: str) -> Sequence[float]:
        """Return embedding vector for a query string."""


@dataclass(slots=True, frozen=True)
class TextChunk:
    start: int
    end: int
    text: str
    chunk_hash: str


@dataclass(slots=True, frozen=True)
class ExcerptMatch:
    chunk: TextChunk
    score: float


class LocalEmbeddingProvider:
    """Embedding provider backed by synchronous or async callables."""

    def __init__(
        self,
        *,
        embed_batch: Callable[[Sequence[str]], Sequence[Sequence[float]] | Awaitable[Sequence[Sequence[float]]]],
        embed_query: Callable[[str], Sequence[float] | Awaitable[Sequence[float]]] | None = None,
        name: str = "local",
        max_batch_size: int = 32,
    ) -> None:
        self._embed_batch = embed_batch
        self._embed_query = embed_query
        self.name = name
        self.max_batch_size = max(1, int(max_batch_size))

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        return _normalize_vector_batch(await _maybe_await(self._embed_batch(texts)))

    async def embed_query(self, text: str) -> Sequence[float]:
        if self._embed_query is not None:
            return _normalize_vector(await _maybe_await(self._embed_query(text)))
        vectors = await self.embed_documents([text])
        return vectors[0]


class OpenAIEmbeddingProvider:
    """Embedding provider that wraps :class:`openai.AsyncOpenAI`."""

    def __init__(
        self,
        *,
        client: AsyncOpenAI,
        model: str,
        name: str | None = None,
        max_batch_size: int = 16,
    ) -> None:
        self._client = client
        self._model = model
        self.name = name or f"openai:{model}"
        self.max_batch_size = max(1, int(max_batch_size))

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        response = await self._client.embeddings.create(model=self._model, input=list(texts))
        data = sorted(response.data, key=lambda item: getattr(item, "index", 0))
        return [list(getattr(item, "embedding", [])) for item in data]

    async def embed_query(self, text: str) -> Sequence[float]:
        vectors = await self.embed_documents([text])
        return vectors[0]


class EmbeddingExcerptRetriever:
    """Retriever callable for :class:`~wordloom.ai.context.assembler.ContextAssembler`.

    Paragraphs are merged into chunks of roughly ``max_chunk_chars``; chunks
    touching the immediate window are skipped, the rest are ranked by cosine
    similarity to the query and the best ``limit`` are returned in document
    order. Chunk vectors are memoized by content hash, so an edit only
    re-embeds the paragraphs it changed.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        max_chunk_chars: int = DEFAULT_CHUNK_CHARS,
        min_score: float = 0.0,
    ) -> None:
        self._provider = provider
        self._max_chunk_chars = max(1, int(max_chunk_chars))
        self._min_score = float(min_score)
        self._vectors: dict[str, Vector] = {}

    @property
    def provider_name(self) -> str:
        return getattr(self._provider, "name", type(self._provider).__name__)

    @property
    def memoized_vectors(self) -> int:
        return len(self._vectors)

    async def __call__(self, query: ExcerptQuery) -> list[str]:
        matches = await self.search(query)
        return [match.chunk.text for match in matches]

    async def search(self, query: ExcerptQuery) -> list[ExcerptMatch]:
        if query.limit <= 0 or not query.query_text.strip():
            return []
        candidates = [
            chunk
            for chunk in split_into_chunks(query.document_text, max_chars=self._max_chunk_chars)
            if chunk.end <= query.window_start or chunk.start >= query.window_end
        ]
        if not candidates:
            return []
        embedded = await self._ensure_vectors(candidates)
        query_vector = tuple(float(value) for value in await self._provider.embed_query(query.query_text))
        matches: list[ExcerptMatch] = []
        for chunk in candidates:
            score = _cosine_similarity(query_vector, self._vectors.get(chunk.chunk_hash, ()))
            if math.isnan(score) or score < self._min_score:
                continue
            matches.append(ExcerptMatch(chunk=chunk, score=score))
        matches.sort(key=lambda match: match.score, reverse=True)
        selected = sorted(matches[: query.limit], key=lambda match: match.chunk.start)
        emit(
            "embedding.retrieval",
            {
                "provider": self.provider_name,
                "candidates": len(candidates),
                "embedded": embedded,
                "returned": len(selected),
            },
        )
        return selected

    def clear(self) -> None:
        self._vectors.clear()

    async def _ensure_vectors(self, chunks: Sequence[TextChunk]) -> int:
        pending: list[TextChunk] = []
        seen: set[str] = set()
        for chunk in chunks:
            if chunk.chunk_hash in self._vectors or chunk.chunk_hash in seen:
                continue
            seen.add(chunk.chunk_hash)
            pending.append(chunk)
        for batch in _batched(pending, self._provider.max_batch_size):
            vectors = await self._provider.embed_documents([chunk.text for chunk in batch])
            if len(vectors) != len(batch):
                raise ValueError(f"Embedding provider returned {len(vectors)} vectors for {len(batch)} inputs")
            for chunk, vector in zip(batch, vectors):
                self._vectors[chunk.chunk_hash] = tuple(float(value) for value in vector)
        while len(self._vectors) > _MAX_MEMOIZED_VECTORS:
            self._vectors.pop(next(iter(self._vectors)))
        if pending:
            LOGGER.debug("Embedded %d new chunk(s) with %s", len(pending), self.provider_name)
        return len(pending)


def split_into_chunks(text: str, *, max_chars: int = DEFAULT_CHUNK_CHARS) -> list[TextChunk]:
    """Split *text* at blank lines and merge short neighbours up to *max_chars*."""

    paragraphs: list[tuple[int, int]] = []
    cursor = 0
    for match in _PARAGRAPH_BREAK.finditer(text or ""):
        if text[cursor : match.start()].strip():
            paragraphs.append((cursor, match.start()))
        cursor = match.end()
    if text and text[cursor:].strip():
        paragraphs.append((cursor, len(text)))

    chunks: list[TextChunk] = []
    current: tuple[int, int] | None = None
    for start, end in paragraphs:
        if current is not None and end - current[0] <= max_chars:
            current = (current[0], end)
            continue
        if current is not None:
            chunks.append(_make_chunk(text, *current))
        current = (start, end)
    if current is not None:
        chunks.append(_make_chunk(text, *current))
    return chunks


def _make_chunk(text: str, start: int, end: int) -> TextChunk:
    body = text[start:end].strip()
    return TextChunk(start=start, end=end, text=body, chunk_hash=_chunk_hash(body))


def _chunk_hash(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def _batched(items: Sequence[TextChunk], size: int) -> Iterable[list[TextChunk]]:
    chunk: list[TextChunk] = []
    for item in items:
        chunk.append(item)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def _cosine_similarity(lhs: Sequence[float], rhs: Sequence[float]) -> float:
    if not lhs or not rhs:
        return 0.0
    if len(lhs) != len(rhs):
        return 0.0
    dot = sum(a * b for a, b in zip(lhs, rhs))
    left = math.sqrt(sum(a * a for a in lhs))
    right = math.sqrt(sum(b * b for b in rhs))
    if left == 0 or right == 0:
        return 0.0
    return dot / (left * right)


async def _maybe_await(value: Any) -> Any:
    if asyncio.iscoroutine(value) or isinstance(value, Awaitable):  # type: ignore[arg-type]
        return await value
    return value


def _normalize_vector_batch(value: Any) -> list[list[float]]:
    if not isinstance(value, Sequence):
        raise TypeError("Embedding batch must be a sequence")
    return [_normalize_vector(vector) for vector in value]


def _normalize_vector(value: Any) -> list[float]:
    if isinstance(value, Sequence):
        return [float(component) for component in value]
    raise TypeError("Embedding vector must be a sequence")


__all__ = [
    "EmbeddingExcerptRetriever",
    "EmbeddingProvider",
    "ExcerptMatch",
    "LocalEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "TextChunk",
    "split_into_chunks",
]
