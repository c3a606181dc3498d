"""Tests for embedding providers and the semantic excerpt retriever."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Sequence

import pytest

from wordloom.ai.ai_types import ExcerptQuery
from wordloom.ai.context.assembler import ContextAssembler
from wordloom.ai.memory.embeddings import (
    EmbeddingExcerptRetriever,
    LocalEmbeddingProvider,
    OpenAIEmbeddingProvider,
    split_into_chunks,
)

_KEYWORDS = ("dragon", "castle", "river")

DOCUMENT = (
    "The dragon slept in the dragon cave.\n\n"
    "A castle stood on the hill.\n\n"
    "The river ran cold and fast.\n\n"
    "Dragons circled the castle walls."
)


def _vector(text: str) -> list[float]:
    lowered = text.lower()
    return [float(lowered.count(keyword)) for keyword in _KEYWORDS]


class _KeywordEmbedder:
    def __init__(self) -> None:
        self.batches: list[list[str]] = []

    def __call__(self, texts: Sequence[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        return [_vector(text) for text in texts]

    @property
    def embedded(self) -> list[str]:
        return [text for batch in self.batches for text in batch]


def _query(text: str, *, window: tuple[int, int] | None = None, limit: int = 2, document: str = DOCUMENT):
    start, end = window if window is not None else (len(document), len(document))
    return ExcerptQuery(document_text=document, query_text=text, window_start=start, window_end=end, limit=limit)


def test_split_into_chunks_merges_short_paragraphs() -> None:
    merged = split_into_chunks("alpha\n\nbeta\n\n\n\ngamma", max_chars=600)
    separate = split_into_chunks("alpha\n\nbeta", max_chars=6)

    assert [chunk.text for chunk in merged] == ["alpha\n\nbeta\n\n\n\ngamma"]
    assert [chunk.text for chunk in separate] == ["alpha", "beta"]
    assert separate[1].start == 7
    assert split_into_chunks("   ") == []


@pytest.mark.asyncio
async def test_ranks_by_similarity_and_returns_document_order(telemetry_sink) -> None:
    embedder = _KeywordEmbedder()
    retriever = EmbeddingExcerptRetriever(LocalEmbeddingProvider(embed_batch=embedder), max_chunk_chars=40)

    passages = await retriever(_query("dragon"))

    assert passages == ["The dragon slept in the dragon cave.", "Dragons circled the castle walls."]
    records = [record.payload for record in telemetry_sink.tail() if record.name == "embedding.retrieval"]
    assert records[-1]["returned"] == 2
    assert records[-1]["candidates"] == 4


@pytest.mark.asyncio
async def test_chunks_overlapping_the_window_are_skipped() -> None:
    retriever = EmbeddingExcerptRetriever(LocalEmbeddingProvider(embed_batch=_KeywordEmbedder()), max_chunk_chars=40)
    start = DOCUMENT.index("A castle")
    end = start + len("A castle stood on the hill.")

    matches = await retriever.search(_query("castle", window=(start, end), limit=4))

    texts = [match.chunk.text for match in matches]
    assert "A castle stood on the hill." not in texts
    assert texts[0] == "The dragon slept in the dragon cave."
    assert max(matches, key=lambda match: match.score).chunk.text == "Dragons circled the castle walls."


@pytest.mark.asyncio
async def test_vectors_are_memoized_by_chunk_content() -> None:
    embedder = _KeywordEmbedder()
    retriever = EmbeddingExcerptRetriever(
        LocalEmbeddingProvider(embed_batch=embedder, embed_query=_vector, max_batch_size=2),
        max_chunk_chars=40,
    )

    await retriever(_query("dragon"))
    assert [len(batch) for batch in embedder.batches] == [2, 2]

    await retriever(_query("river"))
    assert len(embedder.embedded) == 4

    edited = DOCUMENT.replace("cold and fast", "warm and slow")
    await retriever(_query("river", document=edited))
    assert embedder.embedded[-1] == "The river ran warm and slow."
    assert len(embedder.embedded) == 5
    assert retriever.memoized_vectors == 5

    retriever.clear()
    assert retriever.memoized_vectors == 0


@pytest.mark.asyncio
async def test_min_score_and_empty_queries() -> None:
    retriever = EmbeddingExcerptRetriever(
        LocalEmbeddingProvider(embed_batch=_KeywordEmbedder()), max_chunk_chars=40, min_score=0.9
    )

    assert await retriever(_query("river")) == ["The river ran cold and fast."]
    assert await retriever(_query("   ")) == []
    assert await retriever(_query("dragon", limit=0)) == []


@pytest.mark.asyncio
async def test_async_callables_are_supported() -> None:
    async def _embed(texts: Sequence[str]) -> list[list[float]]:
        return [_vector(text) for text in texts]

    provider = LocalEmbeddingProvider(embed_batch=_embed, name="async-local")
    retriever = EmbeddingExcerptRetriever(provider, max_chunk_chars=40)

    assert retriever.provider_name == "async-local"
    assert await retriever(_query("river", limit=1)) == ["The river ran cold and fast."]


@pytest.mark.asyncio
async def test_provider_vector_count_mismatch_raises() -> None:
    provider = LocalEmbeddingProvider(embed_batch=lambda texts: [[1.0, 0.0, 0.0]])
    retriever = EmbeddingExcerptRetriever(provider, max_chunk_chars=40)

    with pytest.raises(ValueError):
        await retriever(_query("dragon"))


@pytest.mark.asyncio
async def test_openai_provider_orders_by_index() -> None:
    calls: list[dict[str, object]] = []

    async def _create(**kwargs: object) -> SimpleNamespace:
        calls.append(kwargs)
        return SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.0, 1.0]),
                SimpleNamespace(index=0, embedding=[1.0, 0.0]),
            ]
        )

    client = SimpleNamespace(embeddings=SimpleNamespace(create=_create))
    provider = OpenAIEmbeddingProvider(client=client, model="text-embed")  # type: ignore[arg-type]

    vectors = await provider.embed_documents(["first", "second"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert calls == [{"model": "text-embed", "input": ["first", "second"]}]
    assert provider.name == "openai:text-embed"


@pytest.mark.asyncio
async def test_assembler_uses_retriever_for_long_documents() -> None:
    filler = "Filler text about nothing in particular. " * 10
    paragraphs = ["The dragon guarded its hoard."] + [filler.strip()] * 35 + ["The dragon woke at last."]
    document = "\n\n".join(paragraphs)
    retriever = EmbeddingExcerptRetriever(LocalEmbeddingProvider(embed_batch=_KeywordEmbedder()), min_score=0.5)
    assembler = ContextAssembler(retriever=retriever)

    result = await assembler.build(document)

    assert result.strategy.value == "long-doc"
    assert len(result.semantic_chunks) == 1
    assert "The dragon guarded its hoard." in result.semantic_chunks[0]
    assert result.total_tokens <= result.budget.total_token_limit
