"""Tests for the post creation and search flows."""

import httpx
import pytest

from ..errors import EmbeddingUnavailableError, ValidationError
from ..models import CreatePostData
from .embedders import Embedder, EmbeddingResult, HttpEmbedder, MockEmbedder
from .embeddings import MOCK_MODEL
from .search import (
    backfill_embeddings,
    create_post,
    feed_search,
    generate_embedding,
    semantic_search,
)
from .store import PostStore


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

class FakeEmbedder(Embedder):
    """Returns fixed vectors; text not in the map gets *default*."""

    def __init__(self, vectors: dict | None = None, default=None, model: str = "fake-model"):
        self.vectors = vectors or {}
        self.default = default if default is not None else [1.0, 0.0]
        self.model = model
        self.queries: list[str] = []

    @property
    def name(self) -> str:
        return "fake"

    async def embed_post(self, title: str, content: str) -> EmbeddingResult:
        return await self.embed_query(title)

    async def embed_query(self, text: str) -> EmbeddingResult:
        self.queries.append(text)
        return EmbeddingResult(vector=self.vectors.get(text, self.default), model=self.model)


class FailingEmbedder(Embedder):
    @property
    def name(self) -> str:
        return "failing"

    async def embed_post(self, title: str, content: str) -> EmbeddingResult:
        raise EmbeddingUnavailableError("Cannot connect to embedding service")

    async def embed_query(self, text: str) -> EmbeddingResult:
        raise EmbeddingUnavailableError("Embedding generation timed out")


class SwitchableEmbedder(FakeEmbedder):
    """A fake whose service can be taken down and brought back."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.down = False

    async def embed_query(self, text: str) -> EmbeddingResult:
        if self.down:
            raise EmbeddingUnavailableError("Cannot connect to embedding service")
        return await super().embed_query(text)


@pytest.fixture
def store():
    s = PostStore("sqlite://")
    s.init()
    yield s
    s.close()


def add_post(store, title, content="content", author="alice", vector=None, model="m"):
    post = store.create({"title": title, "content": content, "author": author})
    if vector is not None:
        store.update_embedding(post.id, vector, model)
    return post


# ---------------------------------------------------------------------------
# create_post / generate_embedding
# ---------------------------------------------------------------------------

class TestCreatePost:
    @pytest.mark.asyncio
    async def test_stores_embedding_from_embedder(self, store):
        embedder = FakeEmbedder(vectors={"Hello": [0.5, 0.5]})
        created = await create_post(
            store, embedder, MockEmbedder(),
            CreatePostData(title="Hello", content="world", author="alice"),
        )
        assert created.embedding_status == "generated"
        assert created.message is None
        assert created.post.embedding.vector == [0.5, 0.5]
        assert created.post.embedding.model == "fake-model"
        assert store.get(created.post.id).embedding.vector == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_falls_back_to_mock_when_unavailable(self, store):
        created = await create_post(
            store, FailingEmbedder(), MockEmbedder(),
            CreatePostData(title="Hello", content="world", author="alice"),
        )
        assert created.embedding_status == "fallback"
        assert "connect" in created.message
        assert created.post.embedding.model == MOCK_MODEL
        assert len(created.post.embedding.vector) == 384

    @pytest.mark.asyncio
    async def test_post_survives_when_fallback_also_fails(self, store):
        created = await create_post(
            store, FailingEmbedder(), FailingEmbedder(),
            CreatePostData(title="Hello", content="world", author="alice"),
        )
        assert created.embedding_status == "failed"
        assert created.post.embedding is None
        assert store.get(created.post.id).title == "Hello"

    @pytest.mark.asyncio
    async def test_validation_error_propagates(self, store):
        with pytest.raises(ValidationError):
            await create_post(
                store, FakeEmbedder(), MockEmbedder(),
                CreatePostData(title=" ", content="world", author="alice"),
            )
        assert store.get_all() == []

    @pytest.mark.asyncio
    async def test_generate_embedding_for_deleted_post_fails_softly(self, store):
        post = add_post(store, "gone")
        store.delete(post.id)
        status, message = await generate_embedding(store, FakeEmbedder(), MockEmbedder(), post)
        assert status == "failed"
        assert post.id in message


class TestBackfill:
    @pytest.mark.asyncio
    async def test_embeds_only_posts_without_embeddings(self, store):
        add_post(store, "already", vector=[0.0, 1.0], model="old")
        add_post(store, "first")
        add_post(store, "second")
        embedder = FakeEmbedder()

        count = await backfill_embeddings(store, embedder, MockEmbedder())

        assert count == 2
        assert sorted(embedder.queries) == ["first", "second"]
        assert store.count().without_embeddings == 0
        models = {p.title: p.embedding.model for p in store.get_all()}
        assert models == {"already": "old", "first": "fake-model", "second": "fake-model"}


# ---------------------------------------------------------------------------
# semantic_search (API path)
# ---------------------------------------------------------------------------

class TestSemanticSearch:
    @pytest.mark.asyncio
    async def test_ranks_by_similarity(self, store):
        first = add_post(store, "first", vector=[1.0, 0.0])
        second = add_post(store, "second", vector=[0.0, 1.0])

        results = await semantic_search(
            store, FakeEmbedder(default=[1.0, 0.0]), MockEmbedder(), "anything"
        )

        assert [r.id for r in results] == [first.id, second.id]
        assert [r.similarity_score for r in results] == [1.0, 0.0]
        assert results[0].title == "first"

    @pytest.mark.asyncio
    async def test_limits_to_top_three_without_threshold(self, store):
        for i in range(5):
            add_post(store, f"p{i}", vector=[-1.0, float(i)])
        results = await semantic_search(
            store, FakeEmbedder(default=[1.0, 0.0]), MockEmbedder(), "q"
        )
        assert len(results) == 3
        assert all(r.similarity_score <= 0 for r in results)
        scores = [r.similarity_score for r in results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_empty_when_nothing_embedded(self, store):
        add_post(store, "plain")
        results = await semantic_search(store, FakeEmbedder(), MockEmbedder(), "q")
        assert results == []

    @pytest.mark.asyncio
    async def test_query_falls_back_to_mock(self, store):
        post = add_post(store, "mocked", vector=MockEmbedder().dimensions * [0.1], model=MOCK_MODEL)
        results = await semantic_search(store, FailingEmbedder(), MockEmbedder(), "query")
        assert [r.id for r in results] == [post.id]


# ---------------------------------------------------------------------------
# feed_search (feed path)
# ---------------------------------------------------------------------------

class TestFeedSearch:
    @pytest.mark.asyncio
    async def test_blank_query_returns_everything(self, store):
        a = add_post(store, "a")
        b = add_post(store, "b")
        result = await feed_search(store, FakeEmbedder(), "   ")
        assert result.mode == "all"
        assert [r.id for r in result.results] == [b.id, a.id]
        assert all(r.similarity_score == 0 for r in result.results)

    @pytest.mark.asyncio
    async def test_semantic_results_above_threshold(self, store):
        close = add_post(store, "close", vector=[1.0, 0.0])
        add_post(store, "orthogonal", vector=[0.0, 1.0])
        add_post(store, "unembedded")

        result = await feed_search(store, FakeEmbedder(default=[1.0, 0.0]), "query")

        assert result.mode == "semantic"
        assert [r.id for r in result.results] == [close.id]
        assert result.results[0].similarity_score == 1.0

    @pytest.mark.asyncio
    async def test_falls_back_to_text_when_embedder_unavailable(self, store):
        art = add_post(store, "Street Art", vector=[1.0, 0.0])
        add_post(store, "Cooking", vector=[1.0, 0.0])
        result = await feed_search(store, FailingEmbedder(), "art")
        assert result.mode == "text"
        assert [r.id for r in result.results] == [art.id]

    @pytest.mark.asyncio
    async def test_falls_back_to_text_when_nothing_embedded(self, store):
        art = add_post(store, "Art class")
        result = await feed_search(store, FakeEmbedder(), "ART")
        assert result.mode == "text"
        assert [r.id for r in result.results] == [art.id]

    @pytest.mark.asyncio
    async def test_falls_back_to_text_when_no_score_clears_threshold(self, store):
        add_post(store, "unrelated", vector=[0.0, 1.0])
        art = add_post(store, "art show", vector=[-1.0, 0.0])
        result = await feed_search(store, FakeEmbedder(default=[1.0, 0.0]), "art")
        assert result.mode == "text"
        assert [r.id for r in result.results] == [art.id]

    @pytest.mark.asyncio
    async def test_falls_back_to_text_on_dimension_mismatch(self, store):
        art = add_post(store, "art", vector=[1.0, 0.0, 0.0])
        result = await feed_search(store, FakeEmbedder(default=[1.0, 0.0]), "art")
        assert result.mode == "text"
        assert [r.id for r in result.results] == [art.id]


# ---------------------------------------------------------------------------
# remote and fallback embeddings side by side
# ---------------------------------------------------------------------------

class TestMixedSources:
    @pytest.mark.asyncio
    async def test_fallback_posts_match_remote_vector_size(self, store):
        remote = SwitchableEmbedder(default=[0.5, 0.5, 0.5, 0.5])
        fallback = MockEmbedder()

        first = await create_post(
            store, remote, fallback, CreatePostData(title="remote", content="c", author="a")
        )
        remote.down = True
        second = await create_post(
            store, remote, fallback, CreatePostData(title="local", content="c", author="a")
        )

        assert first.embedding_status == "generated"
        assert second.embedding_status == "fallback"
        assert second.post.embedding.model == MOCK_MODEL
        assert len(second.post.embedding.vector) == 4

        while_down = await semantic_search(store, remote, fallback, "anything")
        assert {r.id for r in while_down} == {first.post.id, second.post.id}

        remote.down = False
        while_up = await semantic_search(store, remote, fallback, "anything")
        assert {r.id for r in while_up} == {first.post.id, second.post.id}

    @pytest.mark.asyncio
    async def test_query_fallback_matches_remote_vector_size(self, store):
        remote = SwitchableEmbedder(default=[1.0, 0.0, 0.0])
        fallback = MockEmbedder()
        await semantic_search(store, remote, fallback, "warm up")
        assert fallback.dimensions == 3

        post = add_post(store, "remote", vector=[1.0, 0.0, 0.0], model="fake-model")
        remote.down = True
        results = await semantic_search(store, remote, fallback, "q")
        assert [r.id for r in results] == [post.id]

    @pytest.mark.asyncio
    async def test_search_skips_posts_of_another_size(self, store):
        matching = add_post(store, "matching", vector=[1.0, 0.0])
        add_post(store, "legacy", vector=[0.1] * 384, model=MOCK_MODEL)
        results = await semantic_search(
            store, FakeEmbedder(default=[1.0, 0.0]), MockEmbedder(), "q"
        )
        assert [r.id for r in results] == [matching.id]

    @pytest.mark.asyncio
    async def test_non_finite_service_vector_falls_back_to_mock(self, store):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                200,
                content=b'{"postEmbeddings": [NaN, 0.5]}',
                headers={"Content-Type": "application/json"},
            )
        )
        embedder = HttpEmbedder("http://embeddings.test", client=httpx.AsyncClient(transport=transport))

        created = await create_post(
            store, embedder, MockEmbedder(),
            CreatePostData(title="Hello", content="world", author="alice"),
        )
        await embedder.aclose()

        assert created.embedding_status == "fallback"
        assert "non-finite" in created.message
        assert created.post.embedding.model == MOCK_MODEL
        assert store.get(created.post.id).embedding.model == MOCK_MODEL
