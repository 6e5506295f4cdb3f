"""Post creation and search flows.

Creation: store the post, embed it with the configured source, fall back to
the local mock when the source is unavailable. Creation never fails because of
embeddings; the outcome is reported as an ``embedding_status``.

Search comes in two flavours:

- ``semantic_search`` backs the query API: top 3 by cosine similarity, no
  threshold, the query embedded with the same fallback as posts.
- ``feed_search`` backs the feed: every embedded post scoring above 0.1, and
  plain substring matching whenever semantic ranking is unavailable or finds
  nothing.
"""

import logging
from typing import Literal

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from ..errors import EmbeddingUnavailableError, FeedError
from ..models import CreatePostData, Post, ScoredPost
from .embedders import Embedder, EmbeddingResult
from .similarity import rank
from .store import PostStore

logger = logging.getLogger(__name__)

API_SEARCH_LIMIT = 3
FEED_MIN_SCORE = 0.1

EmbeddingStatus = Literal["generated", "fallback", "failed"]
SearchMode = Literal["all", "semantic", "text"]


class CreatedPost(BaseModel):
    post: Post
    embedding_status: EmbeddingStatus
    message: str | None = Field(None, description="Why the embedding degraded, if it did")


class FeedSearchResult(BaseModel):
    mode: SearchMode = Field(..., description="How the results were produced")
    results: list[ScoredPost] = Field(default_factory=list)


def _scored(post: Post, score: float = 0.0) -> ScoredPost:
    return ScoredPost(**post.model_dump(), similarity_score=score)


async def _embed_post_with_fallback(
    embedder: Embedder,
    fallback: Embedder,
    title: str,
    content: str,
) -> tuple[EmbeddingResult, str | None]:
    try:
        result = await embedder.embed_post(title, content)
    except EmbeddingUnavailableError as exc:
        logger.warning("Embedder '%s' unavailable, using '%s': %s", embedder.name, fallback.name, exc)
        return await fallback.embed_post(title, content), str(exc)

    fallback.adopt_dimensions(len(result.vector))
    return result, None


async def generate_embedding(
    store: PostStore,
    embedder: Embedder,
    fallback: Embedder,
    post: Post,
) -> tuple[EmbeddingStatus, str | None]:
    """Embed *post* and store the result, overwriting any previous embedding."""
    try:
        result, degraded = await _embed_post_with_fallback(
            embedder, fallback, post.title, post.content
        )
        await run_in_threadpool(store.update_embedding, post.id, result.vector, result.model)
    except FeedError as exc:
        logger.exception("Failed to generate embedding for post %s", post.id)
        return "failed", str(exc)

    if degraded is not None:
        return "fallback", degraded
    return "generated", None


async def create_post(
    store: PostStore,
    embedder: Embedder,
    fallback: Embedder,
    data: CreatePostData,
) -> CreatedPost:
    """Create a post and give it an embedding.

    Raises :class:`ValidationError` for empty fields; embedding problems only
    show up in the returned status.
    """
    post = await run_in_threadpool(store.create, data)
    status, message = await generate_embedding(store, embedder, fallback, post)
    if status != "failed":
        post = await run_in_threadpool(store.get, post.id)
    return CreatedPost(post=post, embedding_status=status, message=message)


async def backfill_embeddings(
    store: PostStore,
    embedder: Embedder,
    fallback: Embedder,
) -> int:
    """Embed every post that has no embedding yet. Returns how many were stored."""
    pending = await run_in_threadpool(store.get_without_embeddings)
    logger.info("Generating embeddings for %d posts", len(pending))

    stored = 0
    for post in pending:
        status, _ = await generate_embedding(store, embedder, fallback, post)
        if status != "failed":
            stored += 1
    return stored


def _rank_posts(
    query_vector: list[float],
    posts: list[Post],
    limit: int,
    min_score: float | None = None,
) -> list[ScoredPost]:
    by_id = {p.id: p for p in posts}
    candidates = [
        (p.id, p.embedding.vector) for p in posts if len(p.embedding.vector) == len(query_vector)
    ]
    if len(candidates) < len(posts):
        logger.warning(
            "Skipping %d posts whose embeddings are not %d-d",
            len(posts) - len(candidates),
            len(query_vector),
        )
    return [_scored(by_id[pid], score) for pid, score in rank(query_vector, candidates, limit, min_score)]


async def semantic_search(
    store: PostStore,
    embedder: Embedder,
    fallback: Embedder,
    query: str,
    limit: int = API_SEARCH_LIMIT,
) -> list[ScoredPost]:
    """Rank embedded posts against *query* and return the best *limit* of them."""
    try:
        query_embedding = await embedder.embed_query(query)
        fallback.adopt_dimensions(len(query_embedding.vector))
    except EmbeddingUnavailableError as exc:
        logger.warning("Embedder '%s' unavailable for query, using '%s': %s", embedder.name, fallback.name, exc)
        query_embedding = await fallback.embed_query(query)

    posts = await run_in_threadpool(store.get_with_embeddings)
    if not posts:
        return []
    return _rank_posts(query_embedding.vector, posts, limit)


async def feed_search(
    store: PostStore,
    embedder: Embedder,
    query: str,
) -> FeedSearchResult:
    """Search the feed, degrading to substring matching when needed."""
    if not query.strip():
        posts = await run_in_threadpool(store.get_all)
        return FeedSearchResult(mode="all", results=[_scored(p) for p in posts])

    try:
        query_embedding = await embedder.embed_query(query)
        posts = await run_in_threadpool(store.get_with_embeddings)
        if posts:
            results = _rank_posts(query_embedding.vector, posts, len(posts), FEED_MIN_SCORE)
            if results:
                return FeedSearchResult(mode="semantic", results=results)
            logger.info("No post scored above %.2f for %r, using text search", FEED_MIN_SCORE, query)
        else:
            logger.info("No posts have embeddings, using text search")
    except EmbeddingUnavailableError as exc:
        logger.warning("Semantic search unavailable, using text search: %s", exc)

    posts = await run_in_threadpool(store.text_search, query)
    return FeedSearchResult(mode="text", results=[_scored(p) for p in posts])
