"""Posts router – create, list, like and embed posts.

POST /posts
    Create a post and generate its embedding.

GET /posts, GET /posts/search, GET /posts/stats, GET /posts/{id}
    Read posts, newest first.
"""

import logging

from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from ..errors import NotFoundError, ValidationError
from ..lib.search import (
    CreatedPost,
    FeedSearchResult,
    backfill_embeddings,
    create_post,
    feed_search,
    generate_embedding,
)
from ..models import CreatePostData, Post, PostStats

router = APIRouter(prefix="/posts", tags=["posts"])

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class PostListResponse(BaseModel):
    posts: list[Post]


class LikesUpdate(BaseModel):
    likes: int = Field(..., ge=0, description="New like count")


class EmbeddingResponse(BaseModel):
    post: Post | None = None
    embedding_status: str
    message: str | None = None


class BackfillResponse(BaseModel):
    embedded: int = Field(..., description="Number of posts that received an embedding")


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("", response_model=PostListResponse)
async def list_posts(request: Request) -> PostListResponse:
    posts = await run_in_threadpool(request.app.state.store.get_all)
    return PostListResponse(posts=posts)


@router.post("", response_model=CreatedPost, status_code=201)
async def posts_create(request: Request, payload: CreatePostData) -> CreatedPost:
    """Create a post. Embedding problems degrade the status, never the request."""
    state = request.app.state
    try:
        return await create_post(state.store, state.embedder, state.fallback_embedder, payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/search", response_model=FeedSearchResult)
async def posts_search(
    request: Request,
    q: str = Query("", description="Search text; empty returns every post"),
) -> FeedSearchResult:
    state = request.app.state
    return await feed_search(state.store, state.embedder, q)


@router.get("/stats", response_model=PostStats)
async def posts_stats(request: Request) -> PostStats:
    return await run_in_threadpool(request.app.state.store.count)


@router.post("/embeddings/backfill", response_model=BackfillResponse)
async def posts_backfill(request: Request) -> BackfillResponse:
    state = request.app.state
    embedded = await backfill_embeddings(state.store, state.embedder, state.fallback_embedder)
    return BackfillResponse(embedded=embedded)


@router.delete("", status_code=204)
async def posts_clear(request: Request) -> Response:
    await run_in_threadpool(request.app.state.store.clear)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{post_id}", response_model=Post)
async def posts_get(request: Request, post_id: str) -> Post:
    try:
        return await run_in_threadpool(request.app.state.store.get, post_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc


@router.post("/{post_id}/like", response_model=Post)
async def posts_like(request: Request, post_id: str) -> Post:
    """Add one like to a post."""
    store = request.app.state.store
    try:
        await run_in_threadpool(store.increment_likes, post_id)
        return await run_in_threadpool(store.get, post_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc


@router.put("/{post_id}/likes", response_model=Post)
async def posts_set_likes(request: Request, post_id: str, payload: LikesUpdate) -> Post:
    store = request.app.state.store
    try:
        await run_in_threadpool(store.update_likes, post_id, payload.likes)
        return await run_in_threadpool(store.get, post_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc


@router.post("/{post_id}/embedding", response_model=EmbeddingResponse)
async def posts_regenerate_embedding(request: Request, post_id: str) -> EmbeddingResponse:
    """Generate the embedding for one post again, replacing the old one."""
    state = request.app.state
    try:
        post = await run_in_threadpool(state.store.get, post_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc

    embedding_status, message = await generate_embedding(
        state.store, state.embedder, state.fallback_embedder, post
    )
    try:
        post = await run_in_threadpool(state.store.get, post_id)
    except NotFoundError:
        post = None
    return EmbeddingResponse(post=post, embedding_status=embedding_status, message=message)


@router.delete("/{post_id}", status_code=204)
async def posts_delete(request: Request, post_id: str) -> Response:
    await run_in_threadpool(request.app.state.store.delete, post_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
