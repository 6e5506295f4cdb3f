import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..lib.search import API_SEARCH_LIMIT, semantic_search
from ..models import ScoredPost

router = APIRouter(tags=["search"])

logger = logging.getLogger(__name__)


class SearchResponse(BaseModel):
    """Search response returning posts ordered by similarity to the query."""
    results: list[ScoredPost]


class SearchErrorResponse(BaseModel):
    error: str


@router.post(
    "/api/search",
    response_model=SearchResponse,
    responses={400: {"model": SearchErrorResponse}, 500: {"model": SearchErrorResponse}},
)
async def api_search(request: Request):
    """Semantic search over stored post embeddings.

    Expects ``{"query": "<text>"}`` and returns the top 3 posts, each with a
    ``similarity_score``.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None

    query = body.get("query") if isinstance(body, dict) else None
    if not query or not isinstance(query, str):
        return JSONResponse(
            status_code=400,
            content={"error": "Query is required and must be a string"},
        )

    state = request.app.state
    try:
        results = await semantic_search(
            state.store, state.embedder, state.fallback_embedder, query, API_SEARCH_LIMIT
        )
    except Exception:
        logger.exception("Semantic search failed", extra={"query": query})
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error during search"},
        )

    return SearchResponse(results=results)
