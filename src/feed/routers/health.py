from typing import Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel

from ..lib.embedders import HttpEmbedder

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    embeddings: Literal["remote", "mock"]


@router.get("/health", response_model=HealthResponse, status_code=200)
async def healthcheck(request: Request):
    embedder = request.app.state.embedder
    embeddings = "remote" if isinstance(embedder, HttpEmbedder) else "mock"
    return {"status": "ok", "embeddings": embeddings}
