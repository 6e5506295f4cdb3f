import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import config
from .lib.embedders import HttpEmbedder, MockEmbedder
from .lib.store import PostStore
from .routers import health, posts, search

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = PostStore(config.get_database_url())
    store.init()

    fallback = MockEmbedder()
    service_url = config.get_embedding_service_url()
    if service_url:
        embedder = HttpEmbedder(service_url, timeout=config.get_embedding_timeout())
    else:
        logger.info("No embedding service configured, using mock embeddings")
        embedder = fallback

    app.state.store = store
    app.state.embedder = embedder
    app.state.fallback_embedder = fallback
    try:
        yield
    finally:
        await embedder.aclose()
        store.close()


app = FastAPI(
    title="Social Feed API",
    description="An API server for posting, liking and semantically searching a social feed",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(posts.router)
app.include_router(search.router)


@app.get("/")
async def root():
    return {"message": "Social Feed API"}
