from datetime import datetime

from pydantic import BaseModel, Field


class Embedding(BaseModel):
    """An embedding attached to a post.

    A post either carries all three fields or none of them.
    """

    vector: list[float] = Field(..., description="Embedding vector")
    model: str = Field(..., description="Name of the model that produced the vector")
    generated_at: datetime = Field(..., description="When the vector was stored")


class Post(BaseModel):
    """A single user submission."""

    id: str = Field(..., description="Unique post id")
    title: str
    content: str
    author: str
    created_at: datetime = Field(..., description="Creation time (UTC)")
    likes: int = Field(0, ge=0)
    embedding: Embedding | None = Field(
        None, description="Embedding for semantic search, if generated"
    )


class ScoredPost(Post):
    """A post returned by search, with its similarity to the query."""

    similarity_score: float = Field(0.0, description="Cosine similarity to the query")


class CreatePostData(BaseModel):
    title: str
    content: str
    author: str


class PostStats(BaseModel):
    total: int
    with_embeddings: int
    without_embeddings: int
