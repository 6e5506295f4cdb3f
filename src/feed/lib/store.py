"""Persistent post store backed by SQLAlchemy over SQLite.

One ``posts`` table holds every post. The three embedding columns are set
together or not at all; a CHECK constraint rejects any partial state, and
every update that touches them is a single UPDATE statement.

The store is synchronous. Each operation opens its own session and commits
before returning, so writes are durable once a call returns.
"""

import logging
import math
import uuid
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Integer,
    LargeBinary,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import NotFoundError, ValidationError
from ..models import CreatePostData, Embedding, Post, PostStats
from .embeddings import pack_vector, unpack_vector

logger = logging.getLogger(__name__)

_IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


class Base(DeclarativeBase):
    pass


class PostRecord(Base):
    __tablename__ = "posts"
    __table_args__ = (
        CheckConstraint("likes >= 0", name="ck_posts_likes_non_negative"),
        CheckConstraint(
            "(embedding IS NULL AND embedding_model IS NULL AND embedding_generated_at IS NULL)"
            " OR (embedding IS NOT NULL AND embedding_model IS NOT NULL"
            " AND embedding_generated_at IS NOT NULL)",
            name="ck_posts_embedding_all_or_nothing",
        ),
    )

    # Insertion order, used to break created_at ties
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(500), index=True)
    content: Mapped[str] = mapped_column(Text)
    author: Mapped[str] = mapped_column(String(200), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    likes: Mapped[int] = mapped_column(Integer, default=0)
    embedding: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    embedding_model: Mapped[str | None] = mapped_column(String(200), nullable=True)
    embedding_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, index=True
    )


def _utcnow() -> datetime:
    # SQLite DateTime columns drop tzinfo, so naive UTC is stored
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


def _to_post(record: PostRecord) -> Post:
    embedding = None
    if record.embedding is not None:
        embedding = Embedding(
            vector=unpack_vector(record.embedding),
            model=record.embedding_model,
            generated_at=_as_utc(record.embedding_generated_at),
        )
    return Post(
        id=record.id,
        title=record.title,
        content=record.content,
        author=record.author,
        created_at=_as_utc(record.created_at),
        likes=record.likes,
        embedding=embedding,
    )


def _required_text(data: Mapping, field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string")
    return value.strip()


def _validate_vector(vector: Sequence[float]) -> list[float]:
    if not isinstance(vector, (list, tuple)) or not vector:
        raise ValidationError("embedding must be a non-empty list of numbers")
    values = []
    for v in vector:
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
            raise ValidationError("embedding must contain only finite numbers")
        values.append(float(v))
    return values


class PostStore:
    """Keyed storage of :class:`Post` records.

    Construct one per application and pass it to whatever needs it.
    """

    def __init__(self, url: str):
        self.url = url
        connect_args = {}
        kwargs = {}
        if url.startswith("sqlite"):
            # Handlers reach the store from a thread pool
            connect_args["check_same_thread"] = False
            if url in _IN_MEMORY_URLS:
                # One shared connection, otherwise each thread sees its own empty database
                kwargs["poolclass"] = StaticPool
        self._engine = create_engine(url, connect_args=connect_args, **kwargs)
        self._session_maker = sessionmaker(bind=self._engine, expire_on_commit=False)

    def init(self) -> None:
        """Create the schema if it does not exist."""
        Base.metadata.create_all(self._engine)
        logger.info("Post store ready at %s", self._engine.url)

    def close(self) -> None:
        self._engine.dispose()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, data: CreatePostData | Mapping) -> Post:
        """Persist a new post and return the stored record.

        Raises :class:`ValidationError` if title, content or author is empty
        after trimming.
        """
        if isinstance(data, CreatePostData):
            data = data.model_dump()
        title = _required_text(data, "title")
        content = _required_text(data, "content")
        author = _required_text(data, "author")

        with self._session_maker() as session:
            record = PostRecord(
                id=uuid.uuid4().hex,
                title=title,
                content=content,
                author=author,
                created_at=_utcnow(),
                likes=0,
            )
            session.add(record)
            session.commit()
            logger.debug("Created post %s by %s", record.id, author)
            return _to_post(record)

    def update_likes(self, post_id: str, likes: int) -> None:
        """Overwrite the like counter of a post."""
        if isinstance(likes, bool) or not isinstance(likes, int) or likes < 0:
            raise ValidationError(f"likes must be a non-negative integer, got {likes!r}")

        with self._session_maker() as session:
            result = session.execute(
                update(PostRecord).where(PostRecord.id == post_id).values(likes=likes)
            )
            if result.rowcount == 0:
                raise NotFoundError(post_id)
            session.commit()

    def increment_likes(self, post_id: str) -> int:
        """Add one like in a single statement and return the new count."""
        with self._session_maker() as session:
            result = session.execute(
                update(PostRecord)
                .where(PostRecord.id == post_id)
                .values(likes=PostRecord.likes + 1)
            )
            if result.rowcount == 0:
                raise NotFoundError(post_id)
            likes = session.scalar(select(PostRecord.likes).where(PostRecord.id == post_id))
            session.commit()
            return likes

    def update_embedding(self, post_id: str, embedding: Sequence[float], model: str) -> None:
        """Set vector, model and generation time of a post in one statement."""
        vector = _validate_vector(embedding)
        if not isinstance(model, str) or not model.strip():
            raise ValidationError("model must be a non-empty string")

        with self._session_maker() as session:
            result = session.execute(
                update(PostRecord)
                .where(PostRecord.id == post_id)
                .values(
                    embedding=pack_vector(vector),
                    embedding_model=model,
                    embedding_generated_at=_utcnow(),
                )
            )
            if result.rowcount == 0:
                raise NotFoundError(post_id)
            session.commit()
            logger.debug("Stored %d-d embedding (%s) for post %s", len(vector), model, post_id)

    def delete(self, post_id: str) -> None:
        """Remove a post. Deleting an unknown id is a no-op."""
        with self._session_maker() as session:
            result = session.execute(delete(PostRecord).where(PostRecord.id == post_id))
            session.commit()
            if result.rowcount == 0:
                logger.debug("Delete of unknown post %s ignored", post_id)

    def clear(self) -> None:
        with self._session_maker() as session:
            session.execute(delete(PostRecord))
            session.commit()
        logger.info("Cleared all posts")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _newest_first(self, query=None) -> list[Post]:
        if query is None:
            query = select(PostRecord)
        query = query.order_by(PostRecord.created_at.desc(), PostRecord.seq.desc())
        with self._session_maker() as session:
            return [_to_post(r) for r in session.scalars(query)]

    def get(self, post_id: str) -> Post:
        with self._session_maker() as session:
            record = session.scalars(
                select(PostRecord).where(PostRecord.id == post_id)
            ).first()
            if record is None:
                raise NotFoundError(post_id)
            return _to_post(record)

    def get_all(self) -> list[Post]:
        """All posts, newest first. Equal timestamps put the later insert first."""
        return self._newest_first()

    def get_with_embeddings(self) -> list[Post]:
        return self._newest_first(
            select(PostRecord).where(PostRecord.embedding_generated_at.is_not(None))
        )

    def get_without_embeddings(self) -> list[Post]:
        return self._newest_first(
            select(PostRecord).where(PostRecord.embedding_generated_at.is_(None))
        )

    def count(self) -> PostStats:
        with self._session_maker() as session:
            total = session.scalar(select(func.count()).select_from(PostRecord))
            embedded = session.scalar(
                select(func.count())
                .select_from(PostRecord)
                .where(PostRecord.embedding_generated_at.is_not(None))
            )
        return PostStats(
            total=total,
            with_embeddings=embedded,
            without_embeddings=total - embedded,
        )

    def text_search(self, query: str) -> list[Post]:
        """Case-insensitive substring match on title, content or author."""
        needle = query.lower()
        return [
            p
            for p in self.get_all()
            if needle in p.title.lower()
            or needle in p.content.lower()
            or needle in p.author.lower()
        ]
