"""Domain errors raised by the store, the ranker and the embedding sources.

Routers translate these into HTTP responses; library code lets them propagate.
"""


class FeedError(Exception):
    """Base class for all feed errors."""


class ValidationError(FeedError, ValueError):
    """Bad input shape or an empty required field."""


class NotFoundError(FeedError, LookupError):
    """Operation on an unknown post id."""

    def __init__(self, post_id: str):
        super().__init__(f"Post not found: {post_id}")
        self.post_id = post_id


class DimensionMismatchError(FeedError, ValueError):
    """Two vectors of unequal length were compared."""


class EmbeddingUnavailableError(FeedError):
    """The embedding source failed, timed out or returned a malformed body."""
