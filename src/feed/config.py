import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./feed.db"
DEFAULT_EMBEDDING_SERVICE_URL = "http://localhost:4075"
DEFAULT_EMBEDDING_TIMEOUT_SECONDS = 30.0


def get_database_url() -> str:
    return os.environ.get("FEED_DATABASE_URL", DEFAULT_DATABASE_URL)


def get_embedding_service_url() -> str | None:
    """Base URL of the external embedding service.

    An empty value disables the service; posts then use mock embeddings only.
    """
    url = os.environ.get("EMBEDDING_SERVICE_URL", DEFAULT_EMBEDDING_SERVICE_URL)
    return url.rstrip("/") or None


def get_embedding_timeout() -> float:
    raw = os.environ.get("EMBEDDING_TIMEOUT_SECONDS")
    if not raw:
        return DEFAULT_EMBEDDING_TIMEOUT_SECONDS
    try:
        timeout = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid EMBEDDING_TIMEOUT_SECONDS=%r", raw)
        return DEFAULT_EMBEDDING_TIMEOUT_SECONDS
    if timeout <= 0:
        logger.warning("Ignoring non-positive EMBEDDING_TIMEOUT_SECONDS=%r", raw)
        return DEFAULT_EMBEDDING_TIMEOUT_SECONDS
    return timeout
