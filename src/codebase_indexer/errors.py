"""Error kinds raised by the indexing pipeline."""

from typing import Optional


class IndexerError(Exception):
    """Base class for all indexer errors."""


class SourceIOError(IndexerError):
    """A file could not be read or written."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class ParseError(IndexerError):
    """A source file could not be parsed into a syntax tree."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class ValidationError(IndexerError):
    """A record or payload did not have the expected shape."""


class NotFoundError(IndexerError):
    """A required file or directory does not exist."""


class ChunkError(IndexerError):
    """An entity's line range could not be sliced from its source file."""


class ApiError(IndexerError):
    """An external service returned an error or could not be reached.

    Attributes:
        status: HTTP status code, or None for transport failures
        retryable: Whether repeating the request may succeed
    """

    def __init__(self, message: str, status: Optional[int] = None, retryable: bool = False):
        self.status = status
        self.retryable = retryable
        super().__init__(message)

    @classmethod
    def from_status(cls, status: int, body: str = "") -> "ApiError":
        """Build an error for a non-2xx response.

        Rate limiting, request timeouts and server errors are retryable,
        other client errors are not.
        """
        retryable = status in (408, 429) or status >= 500
        preview = body[:200] if body else ""
        return cls(f"API returned status {status}: {preview}", status=status, retryable=retryable)
