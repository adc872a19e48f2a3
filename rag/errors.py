"""
Error taxonomy for the chat service and the ingestion pipeline.

Only ValidationError, RateLimitExceeded and UpstreamGenerationError ever reach
the client; everything else degrades quietly or is handled in-band.
"""

from typing import Dict, Optional


class RAGServiceError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def headers(self) -> Dict[str, str]:
        return {}


class ValidationError(RAGServiceError):
    """Client input malformed or out of bounds (no retry)."""

    status_code = 400
    public_message = "Invalid request"


class RateLimitExceeded(RAGServiceError):
    """Per-identifier quota exhausted for the current window."""

    status_code = 429
    public_message = "Too many requests. Please wait a moment before asking again."

    def __init__(self, message: Optional[str] = None, retry_after: int = 60):
        super().__init__(message)
        self.retry_after = retry_after

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamGenerationError(RAGServiceError):
    """The completion stream could not be opened."""

    status_code = 503
    public_message = "AI service unavailable. Please try again shortly."


class DegradableRetrievalError(Exception):
    """Embedding or vector search failed; the request continues without context."""


class EmbeddingError(DegradableRetrievalError):
    pass


class RetrievalError(DegradableRetrievalError):
    pass


class VectorIndexError(Exception):
    """A vector index call failed (query, upsert, delete or stats)."""


class StreamInterrupted(Exception):
    """The upstream token stream failed after the response had started."""


class IngestionConfigError(Exception):
    """Required ingestion configuration is missing."""


class IngestionError(Exception):
    """Fatal ingestion failure after configuration was accepted (e.g. Ollama down)."""
