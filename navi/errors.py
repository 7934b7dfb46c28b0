"""Exception hierarchy for the document pipeline.

Every error carries the HTTP status and a short machine-readable code, so the
web layer can render any of them as a JSON envelope without a lookup table.
Components raise these; only route handlers translate them.
"""
from typing import Optional


class NaviError(Exception):
    """Base exception for all pipeline errors."""

    status_code = 500
    code = "internal_error"

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code}


class ValidationError(NaviError):
    """Bad request input, rejected before any side effect."""

    status_code = 400
    code = "validation_error"


class UnsupportedTypeError(ValidationError):
    """Declared document type has no extractor."""

    status_code = 415
    code = "unsupported_type"


class PayloadTooLargeError(ValidationError):
    status_code = 413
    code = "payload_too_large"


class NoHistoryError(ValidationError):
    """Chat request without a usable user message."""

    code = "no_history"


class ExtractionError(NaviError):
    """Text could not be extracted from a document."""

    status_code = 422
    code = "extraction_error"


class EmptyContentError(ExtractionError):
    code = "empty_content"


class DecodeError(ExtractionError):
    code = "decode_error"


class EmbeddingError(NaviError):
    """The embedding endpoint did not return a vector."""

    status_code = 502
    code = "embedding_error"


class EndpointUnavailableError(EmbeddingError):
    status_code = 503
    code = "endpoint_unavailable"


class EndpointError(EmbeddingError):
    """Embedding endpoint answered with a non-success status."""

    code = "endpoint_error"

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["upstreamStatus"] = self.status
        return data


class MalformedResponseError(EmbeddingError):
    code = "malformed_response"


class PersistenceError(NaviError):
    code = "persistence_error"


class NotFoundError(NaviError):
    status_code = 404
    code = "not_found"


class NoRelevantContextError(NaviError):
    """Nothing stored to answer from. A normal outcome, not a failure."""

    status_code = 404
    code = "no_relevant_context"


class GenerationEndpointError(NaviError):
    """Generation endpoint failed before any byte was streamed."""

    status_code = 502
    code = "generation_error"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
        if status is None:
            # Connection never established
            self.status_code = 503

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.status is not None:
            data["upstreamStatus"] = self.status
        return data


class IngestionError(NaviError):
    """A chunk failed mid-document; earlier chunks stay persisted.

    Attributes:
        chunk_index: Zero-based index of the chunk that failed
        cause: The embedding or persistence error behind the failure
    """

    code = "ingestion_error"

    def __init__(self, chunk_index: int, cause: NaviError):
        super().__init__(f"Failed to process chunk {chunk_index}: {cause}")
        self.chunk_index = chunk_index
        self.cause = cause
        self.status_code = cause.status_code

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["chunkIndex"] = self.chunk_index
        data["cause"] = self.cause.code
        return data
