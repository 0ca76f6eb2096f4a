"""Error taxonomy for the docchat pipeline.

Every error raised across a component boundary derives from DocchatError
so callers can decide per kind whether to abort, skip or report.
"""
from typing import Any, Optional


class DocchatError(Exception):
    """Base class for all docchat errors."""


class InvalidConfiguration(DocchatError):
    """Bad configuration values (chunk parameters, limits, roles)."""


class LoaderError(DocchatError):
    """A single file could not be read or is not supported."""

    def __init__(self, path, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to load {path}: {cause}")


class BackendError(DocchatError):
    """A remote backend call failed or returned unusable data."""

    def __init__(self, message: str, payload: Optional[Any] = None):
        self.payload = payload
        super().__init__(message)


class EmbeddingBackendError(BackendError):
    """The embedding call failed, was malformed or had the wrong length."""


class GenerationBackendError(BackendError):
    """The chat completion call failed or returned no text."""


class RetrievalError(DocchatError):
    """The similarity query could not be executed."""


class IngestionError(DocchatError):
    """One record could not be persisted.

    Returned (not raised) by the vector store so a batch keeps going.
    """

    def __init__(self, record: Any, cause: BaseException):
        self.record = record
        self.cause = cause
        super().__init__(f"Failed to store record: {cause}")
