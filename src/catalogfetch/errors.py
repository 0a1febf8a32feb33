from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_INPUT = "INVALID_INPUT"
    UNSUPPORTED_URL = "UNSUPPORTED_URL"
    RATE_LIMITED = "RATE_LIMITED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_UNREACHABLE = "UPSTREAM_UNREACHABLE"
    DOCUMENT_FETCH_FAILED = "DOCUMENT_FETCH_FAILED"
    DOCUMENT_PARSE_FAILED = "DOCUMENT_PARSE_FAILED"
    MANIFEST_FETCH_FAILED = "MANIFEST_FETCH_FAILED"
    NO_APPS_LOADED = "NO_APPS_LOADED"


class CatalogError(Exception):
    """Raised for all expected failure conditions in the fetch pipeline.

    Document-level errors are caught by DocumentFetcher and turned into a
    ``None`` result. Only the manifest-level operations let this escape to
    the caller, because an empty catalog must never look like success.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
