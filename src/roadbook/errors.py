from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    NETWORK_FAILURE = "NETWORK_FAILURE"
    NOT_CACHED = "NOT_CACHED"
    NON_OK_RESPONSE = "NON_OK_RESPONSE"
    INSTALL_FAILED = "INSTALL_FAILED"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    MEDIA_HOST_ERROR = "MEDIA_HOST_ERROR"


_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.UNSUPPORTED_OPERATION: 405,
    ErrorCode.MEDIA_HOST_ERROR: 502,
    ErrorCode.NETWORK_FAILURE: 502,
    ErrorCode.NOT_CACHED: 502,
}


class RoadbookError(Exception):
    """Raised for all expected failure conditions.

    Caught at the HTTP edge (proxy and journal routes) and serialised into
    the JSON error envelope. Executors recover NETWORK_FAILURE locally where
    a fallback exists; everything else propagates to the edge.
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

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS.get(self.code, 500)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
