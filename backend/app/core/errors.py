from __future__ import annotations

from typing import Any


class RelayError(RuntimeError):
    """Base class for failures surfaced to API callers.

    `code` is the stable kind name, `error` the short phrase shown to callers.
    `details` carries upstream diagnostics (status, body, GraphQL error list);
    `extra` is merged into the response body as-is.
    """

    code = "RelayError"
    error = "Request failed"
    status_code = 500

    def __init__(
        self,
        error: str | None = None,
        *,
        details: Any = None,
        message: str | None = None,
        extra: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        if error:
            self.error = error
        super().__init__(message or self.error)
        self.details = details
        self.message = message
        self.extra = extra or {}
        self.headers = headers

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.error, "code": self.code}
        if self.details is not None:
            payload["details"] = self.details
        if self.message:
            payload["message"] = self.message
        payload.update(self.extra)
        return payload


class InvalidInput(RelayError):
    code = "InvalidInput"
    error = "Invalid input"
    status_code = 400


class RateLimited(RelayError):
    code = "RateLimited"
    error = "Rate limit exceeded"
    status_code = 429


class Unauthorized(RelayError):
    code = "Unauthorized"
    error = "Unauthorized"
    status_code = 401


class ServerMisconfigured(RelayError):
    code = "ServerMisconfigured"
    error = "Server configuration error"
    status_code = 500


class StagingFailed(RelayError):
    code = "StagingFailed"
    error = "Failed to create staged upload"


class TransferFailed(RelayError):
    code = "TransferFailed"
    error = "Failed to upload file to storage"


class FinalizationFailed(RelayError):
    code = "FinalizationFailed"
    error = "Failed to create file in Shopify"


class ProcessingFailed(RelayError):
    code = "ProcessingFailed"
    error = "Image processing failed"


class ProcessingTimeout(RelayError):
    code = "ProcessingTimeout"
    error = "Image processing timeout"


class PatternTooShort(RelayError):
    code = "PatternTooShort"
    error = "Search pattern too short"
    status_code = 400


class TooManyMatches(RelayError):
    code = "TooManyMatches"
    error = "Too many files"
    status_code = 400


class EnumerationFailed(RelayError):
    code = "EnumerationFailed"
    error = "Failed to fetch files"


class UpstreamUnreachable(RelayError):
    code = "UpstreamUnreachable"
    error = "Shopify unreachable"
