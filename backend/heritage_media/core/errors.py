from __future__ import annotations


GATEWAY_ERROR_MESSAGES: dict[int | str, str] = {
    400: "Invalid request. Please check your input and try again.",
    401: "Your session has expired. Please log in again.",
    403: "Access denied. You don't have permission for this action.",
    404: "The requested resource was not found.",
    409: "This resource already exists. Please use a different value.",
    413: "File too large for the server.",
    422: "Please check your input and try again.",
    429: "Too many requests. Please wait a moment before trying again.",
    500: "Server is temporarily unavailable. Please try again in a few minutes.",
    502: "Service is temporarily unavailable. Please try again later.",
    503: "Service is temporarily unavailable. Please try again later.",
    504: "Request timed out. Please check your connection and try again.",
    "network": "Unable to connect to the server. Please check your internet connection and try again.",
    "timeout": "Request timed out. Please try again.",
    "unknown": "Something went wrong. Please try again or contact support if the problem persists.",
}


class MediaSyncError(Exception):
    """Base class for errors raised by the gallery sync core."""


class GatewayError(MediaSyncError):
    """A single gateway call failed (transport error or non-2xx response)."""

    def __init__(self, message: str, *, status_code: int | None = None, operation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.operation = operation

    @classmethod
    def from_status(cls, status_code: int, *, operation: str | None = None) -> "GatewayError":
        message = GATEWAY_ERROR_MESSAGES.get(status_code, GATEWAY_ERROR_MESSAGES["unknown"])
        return cls(message, status_code=status_code, operation=operation)

    @classmethod
    def network(cls, *, operation: str | None = None) -> "GatewayError":
        return cls(GATEWAY_ERROR_MESSAGES["network"], operation=operation)

    @classmethod
    def timeout(cls, *, operation: str | None = None) -> "GatewayError":
        return cls(GATEWAY_ERROR_MESSAGES["timeout"], operation=operation)


class BulkOperationRejected(MediaSyncError):
    """The bulk request is invalid and was refused before any gateway call."""


class UploadRetryError(MediaSyncError):
    """The asset cannot be re-submitted."""
