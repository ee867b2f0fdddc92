"""
Error taxonomy shared by the services and the API layer.

Every error raised on purpose by this backend derives from ChatError, which
carries the HTTP status it maps to when it is reported as an ordinary JSON
response. Once an event stream is open the same errors are reported in-band
as an `error` event instead.
"""
from fastapi import status


class ChatError(Exception):
    """
    Base class for business errors.

    Attributes:
        message: Human readable message returned to the client
        status_code: HTTP status used when reported outside of a stream
    """

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(ChatError):
    """Request payload is missing required data or is malformed."""

    status_code = status.HTTP_400_BAD_REQUEST


class ForbiddenError(ChatError):
    """Caller is authenticated but may not touch the resource."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ChatError):
    status_code = status.HTTP_404_NOT_FOUND


class UpstreamError(ChatError):
    """The external completion service failed (transport, protocol or non-2xx)."""

    status_code = status.HTTP_502_BAD_GATEWAY


class PersistenceError(ChatError):
    """The database could not be reached or rejected the operation."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
