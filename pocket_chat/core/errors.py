"""Error taxonomy for backend calls.

Adapters never raise these out of ``send_message``; they are wrapped in an
``ErrorResponse`` event and only re-raised by ``ResponseHandle.result()``.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for every failure a chat backend can report.

    Attributes:
        code: machine readable code, e.g. ``"NETWORK_ERROR"``.
        message: human readable text shown to the user.
        extra: additional context (status code, backend label...).
    """

    code = "CHAT_ERROR"

    def __init__(self, message: str, code: str | None = None, **extra):
        self.message = message
        if code:
            self.code = code
        self.extra = extra
        super().__init__(message)


class NetworkError(ChatError):
    """Transport failure, no response was received."""

    code = "NETWORK_ERROR"


class HttpError(ChatError):
    """Backend answered with a non-2xx status."""

    code = "HTTP_ERROR"

    def __init__(self, message: str, status_code: int, body: str = "", **extra):
        super().__init__(message, status_code=status_code, **extra)
        self.status_code = status_code
        self.body = body


class ParseError(ChatError):
    """Response body was not valid JSON."""

    code = "PARSE_ERROR"


class EmptyResultError(ChatError):
    """Well-formed response that carried no usable text."""

    code = "EMPTY_RESULT"


class ProtocolMismatchError(ChatError):
    """Response envelope did not have the expected shape."""

    code = "PROTOCOL_MISMATCH"
