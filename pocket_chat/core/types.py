from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol, Union

from .errors import ChatError


class Origin(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ApiShape(str, Enum):
    """Request shape for the local backend."""

    COMPLETION = "completion"
    CHAT = "chat"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChatMessage:
    text: str
    origin: Origin
    is_pending: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def user(cls, text: str) -> ChatMessage:
        return cls(text=text, origin=Origin.USER)

    @classmethod
    def assistant(cls, text: str) -> ChatMessage:
        return cls(text=text, origin=Origin.ASSISTANT)

    @classmethod
    def pending(cls, text: str = "") -> ChatMessage:
        """Placeholder shown while the assistant is typing."""
        return cls(text=text, origin=Origin.ASSISTANT, is_pending=True)

    @property
    def is_user(self) -> bool:
        return self.origin is Origin.USER

    def with_text(self, text: str) -> ChatMessage:
        return replace(self, text=text)


@dataclass(frozen=True)
class RequestOptions:
    use_streaming: bool = False
    api_shape: ApiShape = ApiShape.CHAT

    def merged(
        self, use_streaming: Union[bool, None] = None, api_shape: Union[ApiShape, str, None] = None
    ) -> RequestOptions:
        """Return a copy with the given non-None fields replaced."""
        changes: dict[str, object] = {}
        if use_streaming is not None:
            changes["use_streaming"] = use_streaming
        if api_shape is not None:
            changes["api_shape"] = ApiShape(api_shape)
        return replace(self, **changes) if changes else self


class ChatCallback(Protocol):
    def on_response(self, text: str) -> None: ...

    def on_partial_response(self, text: str) -> None: ...

    def on_error(self, message: str) -> None: ...


@dataclass(frozen=True)
class PartialResponse:
    """Cumulative text received so far, never just the newest fragment."""

    text: str
    terminal = False

    def deliver(self, callback: ChatCallback) -> None:
        callback.on_partial_response(self.text)

    def to_dict(self) -> dict:
        return {"type": "partial", "text": self.text}


@dataclass(frozen=True)
class FinalResponse:
    text: str
    terminal = True

    def deliver(self, callback: ChatCallback) -> None:
        callback.on_response(self.text)

    def to_dict(self) -> dict:
        return {"type": "final", "text": self.text}


@dataclass(frozen=True)
class ErrorResponse:
    error: ChatError
    terminal = True

    @property
    def message(self) -> str:
        return self.error.message

    def deliver(self, callback: ChatCallback) -> None:
        callback.on_error(self.message)

    def to_dict(self) -> dict:
        return {"type": "error", "code": self.error.code, "message": self.message}


ChatEvent = Union[PartialResponse, FinalResponse, ErrorResponse]
