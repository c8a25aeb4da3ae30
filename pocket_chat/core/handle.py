"""Result handle returned by ``send_message``.

A handle wraps the adapter's lazy event generator. Nothing touches the
network until the handle is consumed, either directly with ``async for`` /
``result()`` or by registering a callback with ``subscribe``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Union

from .errors import ChatError, ProtocolMismatchError
from .types import ChatCallback, ChatEvent, ErrorResponse, FinalResponse

logger = logging.getLogger(__name__)


class ResponseHandle:
    """Single-use, ordered stream of chat events for one call.

    Guarantees at most one terminal event (``FinalResponse`` or
    ``ErrorResponse``) and nothing after it. If the source ends without a
    terminal event, or raises, an ``ErrorResponse`` is synthesized so
    consumers always see exactly one.
    """

    def __init__(self, source: AsyncIterator[ChatEvent], label: str = "") -> None:
        self._source = source
        self._label = label
        self._consumed = False
        self._terminal: Union[ChatEvent, None] = None
        self._task: Union[asyncio.Task, None] = None

    @property
    def terminal(self) -> Union[ChatEvent, None]:
        return self._terminal

    @property
    def finished(self) -> bool:
        return self._terminal is not None

    def __aiter__(self) -> AsyncIterator[ChatEvent]:
        if self._consumed:
            raise RuntimeError("response handle can only be consumed once")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChatEvent]:
        try:
            async for event in self._source:
                if event.terminal:
                    self._terminal = event
                yield event
                if self._terminal is not None:
                    return
        except Exception as e:
            # e.g. an envelope shape no parser anticipated
            logger.exception("chat.source.failed", extra={"backend": self._label})
            if isinstance(e, ChatError):
                error = e
            else:
                error = ProtocolMismatchError(
                    f"Unexpected response from {self._label or 'backend'}: {e or type(e).__name__}"
                )
            self._terminal = ErrorResponse(error)
            yield self._terminal
        else:
            if self._terminal is None:
                self._terminal = ErrorResponse(
                    ProtocolMismatchError(f"{self._label or 'backend'} ended without a result")
                )
                yield self._terminal
        finally:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()

    async def result(self) -> str:
        """Consume the stream and return the final text.

        Raises the ``ChatError`` carried by an error event.
        """
        if self._task is not None:
            await self._task
        else:
            async for _ in self:
                pass
        terminal = self._terminal
        if isinstance(terminal, ErrorResponse):
            raise terminal.error
        if not isinstance(terminal, FinalResponse):
            raise ProtocolMismatchError(f"{self._label or 'backend'} ended without a result")
        return terminal.text

    def subscribe(self, callback: ChatCallback) -> asyncio.Task:
        """Deliver every event to ``callback`` from a task on the running loop."""
        if self._task is not None:
            raise RuntimeError("response handle already has a subscriber")
        self._task = asyncio.get_running_loop().create_task(self._dispatch(callback))
        return self._task

    async def _dispatch(self, callback: ChatCallback) -> None:
        async for event in self:
            try:
                event.deliver(callback)
            except Exception:
                logger.exception("chat.callback.failed", extra={"backend": self._label})

    async def wait(self) -> None:
        """Wait for a subscribed callback to receive its terminal event."""
        if self._task is None:
            raise RuntimeError("no subscriber registered")
        await self._task
