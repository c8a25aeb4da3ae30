from __future__ import annotations

import logging
from typing import Callable, Union

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .conversation import Conversation, ConversationCallback
from .errors import ChatError, NetworkError
from .types import ChatEvent, ErrorResponse, RequestOptions

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "Hello! I'm powered by {label}. How can I help you today?"

EventListener = Callable[[ChatEvent], None]


class ChatSession:
    """Drives one conversation against one backend.

    Each attempt is an independent ``send_message`` call. Only network
    failures are retried, and only when ``attempts`` > 1.
    """

    def __init__(
        self,
        backend,
        conversation: Union[Conversation, None] = None,
        options: Union[RequestOptions, None] = None,
        attempts: int = 1,
        retry_wait=None,
    ) -> None:
        self.backend = backend
        self.conversation = conversation or Conversation()
        self.options = options
        self.attempts = max(1, attempts)
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=4)

    async def greet(self) -> tuple[bool, str]:
        """Check the backend and add the welcome message when it is reachable."""
        connected, message = await self.backend.check_connection()
        if connected:
            self.conversation.add_assistant(WELCOME_MESSAGE.format(label=self.backend.label))
        return connected, message

    async def submit(
        self,
        text: str,
        options: Union[RequestOptions, None] = None,
        listener: Union[EventListener, None] = None,
    ) -> Union[ChatEvent, None]:
        """Send ``text`` and apply the reply to the conversation.

        Returns the terminal event, or ``None`` when ``text`` is blank.
        """
        text = text.strip()
        if not text:
            return None
        self.conversation.add_user(text)
        self.conversation.start_pending()
        callback = ConversationCallback(self.conversation)
        options = options or self.options

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.attempts),
                wait=self.retry_wait,
                retry=retry_if_exception_type(NetworkError),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info(
                            "chat.retry",
                            extra={"attempt": attempt.retry_state.attempt_number},
                        )
                    terminal = await self._attempt(text, options, callback, listener)
        except ChatError as e:
            terminal = ErrorResponse(e)
            terminal.deliver(callback)
            if listener:
                listener(terminal)
        return terminal

    async def _attempt(self, text, options, callback, listener) -> ChatEvent:
        handle = self.backend.send_message(text, options=options)
        async for event in handle:
            if isinstance(event, ErrorResponse):
                # terminal; the handle stops after it
                continue
            event.deliver(callback)
            if listener:
                listener(event)
        if isinstance(handle.terminal, ErrorResponse):
            raise handle.terminal.error
        return handle.terminal

    def clear(self) -> None:
        self.conversation.clear()
