from __future__ import annotations

from typing import Union

from .types import ChatMessage

ERROR_PREFIX = "Sorry, I encountered an error: "


class Conversation:
    """In-memory message list with at most one pending assistant placeholder."""

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def pending(self) -> Union[ChatMessage, None]:
        index = self._pending_index()
        return None if index is None else self._messages[index]

    def __len__(self) -> int:
        return len(self._messages)

    def _pending_index(self) -> Union[int, None]:
        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index].is_pending:
                return index
        return None

    def add(self, message: ChatMessage) -> ChatMessage:
        if message.is_pending:
            return self.start_pending(message.text)
        self._messages.append(message)
        return message

    def add_user(self, text: str) -> ChatMessage:
        return self.add(ChatMessage.user(text))

    def add_assistant(self, text: str) -> ChatMessage:
        return self.add(ChatMessage.assistant(text))

    def start_pending(self, text: str = "") -> ChatMessage:
        """Append the typing placeholder, dropping any earlier one."""
        index = self._pending_index()
        if index is not None:
            del self._messages[index]
        placeholder = ChatMessage.pending(text)
        self._messages.append(placeholder)
        return placeholder

    def update_pending(self, text: str) -> ChatMessage:
        index = self._pending_index()
        if index is None:
            return self.start_pending(text)
        updated = self._messages[index].with_text(text)
        self._messages[index] = updated
        return updated

    def resolve_pending(self, text: str) -> ChatMessage:
        """Replace the placeholder with the assistant's final message."""
        return self._replace_pending(ChatMessage.assistant(text))

    def fail_pending(self, error: str) -> ChatMessage:
        return self._replace_pending(ChatMessage.assistant(f"{ERROR_PREFIX}{error}"))

    def _replace_pending(self, message: ChatMessage) -> ChatMessage:
        index = self._pending_index()
        if index is None:
            self._messages.append(message)
        else:
            self._messages[index] = message
        return message

    def clear(self) -> None:
        self._messages.clear()


class ConversationCallback:
    """Applies the three callback events to a conversation."""

    def __init__(self, conversation: Conversation) -> None:
        self.conversation = conversation

    def on_partial_response(self, text: str) -> None:
        self.conversation.update_pending(text)

    def on_response(self, text: str) -> None:
        self.conversation.resolve_pending(text)

    def on_error(self, message: str) -> None:
        self.conversation.fail_pending(message)
