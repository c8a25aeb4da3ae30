import sys, pathlib; sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))
import asyncio

from tenacity import wait_none

from pocket_chat.adapters.base import BaseChatAdapter
from pocket_chat.adapters.mock_adapter import MockAdapter
from pocket_chat.core.conversation import ERROR_PREFIX, Conversation, ConversationCallback
from pocket_chat.core.errors import HttpError, NetworkError
from pocket_chat.core.session import ChatSession
from pocket_chat.core.types import ChatMessage, ErrorResponse, FinalResponse, Origin, RequestOptions


def test_pending_lifecycle():
    conv = Conversation()
    conv.add_user("hi")
    conv.start_pending()
    assert conv.pending is not None
    assert conv.pending.text == ""

    conv.update_pending("Hel")
    conv.update_pending("Hello")
    assert len(conv) == 2
    assert conv.pending.text == "Hello"

    conv.resolve_pending("Hello!")
    assert conv.pending is None
    assert [m.text for m in conv.messages] == ["hi", "Hello!"]
    assert conv.messages[-1].origin is Origin.ASSISTANT


def test_only_one_placeholder_at_a_time():
    conv = Conversation()
    conv.start_pending("first")
    conv.add(ChatMessage.pending("second"))
    assert len(conv) == 1
    assert conv.pending.text == "second"


def test_update_without_placeholder_creates_one():
    conv = Conversation()
    conv.update_pending("text")
    assert conv.pending.is_pending


def test_error_replaces_placeholder_with_prefixed_message():
    conv = Conversation()
    callback = ConversationCallback(conv)
    conv.add_user("hi")
    conv.start_pending()
    callback.on_partial_response("par")
    callback.on_error("HTTP 500")
    assert conv.pending is None
    assert conv.messages[-1].text == f"{ERROR_PREFIX}HTTP 500"


def test_resolve_without_placeholder_appends():
    conv = Conversation()
    conv.resolve_pending("done")
    assert conv.messages[-1].text == "done"
    assert not conv.messages[-1].is_pending


def test_clear():
    conv = Conversation()
    conv.add_user("a")
    conv.add_assistant("b")
    conv.clear()
    assert conv.messages == ()


def test_messages_are_a_snapshot():
    conv = Conversation()
    conv.add_user("a")
    snapshot = conv.messages
    conv.add_user("b")
    assert len(snapshot) == 1


def test_session_greets_and_submits():
    session = ChatSession(MockAdapter(default_options=RequestOptions(use_streaming=True)))
    seen = []

    async def go():
        connected, message = await session.greet()
        terminal = await session.submit("  hello  ", listener=seen.append)
        return connected, message, terminal

    connected, message, terminal = asyncio.run(go())
    assert connected
    assert message == "Connected to mock backend"
    assert terminal == FinalResponse("Mock reply to: hello")
    texts = [m.text for m in session.conversation.messages]
    assert texts == [
        "Hello! I'm powered by mock backend. How can I help you today?",
        "hello",
        "Mock reply to: hello",
    ]
    assert session.conversation.pending is None
    assert seen[-1] == terminal
    assert all(not e.terminal for e in seen[:-1])


def test_blank_submit_is_ignored():
    session = ChatSession(MockAdapter())
    assert asyncio.run(session.submit("   ")) is None
    assert len(session.conversation) == 0


class FlakyAdapter(BaseChatAdapter):
    label = "flaky"

    def __init__(self, failures, error_type=NetworkError):
        super().__init__("flaky")
        self.failures = failures
        self.error_type = error_type
        self.calls = 0

    async def _events(self, message, options):
        self.calls += 1
        if self.calls <= self.failures:
            if self.error_type is HttpError:
                yield ErrorResponse(HttpError("HTTP 500", status_code=500))
            else:
                yield ErrorResponse(self.error_type("Network error: down"))
            return
        yield FinalResponse(f"answer {self.calls}")


def test_session_retries_network_errors():
    adapter = FlakyAdapter(failures=2)
    session = ChatSession(adapter, attempts=3, retry_wait=wait_none())
    terminal = asyncio.run(session.submit("hi"))
    assert terminal == FinalResponse("answer 3")
    assert adapter.calls == 3
    assert session.conversation.messages[-1].text == "answer 3"


def test_session_gives_up_after_attempts():
    adapter = FlakyAdapter(failures=5)
    seen = []
    session = ChatSession(adapter, attempts=2, retry_wait=wait_none())
    terminal = asyncio.run(session.submit("hi", listener=seen.append))
    assert isinstance(terminal, ErrorResponse)
    assert adapter.calls == 2
    assert seen == [terminal]
    assert session.conversation.messages[-1].text == f"{ERROR_PREFIX}Network error: down"


def test_session_does_not_retry_http_errors():
    adapter = FlakyAdapter(failures=1, error_type=HttpError)
    session = ChatSession(adapter, attempts=3, retry_wait=wait_none())
    terminal = asyncio.run(session.submit("hi"))
    assert isinstance(terminal.error, HttpError)
    assert adapter.calls == 1


def test_session_clear():
    session = ChatSession(MockAdapter())
    asyncio.run(session.submit("hi"))
    session.clear()
    assert len(session.conversation) == 0
