import sys, pathlib; sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))
import asyncio
import json
import logging

import httpx
import pytest

from pocket_chat.adapters.mock_adapter import MockAdapter
from pocket_chat.adapters.ollama_adapter import OllamaAdapter
from pocket_chat.core.errors import NetworkError, ProtocolMismatchError
from pocket_chat.core.handle import ResponseHandle
from pocket_chat.core.types import ApiShape, ErrorResponse, FinalResponse, PartialResponse, RequestOptions


class Recorder:
    def __init__(self, fail_on_partial=False):
        self.events = []
        self.fail_on_partial = fail_on_partial

    def on_partial_response(self, text):
        self.events.append(("partial", text))
        if self.fail_on_partial:
            raise ValueError("boom")

    def on_response(self, text):
        self.events.append(("final", text))

    def on_error(self, message):
        self.events.append(("error", message))


def _source(*events, closed=None):
    async def gen():
        try:
            for event in events:
                yield event
        finally:
            if closed is not None:
                closed.append(True)

    return gen()


async def _drain(handle):
    return [event async for event in handle]


def test_events_after_terminal_are_dropped_and_source_closed():
    closed = []
    handle = ResponseHandle(
        _source(PartialResponse("a"), FinalResponse("a"), PartialResponse("late"), closed=closed)
    )
    events = asyncio.run(_drain(handle))
    assert events == [PartialResponse("a"), FinalResponse("a")]
    assert handle.terminal == FinalResponse("a")
    assert handle.finished
    assert closed == [True]


def test_missing_terminal_is_synthesized():
    handle = ResponseHandle(_source(PartialResponse("a")), label="Ollama")
    events = asyncio.run(_drain(handle))
    assert events[0] == PartialResponse("a")
    assert isinstance(events[1], ErrorResponse)
    assert isinstance(events[1].error, ProtocolMismatchError)
    assert "Ollama" in events[1].message
    assert len(events) == 2


def test_handle_is_single_use():
    handle = ResponseHandle(_source(FinalResponse("x")))
    asyncio.run(_drain(handle))
    with pytest.raises(RuntimeError):
        handle.__aiter__()


def test_result_returns_text_or_raises():
    assert asyncio.run(ResponseHandle(_source(FinalResponse("ok"))).result()) == "ok"

    failing = ResponseHandle(_source(ErrorResponse(NetworkError("Network error: down"))))
    with pytest.raises(NetworkError, match="down"):
        asyncio.run(failing.result())


def test_nothing_runs_until_consumed():
    started = []

    async def gen():
        started.append(True)
        yield FinalResponse("x")

    async def go():
        handle = ResponseHandle(gen())
        await asyncio.sleep(0)
        assert started == []
        return await handle.result()

    assert asyncio.run(go()) == "x"
    assert started == [True]


def test_subscribe_delivers_in_order():
    recorder = Recorder()

    async def go():
        handle = MockAdapter(reply="one two three").send_message(
            "hi", recorder, RequestOptions(use_streaming=True)
        )
        await handle.wait()

    asyncio.run(go())
    assert recorder.events == [
        ("partial", "one "),
        ("partial", "one two "),
        ("partial", "one two three"),
        ("final", "one two three"),
    ]


def test_failing_callback_does_not_stop_delivery(caplog):
    recorder = Recorder(fail_on_partial=True)

    async def go():
        handle = MockAdapter(reply="a b").send_message("hi", recorder, RequestOptions(use_streaming=True))
        await handle.wait()

    with caplog.at_level(logging.ERROR):
        asyncio.run(go())
    assert recorder.events[-1] == ("final", "a b")
    assert any(r.getMessage() == "chat.callback.failed" for r in caplog.records)


def test_wait_without_subscriber_raises():
    handle = ResponseHandle(_source(FinalResponse("x")))
    with pytest.raises(RuntimeError):
        asyncio.run(handle.wait())


def test_concurrent_mock_calls_each_end_once():
    adapter = MockAdapter(default_options=RequestOptions(use_streaming=True))
    order = []

    async def collect(tag):
        events = []
        async for event in adapter.send_message(f"message {tag}"):
            order.append(tag)
            events.append(event)
        return events

    async def go():
        return await asyncio.gather(*(collect(tag) for tag in "abc"))

    results = asyncio.run(go())
    for tag, events in zip("abc", results):
        terminals = [e for e in events if e.terminal]
        assert terminals == [FinalResponse(f"Mock reply to: message {tag}")]
        assert events[-1] is terminals[0]
    # calls were interleaved, not run one after another
    assert order != sorted(order)


def test_concurrent_streaming_calls_keep_their_own_text():
    async def body(tag):
        for i in range(3):
            await asyncio.sleep(0)
            yield (json.dumps({"response": f"{tag}{i}", "done": i == 2}) + "\n").encode()

    def handler(request):
        tag = json.loads(request.content)["prompt"]
        return httpx.Response(200, content=body(tag))

    options = RequestOptions(use_streaming=True, api_shape=ApiShape.COMPLETION)

    async def go():
        async with OllamaAdapter(base_url="http://ollama.test", transport=httpx.MockTransport(handler)) as adapter:

            async def collect(tag):
                return [event async for event in adapter.send_message(tag, options=options)]

            return await asyncio.gather(*(collect(tag) for tag in ("x", "y", "z")))

    for tag, events in zip(("x", "y", "z"), asyncio.run(go())):
        assert events == [
            PartialResponse(f"{tag}0"),
            PartialResponse(f"{tag}0{tag}1"),
            PartialResponse(f"{tag}0{tag}1{tag}2"),
            FinalResponse(f"{tag}0{tag}1{tag}2"),
        ]


def test_unexpected_source_exception_becomes_single_error():
    async def gen():
        yield PartialResponse("a")
        raise AttributeError("'str' object has no attribute 'get'")

    events = asyncio.run(_drain(ResponseHandle(gen(), label="Gemini")))
    assert events[0] == PartialResponse("a")
    assert isinstance(events[1].error, ProtocolMismatchError)
    assert events[1].message.startswith("Unexpected response from Gemini")
    assert len(events) == 2


def test_subscriber_gets_error_when_source_raises():
    recorder = Recorder()

    async def gen():
        raise ValueError("invalid literal for int()")
        yield  # pragma: no cover

    async def go():
        handle = ResponseHandle(gen())
        handle.subscribe(recorder)
        await handle.wait()
        return handle

    handle = asyncio.run(go())
    assert len(recorder.events) == 1
    assert recorder.events[0][0] == "error"
    assert isinstance(handle.terminal, ErrorResponse)


def test_chat_error_raised_by_source_is_kept():
    async def gen():
        raise NetworkError("Network error: reset")
        yield  # pragma: no cover

    with pytest.raises(NetworkError, match="reset"):
        asyncio.run(ResponseHandle(gen()).result())


def test_result_without_final_raises_protocol_mismatch():
    handle = ResponseHandle(_source(PartialResponse("a")), label="Ollama")
    with pytest.raises(ProtocolMismatchError, match="Ollama ended without a result"):
        asyncio.run(handle.result())
