from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from typing import Any, NamedTuple, Protocol, Union

import httpx

from ..core.accumulator import ResponseAccumulator
from ..core.errors import ChatError, EmptyResultError, HttpError, NetworkError, ParseError
from ..core.handle import ResponseHandle
from ..core.probe import ConnectionProbe, error_detail
from ..core.types import (
    ChatCallback,
    ChatEvent,
    ErrorResponse,
    FinalResponse,
    PartialResponse,
    RequestOptions,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(connect=30.0, read=60.0, write=60.0, pool=60.0)


def build_timeout(connect: float = 30.0, read: float = 60.0, write: float = 60.0) -> httpx.Timeout:
    return httpx.Timeout(connect=connect, read=read, write=write, pool=read)


class StreamChunk(NamedTuple):
    text: str
    done: bool = False


class ChatBackend(Protocol):
    id: str
    label: str
    model: str

    def send_message(
        self,
        message: str,
        callback: Union[ChatCallback, None] = None,
        options: Union[RequestOptions, None] = None,
    ) -> ResponseHandle: ...

    async def check_connection(self) -> tuple[bool, str]: ...

    async def list_models(self) -> list[str]: ...

    async def get_model_info(self) -> str: ...

    async def aclose(self) -> None: ...


class BaseChatAdapter:
    """Common ``send_message`` plumbing; subclasses provide ``_events``."""

    id = "base"
    label = "backend"
    default_options = RequestOptions()

    def __init__(self, model: str, default_options: Union[RequestOptions, None] = None) -> None:
        self.model = model
        if default_options is not None:
            self.default_options = default_options

    def send_message(
        self,
        message: str,
        callback: Union[ChatCallback, None] = None,
        options: Union[RequestOptions, None] = None,
    ) -> ResponseHandle:
        """Start a call and return its event handle without doing any I/O.

        With ``callback`` the events are delivered from a task on the running
        event loop; otherwise the caller consumes the handle.
        """
        handle = ResponseHandle(self._events(message, options or self.default_options), self.label)
        if callback is not None:
            handle.subscribe(callback)
        return handle

    def _events(self, message: str, options: RequestOptions) -> AsyncIterator[ChatEvent]:
        raise NotImplementedError

    async def check_connection(self) -> tuple[bool, str]:
        raise NotImplementedError

    async def list_models(self) -> list[str]:
        return []

    async def get_model_info(self) -> str:
        return f"Model: {self.model}"

    async def aclose(self) -> None:
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class HttpChatAdapter(BaseChatAdapter):
    """Request/response handling shared by the HTTP backends.

    Variants supply the endpoint, payload, query parameters and the two
    parsers; this class owns the transport, error mapping and the streaming
    loop.
    """

    def __init__(
        self,
        model: str,
        base_url: str,
        timeout: Union[httpx.Timeout, None] = None,
        default_options: Union[RequestOptions, None] = None,
        transport: Union[httpx.AsyncBaseTransport, None] = None,
    ) -> None:
        super().__init__(model, default_options)
        self.base_url = base_url
        self.client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout or DEFAULT_TIMEOUT, transport=transport
        )
        self.probe = ConnectionProbe(self.client, self.label)

    # ---- variant hooks ----

    def _endpoint(self, options: RequestOptions) -> str:
        raise NotImplementedError

    def _build_payload(self, message: str, options: RequestOptions) -> dict[str, Any]:
        raise NotImplementedError

    def _query_params(self, options: RequestOptions) -> dict[str, str]:
        return {}

    def _parse_body(self, data: Any) -> str:
        """Extract the reply text from a complete JSON body or raise a ``ChatError``."""
        raise NotImplementedError

    def _parse_stream_line(self, line: str) -> Union[StreamChunk, None]:
        """Turn one line of a streamed body into a chunk, or ``None`` to skip it."""
        raise NotImplementedError

    def _end_of_stream(self, accumulator: ResponseAccumulator) -> ChatEvent:
        if not accumulator:
            raise EmptyResultError("No response text")
        return FinalResponse(accumulator.snapshot())

    def _describe_http_error(self, response: httpx.Response) -> str:
        detail = error_detail(response, limit=500)
        message = f"HTTP {response.status_code} {response.reason_phrase}".rstrip()
        return f"{message}: {detail}" if detail else message

    # ---- request execution ----

    async def _events(self, message: str, options: RequestOptions) -> AsyncIterator[ChatEvent]:
        url = self._endpoint(options)
        payload = self._build_payload(message, options)
        params = self._query_params(options)
        logger.info(
            "llm.call",
            extra={"backend": self.id, "model": self.model, "stream": options.use_streaming},
        )
        try:
            if options.use_streaming:
                async with self.client.stream("POST", url, json=payload, params=params) as resp:
                    logger.info(
                        "llm.stream.open",
                        extra={"backend": self.id, "model": self.model, "status": resp.status_code},
                    )
                    if not resp.is_success:
                        await resp.aread()
                        raise self._http_error(resp)
                    async for event in self._consume_stream(resp):
                        yield event
            else:
                t0 = time.perf_counter()
                resp = await self.client.post(url, json=payload, params=params)
                logger.info(
                    "llm.call.done",
                    extra={
                        "backend": self.id,
                        "model": self.model,
                        "status": resp.status_code,
                        "dur_ms": int((time.perf_counter() - t0) * 1000),
                    },
                )
                if not resp.is_success:
                    raise self._http_error(resp)
                yield FinalResponse(self._parse_response(resp))
        except ChatError as e:
            logger.warning("llm.call.failed", extra={"backend": self.id, "error": e.message[:200]})
            yield ErrorResponse(e)
        except httpx.HTTPError as e:
            logger.warning("llm.call.unreachable", extra={"backend": self.id, "error": str(e)[:200]})
            yield ErrorResponse(NetworkError(f"Network error: {e or type(e).__name__}"))

    def _http_error(self, response: httpx.Response) -> HttpError:
        return HttpError(
            self._describe_http_error(response),
            status_code=response.status_code,
            body=response.text[:1000],
        )

    def _parse_response(self, response: httpx.Response) -> str:
        if not response.content.strip():
            raise EmptyResultError("Empty response")
        try:
            data = response.json()
        except ValueError as e:
            raise ParseError(f"Parse error: {e}") from e
        return self._parse_body(data)

    async def _consume_stream(self, response: httpx.Response) -> AsyncIterator[ChatEvent]:
        t0 = time.perf_counter()
        accumulator = ResponseAccumulator()
        saw_data = False
        async for line in response.aiter_lines():
            if line.strip():
                saw_data = True
            chunk = self._parse_stream_line(line)
            if chunk is None:
                continue
            if chunk.text:
                if not accumulator:
                    logger.info(
                        "llm.stream.first_token",
                        extra={
                            "backend": self.id,
                            "model": self.model,
                            "dur_ms": int((time.perf_counter() - t0) * 1000),
                        },
                    )
                accumulator.append(chunk.text)
                yield PartialResponse(accumulator.snapshot())
            if chunk.done:
                accumulator.mark_done()
                logger.info("llm.stream.done", extra={"backend": self.id, "model": self.model})
                yield FinalResponse(accumulator.snapshot())
                return
        if not saw_data:
            raise EmptyResultError("Empty response")
        yield self._end_of_stream(accumulator)

    # ---- lifecycle ----

    async def aclose(self) -> None:
        await self.client.aclose()
