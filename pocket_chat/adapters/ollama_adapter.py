from __future__ import annotations

import json
import logging
import os
from typing import Any, Union

import httpx

from ..core.accumulator import ResponseAccumulator
from ..core.errors import ChatError, EmptyResultError, ProtocolMismatchError
from ..core.types import ApiShape, ChatEvent, FinalResponse, RequestOptions
from .base import HttpChatAdapter, StreamChunk

logger = logging.getLogger(__name__)

OLLAMA_BASE_URL = "http://localhost:11434"


def _base_url(val: Union[str, None]) -> str:
    """Return a fully-qualified Ollama base URL.

    ``OLLAMA_HOST`` is often set without a scheme (``0.0.0.0:11434``).
    """
    if not val:
        return OLLAMA_BASE_URL
    val = val.strip().rstrip("/")
    return val if val.startswith(("http://", "https://")) else f"http://{val}"


def _fragment(data: dict) -> str:
    """Text carried by a generate (``response``) or chat (``message.content``) object."""
    text = data.get("response")
    if isinstance(text, str):
        return text
    message = data.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    return ""


class OllamaAdapter(HttpChatAdapter):
    """Locally hosted Ollama server.

    Streams newline-delimited JSON by default. Lines that are not JSON are
    skipped, since local servers may emit keep-alive noise. A stream that ends
    without ``done`` is treated as finished with whatever was received.
    """

    id = "ollama"
    label = "Ollama"
    default_options = RequestOptions(use_streaming=True, api_shape=ApiShape.CHAT)

    def __init__(
        self,
        model: str = "phi",
        base_url: Union[str, None] = None,
        options: Union[dict[str, Any], None] = None,
        timeout: Union[httpx.Timeout, None] = None,
        default_options: Union[RequestOptions, None] = None,
        transport: Union[httpx.AsyncBaseTransport, None] = None,
    ) -> None:
        super().__init__(
            model,
            _base_url(base_url or os.environ.get("OLLAMA_HOST")),
            timeout=timeout,
            default_options=default_options,
            transport=transport,
        )
        self.options = dict(options or {})

    def _endpoint(self, options: RequestOptions) -> str:
        if options.api_shape is ApiShape.COMPLETION:
            return "/api/generate"
        return "/api/chat"

    def _build_payload(self, message: str, options: RequestOptions) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self.model}
        if options.api_shape is ApiShape.COMPLETION:
            payload["prompt"] = message
        else:
            payload["messages"] = [{"role": "user", "content": message}]
        payload["stream"] = options.use_streaming
        if self.options:
            payload["options"] = dict(self.options)
        return payload

    def _parse_body(self, data: Any) -> str:
        if not isinstance(data, dict):
            raise ProtocolMismatchError("Unexpected response from Ollama: expected a JSON object")
        if data.get("error"):
            raise ChatError(f"Ollama error: {data['error']}", code="BACKEND_ERROR")
        if "response" not in data and "message" not in data:
            raise ProtocolMismatchError("Unexpected response from Ollama: missing 'response' field")
        text = _fragment(data)
        if not text:
            raise EmptyResultError("Empty response from AI")
        return text

    def _parse_stream_line(self, line: str) -> Union[StreamChunk, None]:
        if not line.strip():
            return None
        try:
            data = json.loads(line)
        except ValueError:
            logger.debug("llm.stream.skip_line", extra={"backend": self.id, "line": line[:80]})
            return None
        if not isinstance(data, dict):
            return None
        if data.get("error"):
            raise ChatError(f"Ollama error: {data['error']}", code="BACKEND_ERROR")
        return StreamChunk(_fragment(data), bool(data.get("done")))

    def _end_of_stream(self, accumulator: ResponseAccumulator) -> ChatEvent:
        logger.warning(
            "llm.stream.implicit_done",
            extra={"backend": self.id, "model": self.model, "chars": len(accumulator)},
        )
        if not accumulator:
            raise EmptyResultError("Stream ended without a response")
        return FinalResponse(accumulator.snapshot())

    async def check_connection(self) -> tuple[bool, str]:
        return await self.probe.check("GET", "/api/version")

    async def list_models(self) -> list[str]:
        return await self.probe.list_models("/api/tags")

    async def get_model_info(self) -> str:
        """Family, size and quantization from ``/api/show``; never raises."""
        fallback = f"Model: {self.model}"
        try:
            resp = await self.client.post("/api/show", json={"model": self.model})
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.info("llm.model_info.unavailable", extra={"backend": self.id, "error": str(e)[:200]})
            return fallback
        details = data.get("details") if isinstance(data, dict) else None
        if not isinstance(details, dict):
            return fallback
        lines = [fallback]
        for key, title in (
            ("family", "Family"),
            ("parameter_size", "Parameters"),
            ("quantization_level", "Quantization"),
        ):
            if details.get(key):
                lines.append(f"{title}: {details[key]}")
        return "\n".join(lines)
