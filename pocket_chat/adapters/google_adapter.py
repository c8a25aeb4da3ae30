from __future__ import annotations

import json
import logging
import os
from typing import Any, Union

import httpx

from ..core.errors import EmptyResultError, HttpError, ParseError, ProtocolMismatchError
from ..core.probe import error_detail
from ..core.types import RequestOptions
from .base import HttpChatAdapter, StreamChunk

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

DEFAULT_GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.9,
    "topK": 1,
    "topP": 1.0,
    "maxOutputTokens": 2048,
    "stopSequences": [],
}

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
DEFAULT_SAFETY_THRESHOLD = "BLOCK_MEDIUM_AND_ABOVE"


def extract_candidate_text(data: Any) -> str:
    """Return the first candidate's first part text from a generateContent body.

    ``content`` may be a single object or an array whose first element holds
    ``parts``; both appear in the wild.
    """
    if not isinstance(data, dict) or "candidates" not in data:
        raise ProtocolMismatchError("Unexpected response from Gemini: missing 'candidates'")
    candidates = data["candidates"]
    if not isinstance(candidates, list):
        raise ProtocolMismatchError("Unexpected response from Gemini: 'candidates' is not a list")
    if not candidates:
        feedback = data.get("promptFeedback")
        block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        suffix = f" (blockReason={block_reason})" if block_reason else ""
        raise EmptyResultError(f"No candidates in response{suffix}")

    candidate = candidates[0] if isinstance(candidates[0], dict) else {}
    content = candidate.get("content")
    if isinstance(content, list):
        content = content[0] if content else None
    if not isinstance(content, dict):
        finish_reason = candidate.get("finishReason")
        suffix = f" (finishReason={finish_reason})" if finish_reason else ""
        raise EmptyResultError(f"No content in response{suffix}")

    parts = content.get("parts") or []
    if not isinstance(parts, list) or not parts:
        raise EmptyResultError("No parts in response")
    first = parts[0]
    text = first.get("text", "") if isinstance(first, dict) else ""
    if not text:
        raise EmptyResultError("No response text")
    return text


class GoogleAdapter(HttpChatAdapter):
    """Gemini generative-language API.

    Non-streaming by default. Streaming uses ``streamGenerateContent`` with
    ``alt=sse`` and parses each ``data:`` event as a partial envelope.
    """

    id = "google"
    label = "Gemini"
    default_options = RequestOptions(use_streaming=False)

    def __init__(
        self,
        model: str = "gemini-1.5-flash",
        api_key_env: str = "GOOGLE_API_KEY",
        api_key: Union[str, None] = None,
        base_url: str = GEMINI_BASE_URL,
        generation_config: Union[dict[str, Any], None] = None,
        safety_threshold: str = DEFAULT_SAFETY_THRESHOLD,
        timeout: Union[httpx.Timeout, None] = None,
        default_options: Union[RequestOptions, None] = None,
        transport: Union[httpx.AsyncBaseTransport, None] = None,
    ) -> None:
        super().__init__(
            model,
            base_url,
            timeout=timeout,
            default_options=default_options,
            transport=transport,
        )
        self.api_key_env = api_key_env
        self.api_key = api_key if api_key is not None else os.environ.get(api_key_env, "")
        self.generation_config = {**DEFAULT_GENERATION_CONFIG, **(generation_config or {})}
        self.safety_threshold = safety_threshold

    def _endpoint(self, options: RequestOptions) -> str:
        method = "streamGenerateContent" if options.use_streaming else "generateContent"
        return f"/{self.model}:{method}"

    def _query_params(self, options: RequestOptions) -> dict[str, str]:
        params = {"key": self.api_key}
        if options.use_streaming:
            params["alt"] = "sse"
        return params

    def _build_payload(self, message: str, options: RequestOptions) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": message}]}],
            "generationConfig": dict(self.generation_config),
            "safetySettings": [
                {"category": category, "threshold": self.safety_threshold}
                for category in SAFETY_CATEGORIES
            ],
        }

    def _parse_body(self, data: Any) -> str:
        return extract_candidate_text(data)

    def _parse_stream_line(self, line: str) -> Union[StreamChunk, None]:
        line = line.strip()
        if not line.startswith("data:"):
            # blank separators, comments and other SSE fields
            return None
        raw = line[len("data:") :].strip()
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ParseError(f"Parse error in stream: {e}") from e
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            error = data["error"]
            code = error.get("code")
            # numeric in REST envelopes, a status name such as "UNAVAILABLE" in some streams
            status = code if isinstance(code, int) else 500
            reason = error.get("message") or error.get("status") or code or "stream error"
            raise HttpError(
                f"HTTP {status}: {reason}",
                status_code=status,
                body=raw[:1000],
            )
        try:
            text = extract_candidate_text(data)
        except (EmptyResultError, ProtocolMismatchError):
            # usage-only and finish chunks carry no text
            text = ""
        return StreamChunk(text)

    def _describe_http_error(self, response: httpx.Response) -> str:
        detail = error_detail(response, limit=500)
        status = response.status_code
        message = f"HTTP {status}: {detail or response.reason_phrase}"
        if status == 400 and "api key" in detail.lower():
            hint = f"Check your {self.api_key_env} environment variable."
        elif status in (401, 403):
            hint = "The API key lacks access to this model or the API is not enabled."
        elif status == 404:
            hint = f"Model '{self.model}' was not found."
        elif status == 429:
            hint = "Rate limit exceeded, try again in a few moments."
        else:
            hint = ""
        return f"{message}\n{hint}" if hint else message

    async def check_connection(self) -> tuple[bool, str]:
        return await self.probe.check(
            "POST",
            f"/{self.model}:generateContent",
            json={
                "contents": [{"parts": [{"text": "Hi"}]}],
                "generationConfig": {"maxOutputTokens": 1},
            },
            params={"key": self.api_key},
        )

    async def list_models(self) -> list[str]:
        return await self.probe.list_models(
            str(self.client.base_url).rstrip("/"),
            prefix="models/",
            params={"key": self.api_key},
        )

    async def get_model_info(self) -> str:
        """Display string for the configured model; never raises."""
        fallback = f"Model: {self.model}"
        try:
            resp = await self.client.get(f"/{self.model}", params={"key": self.api_key})
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.info("llm.model_info.unavailable", extra={"backend": self.id, "error": str(e)[:200]})
            return fallback
        if not isinstance(data, dict):
            return fallback
        name = data.get("displayName") or self.model
        description = data.get("description") or "No description available"
        return f"Model: {name}\n\n{description}"
