from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator
from typing import Union

from ..core.accumulator import ResponseAccumulator
from ..core.types import ChatEvent, FinalResponse, PartialResponse, RequestOptions
from .base import BaseChatAdapter


class MockAdapter(BaseChatAdapter):
    """Simple adapter that returns canned responses for testing."""

    label = "mock backend"

    def __init__(
        self,
        model: str = "mock",
        reply: Union[str, None] = None,
        default_options: Union[RequestOptions, None] = None,
    ) -> None:
        super().__init__(model, default_options)
        self.id = f"mock:{model}"
        self.reply = reply

    async def _events(self, message: str, options: RequestOptions) -> AsyncIterator[ChatEvent]:
        text = self.reply or f"Mock reply to: {message}"
        if options.use_streaming:
            accumulator = ResponseAccumulator()
            for word in re.findall(r"\S+\s*", text):
                await asyncio.sleep(0)
                accumulator.append(word)
                yield PartialResponse(accumulator.snapshot())
        yield FinalResponse(text)

    async def check_connection(self) -> tuple[bool, str]:
        return True, f"Connected to {self.label}"

    async def list_models(self) -> list[str]:
        return [self.model]
