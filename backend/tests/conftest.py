from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from app.llm_service import LLMService
from app.sse import parse_sse_line


class FakeModelStream:
    """Stands in for anthropic's AsyncMessageStream: text fragments, then an optional failure."""

    def __init__(self, chunks: List[str], error: Optional[Exception] = None, delay: float = 0):
        self.chunks = chunks
        self.error = error
        self.delay = delay
        self.closed = False

    @property
    def text_stream(self):
        return self._iter()

    async def _iter(self):
        for chunk in self.chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        self.closed = True


class FakeStreamManager:
    def __init__(self, stream: FakeModelStream, open_error: Optional[Exception] = None):
        self.stream = stream
        self.open_error = open_error

    async def __aenter__(self) -> FakeModelStream:
        if self.open_error is not None:
            raise self.open_error
        return self.stream


class FakeMessages:
    def __init__(self, stream: FakeModelStream, open_error: Optional[Exception] = None):
        self._stream = stream
        self._open_error = open_error
        self.calls: List[dict] = []

    def stream(self, **kwargs) -> FakeStreamManager:
        self.calls.append(kwargs)
        return FakeStreamManager(self._stream, self._open_error)


class FakeAnthropic:
    def __init__(self, stream: FakeModelStream, open_error: Optional[Exception] = None):
        self.messages = FakeMessages(stream, open_error)


@pytest.fixture
def make_llm():
    def _make(chunks=(), error=None, open_error=None, delay=0, timeout=120):
        stream = FakeModelStream(list(chunks), error=error, delay=delay)
        client = FakeAnthropic(stream, open_error=open_error)
        service = LLMService(client=client, model="test-model", max_tokens=16000, timeout=timeout)
        return service, client, stream
    return _make


@pytest.fixture
def parse_events():
    def _parse(body: str):
        events = []
        for line in body.splitlines():
            event = parse_sse_line(line)
            if event is not None:
                events.append(event)
        return events
    return _parse
