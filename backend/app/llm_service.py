import asyncio
import logging
import time
from typing import AsyncIterator, Dict, List, Optional

from anthropic import AsyncAnthropic

from .config import Settings, get_settings
from .models import Done, Error, GenerateRequest, IterateRequest, StreamEvent, TextDelta
from .prompts import (
    GENERATION_SYSTEM_PROMPT,
    ITERATION_SYSTEM_PROMPT,
    build_generation_messages,
    build_iteration_messages,
)

logger = logging.getLogger(__name__)

PROGRESS_LOG_EVERY = 50


class GenerationStream:
    """
    An upstream model stream that is already open.

    ``events()`` yields one TextDelta per text fragment and then exactly one
    terminal event. The upstream connection is closed however iteration ends,
    including when the consumer stops early (client disconnect).
    """

    def __init__(self, label: str, stream, deadline: float, failure_message: str):
        self.label = label
        self._stream = stream
        self._deadline = deadline
        self._failure_message = failure_message

    async def events(self) -> AsyncIterator[StreamEvent]:
        loop = asyncio.get_running_loop()
        start = time.monotonic()
        chunk_count = 0
        total_chars = 0
        text_iter = self._stream.text_stream.__aiter__()

        try:
            while True:
                remaining = self._deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    text = await asyncio.wait_for(text_iter.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                if not text:
                    continue

                chunk_count += 1
                total_chars += len(text)
                if chunk_count % PROGRESS_LOG_EVERY == 0:
                    logger.info(
                        f"[{self.label}] Streaming... chunks={chunk_count}, chars={total_chars}, "
                        f"elapsed={int((time.monotonic() - start) * 1000)}ms"
                    )
                yield TextDelta(text)

            logger.info(
                f"[{self.label}] Stream complete: {chunk_count} chunks, {total_chars} chars, "
                f"{int((time.monotonic() - start) * 1000)}ms total"
            )
            yield Done()
        except asyncio.TimeoutError:
            logger.error(f"[{self.label}] Stream exceeded deadline after {chunk_count} chunks")
            yield Error(self._failure_message)
        except Exception as e:
            logger.error(f"[{self.label}] Stream error after {chunk_count} chunks: {e}")
            yield Error(self._failure_message)
        finally:
            await self.close()

    async def close(self):
        try:
            await self._stream.close()
        except Exception as e:
            logger.warning(f"[{self.label}] Failed to close upstream stream: {e}")


class LLMService:
    def __init__(self, client, model: str, max_tokens: int = 16000, timeout: float = 120):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "LLMService":
        settings = settings or get_settings()
        if not settings.anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is not set")
        return cls(
            client=AsyncAnthropic(api_key=settings.anthropic_api_key),
            model=settings.model,
            max_tokens=settings.max_output_tokens,
            timeout=settings.generation_timeout,
        )

    async def open_generation(self, request: GenerateRequest) -> GenerationStream:
        """Open a vision generation stream from a screenshot, HTML sample and goal"""
        messages = build_generation_messages(request.screenshot, request.html or "", request.prompt)
        return await self._open("generate", GENERATION_SYSTEM_PROMPT, messages, "Generation failed")

    async def open_iteration(self, request: IterateRequest) -> GenerationStream:
        """Open a stream that rewrites the current prototype according to an instruction"""
        messages = build_iteration_messages(request.current_html, request.instruction)
        return await self._open("iterate", ITERATION_SYSTEM_PROMPT, messages, "Iteration failed")

    async def _open(self, label: str, system: str, messages: List[Dict], failure_message: str) -> GenerationStream:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        start = time.monotonic()

        logger.info(f"[{label}] Calling model {self.model}...")
        manager = self.client.messages.stream(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system,
            messages=messages,
        )
        # Entering the manager sends the request; failures surface here, before any event
        stream = await asyncio.wait_for(manager.__aenter__(), timeout=self.timeout)
        logger.info(f"[{label}] Stream created in {int((time.monotonic() - start) * 1000)}ms")
        return GenerationStream(label, stream, deadline, failure_message)
