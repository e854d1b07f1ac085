import logging
import time
from typing import AsyncIterator, Dict, Optional

import aiohttp

from .models import CaptureResult, Error, StreamEvent, is_terminal
from .session import BuilderSession, SessionStore
from .sse import parse_sse_line

logger = logging.getLogger(__name__)


class BuilderAPIError(Exception):
    """HTTP-level failure from the prototyper API, carrying the server's message."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class BuilderAPIClient:
    """Thin aiohttp transport for the capture and streaming endpoints."""

    def __init__(self, base_url: str, session: Optional[aiohttp.ClientSession] = None, timeout: float = 180):
        self.base_url = base_url.rstrip('/')
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    @staticmethod
    async def _raise_for_status(response: aiohttp.ClientResponse, fallback: str):
        if response.status < 400:
            return
        message = fallback
        try:
            data = await response.json(content_type=None)
            message = data.get('detail') or data.get('error') or fallback
        except (ValueError, aiohttp.ContentTypeError):
            pass
        raise BuilderAPIError(response.status, message)

    async def capture(self, url: str) -> CaptureResult:
        async with self._http().post(f"{self.base_url}/capture", json={"url": url}) as response:
            await self._raise_for_status(response, "Failed to capture the page")
            return CaptureResult(**await response.json())

    async def stream(self, path: str, payload: Dict) -> AsyncIterator[StreamEvent]:
        """
        POST ``payload`` and yield the parsed events of the SSE reply.

        Stops after the first terminal event. A transport that closes before
        any terminal event yields a synthetic Error.
        """
        async with self._http().post(f"{self.base_url}{path}", json=payload) as response:
            await self._raise_for_status(response, "Generation failed")
            async for raw in response.content:
                event = parse_sse_line(raw.decode('utf-8', errors='replace'))
                if event is None:
                    continue
                yield event
                if is_terminal(event):
                    return
        yield Error("Connection closed before the prototype was complete")


class Builder:
    """Drives builder sessions through capture, generation and iteration."""

    def __init__(self, api: BuilderAPIClient, store: Optional[SessionStore] = None):
        self.api = api
        self.store = store or SessionStore()

    async def capture(self, url: str, session: Optional[BuilderSession] = None) -> BuilderSession:
        session = session or self.store.create()
        session.begin_capture()
        try:
            result = await self.api.capture(url)
        except BuilderAPIError as e:
            logger.warning(f"[capture] {url} failed: {e.message}")
            session.capture_failed(e.message)
            return session
        except Exception as e:
            # Timeouts, dropped connections and malformed replies all end the capture
            logger.warning(f"[capture] {url} failed: {e!r}")
            session.capture_failed("Failed to capture the page")
            return session
        session.capture_succeeded(result)
        return session

    async def generate(self, session: BuilderSession, goal: str) -> BuilderSession:
        session.begin_generation(goal)
        capture = session.capture
        payload = {
            "screenshot": capture.screenshot,
            "html": capture.html,
            "url": capture.url,
            "prompt": session.goal,
        }
        await self._consume(session, "/generate", payload, "Generation failed")
        return session

    async def iterate(self, session: BuilderSession, instruction: str) -> BuilderSession:
        instruction = instruction.strip()
        if not instruction:
            return session
        session.begin_iteration()
        payload = {
            "currentHtml": session.extracted_html,
            "instruction": instruction,
            "url": session.capture.url if session.capture else "",
        }
        await self._consume(session, "/iterate", payload, "Iteration failed")
        return session

    async def _consume(self, session: BuilderSession, path: str, payload: Dict, fallback: str):
        label = path.strip('/')
        start = time.monotonic()
        events = 0
        stream = self.api.stream(path, payload)
        try:
            async for event in stream:
                events += 1
                session.apply_event(event)
                if not session.is_streaming:
                    break
        except BuilderAPIError as e:
            logger.warning(f"[{label}] Request rejected ({e.status}): {e.message}")
            session.fail(e.message)
            return
        except Exception as e:
            logger.warning(f"[{label}] Transport error after {events} events: {e!r}")
            if session.is_streaming:
                session.fail(fallback)
            return
        finally:
            await stream.aclose()

        logger.info(
            f"[{label}] Finished in state {session.state.value}: {events} events, "
            f"{len(session.extracted_html)} chars of HTML, {int((time.monotonic() - start) * 1000)}ms"
        )

    def deploy_prompt(self, session: BuilderSession) -> str:
        return session.deploy_prompt()
