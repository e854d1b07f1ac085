"""
Client-side builder session.

A session tracks one capture-through-iteration workflow: the captured page,
the user's goal, the text accumulated from the current stream and the HTML
derived from it. Rendering surfaces read ``displayed_html``, which trails
``extracted_html`` by a debounce window while a stream is in flight.

The debounce timer lives on the running asyncio loop, so stream events must
be applied from inside a coroutine.
"""
import asyncio
import logging
import uuid
from enum import Enum
from typing import Callable, Dict, Optional

from .extractor import extract_html
from .models import CaptureResult, Done, Error, StreamEvent, TextDelta
from .prompts import build_deploy_prompt

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.5


class SessionState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    AWAITING_GOAL = "awaiting_goal"
    GENERATING = "generating"
    READY = "ready"
    ITERATING = "iterating"


STREAMING_STATES = (SessionState.GENERATING, SessionState.ITERATING)


class InvalidTransitionError(Exception):
    pass


class SessionBusyError(InvalidTransitionError):
    """A stream is already being consumed for this session."""


class Debouncer:
    """
    Coalesces rapid updates into one delayed callback.

    Every ``schedule`` cancels the pending timer and starts a new one, so only
    the last value is delivered. Must be called from a running event loop.
    """

    def __init__(self, callback: Callable[[str], None], delay: float = DEBOUNCE_SECONDS):
        self.callback = callback
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[str] = None

    def schedule(self, value: str):
        self.cancel()
        self._pending = value
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending = None

    def _fire(self):
        self._handle = None
        value, self._pending = self._pending, None
        if value is not None:
            self.callback(value)


class BuilderSession:
    """
    State of one builder workflow. Drive it from a coroutine: applying a
    TextDelta schedules the display update on the running loop.
    """

    def __init__(self, session_id: Optional[str] = None, debounce_delay: float = DEBOUNCE_SECONDS):
        self.session_id = session_id or uuid.uuid4().hex
        self.state = SessionState.IDLE
        self.capture: Optional[CaptureResult] = None
        self.goal = ""
        self.accumulated_text = ""
        self.extracted_html = ""
        self.displayed_html = ""
        self.iteration_count = 0
        self.error = ""
        self._last_good_html = ""
        self._debouncer = Debouncer(self._commit_display, debounce_delay)

    @property
    def is_streaming(self) -> bool:
        return self.state in STREAMING_STATES

    def _require(self, *states: SessionState):
        if self.state in STREAMING_STATES and self.state not in states:
            raise SessionBusyError(f"Session {self.session_id} is busy ({self.state.value})")
        if self.state not in states:
            raise InvalidTransitionError(
                f"Cannot go from {self.state.value} (expected one of {', '.join(s.value for s in states)})"
            )

    def _commit_display(self, html: str):
        self.displayed_html = html

    # Capture

    def begin_capture(self):
        self._require(SessionState.IDLE)
        self.error = ""
        self.state = SessionState.CAPTURING

    def capture_succeeded(self, capture: CaptureResult):
        self._require(SessionState.CAPTURING)
        self.capture = capture
        self.state = SessionState.AWAITING_GOAL

    def capture_failed(self, message: str):
        self._require(SessionState.CAPTURING)
        self.error = message
        self.state = SessionState.IDLE

    # Streams

    def begin_generation(self, goal: str):
        self._require(SessionState.AWAITING_GOAL)
        if not goal.strip():
            raise ValueError("A goal is required to generate a prototype")
        self.goal = goal.strip()
        self._start_stream(SessionState.GENERATING)

    def begin_iteration(self):
        self._require(SessionState.READY)
        if not self.extracted_html:
            raise InvalidTransitionError("Nothing to iterate on yet")
        self._last_good_html = self.extracted_html
        self._start_stream(SessionState.ITERATING)

    def _start_stream(self, state: SessionState):
        self.error = ""
        self.accumulated_text = ""
        self._debouncer.cancel()
        self.state = state

    def apply_event(self, event: StreamEvent):
        """Feed one stream event; terminal events move the session out of the streaming state."""
        self._require(*STREAMING_STATES)
        if isinstance(event, TextDelta):
            self.accumulated_text += event.text
            extracted = extract_html(self.accumulated_text)
            # An empty candidate (fence just opened) never replaces a real one
            if extracted:
                self.extracted_html = extracted
                self._debouncer.schedule(extracted)
        elif isinstance(event, Done):
            self._complete()
        elif isinstance(event, Error):
            self.fail(event.message)

    def _complete(self):
        self._debouncer.cancel()
        final_html = extract_html(self.accumulated_text)
        if final_html:
            self.extracted_html = final_html
            self.displayed_html = final_html
        if self.state == SessionState.ITERATING:
            self.iteration_count += 1
        self.state = SessionState.READY

    def fail(self, message: str):
        """End the current stream with an error, leaving the session actionable."""
        self._require(*STREAMING_STATES)
        self._debouncer.cancel()
        self.error = message
        self.accumulated_text = ""
        if self.state == SessionState.GENERATING:
            self.extracted_html = ""
            self.displayed_html = ""
            self.state = SessionState.AWAITING_GOAL
        else:
            self.extracted_html = self._last_good_html
            self.displayed_html = self._last_good_html
            self.state = SessionState.READY

    def deploy_prompt(self) -> str:
        if self.capture is None:
            return ""
        return build_deploy_prompt(self.capture.url, self.capture.title, self.goal, self.extracted_html)


class SessionStore:
    """Explicit registry of live sessions, keyed by id. Nothing is persisted."""

    def __init__(self):
        self._sessions: Dict[str, BuilderSession] = {}

    def create(self, **kwargs) -> BuilderSession:
        session = BuilderSession(**kwargs)
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> BuilderSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise KeyError(f"Unknown session: {session_id}") from None

    def discard(self, session_id: str):
        self._sessions.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
