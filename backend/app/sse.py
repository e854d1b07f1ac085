import json
from typing import Optional

from .models import Done, Error, StreamEvent, TextDelta

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def format_event(event: StreamEvent) -> str:
    """Format a StreamEvent as one Server-Sent Event frame."""
    if isinstance(event, TextDelta):
        return f"{DATA_PREFIX}{json.dumps({'text': event.text})}\n\n"
    if isinstance(event, Error):
        return f"{DATA_PREFIX}{json.dumps({'error': event.message})}\n\n"
    return f"{DATA_PREFIX}{DONE_SENTINEL}\n\n"


def parse_sse_line(line: str) -> Optional[StreamEvent]:
    """
    Decode a single line of the event stream.

    Returns None for blank lines, non-data lines and malformed payloads,
    which consumers skip.
    """
    line = line.rstrip("\r\n")
    if not line.startswith(DATA_PREFIX):
        return None

    data = line[len(DATA_PREFIX):]
    if data == DONE_SENTINEL:
        return Done()

    try:
        parsed = json.loads(data)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None

    if parsed.get('error'):
        return Error(str(parsed['error']))
    text = parsed.get('text')
    if isinstance(text, str) and text:
        return TextDelta(text)
    return None
