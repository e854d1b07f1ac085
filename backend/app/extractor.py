"""
Pull the best-known HTML document out of a (possibly still streaming) model reply.

The model is asked to answer with a single ```html fenced block, but while the
reply is streaming the closing fence has usually not arrived yet. The scanner
below classifies the text as having no fence, an open fence, or a closed fence
and returns the body accordingly.
"""
from enum import Enum
from typing import NamedTuple

OPEN_FENCE = "```html"
CLOSE_FENCE = "```"


class FenceState(str, Enum):
    NONE = "none"
    OPEN = "open"
    CLOSED = "closed"


class FenceScan(NamedTuple):
    state: FenceState
    body: str


def scan_fences(text: str) -> FenceScan:
    """Locate the first ```html fence and its matching close, if any."""
    start = text.find(OPEN_FENCE)
    if start == -1:
        return FenceScan(FenceState.NONE, text)

    body_start = start + len(OPEN_FENCE)
    # Whitespace right after the marker (usually the newline) is not content
    while body_start < len(text) and text[body_start].isspace():
        body_start += 1

    end = text.find(CLOSE_FENCE, body_start)
    if end == -1:
        return FenceScan(FenceState.OPEN, text[body_start:])
    return FenceScan(FenceState.CLOSED, text[body_start:end])


def extract_html(text: str) -> str:
    """
    Return the trimmed HTML candidate for ``text``.

    Closed fence: the content between the fences. Open fence: everything
    after the opening marker. No fence: the whole text, assumed to be raw markup.
    The result may shrink once the closing fence arrives, since backticks of a
    half-streamed closing marker were provisionally part of the open body.
    """
    return scan_fences(text).body.strip()
