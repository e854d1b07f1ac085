from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class CaptureRequest(BaseModel):
    url: Optional[str] = None


class CaptureResult(BaseModel):
    """Snapshot of a rendered page: viewport screenshot plus sanitized HTML sample."""

    model_config = ConfigDict(frozen=True)

    screenshot: str  # base64 PNG
    html: str
    title: str
    url: str


# Request bodies keep every field optional so the routes can answer 400
# with a readable message instead of a schema error.

class GenerateRequest(BaseModel):
    screenshot: Optional[str] = None
    html: Optional[str] = None
    prompt: Optional[str] = None
    url: Optional[str] = None


class IterateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_html: Optional[str] = Field(default=None, alias="currentHtml")
    instruction: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class Done:
    pass


@dataclass(frozen=True)
class Error:
    message: str


StreamEvent = Union[TextDelta, Done, Error]


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (Done, Error))
