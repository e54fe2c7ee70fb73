"""
Data models shared by the browser control components.

View state is owned by the view registry; network and console entries are
owned by the monitors. Everything else receives copies or read-only views.
"""

from dataclasses import asdict, dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class Bounds:
    """Host-window rectangle for a view, in integer pixels"""

    x: int
    y: int
    width: int
    height: int

    @classmethod
    def from_values(cls, x: float, y: float, width: float, height: float) -> "Bounds":
        return cls(x=round(x), y=round(y), width=round(width), height=round(height))


@dataclass(frozen=True)
class BoundingBox:
    """Element box in page coordinates (CSS pixels)"""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2


@dataclass
class ViewState:
    """Observable state of one browser view."""

    id: str
    url: str = "about:blank"
    title: str = "New Tab"
    favicon: str | None = None
    is_loading: bool = False
    can_go_back: bool = False
    can_go_forward: bool = False
    zoom_level: float = 1.0
    is_devtools_open: bool = False
    is_visible: bool = False
    bounds: Bounds | None = None
    error: str | None = None

    def copy(self) -> "ViewState":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RequestTiming:
    """Wall-clock timing of a request, in epoch milliseconds"""

    request_time: float
    response_time: float = 0.0
    duration: float = 0.0


@dataclass
class NetworkRequest:
    """
    A captured network request.

    Created on request-start and updated in place as response, failure and
    timing data arrive.
    """

    id: str
    url: str
    method: str
    resource_type: str
    navigation: int
    status: int | None = None
    status_text: str | None = None
    mime_type: str | None = None
    request_headers: dict[str, str] = field(default_factory=dict)
    response_headers: dict[str, str] = field(default_factory=dict)
    request_body: str | None = None
    timing: RequestTiming | None = None
    error: str | None = None


@dataclass
class ConsoleMessage:
    """A captured console API call."""

    id: str
    type: str
    text: str
    timestamp: float
    navigation: int
    url: str | None = None
    line_number: int | None = None
    stack_trace: str | None = None
    args: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class DialogInfo:
    """A native JavaScript dialog waiting to be handled"""

    type: str
    message: str
    default_prompt: str | None = None
    url: str | None = None
