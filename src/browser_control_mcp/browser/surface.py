"""
Capability interface consumed from the rendering-surface provider.

The control engine never touches the browser directly. Everything it needs
goes through a BrowserSurface: loading URLs, running scripts, capturing
images, sending low-level protocol commands and subscribing to lifecycle
events. Protocol-level methods (Network.*, Emulation.*, DOM.*) are always
issued through send_command.
"""

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from .models import Bounds

# Lifecycle events emitted by every surface
NAVIGATION_START = "navigation-start"
NAVIGATION_COMMIT = "navigation-commit"
LOAD_FINISH = "load-finish"
LOAD_FAIL = "load-fail"
TITLE_CHANGED = "title-changed"
FAVICON_CHANGED = "favicon-changed"
IN_PAGE_NAVIGATION = "in-page-navigation"

LIFECYCLE_EVENTS = (
    NAVIGATION_START,
    NAVIGATION_COMMIT,
    LOAD_FINISH,
    LOAD_FAIL,
    TITLE_CHANGED,
    FAVICON_CHANGED,
    IN_PAGE_NAVIGATION,
)

# Raw protocol events the monitors and dialog controller listen to
NETWORK_REQUEST_WILL_BE_SENT = "Network.requestWillBeSent"
NETWORK_RESPONSE_RECEIVED = "Network.responseReceived"
NETWORK_LOADING_FAILED = "Network.loadingFailed"
CONSOLE_API_CALLED = "Runtime.consoleAPICalled"
DIALOG_OPENING = "Page.javascriptDialogOpening"
DIALOG_CLOSED = "Page.javascriptDialogClosed"

EventHandler = Callable[[dict[str, Any]], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class BrowserSurface(Protocol):
    """One rendering surface (a browser tab) driven by the engine."""

    view_id: str

    @property
    def url(self) -> str: ...

    @property
    def title(self) -> str: ...

    @property
    def can_go_back(self) -> bool: ...

    @property
    def can_go_forward(self) -> bool: ...

    async def load_url(self, url: str) -> None:
        """Start loading a URL. Load failures are reported as LOAD_FAIL events."""
        ...

    async def reload(self, ignore_cache: bool = False) -> None: ...

    async def go_back(self) -> None: ...

    async def go_forward(self) -> None: ...

    async def execute_script(self, expression: str) -> Any: ...

    async def capture(
        self,
        format: str = "png",
        quality: int | None = None,
        clip: dict[str, float] | None = None,
        full_page: bool = False,
    ) -> str:
        """Capture an image; returns base64 data."""
        ...

    async def send_command(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]: ...

    def subscribe(self, event: str, handler: EventHandler) -> Unsubscribe: ...

    async def set_zoom(self, level: float) -> None: ...

    async def toggle_devtools(self) -> bool: ...

    async def show(self, bounds: Bounds) -> None: ...

    async def hide(self) -> None: ...

    async def set_bounds(self, bounds: Bounds) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class SurfaceProvider(Protocol):
    """Factory for surfaces, owning the connection to the browser."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def create_surface(self, view_id: str) -> BrowserSurface: ...

    async def is_healthy(self) -> bool: ...
