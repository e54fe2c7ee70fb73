"""
Scripted browser surface for tests.

FakeSurface implements the BrowserSurface interface without a browser:
protocol commands are recorded and answered from a response table, and
navigations emit the same lifecycle events a real tab would.
"""

import base64
import inspect
from collections.abc import Callable
from typing import Any
from urllib.parse import urldefrag

from browser_control_mcp.browser.errors import CDPError
from browser_control_mcp.browser.models import Bounds
from browser_control_mcp.browser.surface import (
    IN_PAGE_NAVIGATION,
    LOAD_FAIL,
    LOAD_FINISH,
    NAVIGATION_COMMIT,
    NAVIGATION_START,
    TITLE_CHANGED,
)

FAKE_IMAGE = b"\x89PNG fake image"

# Content quad of every element: x=10 y=20 w=100 h=40, center (60, 40)
DEFAULT_BOX = [10, 20, 110, 20, 110, 60, 10, 60]


def ax(
    node_id: int,
    role: str,
    name: str = "",
    children: tuple[int, ...] = (),
    ignored: bool = False,
    value: str | None = None,
    description: str | None = None,
    properties: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """One CDP AXNode dict"""
    node: dict[str, Any] = {
        "nodeId": str(node_id),
        "ignored": ignored,
        "role": {"type": "role", "value": role},
        "name": {"type": "computedString", "value": name},
        "childIds": [str(child) for child in children],
        "backendDOMNodeId": 100 + node_id,
    }
    if value is not None:
        node["value"] = {"type": "string", "value": value}
    if description is not None:
        node["description"] = {"type": "computedString", "value": description}
    if properties:
        node["properties"] = [
            {"name": key, "value": {"type": "boolean", "value": val}} for key, val in properties.items()
        ]
    return node


def link_parents(nodes: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Set parentId on every node listed as a child"""
    by_id = {node["nodeId"]: node for node in nodes}
    for node in nodes:
        for child_id in node["childIds"]:
            if child_id in by_id:
                by_id[child_id]["parentId"] = node["nodeId"]
    return nodes


def form_page_tree(title: str = "Test Page") -> list[dict[str, Any]]:
    """
    A small form page. With snapshot id snap_N the uids are:

    0 RootWebArea, 1 heading, 2 textbox Email, 3 button Submit,
    4 combobox Country, 5 option France, 6 option Germany, 7 link More info
    (hoisted out of an unnamed generic wrapper)
    """
    return link_parents(
        [
            ax(1, "RootWebArea", title, children=(2, 3, 4, 5, 8)),
            ax(2, "heading", "Welcome", properties={"level": 1}),
            ax(3, "textbox", "Email", properties={"focused": False}),
            ax(4, "button", "Submit"),
            ax(5, "combobox", "Country", children=(6, 7), properties={"expanded": False}),
            ax(6, "option", "France"),
            ax(7, "option", "Germany"),
            ax(8, "generic", "", children=(9,)),
            ax(9, "link", "More info"),
        ]
    )


class FakeSurface:
    """A browser tab that answers commands from a table and navigates instantly"""

    def __init__(self, view_id: str) -> None:
        self.view_id = view_id
        self._url = "about:blank"
        self._title = ""
        self._history: list[str] = ["about:blank"]
        self._index = 0
        self._handlers: dict[str, list[Callable[[dict[str, Any]], None]]] = {}

        self.ax_nodes = form_page_tree()
        self.commands: list[tuple[str, dict[str, Any]]] = []
        self.errors: dict[str, Exception] = {}
        self.responses: dict[str, Any] = {
            "Accessibility.getFullAXTree": lambda params: {"nodes": self.ax_nodes},
            "DOM.getBoxModel": {"model": {"content": list(DEFAULT_BOX)}},
            "DOM.resolveNode": lambda params: {"object": {"objectId": f"obj-{params['backendNodeId']}"}},
            "Runtime.callFunctionOn": {"result": {"type": "undefined"}},
        }

        # url -> (error code, description) for loads that should fail
        self.failing_urls: dict[str, tuple[int, str]] = {}
        self.auto_finish = True
        self.page_titles: dict[str, str] = {}

        self.loaded_urls: list[str] = []
        self.scripts: list[str] = []
        self.script_result: Any = None
        self.script_error: Exception | None = None
        self.captures: list[dict[str, Any]] = []
        self.shown: list[Bounds] = []
        self.bounds: Bounds | None = None
        self.hidden = 0
        self.zoom = 1.0
        self.devtools_open = False
        self.closed = False

    # =========================================================================
    # State
    # =========================================================================

    @property
    def url(self) -> str:
        return self._url

    @property
    def title(self) -> str:
        return self._title

    @property
    def can_go_back(self) -> bool:
        return self._index > 0

    @property
    def can_go_forward(self) -> bool:
        return self._index < len(self._history) - 1

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe(self, event: str, handler: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: str, params: dict[str, Any] | None = None) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler(params or {})

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def finish_load(self) -> None:
        """Complete a load started while auto_finish was off"""
        self._commit(self._history[self._index])

    def _start(self, url: str) -> bool:
        self.emit(NAVIGATION_START, {"url": url, "is_main_frame": True})
        if url in self.failing_urls:
            code, description = self.failing_urls[url]
            self.emit(
                LOAD_FAIL,
                {"url": url, "error_code": code, "error_description": description, "is_main_frame": True},
            )
            return False
        return True

    def _commit(self, url: str) -> None:
        self._url = url
        self.emit(NAVIGATION_COMMIT, {"url": url, "is_main_frame": True})
        self.emit(LOAD_FINISH, {"url": url})
        title = self.page_titles.get(url)
        if title is not None and title != self._title:
            self._title = title
            self.emit(TITLE_CHANGED, {"title": title})

    # =========================================================================
    # Navigation
    # =========================================================================

    async def load_url(self, url: str) -> None:
        self.loaded_urls.append(url)
        if self._same_document(url):
            self._history = self._history[: self._index + 1] + [url]
            self._index += 1
            self.navigate_in_page(url)
            return
        if not self._start(url):
            return
        self._history = self._history[: self._index + 1] + [url]
        self._index += 1
        if self.auto_finish:
            self._commit(url)

    async def reload(self, ignore_cache: bool = False) -> None:
        self.commands.append(("Page.reload", {"ignoreCache": ignore_cache}))
        if self._start(self._url) and self.auto_finish:
            self._commit(self._url)

    async def go_back(self) -> None:
        self._index -= 1
        if self._start(self._history[self._index]) and self.auto_finish:
            self._commit(self._history[self._index])

    async def go_forward(self) -> None:
        self._index += 1
        if self._start(self._history[self._index]) and self.auto_finish:
            self._commit(self._history[self._index])

    def _same_document(self, url: str) -> bool:
        """Only the fragment differs, so the tab scrolls instead of loading"""
        target, fragment = urldefrag(url)
        return bool(fragment) and target.rstrip("/") == urldefrag(self._url)[0].rstrip("/")

    def navigate_in_page(self, url: str) -> None:
        self._url = url
        self.emit(IN_PAGE_NAVIGATION, {"url": url, "is_main_frame": True})

    # =========================================================================
    # Commands
    # =========================================================================

    async def send_command(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        params = params or {}
        self.commands.append((method, params))
        if method in self.errors:
            raise self.errors[method]

        response = self.responses.get(method, {})
        if callable(response):
            response = response(params)
            if inspect.isawaitable(response):
                response = await response
        if isinstance(response, Exception):
            raise response
        return response

    def sent(self, method: str) -> list[dict[str, Any]]:
        """Parameters of every call of method, in order"""
        return [params for name, params in self.commands if name == method]

    def fail_command(self, method: str, message: str) -> None:
        self.errors[method] = CDPError(method, {"code": -32000, "message": message})

    async def execute_script(self, expression: str) -> Any:
        self.scripts.append(expression)
        if self.script_error is not None:
            raise self.script_error
        return self.script_result

    async def capture(
        self,
        format: str = "png",
        quality: int | None = None,
        clip: dict[str, float] | None = None,
        full_page: bool = False,
    ) -> str:
        self.captures.append({"format": format, "quality": quality, "clip": clip, "full_page": full_page})
        return base64.b64encode(FAKE_IMAGE).decode()

    # =========================================================================
    # Window
    # =========================================================================

    async def set_zoom(self, level: float) -> None:
        self.zoom = level

    async def toggle_devtools(self) -> bool:
        self.devtools_open = not self.devtools_open
        return self.devtools_open

    async def show(self, bounds: Bounds) -> None:
        self.shown.append(bounds)
        self.bounds = bounds

    async def hide(self) -> None:
        self.hidden += 1

    async def set_bounds(self, bounds: Bounds) -> None:
        self.bounds = bounds

    async def close(self) -> None:
        self.closed = True


class FakeSurfaceProvider:
    """Hands out FakeSurfaces and keeps them for inspection"""

    def __init__(self) -> None:
        self.surfaces: dict[str, FakeSurface] = {}
        self.started = False
        self.stopped = False
        self.on_create: Callable[[FakeSurface], None] | None = None

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def create_surface(self, view_id: str) -> FakeSurface:
        surface = FakeSurface(view_id)
        if self.on_create is not None:
            self.on_create(surface)
        self.surfaces[view_id] = surface
        return surface

    async def is_healthy(self) -> bool:
        return self.started and not self.stopped
