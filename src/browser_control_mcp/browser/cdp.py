"""
Chrome DevTools Protocol surface provider

Drives a Chromium instance over a single browser-level websocket. Every view
is a page target attached with a flattened session, so commands and events
for all views share one connection and are routed by sessionId.

Protocol events are queued per surface and dispatched by one task, so
handlers see them in arrival order and the surface can await commands
(history, title, favicon) while translating them into lifecycle events.
"""

import asyncio
import itertools
import json
import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from .errors import CDPError, EngineFailureError
from .models import Bounds
from .process_manager import BrowserProcessManager
from .surface import (
    FAVICON_CHANGED,
    IN_PAGE_NAVIGATION,
    LOAD_FAIL,
    LOAD_FINISH,
    NAVIGATION_COMMIT,
    NAVIGATION_START,
    TITLE_CHANGED,
    EventHandler,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

# Screenshots of long pages easily exceed aiohttp's 4MB default
MAX_MESSAGE_SIZE = 100 * 1024 * 1024

ABORTED_ERROR_TEXT = "net::ERR_ABORTED"
ABORTED_ERROR_CODE = -3
GENERIC_ERROR_CODE = -2

ENABLED_DOMAINS = ("Page", "Network", "Runtime", "DOM")

FAVICON_EXPRESSION = (
    "Array.from(document.querySelectorAll('link[rel~=\"icon\"]')).map(l => l.href)"
)

ProtocolListener = Callable[[str, dict[str, Any]], None]


class CDPConnection:
    """
    Browser-level websocket with id-correlated commands.

    Each command gets a future keyed by its message id; the reader task
    resolves it when the matching response arrives. Responses whose future
    was abandoned (timeout, cancellation) are dropped.
    """

    def __init__(self, ws_url: str) -> None:
        self.ws_url = ws_url
        self._http: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._session_listeners: dict[str, ProtocolListener] = {}
        self._target_listeners: dict[str, ProtocolListener] = {}

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        logger.info(f"Connecting to DevTools at {self.ws_url}")
        self._http = aiohttp.ClientSession()
        self._ws = await self._http.ws_connect(self.ws_url, max_msg_size=MAX_MESSAGE_SIZE)
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("DevTools connection established")

    async def close(self) -> None:
        if self._reader:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws:
            await self._ws.close()
            self._ws = None
        if self._http:
            await self._http.close()
            self._http = None
        self._fail_pending("DevTools connection closed")

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Send a command and wait for its response.

        Raises:
            CDPError: If the browser returns an error or the connection drops
        """
        if not self.is_connected:
            raise CDPError(method, "not connected")

        message_id = next(self._ids)
        message: dict[str, Any] = {"id": message_id, "method": method}
        if params:
            message["params"] = params
        if session_id:
            message["sessionId"] = session_id

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future
        logger.debug(f"CDP → [{message_id}] {method}")
        try:
            await self._ws.send_json(message)  # type: ignore[union-attr]
            response = await future
        finally:
            self._pending.pop(message_id, None)

        if "error" in response:
            logger.warning(f"CDP ✗ [{message_id}] {method}: {response['error']}")
            raise CDPError(method, response["error"])

        logger.debug(f"CDP ← [{message_id}] {method}")
        return response.get("result", {})

    def add_session_listener(self, session_id: str, listener: ProtocolListener) -> None:
        self._session_listeners[session_id] = listener

    def add_target_listener(self, target_id: str, listener: ProtocolListener) -> None:
        self._target_listeners[target_id] = listener

    def remove_listeners(self, session_id: str, target_id: str) -> None:
        self._session_listeners.pop(session_id, None)
        self._target_listeners.pop(target_id, None)

    async def _read_loop(self) -> None:
        try:
            async for msg in self._ws:  # type: ignore[union-attr]
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_message(json.loads(msg.data))
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    logger.warning(f"DevTools websocket closed: {msg.type}")
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"DevTools reader failed: {e}", exc_info=True)
        finally:
            self._fail_pending("DevTools connection lost")

    def _handle_message(self, data: dict[str, Any]) -> None:
        message_id = data.get("id")
        if message_id is not None:
            future = self._pending.get(message_id)
            if future is not None and not future.done():
                future.set_result(data)
            else:
                logger.debug(f"CDP dropped late response [{message_id}]")
            return

        method = data.get("method")
        if not method:
            return
        params = data.get("params") or {}

        session_id = data.get("sessionId")
        if session_id:
            listener = self._session_listeners.get(session_id)
            if listener:
                listener(method, params)
            return

        if method == "Target.targetInfoChanged":
            target_id = (params.get("targetInfo") or {}).get("targetId")
            listener = self._target_listeners.get(target_id)
            if listener:
                listener(method, params)

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_result({"error": {"message": reason}})
        self._pending.clear()


class CDPSurface:
    """A page target presented as a BrowserSurface."""

    def __init__(
        self,
        connection: CDPConnection,
        view_id: str,
        target_id: str,
        session_id: str,
        devtools_base_url: str,
    ) -> None:
        self.view_id = view_id
        self.target_id = target_id
        self.session_id = session_id
        self._connection = connection
        self._devtools_base_url = devtools_base_url
        self._handlers: dict[str, list[EventHandler]] = {}
        self._queue: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue()
        self._dispatcher: asyncio.Task | None = None
        self._page_info_task: asyncio.Task | None = None
        self._main_frame_id: str | None = None
        self._pending_url: str | None = None
        self._showing_error_page = False
        self._devtools_target_id: str | None = None
        self._closed = False
        self._url = "about:blank"
        self._title = ""
        self._favicon: str | None = None
        self._can_go_back = False
        self._can_go_forward = False

    @property
    def url(self) -> str:
        return self._url

    @property
    def title(self) -> str:
        return self._title

    @property
    def can_go_back(self) -> bool:
        return self._can_go_back

    @property
    def can_go_forward(self) -> bool:
        return self._can_go_forward

    async def initialize(self) -> None:
        """Enable protocol domains and start event dispatch"""
        self._connection.add_session_listener(self.session_id, self._enqueue)
        self._connection.add_target_listener(self.target_id, self._enqueue)
        self._dispatcher = asyncio.create_task(self._dispatch_loop())

        for domain in ENABLED_DOMAINS:
            await self.send_command(f"{domain}.enable")

        frame_tree = await self.send_command("Page.getFrameTree")
        frame = (frame_tree.get("frameTree") or {}).get("frame") or {}
        self._main_frame_id = frame.get("id")
        self._url = frame.get("url") or self._url
        await self._refresh_history()

    # =========================================================================
    # BrowserSurface
    # =========================================================================

    async def send_command(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._connection.send(method, params, session_id=self.session_id)

    def subscribe(self, event: str, handler: EventHandler) -> Unsubscribe:
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def load_url(self, url: str) -> None:
        self._pending_url = url
        result = await self.send_command("Page.navigate", {"url": url})
        error_text = result.get("errorText")
        if error_text:
            code = ABORTED_ERROR_CODE if error_text == ABORTED_ERROR_TEXT else GENERIC_ERROR_CODE
            self._enqueue(
                LOAD_FAIL,
                {
                    "url": url,
                    "error_code": code,
                    "error_description": error_text,
                    "is_main_frame": True,
                },
            )

    async def reload(self, ignore_cache: bool = False) -> None:
        self._pending_url = self._url
        await self.send_command("Page.reload", {"ignoreCache": ignore_cache})

    async def go_back(self) -> None:
        await self._go_to_history_offset(-1)

    async def go_forward(self) -> None:
        await self._go_to_history_offset(1)

    async def execute_script(self, expression: str) -> Any:
        result = await self.send_command(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )
        details = result.get("exceptionDetails")
        if details:
            exception = details.get("exception") or {}
            raise EngineFailureError(exception.get("description") or details.get("text") or "Script error")
        return (result.get("result") or {}).get("value")

    async def capture(
        self,
        format: str = "png",
        quality: int | None = None,
        clip: dict[str, float] | None = None,
        full_page: bool = False,
    ) -> str:
        params: dict[str, Any] = {"format": format}
        if quality is not None and format != "png":
            params["quality"] = quality
        if clip is not None:
            params["clip"] = {**clip, "scale": 1}
        elif full_page:
            metrics = await self.send_command("Page.getLayoutMetrics")
            size = metrics.get("cssContentSize") or metrics.get("contentSize") or {}
            params["clip"] = {
                "x": 0,
                "y": 0,
                "width": size.get("width", 0),
                "height": size.get("height", 0),
                "scale": 1,
            }
            params["captureBeyondViewport"] = True
        result = await self.send_command("Page.captureScreenshot", params)
        return result["data"]

    async def set_zoom(self, level: float) -> None:
        await self.send_command("Emulation.setPageScaleFactor", {"pageScaleFactor": level})

    async def toggle_devtools(self) -> bool:
        """Open or close a DevTools frontend tab inspecting this page"""
        if self._devtools_target_id:
            await self._connection.send("Target.closeTarget", {"targetId": self._devtools_target_id})
            self._devtools_target_id = None
            return False

        url = f"{self._devtools_base_url}/devtools/inspector.html?ws={self._ws_host()}/devtools/page/{self.target_id}"
        result = await self._connection.send("Target.createTarget", {"url": url})
        self._devtools_target_id = result.get("targetId")
        return True

    async def show(self, bounds: Bounds) -> None:
        await self._connection.send("Target.activateTarget", {"targetId": self.target_id})
        await self.set_bounds(bounds)

    async def hide(self) -> None:
        # Tabs share a window; a hidden view simply stops being the activated target
        logger.debug(f"View {self.view_id} hidden")

    async def set_bounds(self, bounds: Bounds) -> None:
        try:
            window = await self._connection.send("Browser.getWindowForTarget", {"targetId": self.target_id})
            await self._connection.send(
                "Browser.setWindowBounds",
                {
                    "windowId": window["windowId"],
                    "bounds": {
                        "left": bounds.x,
                        "top": bounds.y,
                        "width": bounds.width,
                        "height": bounds.height,
                    },
                },
            )
        except CDPError as e:
            # Headless browsers have no window to move
            logger.warning(f"Could not set window bounds for {self.view_id}: {e}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._connection.remove_listeners(self.session_id, self.target_id)
        if self._dispatcher:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None
        if self._page_info_task:
            self._page_info_task.cancel()
            try:
                await self._page_info_task
            except asyncio.CancelledError:
                pass
            self._page_info_task = None
        if self._devtools_target_id:
            await self._connection.send("Target.closeTarget", {"targetId": self._devtools_target_id})
            self._devtools_target_id = None
        if self._connection.is_connected:
            await self._connection.send("Target.closeTarget", {"targetId": self.target_id})

    # =========================================================================
    # Event translation
    # =========================================================================

    def _enqueue(self, method: str, params: dict[str, Any]) -> None:
        self._queue.put_nowait((method, params))

    async def _dispatch_loop(self) -> None:
        while True:
            method, params = await self._queue.get()
            try:
                await self._translate(method, params)
                self._emit(method, params)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Failed to dispatch {method} for {self.view_id}: {e}", exc_info=True)

    def _emit(self, event: str, params: dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(params)
            except Exception as e:
                logger.error(f"Handler for {event} failed in {self.view_id}: {e}", exc_info=True)

    async def _translate(self, method: str, params: dict[str, Any]) -> None:
        if method == "Page.frameStartedLoading":
            if params.get("frameId") == self._main_frame_id:
                self._showing_error_page = False
                url = self._pending_url or self._url
                self._emit(NAVIGATION_START, {"url": url, "is_main_frame": True})

        elif method == "Page.frameNavigated":
            frame = params.get("frame") or {}
            if frame.get("parentId"):
                return
            self._main_frame_id = frame.get("id", self._main_frame_id)
            unreachable = frame.get("unreachableUrl")
            self._showing_error_page = bool(unreachable)
            self._url = unreachable or frame.get("url", self._url)
            self._pending_url = None
            await self._refresh_history()
            self._emit(NAVIGATION_COMMIT, {"url": self._url, "is_main_frame": True})

        elif method == "Page.loadEventFired":
            if self._showing_error_page:
                return
            await self._refresh_history()
            self._emit(LOAD_FINISH, {"url": self._url})
            self._schedule_page_info()

        elif method == "Page.navigatedWithinDocument":
            if params.get("frameId") != self._main_frame_id:
                return
            self._url = params.get("url", self._url)
            await self._refresh_history()
            self._emit(IN_PAGE_NAVIGATION, {"url": self._url, "is_main_frame": True})

        elif method == LOAD_FAIL:
            self._pending_url = None

        elif method == "Target.targetInfoChanged":
            title = (params.get("targetInfo") or {}).get("title")
            if title is not None and title != self._title:
                self._title = title
                self._emit(TITLE_CHANGED, {"title": title})

    def _schedule_page_info(self) -> None:
        """Read title and favicon outside the dispatch loop, Runtime.evaluate stalls while a dialog is open"""
        if self._page_info_task and not self._page_info_task.done():
            self._page_info_task.cancel()
        self._page_info_task = asyncio.create_task(self._read_page_info())

    async def _read_page_info(self) -> None:
        await self._check_title()
        await self._check_favicon()

    async def _check_title(self) -> None:
        try:
            title = await self.execute_script("document.title")
        except EngineFailureError as e:
            logger.debug(f"Could not read title for {self.view_id}: {e}")
            return
        if isinstance(title, str) and title != self._title:
            self._title = title
            self._emit(TITLE_CHANGED, {"title": title})

    async def _check_favicon(self) -> None:
        try:
            favicons = await self.execute_script(FAVICON_EXPRESSION)
        except EngineFailureError as e:
            logger.debug(f"Could not read favicons for {self.view_id}: {e}")
            return
        if favicons and favicons[0] != self._favicon:
            self._favicon = favicons[0]
            self._emit(FAVICON_CHANGED, {"favicons": favicons})

    async def _refresh_history(self) -> None:
        try:
            history = await self.send_command("Page.getNavigationHistory")
        except CDPError as e:
            logger.debug(f"Could not read history for {self.view_id}: {e}")
            return
        index = history.get("currentIndex", 0)
        entries = history.get("entries") or []
        self._can_go_back = index > 0
        self._can_go_forward = index < len(entries) - 1

    async def _go_to_history_offset(self, offset: int) -> None:
        history = await self.send_command("Page.getNavigationHistory")
        index = history.get("currentIndex", 0) + offset
        entries = history.get("entries") or []
        if not 0 <= index < len(entries):
            raise EngineFailureError(f"No history entry at offset {offset}")
        self._pending_url = entries[index].get("url")
        await self.send_command("Page.navigateToHistoryEntry", {"entryId": entries[index]["id"]})

    def _ws_host(self) -> str:
        return self._devtools_base_url.split("://", 1)[-1]


class CDPSurfaceProvider:
    """
    Creates CDPSurfaces on a Chromium instance.

    If a process manager is given, the browser is launched on start() and
    terminated on stop(); otherwise an already running browser is used.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 9222,
        process_manager: BrowserProcessManager | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.process_manager = process_manager
        self._connection: CDPConnection | None = None
        self._surfaces: dict[str, CDPSurface] = {}

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def start(self) -> None:
        if self._connection is not None:
            logger.warning("Surface provider already started")
            return

        if self.process_manager is not None:
            await self.process_manager.start()

        ws_url = await self._fetch_browser_ws_url()
        self._connection = CDPConnection(ws_url)
        await self._connection.connect()
        await self._connection.send("Target.setDiscoverTargets", {"discover": True})

    async def stop(self) -> None:
        for surface in list(self._surfaces.values()):
            try:
                await surface.close()
            except Exception as e:
                logger.warning(f"Error closing surface {surface.view_id}: {e}")
        self._surfaces.clear()

        if self._connection is not None:
            await self._connection.close()
            self._connection = None

        if self.process_manager is not None:
            await self.process_manager.stop()

    async def create_surface(self, view_id: str) -> CDPSurface:
        if self._connection is None:
            raise EngineFailureError("Surface provider is not started")

        target = await self._connection.send("Target.createTarget", {"url": "about:blank"})
        target_id = target["targetId"]
        attached = await self._connection.send(
            "Target.attachToTarget", {"targetId": target_id, "flatten": True}
        )

        surface = CDPSurface(
            self._connection,
            view_id=view_id,
            target_id=target_id,
            session_id=attached["sessionId"],
            devtools_base_url=self.base_url,
        )
        await surface.initialize()
        self._surfaces[view_id] = surface
        logger.info(f"Created surface for view {view_id} (target {target_id})")
        return surface

    async def is_healthy(self) -> bool:
        if self._connection is None or not self._connection.is_connected:
            return False
        if self.process_manager is not None:
            return await self.process_manager.is_healthy()
        return True

    async def _fetch_browser_ws_url(self) -> str:
        url = f"{self.base_url}/json/version"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url, timeout=aiohttp.ClientTimeout(total=5)) as resp:
                    version = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise EngineFailureError(f"Cannot reach DevTools endpoint at {url}: {e}") from e

        ws_url = version.get("webSocketDebuggerUrl")
        if not ws_url:
            raise EngineFailureError(f"No webSocketDebuggerUrl in {url}")
        logger.info(f"Browser: {version.get('Browser', 'unknown')}")
        return ws_url
