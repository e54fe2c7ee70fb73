"""
Browser context

The single object that wires the view registry, the controllers and the
monitors together, and the only thing the tool layer talks to. It owns one
asyncio.Lock per view: every operation against a view runs inside that lock
and inside a timeout guard, so calls on the same view are strictly ordered
and calls on different views run independently.
"""

import asyncio
import functools
import itertools
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict
from typing import Any, TypeVar

from ..utils.logging_config import get_logger
from .config import DEFAULT_NAVIGATION_TIMEOUT_MS, DEFAULT_TOOL_TIMEOUT_MS
from .dialogs import DialogController
from .emulation import EmulationController
from .errors import (
    EngineFailureError,
    InvalidArgumentError,
    NoActiveViewError,
    ToolTimeoutError,
    ViewNotFoundError,
)
from .input import InputController
from .models import ViewState
from .monitors import ConsoleMonitor, NetworkMonitor
from .navigation import NavigationController
from .performance import PerformanceController
from .registry import ViewRegistry
from .scheduler import DebounceScheduler
from .snapshot import (
    AccessibilityNode,
    AccessibilitySnapshot,
    build_snapshot,
    get_bounding_box,
    resolve_object_id,
    resolve_uid,
    scroll_into_view,
)
from .surface import (
    CONSOLE_API_CALLED,
    DIALOG_CLOSED,
    DIALOG_OPENING,
    IN_PAGE_NAVIGATION,
    LOAD_FAIL,
    LOAD_FINISH,
    NAVIGATION_START,
    NETWORK_LOADING_FAILED,
    NETWORK_REQUEST_WILL_BE_SENT,
    NETWORK_RESPONSE_RECEIVED,
    BrowserSurface,
    SurfaceProvider,
    Unsubscribe,
)

logger = get_logger(__name__)

T = TypeVar("T")

VIEW_ID_PREFIX = "ai-browser"
SCREENSHOT_FORMATS = ("png", "jpeg", "webp")
DEFAULT_SCREENSHOT_QUALITY = 80


class BrowserContext:
    """Explicit engine context shared by every tool call"""

    def __init__(self, provider: SurfaceProvider, config: Mapping[str, Any] | None = None) -> None:
        config = config or {}
        self.provider = provider
        self.tool_timeout_ms: int = config.get("tool_timeout_ms", DEFAULT_TOOL_TIMEOUT_MS)
        self.navigation_timeout_ms: int = config.get("navigation_timeout_ms", DEFAULT_NAVIGATION_TIMEOUT_MS)
        self.initial_url: str = config.get("initial_url", "about:blank")

        self.scheduler = DebounceScheduler(config.get("debounce_ms", 50) / 1000)
        self.registry = ViewRegistry(
            provider,
            self.scheduler,
            search_url=config.get("search_url", "https://www.google.com/search?q="),
        )
        self.navigation = NavigationController(
            self.registry,
            navigation_timeout_ms=self.navigation_timeout_ms,
            wait_poll_ms=config.get("wait_poll_ms", 500),
        )
        self.input = InputController()
        self.dialogs = DialogController()
        retained = config.get("retained_navigations", 3)
        self.network = NetworkMonitor(retained)
        self.console = ConsoleMonitor(retained, config.get("console_buffer_size", 1000))
        self.emulation = EmulationController()
        self.performance = PerformanceController(
            self.registry, self.navigation, auto_stop_ms=config.get("perf_auto_stop_ms", 5000)
        )

        self._snapshots: dict[str, AccessibilitySnapshot] = {}
        self._snapshot_ids = itertools.count(1)
        self._locks: dict[str, asyncio.Lock] = {}
        self._bindings: dict[str, list[Unsubscribe]] = {}
        self._accessibility_enabled: set[str] = set()

        self.registry.add_create_listener(self._bind_view)
        self.registry.add_destroy_listener(self._release_view)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        logger.info("Starting browser context...")
        await self.provider.start()
        logger.info("Browser context started")

    async def stop(self) -> None:
        logger.info("Stopping browser context...")
        try:
            await self.registry.destroy_all()
        finally:
            await self.provider.stop()
        logger.info("Browser context stopped")

    def _bind_view(self, view_id: str, surface: BrowserSurface) -> None:
        handlers: list[tuple[str, Callable[[dict[str, Any]], None]]] = [
            (NAVIGATION_START, functools.partial(self.network.on_navigation_start, view_id)),
            (NAVIGATION_START, functools.partial(self.console.on_navigation_start, view_id)),
            (NETWORK_REQUEST_WILL_BE_SENT, functools.partial(self.network.on_request_will_be_sent, view_id)),
            (NETWORK_RESPONSE_RECEIVED, functools.partial(self.network.on_response_received, view_id)),
            (NETWORK_LOADING_FAILED, functools.partial(self.network.on_loading_failed, view_id)),
            (CONSOLE_API_CALLED, functools.partial(self.console.on_console_api_called, view_id)),
            (DIALOG_OPENING, functools.partial(self.dialogs.on_opening, view_id, surface)),
            (DIALOG_CLOSED, functools.partial(self.dialogs.on_closed, view_id)),
            (LOAD_FINISH, functools.partial(self.navigation.on_load_finish, view_id)),
            (LOAD_FAIL, functools.partial(self.navigation.on_load_fail, view_id)),
            (IN_PAGE_NAVIGATION, functools.partial(self.navigation.on_in_page_navigation, view_id)),
        ]
        self._bindings[view_id] = [surface.subscribe(event, handler) for event, handler in handlers]
        self._locks.setdefault(view_id, asyncio.Lock())

    def _release_view(self, view_id: str) -> None:
        for unsubscribe in self._bindings.pop(view_id, []):
            unsubscribe()
        self._snapshots.pop(view_id, None)
        self._locks.pop(view_id, None)
        self._accessibility_enabled.discard(view_id)
        self.network.forget(view_id)
        self.console.forget(view_id)
        self.dialogs.forget(view_id)
        self.navigation.forget(view_id)
        self.emulation.forget(view_id)
        self.performance.forget(view_id)

    # =========================================================================
    # Views
    # =========================================================================

    def _new_view_id(self) -> str:
        base = f"{VIEW_ID_PREFIX}-{int(time.time() * 1000)}"
        view_id = base
        for suffix in itertools.count(2):
            if view_id not in self.registry:
                return view_id
            view_id = f"{base}-{suffix}"
        raise AssertionError("unreachable")

    async def new_view(self, url: str | None = None, timeout_ms: int | None = None) -> ViewState:
        """Create a view, make it active and wait for its first load"""
        view_id = self._new_view_id()
        await self.registry.create(view_id)
        self.registry.set_active(view_id)
        target = url or self.initial_url
        if target == "about:blank":
            return self.registry.get_state(view_id)  # type: ignore[return-value]
        async with self.lock_for(view_id):
            return await self.navigation.navigate(view_id, "url", target, timeout_ms=timeout_ms)

    async def close_view(self, view_id: str) -> None:
        await self.registry.destroy(view_id)

    def list_views(self) -> list[ViewState]:
        return list(self.registry.all_states())

    def select_view(self, view_id: str) -> ViewState:
        if not self.registry.set_active(view_id):
            raise ViewNotFoundError(view_id)
        return self.registry.get_state(view_id)  # type: ignore[return-value]

    def active_view_id(self) -> str | None:
        view_id = self.registry.get_active()
        return view_id if view_id in self.registry else None

    def require_active_view(self) -> str:
        """
        Raises:
            NoActiveViewError: If no view is selected
        """
        view_id = self.active_view_id()
        if view_id is None:
            raise NoActiveViewError()
        return view_id

    def surface(self, view_id: str) -> BrowserSurface:
        surface = self.registry.get_surface(view_id)
        if surface is None:
            raise ViewNotFoundError(view_id)
        return surface

    # =========================================================================
    # Serialization and timeouts
    # =========================================================================

    def lock_for(self, view_id: str) -> asyncio.Lock:
        return self._locks.setdefault(view_id, asyncio.Lock())

    async def with_timeout(self, awaitable: Awaitable[T], timeout_ms: int | None, label: str) -> T:
        """
        Bound an awaitable; on expiry the awaiting task is cancelled.

        Raises:
            ToolTimeoutError: ``"{label} timed out after {ms}ms"``
        """
        timeout_ms = timeout_ms or self.tool_timeout_ms
        try:
            return await asyncio.wait_for(awaitable, timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning(f"{label} timed out after {timeout_ms}ms")
            raise ToolTimeoutError(label, timeout_ms) from None

    async def run_exclusive(
        self,
        view_id: str,
        operation: Callable[[], Awaitable[T]],
        timeout_ms: int | None = None,
        label: str = "Operation",
    ) -> T:
        """Run operation under the view's lock, inside the timeout guard"""
        lock = self.lock_for(view_id)

        async def locked() -> T:
            async with lock:
                return await operation()

        return await self.with_timeout(locked(), timeout_ms, label)

    # =========================================================================
    # Snapshots and elements
    # =========================================================================

    async def create_snapshot(
        self, view_id: str, verbose: bool = False, store: bool = True
    ) -> AccessibilitySnapshot:
        """
        Capture the view's accessibility tree.

        A stored snapshot becomes the view's current one and supersedes the
        uids of the previous snapshot.
        """
        surface = self.surface(view_id)
        if view_id not in self._accessibility_enabled:
            await surface.send_command("Accessibility.enable")
            self._accessibility_enabled.add(view_id)

        tree = await surface.send_command("Accessibility.getFullAXTree")
        state = self.registry.get_state(view_id)
        snapshot = build_snapshot(
            tree.get("nodes") or [],
            f"snap_{next(self._snapshot_ids)}",
            url=surface.url or (state.url if state else ""),
            title=(state.title if state else "") or surface.title,
            verbose=verbose,
        )
        if store:
            self._snapshots[view_id] = snapshot
        return snapshot

    def get_snapshot(self, view_id: str) -> AccessibilitySnapshot | None:
        return self._snapshots.get(view_id)

    def get_element_by_uid(self, view_id: str, uid: str) -> AccessibilityNode:
        return resolve_uid(self._snapshots.get(view_id), uid)

    async def snapshot_text(self, view_id: str) -> str:
        snapshot = await self.create_snapshot(view_id, store=False)
        return snapshot.format()

    async def click(self, view_id: str, uid: str, double: bool = False) -> None:
        node = self.get_element_by_uid(view_id, uid)
        await self.input.click(self.surface(view_id), node, double=double)

    async def hover(self, view_id: str, uid: str) -> None:
        node = self.get_element_by_uid(view_id, uid)
        await self.input.hover(self.surface(view_id), node)

    async def fill(self, view_id: str, uid: str, value: str) -> None:
        node = self.get_element_by_uid(view_id, uid)
        await self.input.fill(self.surface(view_id), node, value)

    async def select_option(self, view_id: str, uid: str, value: str) -> None:
        node = self.get_element_by_uid(view_id, uid)
        await self.input.select_option(self.surface(view_id), node, value)

    async def fill_form_element(self, view_id: str, uid: str, value: str) -> None:
        node = self.get_element_by_uid(view_id, uid)
        await self.input.fill_form_element(self.surface(view_id), node, value)

    async def drag(self, view_id: str, from_uid: str, to_uid: str) -> None:
        source = self.get_element_by_uid(view_id, from_uid)
        target = self.get_element_by_uid(view_id, to_uid)
        await self.input.drag(self.surface(view_id), source, target)

    async def press_key(self, view_id: str, key: str) -> None:
        await self.input.press_key(self.surface(view_id), key)

    async def upload_file(self, view_id: str, uid: str, file_path: str) -> None:
        node = self.get_element_by_uid(view_id, uid)
        await self.input.upload_file(self.surface(view_id), node, file_path)

    # =========================================================================
    # Capture and scripts
    # =========================================================================

    async def screenshot(
        self,
        view_id: str,
        format: str = "png",
        quality: int | None = None,
        uid: str | None = None,
        full_page: bool = False,
    ) -> tuple[str, str]:
        """
        Capture the viewport, the full page, or one element.

        Returns:
            (base64 data, mime type)
        """
        if format not in SCREENSHOT_FORMATS:
            raise InvalidArgumentError(f"Unsupported screenshot format: {format}")
        if uid and full_page:
            raise InvalidArgumentError('Providing both "uid" and "fullPage" is not allowed.')

        if format == "png":
            quality = None
        elif quality is None:
            quality = DEFAULT_SCREENSHOT_QUALITY

        surface = self.surface(view_id)
        clip = None
        if uid:
            node = self.get_element_by_uid(view_id, uid)
            await scroll_into_view(surface, node)
            box = await get_bounding_box(surface, node)
            if box is None:
                raise EngineFailureError(f"Could not get bounding box for element: {uid}")
            clip = {"x": box.x, "y": box.y, "width": box.width, "height": box.height}

        data = await surface.capture(format=format, quality=quality, clip=clip, full_page=full_page)
        return data, f"image/{format}"

    async def evaluate(self, view_id: str, function: str, uids: list[str] | None = None) -> Any:
        """
        Call a JavaScript function in the page and return its JSON value.

        Elements named by uid are passed as the function's arguments.

        Raises:
            EngineFailureError: If the script throws
        """
        surface = self.surface(view_id)
        if not uids:
            return await surface.execute_script(f"({function})()")

        nodes = [self.get_element_by_uid(view_id, uid) for uid in uids]
        object_ids = [await resolve_object_id(surface, node) for node in nodes]
        result = await surface.send_command(
            "Runtime.callFunctionOn",
            {
                "objectId": object_ids[0],
                "functionDeclaration": function,
                "arguments": [{"objectId": object_id} for object_id in object_ids],
                "returnByValue": True,
                "awaitPromise": True,
            },
        )
        details = result.get("exceptionDetails")
        if details:
            exception = details.get("exception") or {}
            raise EngineFailureError(exception.get("description") or details.get("text") or "Script error")
        return (result.get("result") or {}).get("value")

    # =========================================================================
    # Dialogs
    # =========================================================================

    async def handle_dialog(self, accept: bool, prompt_text: str | None = None) -> None:
        """Handle the active view's dialog without taking the view lock"""
        view_id = self.require_active_view()
        await self.dialogs.handle(view_id, self.surface(view_id), accept, prompt_text)

    # =========================================================================
    # Status
    # =========================================================================

    def status(self) -> dict[str, Any]:
        active = self.active_view_id()
        dialog = self.dialogs.get_pending_dialog(active) if active else None
        return {
            "active_view": active,
            "views": [state.to_dict() for state in self.registry.all_states()],
            "emulation": {
                state.id: asdict(self.emulation.current(state.id)) for state in self.registry.all_states()
            },
            "pending_dialog": asdict(dialog) if dialog else None,
            "rejected_dialogs": self.dialogs.rejected_count(active) if active else 0,
            "tracing": self.performance.is_tracing,
            "tracing_view": self.performance.tracing_view_id,
        }
