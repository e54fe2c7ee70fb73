"""
View registry and lifecycle management.

The registry owns one BrowserSurface per view, keeps the observable
ViewState for each, and broadcasts state changes to listeners. Navigation
start, commit, load finish and load failure are broadcast immediately;
title, favicon and in-page navigation changes are debounced per view.

Only one view is visible at a time: showing a view hides whichever view
was visible before it.
"""

import functools
from collections.abc import Callable, Iterator
from typing import Any
from urllib.parse import quote_plus

from ..utils.logging_config import get_logger
from .models import Bounds, ViewState
from .scheduler import DebounceScheduler
from .surface import (
    FAVICON_CHANGED,
    IN_PAGE_NAVIGATION,
    LOAD_FAIL,
    LOAD_FINISH,
    NAVIGATION_COMMIT,
    NAVIGATION_START,
    TITLE_CHANGED,
    BrowserSurface,
    SurfaceProvider,
    Unsubscribe,
)

logger = get_logger(__name__)

StateListener = Callable[[ViewState], None]
CreateListener = Callable[[str, BrowserSurface], None]
DestroyListener = Callable[[str], None]

MIN_ZOOM = 0.25
MAX_ZOOM = 5.0

# Chromium reports an aborted load (user started another navigation) as -3
ABORTED_ERROR_CODE = -3

_PASSTHROUGH_SCHEMES = ("http://", "https://", "file://", "about:", "data:")
_KNOWN_TLDS = {"com", "org", "net", "io", "dev", "co", "ai", "app", "cn", "uk", "de", "fr", "jp"}


def looks_like_domain(text: str) -> bool:
    """True for inputs such as ``example.com`` or ``news.bbc.co.uk``"""
    host = text.split("/", 1)[0]
    parts = host.split(".")
    if len(parts) < 2 or not all(parts):
        return False
    tld = parts[-1].split(":", 1)[0].lower()
    return tld in _KNOWN_TLDS or (len(tld) == 2 and tld.isalpha())


def normalize_url(text: str, search_url: str = "https://www.google.com/search?q=") -> str:
    """
    Turn address-bar input into a loadable URL.

    Full URLs pass through, domain-like input gets https://, anything else
    becomes a search query.

    Raises:
        ValueError: If the input is blank
    """
    url = text.strip()
    if not url:
        raise ValueError("URL must not be empty")

    if url.lower().startswith(_PASSTHROUGH_SCHEMES):
        return url

    if "." in url and " " not in url and looks_like_domain(url):
        return f"https://{url}"

    return f"{search_url}{quote_plus(url)}"


class ViewRegistry:
    """Tracks every browser view, its surface, and its observable state."""

    def __init__(
        self,
        provider: SurfaceProvider,
        scheduler: DebounceScheduler | None = None,
        search_url: str = "https://www.google.com/search?q=",
    ) -> None:
        self._provider = provider
        self._scheduler = scheduler or DebounceScheduler()
        self._search_url = search_url
        self._surfaces: dict[str, BrowserSurface] = {}
        self._states: dict[str, ViewState] = {}
        self._unsubscribers: dict[str, list[Unsubscribe]] = {}
        self._active_id: str | None = None
        self._listeners: list[StateListener] = []
        self._create_listeners: list[CreateListener] = []
        self._destroy_listeners: list[DestroyListener] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create(self, view_id: str, url: str | None = None) -> ViewState:
        """
        Create a view and optionally start loading a URL.

        Creating an id that already exists returns the existing state. A
        failing initial load does not raise; it is reported in state.error.
        """
        if view_id in self._states:
            logger.info(f"View {view_id} already exists, returning current state")
            return self._states[view_id].copy()

        logger.info(f"Creating view {view_id} (url={url or 'about:blank'})")
        surface = await self._provider.create_surface(view_id)

        state = ViewState(id=view_id, url=url or "about:blank", is_loading=bool(url))
        self._surfaces[view_id] = surface
        self._states[view_id] = state
        self._bind_events(view_id, surface)
        for listener in list(self._create_listeners):
            listener(view_id, surface)

        if url:
            try:
                await surface.load_url(url)
            except Exception as e:
                logger.error(f"Failed to load {url} in view {view_id}: {e}")
                state.error = str(e)
                state.is_loading = False

        return state.copy()

    async def show(self, view_id: str, bounds: Bounds) -> bool:
        """Make view_id the single visible, active view at the given bounds"""
        surface = self._surfaces.get(view_id)
        if surface is None:
            logger.error(f"show() - view not found: {view_id}")
            return False

        for other_id, other_state in list(self._states.items()):
            if other_id != view_id and other_state.is_visible:
                logger.info(f"Hiding previously visible view: {other_id}")
                await self.hide(other_id)

        rounded = Bounds.from_values(bounds.x, bounds.y, bounds.width, bounds.height)
        await surface.show(rounded)

        state = self._states[view_id]
        state.is_visible = True
        state.bounds = rounded
        self._active_id = view_id
        logger.info(f"View {view_id} shown at {rounded}")
        return True

    async def hide(self, view_id: str) -> bool:
        """Detach a view from display; it stays alive and keeps the active pointer"""
        surface = self._surfaces.get(view_id)
        if surface is None:
            return False

        await surface.hide()
        self._states[view_id].is_visible = False
        return True

    async def resize(self, view_id: str, bounds: Bounds) -> bool:
        """Move/resize the host window rectangle of a view"""
        surface = self._surfaces.get(view_id)
        if surface is None:
            return False

        rounded = Bounds.from_values(bounds.x, bounds.y, bounds.width, bounds.height)
        await surface.set_bounds(rounded)
        self._states[view_id].bounds = rounded
        return True

    async def destroy(self, view_id: str) -> None:
        """
        Destroy a view and drop all of its bookkeeping.

        Idempotent: destroying an unknown or already destroyed view is a no-op.
        """
        self._scheduler.cancel(view_id)

        surface = self._surfaces.pop(view_id, None)
        state = self._states.pop(view_id, None)
        for unsubscribe in self._unsubscribers.pop(view_id, []):
            unsubscribe()
        if self._active_id == view_id:
            self._active_id = None

        if surface is None and state is None:
            return

        logger.info(f"Destroying view {view_id}")
        for listener in list(self._destroy_listeners):
            try:
                listener(view_id)
            except Exception as e:
                logger.error(f"Destroy listener failed for {view_id}: {e}", exc_info=True)

        if surface is not None:
            try:
                await surface.close()
            except Exception as e:
                logger.warning(f"Error closing surface for {view_id}: {e}")

    async def destroy_all(self) -> None:
        self._scheduler.cancel_all()
        for view_id in list(self._states):
            await self.destroy(view_id)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_state(self, view_id: str) -> ViewState | None:
        state = self._states.get(view_id)
        return state.copy() if state else None

    def all_states(self) -> Iterator[ViewState]:
        """Copies of every view state, in creation order"""
        for state in list(self._states.values()):
            yield state.copy()

    def view_ids(self) -> list[str]:
        return list(self._states)

    def get_surface(self, view_id: str) -> BrowserSurface | None:
        return self._surfaces.get(view_id)

    def set_active(self, view_id: str) -> bool:
        if view_id not in self._states:
            return False
        self._active_id = view_id
        logger.info(f"Active view set to: {view_id}")
        return True

    def get_active(self) -> str | None:
        return self._active_id

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, view_id: object) -> bool:
        return view_id in self._states

    # =========================================================================
    # Navigation primitives
    # =========================================================================

    def normalize(self, text: str) -> str:
        return normalize_url(text, self._search_url)

    async def navigate(self, view_id: str, text: str) -> bool:
        """Normalize address-bar input and start loading it"""
        surface = self._surfaces.get(view_id)
        if surface is None:
            return False

        try:
            url = self.normalize(text)
        except ValueError:
            return False

        try:
            await surface.load_url(url)
            return True
        except Exception as e:
            logger.error(f"Navigation failed in {view_id}: {url}: {e}")
            self._update(view_id, error=str(e), is_loading=False)
            self._emit_immediate(view_id)
            return False

    async def go_back(self, view_id: str) -> bool:
        surface = self._surfaces.get(view_id)
        if surface is None or not surface.can_go_back:
            return False
        await surface.go_back()
        return True

    async def go_forward(self, view_id: str) -> bool:
        surface = self._surfaces.get(view_id)
        if surface is None or not surface.can_go_forward:
            return False
        await surface.go_forward()
        return True

    async def reload(self, view_id: str, ignore_cache: bool = False) -> bool:
        surface = self._surfaces.get(view_id)
        if surface is None:
            return False
        await surface.reload(ignore_cache=ignore_cache)
        return True

    async def set_zoom(self, view_id: str, level: float) -> bool:
        surface = self._surfaces.get(view_id)
        if surface is None:
            return False
        clamped = max(MIN_ZOOM, min(MAX_ZOOM, level))
        await surface.set_zoom(clamped)
        self._update(view_id, zoom_level=clamped)
        self._emit_debounced(view_id)
        return True

    async def toggle_devtools(self, view_id: str) -> bool:
        surface = self._surfaces.get(view_id)
        if surface is None:
            return False
        is_open = await surface.toggle_devtools()
        self._update(view_id, is_devtools_open=is_open)
        self._emit_immediate(view_id)
        return True

    # =========================================================================
    # Broadcast
    # =========================================================================

    def add_listener(self, listener: StateListener) -> Unsubscribe:
        """Register a state-change listener. Returns a function that removes it."""
        self._listeners.append(listener)
        return functools.partial(self._remove, self._listeners, listener)

    def add_create_listener(self, listener: CreateListener) -> Unsubscribe:
        """Called after a surface is created and before its first load starts"""
        self._create_listeners.append(listener)
        return functools.partial(self._remove, self._create_listeners, listener)

    def add_destroy_listener(self, listener: DestroyListener) -> Unsubscribe:
        self._destroy_listeners.append(listener)
        return functools.partial(self._remove, self._destroy_listeners, listener)

    @staticmethod
    def _remove(listeners: list, listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    def _emit_immediate(self, view_id: str) -> None:
        self._scheduler.cancel(view_id)
        self._broadcast(view_id)

    def _emit_debounced(self, view_id: str) -> None:
        self._scheduler.schedule(view_id, functools.partial(self._broadcast, view_id))

    def _broadcast(self, view_id: str) -> None:
        state = self._states.get(view_id)
        if state is None:
            return
        for listener in list(self._listeners):
            try:
                listener(state.copy())
            except Exception as e:
                logger.error(f"State listener failed for {view_id}: {e}", exc_info=True)

    def _update(self, view_id: str, **changes: Any) -> bool:
        state = self._states.get(view_id)
        if state is None:
            return False
        for key, value in changes.items():
            setattr(state, key, value)
        return True

    # =========================================================================
    # Lifecycle events
    # =========================================================================

    def _bind_events(self, view_id: str, surface: BrowserSurface) -> None:
        handlers = {
            NAVIGATION_START: self._on_navigation_start,
            NAVIGATION_COMMIT: self._on_navigation_commit,
            LOAD_FINISH: self._on_load_finish,
            LOAD_FAIL: self._on_load_fail,
            TITLE_CHANGED: self._on_title_changed,
            FAVICON_CHANGED: self._on_favicon_changed,
            IN_PAGE_NAVIGATION: self._on_in_page_navigation,
        }
        self._unsubscribers[view_id] = [
            surface.subscribe(event, functools.partial(handler, view_id))
            for event, handler in handlers.items()
        ]

    def _history_flags(self, view_id: str) -> dict[str, bool]:
        surface = self._surfaces[view_id]
        return {"can_go_back": surface.can_go_back, "can_go_forward": surface.can_go_forward}

    def _on_navigation_start(self, view_id: str, params: dict[str, Any]) -> None:
        if not params.get("is_main_frame", True) or view_id not in self._states:
            return
        url = params.get("url") or self._states[view_id].url
        self._update(view_id, url=url, is_loading=True, error=None)
        self._emit_immediate(view_id)

    def _on_navigation_commit(self, view_id: str, params: dict[str, Any]) -> None:
        if view_id not in self._states:
            return
        url = params.get("url") or self._states[view_id].url
        self._update(view_id, url=url, **self._history_flags(view_id))
        self._emit_immediate(view_id)

    def _on_load_finish(self, view_id: str, params: dict[str, Any]) -> None:
        if view_id not in self._states:
            return
        self._update(view_id, is_loading=False, error=None, **self._history_flags(view_id))
        self._emit_immediate(view_id)

    def _on_load_fail(self, view_id: str, params: dict[str, Any]) -> None:
        if not params.get("is_main_frame", True) or view_id not in self._states:
            return
        error_code = params.get("error_code")
        if error_code == ABORTED_ERROR_CODE:
            return
        description = params.get("error_description") or f"Error {error_code}"
        logger.warning(f"Load failed in view {view_id}: {description}")
        self._update(view_id, is_loading=False, error=description)
        self._emit_immediate(view_id)

    def _on_title_changed(self, view_id: str, params: dict[str, Any]) -> None:
        if self._update(view_id, title=params.get("title", "")):
            self._emit_debounced(view_id)

    def _on_favicon_changed(self, view_id: str, params: dict[str, Any]) -> None:
        favicons = params.get("favicons") or []
        if favicons and self._update(view_id, favicon=favicons[0]):
            self._emit_debounced(view_id)

    def _on_in_page_navigation(self, view_id: str, params: dict[str, Any]) -> None:
        if not params.get("is_main_frame", True) or view_id not in self._states:
            return
        self._update(view_id, url=params.get("url", ""), **self._history_flags(view_id))
        self._emit_debounced(view_id)
