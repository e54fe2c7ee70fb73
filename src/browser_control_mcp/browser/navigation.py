"""
Navigation and waiting

Navigations complete on lifecycle events, never by polling: a waiter future
is registered before the navigation is triggered and is resolved by the
next load-finish or load-fail of the view. Back/forward also complete on an
in-page navigation, and a url navigation does when the in-page url is the
one requested (fragment changes never fire a load). Every wait is bounded.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from ..utils.logging_config import get_logger
from .errors import InvalidArgumentError, NavigationError, ToolTimeoutError, ViewNotFoundError
from .models import ViewState
from .registry import ABORTED_ERROR_CODE, ViewRegistry
from .surface import BrowserSurface

logger = get_logger(__name__)

NavigationType = Literal["url", "back", "forward", "reload"]
NavigationState = Literal["idle", "navigating", "failed"]

NAVIGATION_TYPES = ("url", "back", "forward", "reload")


@dataclass
class _Waiter:
    future: asyncio.Future
    accept_in_page: bool = False
    target_url: str | None = None

    def accepts(self, params: dict[str, Any]) -> bool:
        if self.accept_in_page:
            return True
        return self.target_url is not None and _same_url(params.get("url", ""), self.target_url)


def _same_url(first: str, second: str) -> bool:
    return first.rstrip("/") == second.rstrip("/")


class NavigationController:
    """Event-driven navigation with bounded waits"""

    def __init__(
        self,
        registry: ViewRegistry,
        navigation_timeout_ms: int = 30_000,
        wait_poll_ms: int = 500,
    ) -> None:
        self.registry = registry
        self.navigation_timeout_ms = navigation_timeout_ms
        self.wait_poll_ms = wait_poll_ms
        self._waiters: dict[str, list[_Waiter]] = {}
        self._states: dict[str, NavigationState] = {}

    def state(self, view_id: str) -> NavigationState:
        return self._states.get(view_id, "idle")

    def _surface(self, view_id: str) -> BrowserSurface:
        surface = self.registry.get_surface(view_id)
        if surface is None:
            raise ViewNotFoundError(view_id)
        return surface

    # =========================================================================
    # Lifecycle event handlers
    # =========================================================================

    def on_load_finish(self, view_id: str, params: dict[str, Any]) -> None:
        self._resolve(view_id, ("finish", params))

    def on_load_fail(self, view_id: str, params: dict[str, Any]) -> None:
        if not params.get("is_main_frame", True) or params.get("error_code") == ABORTED_ERROR_CODE:
            return
        self._resolve(view_id, ("fail", params))

    def on_in_page_navigation(self, view_id: str, params: dict[str, Any]) -> None:
        if not params.get("is_main_frame", True):
            return
        self._resolve(view_id, ("in-page", params), in_page=True)

    def _resolve(self, view_id: str, outcome: tuple[str, dict[str, Any]], in_page: bool = False) -> None:
        remaining = []
        for waiter in self._waiters.get(view_id, []):
            if waiter.future.done():
                continue
            if in_page and not waiter.accepts(outcome[1]):
                remaining.append(waiter)
                continue
            waiter.future.set_result(outcome)
        if remaining:
            self._waiters[view_id] = remaining
        else:
            self._waiters.pop(view_id, None)

    def forget(self, view_id: str) -> None:
        for waiter in self._waiters.pop(view_id, []):
            if not waiter.future.done():
                waiter.future.cancel()
        self._states.pop(view_id, None)

    # =========================================================================
    # Navigation
    # =========================================================================

    async def navigate(
        self,
        view_id: str,
        type: NavigationType = "url",
        url: str | None = None,
        ignore_cache: bool = False,
        timeout_ms: int | None = None,
    ) -> ViewState:
        """
        Navigate a view and wait for the load to settle.

        Raises:
            InvalidArgumentError: Bad type, missing url, or no history to move through
            ToolTimeoutError: The load did not settle in time
            NavigationError: The load failed
            ViewNotFoundError: Unknown view
        """
        if type not in NAVIGATION_TYPES:
            raise InvalidArgumentError(f"Unknown navigation type: {type}")
        if type == "url" and not (url and url.strip()):
            raise InvalidArgumentError("A URL is required for navigation of type=url.")

        surface = self._surface(view_id)
        if type == "back" and not surface.can_go_back:
            raise InvalidArgumentError("Cannot navigate back: there is no previous page in history.")
        if type == "forward" and not surface.can_go_forward:
            raise InvalidArgumentError("Cannot navigate forward: there is no next page in history.")

        timeout_ms = timeout_ms or self.navigation_timeout_ms
        label = f"Navigation to {url}" if type == "url" else f"Navigation ({type})"
        target_url = self.registry.normalize(url) if type == "url" else None  # type: ignore[arg-type]
        waiter = self._add_waiter(view_id, accept_in_page=type in ("back", "forward"), target_url=target_url)
        self._states[view_id] = "navigating"
        logger.info(f"{label} in {view_id}")

        try:
            if type == "url":
                started = await self.registry.navigate(view_id, url)  # type: ignore[arg-type]
                if not started:
                    state = self.registry.get_state(view_id)
                    raise NavigationError(url or "", (state.error if state else None) or "could not start loading")
            elif type == "back":
                await self.registry.go_back(view_id)
            elif type == "forward":
                await self.registry.go_forward(view_id)
            else:
                await self.registry.reload(view_id, ignore_cache=ignore_cache)

            try:
                kind, params = await asyncio.wait_for(waiter.future, timeout_ms / 1000)
            except asyncio.TimeoutError:
                raise ToolTimeoutError(label, timeout_ms) from None

            if kind == "fail":
                reason = params.get("error_description") or f"Error {params.get('error_code')}"
                raise NavigationError(params.get("url") or url or surface.url, reason)

        except Exception:
            self._states[view_id] = "failed"
            raise
        finally:
            self._discard_waiter(view_id, waiter)

        self._states[view_id] = "idle"
        state = self.registry.get_state(view_id)
        if state is None:
            raise ViewNotFoundError(view_id)
        return state

    async def wait_for_load(self, view_id: str, timeout_ms: int | None = None) -> ViewState:
        """Wait until the view's current load settles; returns at once if idle"""
        self._surface(view_id)
        state = self.registry.get_state(view_id)
        if state is None or not state.is_loading:
            return state  # type: ignore[return-value]

        timeout_ms = timeout_ms or self.navigation_timeout_ms
        waiter = self._add_waiter(view_id)
        try:
            await asyncio.wait_for(waiter.future, timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise ToolTimeoutError(f"Waiting for {view_id} to load", timeout_ms) from None
        finally:
            self._discard_waiter(view_id, waiter)
        return self.registry.get_state(view_id)  # type: ignore[return-value]

    async def wait_for_text(
        self,
        text: str,
        text_source: Callable[[], Awaitable[str]],
        timeout_ms: int | None = None,
    ) -> None:
        """
        Poll text_source until it contains text.

        The last poll happens at the deadline; the loop never sleeps past it.

        Raises:
            ToolTimeoutError: If the text does not appear before the deadline
        """
        timeout_ms = timeout_ms or self.navigation_timeout_ms
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        poll_s = self.wait_poll_ms / 1000

        while True:
            if text in await text_source():
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ToolTimeoutError(f'Waiting for text "{text}"', timeout_ms)
            await asyncio.sleep(min(poll_s, remaining))

    async def set_viewport_size(self, view_id: str, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise InvalidArgumentError(f"Invalid viewport size: {width}x{height}")
        surface = self._surface(view_id)
        await surface.send_command(
            "Emulation.setDeviceMetricsOverride",
            {
                "width": width,
                "height": height,
                "deviceScaleFactor": 1,
                "mobile": False,
                "screenWidth": width,
                "screenHeight": height,
            },
        )

    def _add_waiter(
        self, view_id: str, accept_in_page: bool = False, target_url: str | None = None
    ) -> _Waiter:
        waiter = _Waiter(asyncio.get_running_loop().create_future(), accept_in_page, target_url)
        self._waiters.setdefault(view_id, []).append(waiter)
        return waiter

    def _discard_waiter(self, view_id: str, waiter: _Waiter) -> None:
        waiters = self._waiters.get(view_id)
        if waiters and waiter in waiters:
            waiters.remove(waiter)
            if not waiters:
                self._waiters.pop(view_id, None)
