"""
Debounce scheduler keyed by view id.

Each key holds at most one pending timer. Scheduling again replaces the
pending timer, so a burst of calls inside the window runs the callback once,
with whatever state exists when the window closes.
"""

import asyncio
from collections.abc import Callable

from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class DebounceScheduler:
    """Per-key trailing-edge debounce on the running event loop"""

    def __init__(self, delay_s: float = 0.05) -> None:
        self.delay_s = delay_s
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._callbacks: dict[str, Callable[[], None]] = {}

    def schedule(self, key: str, callback: Callable[[], None]) -> None:
        """
        Run callback once delay_s after the last schedule() for key.

        Must be called from within a running event loop.
        """
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._callbacks[key] = callback
        self._handles[key] = loop.call_later(self.delay_s, self._fire, key)

    def cancel(self, key: str) -> bool:
        """Drop the pending timer for key. Returns True if one was pending."""
        handle = self._handles.pop(key, None)
        self._callbacks.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def flush(self, key: str) -> bool:
        """Run the pending callback for key now. Returns True if one ran."""
        callback = self._callbacks.get(key)
        if callback is None:
            return False
        self.cancel(key)
        callback()
        return True

    def pending(self, key: str) -> bool:
        return key in self._handles

    def cancel_all(self) -> None:
        for key in list(self._handles):
            self.cancel(key)

    def _fire(self, key: str) -> None:
        self._handles.pop(key, None)
        callback = self._callbacks.pop(key, None)
        if callback is None:
            return
        try:
            callback()
        except Exception as e:
            logger.error(f"Debounced callback for {key} failed: {e}", exc_info=True)
