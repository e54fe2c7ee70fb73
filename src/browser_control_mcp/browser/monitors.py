"""
Network and console monitors

Each monitor keeps a rolling per-view buffer. Every entry is tagged with the
navigation it was captured in; a navigation start advances the view's
navigation index and evicts entries that fall outside the retention window
(the current navigation plus the two before it, by default).

Default queries return only the current navigation. Preserved queries return
the whole retention window.
"""

import time
from collections.abc import Iterable
from typing import Any, Generic, TypeVar

from ..utils.logging_config import get_logger
from .errors import MessageNotFoundError, NotFoundError, RequestNotFoundError
from .models import ConsoleMessage, NetworkRequest, RequestTiming

logger = get_logger(__name__)

DEFAULT_RETAINED_NAVIGATIONS = 3
DEFAULT_CONSOLE_BUFFER_SIZE = 1000

EntryT = TypeVar("EntryT", NetworkRequest, ConsoleMessage)


def _now_ms() -> float:
    return time.time() * 1000


class _NavigationBuffer(Generic[EntryT]):
    """Per-view entry lists with navigation tagging and retention"""

    id_prefix = ""
    not_found_error: type[NotFoundError] = NotFoundError

    def __init__(self, retained_navigations: int = DEFAULT_RETAINED_NAVIGATIONS) -> None:
        if retained_navigations < 1:
            raise ValueError("retained_navigations must be at least 1")
        self.retained_navigations = retained_navigations
        self._entries: dict[str, list[EntryT]] = {}
        self._navigation: dict[str, int] = {}
        self._counter = 0

    def _next_id(self) -> str:
        self._counter += 1
        return f"{self.id_prefix}_{self._counter}"

    def current_navigation(self, view_id: str) -> int:
        return self._navigation.get(view_id, 0)

    def on_navigation_start(self, view_id: str, params: dict[str, Any] | None = None) -> None:
        """Advance the view's navigation index and evict entries outside the window"""
        if params is not None and not params.get("is_main_frame", True):
            return
        navigation = self._navigation.get(view_id, 0) + 1
        self._navigation[view_id] = navigation
        oldest = navigation - (self.retained_navigations - 1)
        entries = self._entries.get(view_id)
        if entries:
            kept = [entry for entry in entries if entry.navigation >= oldest]
            evicted = len(entries) - len(kept)
            self._entries[view_id] = kept
            if evicted:
                logger.debug(f"Evicted {evicted} {self.id_prefix} entries for {view_id}")
        self._on_navigation(view_id)

    def _on_navigation(self, view_id: str) -> None:
        pass

    def _append(self, view_id: str, entry: EntryT) -> None:
        self._entries.setdefault(view_id, []).append(entry)

    def list(self, view_id: str, include_preserved: bool = False) -> list[EntryT]:
        """Entries of the current navigation, or of the whole window when preserved"""
        current = self.current_navigation(view_id)
        oldest = current - (self.retained_navigations - 1) if include_preserved else current
        return [entry for entry in self._entries.get(view_id, []) if entry.navigation >= oldest]

    def get(self, view_id: str, entry_id: str) -> EntryT | None:
        for entry in self._entries.get(view_id, []):
            if entry.id == entry_id:
                return entry
        return None

    def find(self, entry_id: str) -> EntryT | None:
        """Look an id up across every view"""
        for entries in self._entries.values():
            for entry in entries:
                if entry.id == entry_id:
                    return entry
        return None

    def lookup(self, entry_id: str, view_id: str | None = None) -> EntryT:
        """
        Find an entry, preferring the given view.

        Raises:
            RequestNotFoundError / MessageNotFoundError: If no view holds the id
        """
        entry = (self.get(view_id, entry_id) if view_id else None) or self.find(entry_id)
        if entry is None:
            raise self.not_found_error(entry_id)
        return entry

    def clear(self, view_id: str) -> None:
        self._entries.pop(view_id, None)

    def forget(self, view_id: str) -> None:
        """Drop everything known about a destroyed view"""
        self._entries.pop(view_id, None)
        self._navigation.pop(view_id, None)


class NetworkMonitor(_NavigationBuffer[NetworkRequest]):
    """Captures requests from Network.* events"""

    id_prefix = "req"
    not_found_error = RequestNotFoundError

    def __init__(self, retained_navigations: int = DEFAULT_RETAINED_NAVIGATIONS) -> None:
        super().__init__(retained_navigations)
        # (view_id, CDP requestId) -> entry, for in-place updates
        self._by_request_id: dict[tuple[str, str], NetworkRequest] = {}
        self._started_at: dict[str, float] = {}

    def on_request_will_be_sent(self, view_id: str, params: dict[str, Any]) -> None:
        request = params.get("request") or {}
        wall_time = params.get("wallTime")
        entry = NetworkRequest(
            id=self._next_id(),
            url=request.get("url", ""),
            method=request.get("method", "GET"),
            resource_type=params.get("type") or "Other",
            navigation=self.current_navigation(view_id),
            request_headers=dict(request.get("headers") or {}),
            request_body=request.get("postData"),
            timing=RequestTiming(request_time=wall_time * 1000 if wall_time else _now_ms()),
        )
        request_id = params.get("requestId", entry.id)
        self._by_request_id[(view_id, request_id)] = entry
        if "timestamp" in params:
            self._started_at[entry.id] = params["timestamp"]
        self._append(view_id, entry)

    def on_response_received(self, view_id: str, params: dict[str, Any]) -> None:
        entry = self._by_request_id.get((view_id, params.get("requestId", "")))
        if entry is None:
            return
        response = params.get("response") or {}
        entry.status = response.get("status")
        entry.status_text = response.get("statusText")
        entry.mime_type = response.get("mimeType")
        entry.response_headers = dict(response.get("headers") or {})

        if entry.timing is not None:
            started = self._started_at.pop(entry.id, None)
            if started is not None and "timestamp" in params:
                entry.timing.duration = round((params["timestamp"] - started) * 1000)
                entry.timing.response_time = entry.timing.request_time + entry.timing.duration
            else:
                entry.timing.response_time = _now_ms()
                entry.timing.duration = round(entry.timing.response_time - entry.timing.request_time)

    def on_loading_failed(self, view_id: str, params: dict[str, Any]) -> None:
        entry = self._by_request_id.get((view_id, params.get("requestId", "")))
        if entry is not None:
            entry.error = params.get("errorText") or "Failed"

    def list(
        self,
        view_id: str,
        include_preserved: bool = False,
        resource_types: Iterable[str] | None = None,
    ) -> list[NetworkRequest]:
        requests = super().list(view_id, include_preserved)
        types = {t.lower() for t in resource_types or []}
        if types:
            requests = [r for r in requests if r.resource_type.lower() in types]
        return requests

    def _on_navigation(self, view_id: str) -> None:
        live = {entry.id for entry in self._entries.get(view_id, [])}
        for key in [k for k, v in self._by_request_id.items() if k[0] == view_id and v.id not in live]:
            self._started_at.pop(self._by_request_id.pop(key).id, None)

    def clear(self, view_id: str) -> None:
        super().clear(view_id)
        self._drop_request_ids(view_id)

    def forget(self, view_id: str) -> None:
        super().forget(view_id)
        self._drop_request_ids(view_id)

    def _drop_request_ids(self, view_id: str) -> None:
        for key in [k for k in self._by_request_id if k[0] == view_id]:
            self._started_at.pop(self._by_request_id.pop(key).id, None)


def _format_remote_object(arg: dict[str, Any]) -> str:
    if "value" in arg:
        value = arg["value"]
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
    if arg.get("unserializableValue"):
        return arg["unserializableValue"]
    if arg.get("description"):
        return arg["description"]
    if arg.get("type") == "undefined":
        return "undefined"
    return "[Object]"


def _format_stack_trace(stack_trace: dict[str, Any] | None) -> str | None:
    frames = (stack_trace or {}).get("callFrames") or []
    if not frames:
        return None
    lines = []
    for frame in frames:
        name = frame.get("functionName") or "<anonymous>"
        lines.append(
            f"at {name} ({frame.get('url', '')}:{frame.get('lineNumber', 0)}:{frame.get('columnNumber', 0)})"
        )
    return "\n".join(lines)


class ConsoleMonitor(_NavigationBuffer[ConsoleMessage]):
    """Captures Runtime.consoleAPICalled events, capped per view"""

    id_prefix = "msg"
    not_found_error = MessageNotFoundError

    def __init__(
        self,
        retained_navigations: int = DEFAULT_RETAINED_NAVIGATIONS,
        buffer_size: int = DEFAULT_CONSOLE_BUFFER_SIZE,
    ) -> None:
        super().__init__(retained_navigations)
        self.buffer_size = buffer_size

    def on_console_api_called(self, view_id: str, params: dict[str, Any]) -> None:
        args = params.get("args") or []
        stack_trace = params.get("stackTrace")
        frames = (stack_trace or {}).get("callFrames") or []

        message = ConsoleMessage(
            id=self._next_id(),
            type=params.get("type", "log"),
            text=" ".join(_format_remote_object(arg) for arg in args),
            timestamp=params.get("timestamp") or _now_ms(),
            navigation=self.current_navigation(view_id),
            stack_trace=_format_stack_trace(stack_trace),
            args=[arg.get("value") for arg in args],
        )
        if frames:
            message.url = frames[0].get("url")
            message.line_number = frames[0].get("lineNumber")

        self._append(view_id, message)
        entries = self._entries[view_id]
        if len(entries) > self.buffer_size:
            del entries[: len(entries) - self.buffer_size]

    def list(
        self,
        view_id: str,
        include_preserved: bool = False,
        types: Iterable[str] | None = None,
    ) -> list[ConsoleMessage]:
        messages = super().list(view_id, include_preserved)
        wanted = set(types or [])
        if wanted:
            messages = [m for m in messages if m.type in wanted]
        return messages
