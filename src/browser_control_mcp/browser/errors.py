"""Exception hierarchy for browser control operations."""


class BrowserControlError(Exception):
    """Base exception for browser control operations."""

    pass


class NotFoundError(BrowserControlError):
    """An addressed entity does not exist."""

    pass


class ViewNotFoundError(NotFoundError):
    """Unknown view id."""

    def __init__(self, view_id: str):
        self.view_id = view_id
        super().__init__(f"View not found: {view_id}")


class ElementNotFoundError(NotFoundError):
    """Unknown uid, or the element behind it is gone."""

    def __init__(self, uid: str, message: str | None = None):
        self.uid = uid
        super().__init__(message or f"Element not found: {uid}")


class RequestNotFoundError(NotFoundError):
    """Unknown network request id."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class MessageNotFoundError(NotFoundError):
    """Unknown console message id."""

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Message not found: {message_id}")


class StaleSnapshotError(BrowserControlError):
    """A uid was taken from a snapshot that has since been superseded."""

    def __init__(self, uid: str, snapshot_id: str, current_snapshot_id: str):
        self.uid = uid
        self.snapshot_id = snapshot_id
        self.current_snapshot_id = current_snapshot_id
        super().__init__(
            f"Stale uid {uid}: snapshot {snapshot_id} was superseded by "
            f"{current_snapshot_id}. Take a new snapshot."
        )


class NoActiveViewError(BrowserControlError):
    """The operation needs a selected view but none is active."""

    def __init__(self, message: str = "No active browser page. Use browser_new_page first."):
        super().__init__(message)


class ToolTimeoutError(BrowserControlError):
    """An operation exceeded its time bound."""

    def __init__(self, label: str, timeout_ms: int):
        self.label = label
        self.timeout_ms = timeout_ms
        super().__init__(f"{label} timed out after {timeout_ms}ms")


class InvalidArgumentError(BrowserControlError):
    """Arguments are malformed or mutually exclusive."""

    pass


class EngineFailureError(BrowserControlError):
    """The underlying browser engine rejected or failed an operation."""

    pass


class CDPError(EngineFailureError):
    """A DevTools protocol command returned an error."""

    def __init__(self, method: str, error: dict | str):
        self.method = method
        self.error = error
        if isinstance(error, dict):
            detail = error.get("message", str(error))
            if error.get("data"):
                detail = f"{detail} ({error['data']})"
        else:
            detail = str(error)
        super().__init__(f"CDP {method} error: {detail}")


class NavigationError(EngineFailureError):
    """A navigation finished with a load failure."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Navigation to {url} failed: {reason}")


class OptionNotFoundError(BrowserControlError):
    """No option child of a combobox/listbox matches the requested text."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f'Could not find option with text "{value}"')


class NoPendingDialogError(BrowserControlError):
    """A dialog was handled while none was open."""

    def __init__(self) -> None:
        super().__init__("No open dialog found")


class TraceAlreadyRunningError(BrowserControlError):
    """A second performance trace was requested while one is recording."""

    def __init__(self) -> None:
        super().__init__(
            "Error: a performance trace is already running. Use browser_perf_stop to stop it. "
            "Only one trace can be running at any given time."
        )
