"""
Helpers shared by the tool handlers

Handlers return a ToolResponse for every outcome. Exceptions raised by the
engine are turned into error responses here, at the tool boundary.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..browser.context import BrowserContext
from ..types import ToolResponse
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def text_result(text: str) -> ToolResponse:
    return {"text": text, "is_error": False}


def error_result(text: str) -> ToolResponse:
    return {"text": text, "is_error": True}


def image_result(text: str, data: str, mime_type: str) -> ToolResponse:
    return {"text": text, "is_error": False, "image_data": data, "mime_type": mime_type}


def truncate(text: str, limit: int, marker: str = "...") -> str:
    return text[:limit] + marker if len(text) > limit else text


async def run_on_active_view(
    context: BrowserContext,
    label: str,
    operation: Callable[[str], Awaitable[T]],
    timeout_ms: int | None = None,
) -> T:
    """
    Run operation(view_id) against the active view under its lock.

    Raises:
        NoActiveViewError: If no view is selected
        ToolTimeoutError: If the operation exceeds its time bound
    """
    view_id = context.require_active_view()
    logger.debug(f"{label} on {view_id}")
    return await context.run_exclusive(view_id, lambda: operation(view_id), timeout_ms, label)
