"""Console message tool handlers"""

import json
from datetime import datetime

from ..browser.context import BrowserContext
from ..browser.errors import MessageNotFoundError
from ..browser.models import ConsoleMessage
from ..types import ToolResponse
from ..utils.pagination import normalize_prefixed_id, paginate
from .shared import error_result, text_result, truncate

TEXT_PREVIEW_LENGTH = 200

FILTERABLE_MESSAGE_TYPES = (
    "log",
    "debug",
    "info",
    "error",
    "warning",
    "dir",
    "dirxml",
    "table",
    "trace",
    "clear",
    "startGroup",
    "startGroupCollapsed",
    "endGroup",
    "assert",
    "profile",
    "profileEnd",
    "count",
    "timeEnd",
)


def _timestamp(message: ConsoleMessage) -> datetime:
    return datetime.fromtimestamp(message.timestamp / 1000)


def _location(message: ConsoleMessage) -> str:
    if message.line_number is None:
        return message.url or ""
    return f"{message.url}:{message.line_number}"


def format_message_detail(message: ConsoleMessage) -> str:
    lines = [
        f"# Console Message: msgid={message.id}",
        "",
        f"## Type: {message.type.upper()}",
        f"Timestamp: {_timestamp(message).strftime('%Y-%m-%d %H:%M:%S')}",
        "",
    ]

    if message.url:
        lines.extend(["## Source", f"File: {message.url}"])
        if message.line_number is not None:
            lines.append(f"Line: {message.line_number}")
        lines.append("")

    lines.extend(["## Message", "```", message.text, "```"])

    if message.stack_trace:
        lines.extend(["", "## Stack Trace", "```", message.stack_trace, "```"])

    if message.args:
        lines.extend(["", "## Arguments", "```json", json.dumps(message.args, indent=2, default=str), "```"])

    return "\n".join(lines)


async def list_console_messages(
    context: BrowserContext,
    page_size: int | None = None,
    page_idx: int = 0,
    types: list[str] | None = None,
    include_preserved_messages: bool = False,
) -> ToolResponse:
    view_id = context.active_view_id()
    if view_id is None:
        return text_result("No console messages captured.")

    messages = context.console.list(view_id, include_preserved_messages, types)
    try:
        page = paginate(messages, page_size, page_idx)
    except ValueError as e:
        return error_result(str(e))

    if not page.items:
        return text_result("No console messages captured.")

    if page_size is not None:
        lines = [f"Console Messages ({page.start + 1}-{page.end} of {page.total}):"]
    else:
        lines = [f"Console Messages ({page.total} total):"]
    lines.append("")

    for message in page.items:
        lines.append(f"[msgid={message.id}] {message.type.upper()} ({_timestamp(message).strftime('%H:%M:%S')})")
        lines.append(f"    {truncate(message.text, TEXT_PREVIEW_LENGTH)}")
        if message.url:
            lines.append(f"    at {_location(message)}")
        lines.append("")

    if page_size is not None and page.has_more:
        lines.append(f"Use page_idx={page_idx + 1} to see more messages.")

    return text_result("\n".join(lines))


async def get_console_message(context: BrowserContext, msgid: str | int) -> ToolResponse:
    message_id = normalize_prefixed_id(msgid, context.console.id_prefix)
    if message_id is None:
        return error_result(f"Message not found: {msgid}")
    try:
        message = context.console.lookup(message_id, context.active_view_id())
    except MessageNotFoundError as e:
        return error_result(str(e))
    return text_result(format_message_detail(message))
