"""Network request tool handlers"""

from ..browser.context import BrowserContext
from ..browser.errors import RequestNotFoundError
from ..browser.models import NetworkRequest
from ..types import ToolResponse
from ..utils.pagination import normalize_prefixed_id, paginate
from .shared import error_result, text_result, truncate

URL_PREVIEW_LENGTH = 100
BODY_PREVIEW_LENGTH = 2000

FILTERABLE_RESOURCE_TYPES = (
    "document",
    "stylesheet",
    "image",
    "media",
    "font",
    "script",
    "texttrack",
    "xhr",
    "fetch",
    "prefetch",
    "eventsource",
    "websocket",
    "manifest",
    "signedexchange",
    "ping",
    "cspviolationreport",
    "preflight",
    "fedcm",
    "other",
)


def _format_summary(request: NetworkRequest) -> list[str]:
    status = str(request.status) if request.status else "pending"
    duration = f"{request.timing.duration:g}ms" if request.timing and request.timing.duration else "-"
    lines = [
        f"[reqid={request.id}] {request.method} {status} {request.resource_type}",
        f"    URL: {truncate(request.url, URL_PREVIEW_LENGTH)}",
        f"    Duration: {duration}",
    ]
    if request.error:
        lines.append(f"    Error: {request.error}")
    lines.append("")
    return lines


def format_request_detail(request: NetworkRequest) -> str:
    lines = [
        f"# Network Request: reqid={request.id}",
        "",
        "## Basic Info",
        f"URL: {request.url}",
        f"Method: {request.method}",
        f"Resource Type: {request.resource_type}",
        f"Status: {request.status or 'pending'} {request.status_text or ''}",
        f"MIME Type: {request.mime_type or 'unknown'}",
        "",
    ]

    if request.timing:
        lines.extend(["## Timing", f"Duration: {request.timing.duration:g}ms", ""])

    if request.request_headers:
        lines.append("## Request Headers")
        lines.extend(f"{key}: {value}" for key, value in request.request_headers.items())
        lines.append("")

    if request.response_headers:
        lines.append("## Response Headers")
        lines.extend(f"{key}: {value}" for key, value in request.response_headers.items())
        lines.append("")

    if request.request_body:
        lines.extend(["## Request Body", "```", request.request_body[:BODY_PREVIEW_LENGTH]])
        if len(request.request_body) > BODY_PREVIEW_LENGTH:
            lines.append("... (truncated)")
        lines.extend(["```", ""])

    if request.error:
        lines.extend(["## Error", request.error])

    return "\n".join(lines)


async def list_network_requests(
    context: BrowserContext,
    page_size: int | None = None,
    page_idx: int = 0,
    resource_types: list[str] | None = None,
    include_preserved_requests: bool = False,
) -> ToolResponse:
    view_id = context.active_view_id()
    if view_id is None:
        return text_result("No network requests captured.")

    requests = context.network.list(view_id, include_preserved_requests, resource_types)
    try:
        page = paginate(requests, page_size, page_idx)
    except ValueError as e:
        return error_result(str(e))

    if not page.items:
        return text_result("No network requests captured.")

    if page_size is not None:
        lines = [f"Network Requests ({page.start + 1}-{page.end} of {page.total}):"]
    else:
        lines = [f"Network Requests ({page.total} total):"]
    lines.append("")

    for request in page.items:
        lines.extend(_format_summary(request))

    if page_size is not None and page.has_more:
        lines.append(f"Use page_idx={page_idx + 1} to see more requests.")

    return text_result("\n".join(lines))


async def get_network_request(context: BrowserContext, reqid: str | int | None = None) -> ToolResponse:
    request_id = normalize_prefixed_id(reqid, context.network.id_prefix)
    if request_id is None:
        return text_result("Nothing is currently selected in the DevTools Network panel.")

    try:
        request = context.network.lookup(request_id, context.active_view_id())
    except RequestNotFoundError as e:
        return error_result(str(e))
    return text_result(format_request_detail(request))
