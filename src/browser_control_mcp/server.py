"""
Browser Control MCP Server

An MCP server that drives a Chromium browser over the DevTools protocol and
exposes it to AI agents as a set of browser tools.

This server:
1. Connects to (or launches) a Chromium instance with remote debugging
2. Manages browser pages as views with a single active view
3. Addresses page elements through accessibility snapshot uids
4. Captures network requests and console messages per page
5. Emulates network/CPU/geolocation conditions and records performance traces
"""

import base64
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.utilities.types import Image

from .browser import BrowserContext, BrowserProcessManager, CDPSurfaceProvider, load_browser_config
from .middleware import MCPLoggingMiddleware
from .tools import console as console_tools
from .tools import emulation as emulation_tools
from .tools import input as input_tools
from .tools import network as network_tools
from .tools import pages as page_tools
from .tools import performance as performance_tools
from .tools import snapshot as snapshot_tools
from .types import FormElement, GeolocationInput, ToolResponse
from .utils.logging_config import get_logger, log_tool_result, setup_file_logging

# Configure logging using centralized utility
setup_file_logging(log_file="logs/browser-control-mcp.log")
logger = get_logger(__name__)

# Log Python interpreter information at startup

logger.info(f"Python interpreter: {sys.executable}")
logger.info(f"Python version: {sys.version}")

# Global components
browser_config = None
browser_context: BrowserContext | None = None


@asynccontextmanager
async def lifespan_context(server):
    """Lifespan context manager for startup and shutdown"""
    global browser_config, browser_context

    logger.info("Starting Browser Control MCP...")

    try:
        # Load configuration
        browser_config = load_browser_config()
        setup_file_logging(
            log_file=browser_config["log_file"],
            level=getattr(logging, browser_config["log_level"].upper(), logging.INFO),
        )

        process_manager = None
        if browser_config["launch_browser"]:
            process_manager = BrowserProcessManager(
                browser_config["launch"], browser_config["cdp_host"], browser_config["cdp_port"]
            )

        provider = CDPSurfaceProvider(browser_config["cdp_host"], browser_config["cdp_port"], process_manager)
        browser_context = BrowserContext(provider, browser_config)
        await browser_context.start()

        logger.info("Browser Control MCP started successfully")

        # Yield control to the server
        yield

    except Exception as e:
        logger.error(f"Failed to start Browser Control MCP: {e}", exc_info=True)
        raise

    finally:
        # Shutdown cleanup
        logger.info("Shutting down Browser Control MCP...")

        try:
            if browser_context:
                await browser_context.stop()
            logger.info("Browser Control MCP shut down successfully")

        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)

        browser_context = None


# Initialize the MCP server
mcp = FastMCP(
    name="Browser Control MCP",
    instructions="""
    This server controls a Chromium browser for AI agents.

    Start with browser_new_page (or browser_list_pages / browser_select_page)
    to get an active page. Call browser_snapshot to get the accessibility tree
    of the active page; every element in it has a uid such as "snap_3_12".
    Element tools (click, hover, fill, drag, upload) take these uids. Uids
    from an older snapshot are rejected once a newer snapshot was taken, so
    always use the latest snapshot.

    If a page opens an alert/confirm/prompt, use browser_handle_dialog.
    Network requests and console messages are kept for the last 3
    navigations of each page.
    """,
    lifespan=lifespan_context,
)

# Register MCP request/response logging middleware
# Logs all client MCP requests and responses with "CLIENT_MCP" prefix for easy filtering
# log_request_params=True: Log all tool parameters (at INFO level)
# log_response_data=True: Log all tool responses (at INFO level)
# max_log_length=10000: Log up to 10KB of data before truncation (full details)
mcp.add_middleware(
    MCPLoggingMiddleware(log_request_params=True, log_response_data=True, max_log_length=10000)
)


# =============================================================================
# HELPERS
# =============================================================================


def _require_context() -> BrowserContext:
    if browser_context is None:
        raise RuntimeError("Browser context not initialized")
    return browser_context


def _to_text(response: ToolResponse) -> str:
    """
    Convert a tool response into MCP text content.

    Raises:
        ToolError: If the response is an error, so the client sees isError
    """
    if response.get("is_error"):
        raise ToolError(response["text"])
    return response["text"]


def _to_content(response: ToolResponse) -> list[Any]:
    """Like _to_text, but attaches the image payload when there is one"""
    text = _to_text(response)
    if not response.get("image_data"):
        return [text]
    image_format = response.get("mime_type", "image/png").split("/")[-1]
    return [text, Image(data=base64.b64decode(response["image_data"]), format=image_format)]


# =============================================================================
# PAGE TOOLS
# =============================================================================


@mcp.tool()
@log_tool_result(logger)
async def browser_list_pages() -> str:
    """
    Get a list of pages open in the browser.

    Returns:
        One line per page: index, title and URL
    """
    return _to_text(await page_tools.list_pages(_require_context()))


@mcp.tool()
@log_tool_result(logger)
async def browser_select_page(page_idx: int, bring_to_front: bool = False) -> str:
    """
    Select a page as a context for future tool calls.

    Args:
        page_idx: The index of the page to select. Call browser_list_pages to list pages.
        bring_to_front: Whether to focus the page and bring it to the top.

    Returns:
        The selected page
    """
    return _to_text(await page_tools.select_page(_require_context(), page_idx, bring_to_front))


@mcp.tool()
@log_tool_result(logger)
async def browser_new_page(url: str | None = None, timeout: int | None = None) -> str:
    """
    Creates a new page, makes it the selected page and loads a URL in it.

    Args:
        url: URL to load in the new page. Default: the configured initial URL
        timeout: Maximum wait time in milliseconds. Default: 30000

    Returns:
        Title and URL of the new page
    """
    return _to_text(await page_tools.new_page(_require_context(), url, timeout))


@mcp.tool()
@log_tool_result(logger)
async def browser_close_page(page_idx: int) -> str:
    """
    Closes the page by its index. The last open page cannot be closed.

    Args:
        page_idx: The index of the page to close. Call browser_list_pages to list pages.

    Returns:
        Close result
    """
    return _to_text(await page_tools.close_page(_require_context(), page_idx))


# =============================================================================
# NAVIGATION TOOLS
# =============================================================================


@mcp.tool()
@log_tool_result(logger)
async def browser_navigate(
    type: str | None = None,
    url: str | None = None,
    ignore_cache: bool = False,
    timeout: int | None = None,
) -> str:
    """
    Navigates the currently selected page to a URL, or back, forward or reload.

    Args:
        type: Navigate the page by URL, back or forward in history, or reload: 'url', 'back', 'forward' or 'reload'
        url: Target URL (only type=url). Text that is not a URL is searched for.
        ignore_cache: Whether to ignore cache on reload
        timeout: Maximum wait time in milliseconds. Default: 30000

    Returns:
        Navigation result
    """
    return _to_text(await page_tools.navigate(_require_context(), type, url, ignore_cache, timeout))


@mcp.tool()
@log_tool_result(logger)
async def browser_wait_for(text: str, timeout: int | None = None) -> str:
    """
    Wait for the specified text to appear on the selected page.

    Args:
        text: Text to appear on the page
        timeout: Maximum wait time in milliseconds. Default: 30000

    Returns:
        Wait result
    """
    return _to_text(await page_tools.wait_for(_require_context(), text, timeout))


@mcp.tool()
@log_tool_result(logger)
async def browser_resize(width: int, height: int) -> str:
    """
    Resizes the selected page's viewport so the page has the given dimensions.

    Args:
        width: Page width in CSS pixels
        height: Page height in CSS pixels

    Returns:
        Resize result
    """
    return _to_text(await page_tools.resize(_require_context(), width, height))


@mcp.tool()
@log_tool_result(logger)
async def browser_handle_dialog(action: str, prompt_text: str | None = None) -> str:
    """
    If a browser dialog was opened, use this command to handle it.

    Args:
        action: Whether to 'accept' or 'dismiss' the dialog
        prompt_text: Optional prompt text to enter into the dialog

    Returns:
        Dialog result
    """
    return _to_text(await page_tools.handle_dialog(_require_context(), action, prompt_text))


# =============================================================================
# INPUT TOOLS
# =============================================================================


@mcp.tool()
@log_tool_result(logger)
async def browser_click(uid: str, dbl_click: bool = False) -> str:
    """
    Clicks on the provided element.

    Args:
        uid: The uid of an element on the page from the page content snapshot
        dbl_click: Set to true for double clicks. Default is false.

    Returns:
        Click result
    """
    return _to_text(await input_tools.click(_require_context(), uid, dbl_click))


@mcp.tool()
@log_tool_result(logger)
async def browser_hover(uid: str) -> str:
    """
    Hover over the provided element.

    Args:
        uid: The uid of an element on the page from the page content snapshot

    Returns:
        Hover result
    """
    return _to_text(await input_tools.hover(_require_context(), uid))


@mcp.tool()
@log_tool_result(logger)
async def browser_fill(uid: str, value: str) -> str:
    """
    Type text into an input or text area, or select an option from a <select> element.

    Args:
        uid: The uid of an element on the page from the page content snapshot
        value: The value to fill in

    Returns:
        Fill result
    """
    return _to_text(await input_tools.fill(_require_context(), uid, value))


@mcp.tool()
@log_tool_result(logger)
async def browser_fill_form(elements: list[FormElement]) -> str:
    """
    Fill out multiple form elements at once.

    Args:
        elements: Elements from the snapshot to fill out, each with a uid and a value

    Returns:
        Fill result, listing any element that failed
    """
    return _to_text(await input_tools.fill_form(_require_context(), elements))


@mcp.tool()
@log_tool_result(logger)
async def browser_drag(from_uid: str, to_uid: str) -> str:
    """
    Drag an element onto another element.

    Args:
        from_uid: The uid of the element to drag
        to_uid: The uid of the element to drop into

    Returns:
        Drag result
    """
    return _to_text(await input_tools.drag(_require_context(), from_uid, to_uid))


@mcp.tool()
@log_tool_result(logger)
async def browser_press_key(key: str) -> str:
    """
    Press a key or key combination.

    Use this when other input methods like browser_fill cannot be used
    (e.g. keyboard shortcuts, navigation keys, or special key combinations).

    Args:
        key: A key or a combination (e.g. "Enter", "Control+A", "Control++", "Control+Shift+R").
            Modifiers: Control, Shift, Alt, Meta

    Returns:
        Key press result
    """
    return _to_text(await input_tools.press_key(_require_context(), key))


@mcp.tool()
@log_tool_result(logger)
async def browser_upload_file(uid: str, file_path: str) -> str:
    """
    Upload a file through a provided element.

    Args:
        uid: The uid of the file input element or an element that will open a file chooser
        file_path: The local path of the file to upload

    Returns:
        Upload result
    """
    return _to_text(await input_tools.upload_file(_require_context(), uid, file_path))


# =============================================================================
# SNAPSHOT & SCRIPT TOOLS
# =============================================================================


@mcp.tool()
@log_tool_result(logger)
async def browser_snapshot(verbose: bool = False, file_path: str | None = None) -> str:
    """
    Take a text snapshot of the currently selected page based on the a11y tree.

    The snapshot lists page elements along with a unique identifier (uid).
    Always use the latest snapshot. Prefer taking a snapshot over taking a
    screenshot.

    Args:
        verbose: Whether to include all possible information available in the full a11y tree. Default is false.
        file_path: Save the snapshot to this path instead of returning it

    Returns:
        The formatted accessibility tree, or a summary when saved to a file
    """
    return _to_text(await snapshot_tools.snapshot(_require_context(), verbose, file_path))


@mcp.tool(output_schema=None)
@log_tool_result(logger)
async def browser_screenshot(
    format: str = "png",
    quality: int | None = None,
    uid: str | None = None,
    full_page: bool = False,
    file_path: str | None = None,
) -> list[Any]:
    """
    Take a screenshot of the page or element.

    Args:
        format: Type of format to save the screenshot as: 'png', 'jpeg' or 'webp'. Default is "png"
        quality: Compression quality for JPEG and WebP formats (0-100). Default: 80. Ignored for PNG.
        uid: The uid of an element from the page content snapshot. If omitted takes a page screenshot.
        full_page: Take a screenshot of the full page instead of the visible viewport. Incompatible with uid.
        file_path: Save the screenshot to this path instead of attaching it to the response

    Returns:
        Description of the screenshot, followed by the image unless it was saved to a file
    """
    return _to_content(
        await snapshot_tools.screenshot(_require_context(), format, quality, uid, full_page, file_path)
    )


@mcp.tool()
@log_tool_result(logger)
async def browser_evaluate(function: str, args: list[str] | None = None) -> str:
    """
    Evaluate a JavaScript function inside the currently selected page.

    Returns the response as JSON, so returned values have to be JSON-serializable.

    Args:
        function: A JavaScript function declaration, e.g. `() => document.title`
            or `(el) => el.innerText` when an element is passed
        args: Optional uids of snapshot elements to pass to the function as arguments

    Returns:
        The JSON value returned by the function
    """
    return _to_text(await snapshot_tools.evaluate(_require_context(), function, args))


# =============================================================================
# NETWORK & CONSOLE TOOLS
# =============================================================================


@mcp.tool()
@log_tool_result(logger)
async def browser_network_requests(
    page_size: int | None = None,
    page_idx: int = 0,
    resource_types: list[str] | None = None,
    include_preserved_requests: bool = False,
) -> str:
    """
    List all requests for the currently selected page since the last navigation.

    Args:
        page_size: Maximum number of requests to return. When omitted, returns all requests.
        page_idx: Page number to return (0-based). When omitted, returns the first page.
        resource_types: Only return requests of these resource types (e.g. 'document', 'xhr', 'fetch')
        include_preserved_requests: Return the preserved requests over the last 3 navigations

    Returns:
        One entry per request with its reqid, method, status, type, URL and duration
    """
    return _to_text(
        await network_tools.list_network_requests(
            _require_context(), page_size, page_idx, resource_types, include_preserved_requests
        )
    )


@mcp.tool()
@log_tool_result(logger)
async def browser_network_request(reqid: str | int | None = None) -> str:
    """
    Gets a network request by its reqid.

    Args:
        reqid: The reqid of the network request (e.g. "req_4" or 4)

    Returns:
        Headers, timing, body and error details of the request
    """
    return _to_text(await network_tools.get_network_request(_require_context(), reqid))


@mcp.tool()
@log_tool_result(logger)
async def browser_console(
    page_size: int | None = None,
    page_idx: int = 0,
    types: list[str] | None = None,
    include_preserved_messages: bool = False,
) -> str:
    """
    List all console messages for the currently selected page since the last navigation.

    Args:
        page_size: Maximum number of messages to return. When omitted, returns all messages.
        page_idx: Page number to return (0-based). When omitted, returns the first page.
        types: Only return messages of these types (e.g. 'log', 'error', 'warning')
        include_preserved_messages: Return the preserved messages over the last 3 navigations

    Returns:
        One entry per message with its msgid, type, time, text and source
    """
    return _to_text(
        await console_tools.list_console_messages(
            _require_context(), page_size, page_idx, types, include_preserved_messages
        )
    )


@mcp.tool()
@log_tool_result(logger)
async def browser_console_message(msgid: str | int) -> str:
    """
    Gets a console message by its msgid. You can get all messages by calling browser_console.

    Args:
        msgid: The msgid of a console message (e.g. "msg_2" or 2)

    Returns:
        Type, source, text, stack trace and arguments of the message
    """
    return _to_text(await console_tools.get_console_message(_require_context(), msgid))


# =============================================================================
# EMULATION & PERFORMANCE TOOLS
# =============================================================================


@mcp.tool()
@log_tool_result(logger)
async def browser_emulate(
    network_conditions: str | None = None,
    cpu_throttling_rate: float | None = None,
    geolocation: GeolocationInput | None = None,
    clear_geolocation: bool = False,
) -> str:
    """
    Emulates various features on the selected page.

    Args:
        network_conditions: Throttle the network: 'No emulation', 'Offline', 'Slow 3G', 'Fast 3G',
            'Regular 4G', 'DSL' or 'WiFi'. 'No emulation' disables throttling.
        cpu_throttling_rate: CPU slowdown factor from 1 (no throttling) to 20
        geolocation: Latitude (-90 to 90) and longitude (-180 to 180) to report to the page
        clear_geolocation: Remove the geolocation override

    Returns:
        One line per applied setting
    """
    return _to_text(
        await emulation_tools.emulate(
            _require_context(), network_conditions, cpu_throttling_rate, geolocation, clear_geolocation
        )
    )


@mcp.tool()
@log_tool_result(logger)
async def browser_perf_start(reload: bool = False, auto_stop: bool = False) -> str:
    """
    Starts a performance trace recording on the selected page.

    Only one trace can be running at any given time.

    Args:
        reload: Reload the page once tracing has started
        auto_stop: Stop the trace automatically after a few seconds and return its summary

    Returns:
        Trace status, or the trace summary when auto_stop is set
    """
    return _to_text(await performance_tools.perf_start(_require_context(), reload, auto_stop))


@mcp.tool()
@log_tool_result(logger)
async def browser_perf_stop() -> str:
    """
    Stops the active performance trace recording.

    Returns:
        Trace summary with core metrics and the available insight sets
    """
    return _to_text(await performance_tools.perf_stop(_require_context()))


@mcp.tool()
@log_tool_result(logger)
async def browser_perf_insight(insight_set_id: str, insight_name: str) -> str:
    """
    Provides more detailed information on a specific performance insight.

    Args:
        insight_set_id: The id of the insight set, as listed by browser_perf_stop (e.g. "main")
        insight_name: The insight to explain: 'DocumentLatency', 'LCPBreakdown' or 'RenderBlocking'

    Returns:
        Insight details and recommendations
    """
    return _to_text(
        await performance_tools.perf_insight(_require_context(), insight_set_id, insight_name)
    )


# =============================================================================
# RESOURCES
# =============================================================================


@mcp.resource("browser-control://status")
async def get_browser_status() -> str:
    """Get the current browser status"""
    if browser_context:
        return json.dumps(browser_context.status(), indent=2, default=str)
    else:
        return "Browser Control MCP is not initialized"


# =============================================================================
# MAIN
# =============================================================================


def main() -> None:
    """Run the MCP server"""
    logger.info("Initializing Browser Control MCP Server...")
    mcp.run()


if __name__ == "__main__":
    main()
