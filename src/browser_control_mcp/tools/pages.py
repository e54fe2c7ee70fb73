"""
Page and navigation tool handlers

Pages are addressed by their index in creation order, as listed by
browser_list_pages.
"""

from ..browser.context import BrowserContext
from ..browser.errors import NoActiveViewError, NoPendingDialogError, ToolTimeoutError
from ..browser.models import Bounds, ViewState
from ..types import ToolResponse
from ..utils.logging_config import get_logger
from .shared import error_result, run_on_active_view, text_result

logger = get_logger(__name__)

DEFAULT_BOUNDS = Bounds(0, 0, 1280, 800)

# Extra time the outer guard allows past a navigation's own timeout
NAVIGATION_GRACE_MS = 5000


def _describe(state: ViewState) -> str:
    return f"{state.title or 'Untitled'} - {state.url or 'about:blank'}"


def _navigation_guard(context: BrowserContext, timeout_ms: int | None) -> int:
    return max(context.tool_timeout_ms, (timeout_ms or context.navigation_timeout_ms) + NAVIGATION_GRACE_MS)


async def list_pages(context: BrowserContext) -> ToolResponse:
    states = context.list_views()
    if not states:
        return text_result("No browser pages are currently open.")

    lines = ["Open browser pages:"]
    for index, state in enumerate(states):
        lines.append(f"[{index}] {_describe(state)}")
    return text_result("\n".join(lines))


async def select_page(context: BrowserContext, page_idx: int, bring_to_front: bool = False) -> ToolResponse:
    states = context.list_views()
    if not 0 <= page_idx < len(states):
        return error_result(f"Invalid page index: {page_idx}. Valid range: 0-{len(states) - 1}")

    state = context.select_view(states[page_idx].id)
    if bring_to_front:
        try:
            await context.with_timeout(
                context.registry.show(state.id, state.bounds or DEFAULT_BOUNDS), None, "browser_select_page"
            )
        except Exception as e:
            logger.warning(f"Could not bring {state.id} to front: {e}")
    return text_result(f"Selected page [{page_idx}]: {_describe(state)}")


async def new_page(context: BrowserContext, url: str | None = None, timeout_ms: int | None = None) -> ToolResponse:
    try:
        state = await context.with_timeout(
            context.new_view(url, timeout_ms), _navigation_guard(context, timeout_ms), "browser_new_page"
        )
    except Exception as e:
        logger.error(f"browser_new_page failed: {e}")
        return error_result(f"Failed to create new page: {e}")
    return text_result(f"Created new page: {_describe(state)}")


async def close_page(context: BrowserContext, page_idx: int) -> ToolResponse:
    states = context.list_views()
    if not 0 <= page_idx < len(states):
        return error_result(f"Invalid page index: {page_idx}")
    if len(states) == 1:
        return error_result("The last open page cannot be closed.")

    state = states[page_idx]
    was_active = context.active_view_id() == state.id
    try:
        await context.with_timeout(context.close_view(state.id), None, "browser_close_page")
    except ToolTimeoutError as e:
        return error_result(str(e))

    if was_active:
        remaining = context.list_views()
        context.select_view(remaining[max(page_idx - 1, 0)].id)
    return text_result(f"Closed page [{page_idx}]: {state.title or 'Untitled'}")


async def navigate(
    context: BrowserContext,
    type: str | None = None,
    url: str | None = None,
    ignore_cache: bool = False,
    timeout_ms: int | None = None,
) -> ToolResponse:
    if type is None and not url:
        return error_result("Either URL or a type is required.")
    nav_type = type or "url"

    try:
        state = await run_on_active_view(
            context,
            "browser_navigate",
            lambda view_id: context.navigation.navigate(
                view_id, nav_type, url, ignore_cache=ignore_cache, timeout_ms=timeout_ms  # type: ignore[arg-type]
            ),
            _navigation_guard(context, timeout_ms),
        )
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Unable to navigate in the selected page: {e}.")

    if nav_type == "back":
        return text_result("Successfully navigated back.")
    if nav_type == "forward":
        return text_result("Successfully navigated forward.")
    if nav_type == "reload":
        return text_result("Successfully reloaded the page.")
    return text_result(f"Successfully navigated to {state.url or url}.")


async def wait_for(context: BrowserContext, text: str, timeout_ms: int | None = None) -> ToolResponse:
    try:
        await run_on_active_view(
            context,
            "browser_wait_for",
            lambda view_id: context.navigation.wait_for_text(
                text, lambda: context.snapshot_text(view_id), timeout_ms
            ),
            _navigation_guard(context, timeout_ms),
        )
    except NoActiveViewError as e:
        return error_result(str(e))
    except ToolTimeoutError:
        return error_result(f'Timeout waiting for text: "{text}"')
    except Exception as e:
        logger.warning(f"browser_wait_for failed: {e}")
        return error_result(f'Failed waiting for text: "{text}": {e}')
    return text_result(f'Element with text "{text}" found.')


async def resize(context: BrowserContext, width: int, height: int) -> ToolResponse:
    try:
        await run_on_active_view(
            context,
            "browser_resize",
            lambda view_id: context.navigation.set_viewport_size(view_id, width, height),
        )
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Resize failed: {e}")
    return text_result(f"Viewport resized to: {width}x{height}")


async def handle_dialog(context: BrowserContext, action: str, prompt_text: str | None = None) -> ToolResponse:
    if action not in ("accept", "dismiss"):
        return error_result(f"Invalid dialog action: {action}. Use 'accept' or 'dismiss'.")

    # Bypasses the view lock: the operation holding it may be blocked on this dialog
    try:
        await context.with_timeout(
            context.handle_dialog(action == "accept", prompt_text), None, "browser_handle_dialog"
        )
    except (NoActiveViewError, NoPendingDialogError) as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to handle dialog: {e}")
    return text_result(f"Successfully {action}ed the dialog")
