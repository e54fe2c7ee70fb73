"""Performance trace tool handlers"""

from ..browser.context import BrowserContext
from ..browser.errors import NoActiveViewError, TraceAlreadyRunningError
from ..types import ToolResponse
from .shared import error_result, run_on_active_view, text_result


async def perf_start(context: BrowserContext, reload: bool = False, auto_stop: bool = False) -> ToolResponse:
    timeout_ms = context.tool_timeout_ms + (context.performance.auto_stop_ms if auto_stop else 0)
    if reload:
        timeout_ms += 2 * context.navigation_timeout_ms

    try:
        summary = await run_on_active_view(
            context,
            "browser_perf_start",
            lambda view_id: context.performance.start(view_id, reload=reload, auto_stop=auto_stop),
            timeout_ms,
        )
    except (NoActiveViewError, TraceAlreadyRunningError) as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to start trace: {e}")

    if summary is not None:
        return text_result(summary.format())
    return text_result("The performance trace is being recorded. Use browser_perf_stop to stop it.")


async def perf_stop(context: BrowserContext) -> ToolResponse:
    view_id = context.performance.tracing_view_id
    if view_id is None:
        return text_result("No performance trace is running.")

    try:
        summary = await context.run_exclusive(view_id, context.performance.stop, label="browser_perf_stop")
    except Exception as e:
        return error_result(f"Failed to stop trace: {e}")

    if summary is None:
        return text_result("No performance trace is running.")
    return text_result(summary.format())


async def perf_insight(context: BrowserContext, insight_set_id: str, insight_name: str) -> ToolResponse:
    try:
        text = await run_on_active_view(
            context,
            "browser_perf_insight",
            lambda view_id: context.performance.insight(view_id, insight_set_id, insight_name),
        )
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to analyze insight: {e}")
    return text_result(text)
