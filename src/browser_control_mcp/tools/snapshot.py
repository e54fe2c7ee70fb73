"""Snapshot, screenshot and script evaluation tool handlers"""

import base64
import json
from pathlib import Path
from typing import Any

from ..browser.context import BrowserContext
from ..browser.errors import NoActiveViewError
from ..types import ToolResponse
from ..utils.logging_config import get_logger
from .shared import error_result, image_result, run_on_active_view, text_result

logger = get_logger(__name__)


def _write(file_path: str, data: str | bytes) -> Path:
    path = Path(file_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, bytes):
        path.write_bytes(data)
    else:
        path.write_text(data, encoding="utf-8")
    logger.info(f"Wrote {path}")
    return path


async def snapshot(context: BrowserContext, verbose: bool = False, file_path: str | None = None) -> ToolResponse:
    try:
        snap = await run_on_active_view(
            context, "browser_snapshot", lambda view_id: context.create_snapshot(view_id, verbose=verbose)
        )
        formatted = snap.format(verbose)
        if file_path:
            _write(file_path, formatted)
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to take snapshot: {e}")

    if file_path:
        return text_result(
            f"Snapshot saved to: {file_path}\n\nPage: {snap.title}\nURL: {snap.url}\nElements: {len(snap)}"
        )
    return text_result(formatted)


async def screenshot(
    context: BrowserContext,
    format: str = "png",
    quality: int | None = None,
    uid: str | None = None,
    full_page: bool = False,
    file_path: str | None = None,
) -> ToolResponse:
    if uid and full_page:
        return error_result('Providing both "uid" and "fullPage" is not allowed.')

    try:
        data, mime_type = await run_on_active_view(
            context,
            "browser_screenshot",
            lambda view_id: context.screenshot(view_id, format, quality, uid=uid, full_page=full_page),
        )
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to take screenshot: {e}")

    if uid:
        message = f'Took a screenshot of node with uid "{uid}".'
    elif full_page:
        message = "Took a screenshot of the full current page."
    else:
        message = "Took a screenshot of the current page's viewport."

    if file_path:
        try:
            _write(file_path, base64.b64decode(data))
        except OSError as e:
            return error_result(f"Failed to take screenshot: {e}")
        return text_result(f"{message}\nSaved screenshot to {file_path}.")
    return image_result(message, data, mime_type)


def _render(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2)
    if value is None:
        return "undefined"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


async def evaluate(context: BrowserContext, function: str, args: list[str] | None = None) -> ToolResponse:
    """
    Run a function in the page.

    Args:
        args: uids of snapshot elements passed to the function as arguments
    """
    if not function or not function.strip():
        return error_result("Script error: a function is required.")

    try:
        result = await run_on_active_view(
            context, "browser_evaluate", lambda view_id: context.evaluate(view_id, function, args)
        )
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Script error: {e}")
    return text_result(f"Script ran on page and returned:\n```json\n{_render(result)}\n```")
