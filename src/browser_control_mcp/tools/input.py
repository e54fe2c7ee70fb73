"""Element and keyboard input tool handlers"""

from ..browser.context import BrowserContext
from ..browser.errors import NoActiveViewError
from ..types import FormElement, ToolResponse
from ..utils.logging_config import get_logger
from .shared import error_result, run_on_active_view, text_result

logger = get_logger(__name__)


async def click(context: BrowserContext, uid: str, dbl_click: bool = False) -> ToolResponse:
    try:
        await run_on_active_view(
            context, "browser_click", lambda view_id: context.click(view_id, uid, double=dbl_click)
        )
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to click element {uid}: {e}")

    if dbl_click:
        return text_result("Successfully double clicked on the element")
    return text_result("Successfully clicked on the element")


async def hover(context: BrowserContext, uid: str) -> ToolResponse:
    try:
        await run_on_active_view(context, "browser_hover", lambda view_id: context.hover(view_id, uid))
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to hover element {uid}: {e}")
    return text_result("Successfully hovered over the element")


async def fill(context: BrowserContext, uid: str, value: str) -> ToolResponse:
    """Fill a text field, or pick the matching option of a combobox"""
    try:
        await run_on_active_view(
            context, "browser_fill", lambda view_id: context.fill_form_element(view_id, uid, value)
        )
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to fill element {uid}: {e}")
    return text_result("Successfully filled out the element")


async def fill_form(context: BrowserContext, elements: list[FormElement]) -> ToolResponse:
    """
    Fill several fields in order.

    Every field is attempted. The result is an error only when every field
    failed; otherwise failures are listed in a partial-success message.
    """
    if not elements:
        return error_result("No form elements given.")

    async def fill_all(view_id: str) -> list[str]:
        errors = []
        for element in elements:
            try:
                await context.fill_form_element(view_id, element["uid"], element["value"])
            except Exception as e:
                logger.warning(f"browser_fill_form: {element['uid']} failed: {e}")
                errors.append(f"{element['uid']}: {e}")
        return errors

    try:
        errors = await run_on_active_view(context, "browser_fill_form", fill_all)
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to fill out the form: {e}")

    if errors:
        text = "Partially filled out the form.\n\nErrors:\n" + "\n".join(errors)
        return {"text": text, "is_error": len(errors) == len(elements)}
    return text_result("Successfully filled out the form")


async def drag(context: BrowserContext, from_uid: str, to_uid: str) -> ToolResponse:
    try:
        await run_on_active_view(
            context, "browser_drag", lambda view_id: context.drag(view_id, from_uid, to_uid)
        )
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to drag: {e}")
    return text_result("Successfully dragged an element")


async def press_key(context: BrowserContext, key: str) -> ToolResponse:
    try:
        await run_on_active_view(context, "browser_press_key", lambda view_id: context.press_key(view_id, key))
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to press key: {e}")
    return text_result(f"Successfully pressed key: {key}")


async def upload_file(context: BrowserContext, uid: str, file_path: str) -> ToolResponse:
    try:
        await run_on_active_view(
            context, "browser_upload_file", lambda view_id: context.upload_file(view_id, uid, file_path)
        )
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Failed to upload file: {e}")
    return text_result(f"File uploaded from {file_path}.")
