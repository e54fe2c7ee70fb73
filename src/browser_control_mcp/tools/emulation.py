"""Emulation tool handler"""

from ..browser.context import BrowserContext
from ..browser.emulation import UNSET, Geolocation
from ..browser.errors import InvalidArgumentError, NoActiveViewError
from ..types import GeolocationInput, ToolResponse
from .shared import error_result, run_on_active_view, text_result


async def emulate(
    context: BrowserContext,
    network_conditions: str | None = None,
    cpu_throttling_rate: float | None = None,
    geolocation: GeolocationInput | None = None,
    clear_geolocation: bool = False,
) -> ToolResponse:
    """
    Apply network, CPU and geolocation emulation to the active page.

    Settings that are not given stay as they are. Each setting is applied on
    its own; the result is an error only if nothing could be applied.
    """
    if geolocation is not None and clear_geolocation:
        return error_result("Emulation failed: pass either geolocation or clear_geolocation, not both.")

    geo: Geolocation | None | object = UNSET
    try:
        if geolocation is not None:
            geo = Geolocation(float(geolocation["latitude"]), float(geolocation["longitude"]))
        elif clear_geolocation:
            geo = None
    except (InvalidArgumentError, KeyError, TypeError, ValueError) as e:
        return error_result(f"Emulation failed: {e}")

    try:
        result = await run_on_active_view(
            context,
            "browser_emulate",
            lambda view_id: context.emulation.emulate(
                view_id,
                context.surface(view_id),
                network=network_conditions,
                cpu_rate=cpu_throttling_rate,
                geolocation=geo,  # type: ignore[arg-type]
            ),
        )
    except NoActiveViewError as e:
        return error_result(str(e))
    except Exception as e:
        return error_result(f"Emulation failed: {e}")

    if not result.changed:
        return text_result("No emulation settings changed.")
    if not result.applied:
        return error_result("Emulation failed: " + "; ".join(result.errors))

    lines = list(result.applied)
    if result.errors:
        lines.extend(["", "Errors:", *result.errors])
    return text_result("\n".join(lines))
