"""Tool handlers behind the MCP tools of the Browser Control server."""

from . import console, emulation, input, network, pages, performance, snapshot
from .shared import error_result, image_result, text_result

__all__ = [
    "console",
    "emulation",
    "error_result",
    "image_result",
    "input",
    "network",
    "pages",
    "performance",
    "snapshot",
    "text_result",
]
