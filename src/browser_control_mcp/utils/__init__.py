"""Utility modules for the Browser Control MCP Server."""

from .logging_config import get_logger, log_dict, log_tool_result, setup_file_logging
from .pagination import Page, normalize_prefixed_id, paginate

__all__ = [
    "Page",
    "get_logger",
    "log_dict",
    "log_tool_result",
    "normalize_prefixed_id",
    "paginate",
    "setup_file_logging",
]
