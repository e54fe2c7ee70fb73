"""
MCP request/response logging middleware

Logs every client request handled by the server with a ``CLIENT_MCP`` prefix
so protocol traffic can be filtered out of the log file:

    CLIENT_MCP → Tool call: browser_click
    CLIENT_MCP   Tool 'browser_click' arguments: {"uid": "snap_1_4"}
    CLIENT_MCP ← Tool result: browser_click (12.3ms)
    CLIENT_MCP ✗ Tool error: browser_click (5.1ms) - RuntimeError: ...
"""

import json
import time
from typing import Any

from fastmcp.server.middleware import Middleware, MiddlewareContext

from ..utils.logging_config import get_logger

logger = get_logger(__name__)

PREFIX = "CLIENT_MCP"


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def _describe_error(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class MCPLoggingMiddleware(Middleware):
    """Logs MCP client requests, their timing and optionally their payloads"""

    def __init__(
        self,
        log_request_params: bool = True,
        log_response_data: bool = False,
        max_log_length: int = 5000,
    ):
        """
        Args:
            log_request_params: Log tool and prompt arguments
            log_response_data: Log tool and resource results
            max_log_length: Truncate logged payloads beyond this many characters
        """
        self.log_request_params = log_request_params
        self.log_response_data = log_response_data
        self.max_log_length = max_log_length

    def _truncate_data(self, data: Any, max_length: int | None = None) -> str:
        """Render data as JSON (str() if that fails) and cut it to max_length"""
        max_length = max_length or self.max_log_length
        try:
            rendered = json.dumps(data, default=str)
        except (TypeError, ValueError):
            rendered = str(data)

        if len(rendered) <= max_length:
            return rendered
        return f"{rendered[:max_length]}... ({len(rendered)} chars total)"

    def _log_arguments(self, tool_name: str, arguments: dict[str, Any] | None) -> None:
        if not arguments:
            logger.info(f"{PREFIX}   Tool '{tool_name}' arguments: (none)")
            return
        logger.info(f"{PREFIX}   Tool '{tool_name}' arguments: {self._truncate_data(arguments)}")

    def _log_result(self, tool_name: str, result: Any) -> None:
        logger.info(f"{PREFIX}   Tool '{tool_name}' result: {self._truncate_data(self._result_payload(result))}")

    @staticmethod
    def _result_payload(result: Any) -> Any:
        # ToolResult and friends expose their content blocks
        content = getattr(result, "content", None)
        if content is not None and not isinstance(result, dict):
            return [getattr(block, "text", None) or type(block).__name__ for block in content]
        return result

    # =========================================================================
    # Tools
    # =========================================================================

    async def on_call_tool(self, context: MiddlewareContext, call_next):
        tool_name = getattr(context.message, "name", "unknown")
        arguments = getattr(context.message, "arguments", None)

        logger.info(f"{PREFIX} → Tool call: {tool_name}")
        if self.log_request_params:
            self._log_arguments(tool_name, arguments)

        started = time.perf_counter()
        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(f"{PREFIX} ✗ Tool error: {tool_name} ({_elapsed_ms(started):.1f}ms) - {_describe_error(e)}")
            raise

        logger.info(f"{PREFIX} ← Tool result: {tool_name} ({_elapsed_ms(started):.1f}ms)")
        if self.log_response_data:
            self._log_result(tool_name, result)
        return result

    async def on_list_tools(self, context: MiddlewareContext, call_next):
        logger.info(f"{PREFIX} → List tools")
        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(f"{PREFIX} ✗ List tools error: {_describe_error(e)}")
            raise
        logger.info(f"{PREFIX} ← List tools result: {len(result or [])} tools")
        return result

    # =========================================================================
    # Resources
    # =========================================================================

    async def on_read_resource(self, context: MiddlewareContext, call_next):
        uri = getattr(context.message, "uri", "unknown")
        logger.info(f"{PREFIX} → Resource read: {uri}")

        started = time.perf_counter()
        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(f"{PREFIX} ✗ Resource error: {uri} ({_elapsed_ms(started):.1f}ms) - {_describe_error(e)}")
            raise

        logger.info(f"{PREFIX} ← Resource result: {uri} ({_elapsed_ms(started):.1f}ms)")
        if self.log_response_data:
            logger.info(f"{PREFIX}   Resource '{uri}' result: {self._truncate_data(self._result_payload(result))}")
        return result

    async def on_list_resources(self, context: MiddlewareContext, call_next):
        logger.info(f"{PREFIX} → List resources")
        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(f"{PREFIX} ✗ List resources error: {_describe_error(e)}")
            raise
        logger.info(f"{PREFIX} ← List resources result: {len(result or [])} resources")
        return result

    # =========================================================================
    # Prompts
    # =========================================================================

    async def on_get_prompt(self, context: MiddlewareContext, call_next):
        name = getattr(context.message, "name", "unknown")
        arguments = getattr(context.message, "arguments", None)

        logger.info(f"{PREFIX} → Prompt request: {name}")
        if self.log_request_params and arguments is not None:
            logger.info(f"{PREFIX}   Prompt arguments: {self._truncate_data(arguments)}")

        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(f"{PREFIX} ✗ Prompt error: {name} - {_describe_error(e)}")
            raise
        logger.info(f"{PREFIX} ← Prompt result: {name}")
        return result

    async def on_list_prompts(self, context: MiddlewareContext, call_next):
        logger.info(f"{PREFIX} → List prompts")
        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(f"{PREFIX} ✗ List prompts error: {_describe_error(e)}")
            raise
        logger.info(f"{PREFIX} ← List prompts result: {len(result or [])} prompts")
        return result

    # =========================================================================
    # Session
    # =========================================================================

    async def on_initialize(self, context: MiddlewareContext, call_next):
        params = getattr(context.message, "params", None)
        client_info = getattr(params, "clientInfo", None) if params is not None else None
        client_name = getattr(client_info, "name", None) or "unknown"
        client_version = getattr(client_info, "version", None) or "unknown"
        protocol = (getattr(params, "protocolVersion", None) if params is not None else None) or "unknown"

        logger.info(f"{PREFIX} → Initialize: {client_name} v{client_version} (protocol: {protocol})")
        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(f"{PREFIX} ✗ Initialize error: {_describe_error(e)}")
            raise
        logger.info(f"{PREFIX} ← Initialize complete")
        return result
