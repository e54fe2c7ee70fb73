"""
Native dialog tracking

A view has at most one pending dialog (alert, confirm, prompt,
beforeunload). While one is pending, further dialog openings for the same
view are rejected: they are logged, counted and dismissed at the protocol
level, and the first dialog stays pending.
"""

import asyncio
from typing import Any

from ..utils.logging_config import get_logger
from .errors import CDPError, NoPendingDialogError
from .models import DialogInfo
from .surface import BrowserSurface

logger = get_logger(__name__)


class DialogController:
    """Pending-dialog state per view"""

    def __init__(self) -> None:
        self._pending: dict[str, DialogInfo] = {}
        self._rejected: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()

    def on_opening(self, view_id: str, surface: BrowserSurface, params: dict[str, Any]) -> None:
        dialog = DialogInfo(
            type=params.get("type", "alert"),
            message=params.get("message", ""),
            default_prompt=params.get("defaultPrompt"),
            url=params.get("url"),
        )

        if view_id in self._pending:
            self._rejected[view_id] = self._rejected.get(view_id, 0) + 1
            logger.warning(
                f"Rejecting {dialog.type} dialog in {view_id} while another is pending: {dialog.message!r}"
            )
            task = asyncio.ensure_future(
                surface.send_command("Page.handleJavaScriptDialog", {"accept": False})
            )
            self._tasks.add(task)
            task.add_done_callback(self._on_dismiss_done)
            return

        logger.info(f"Dialog opened in {view_id}: {dialog.type} {dialog.message!r}")
        self._pending[view_id] = dialog

    def on_closed(self, view_id: str, params: dict[str, Any] | None = None) -> None:
        """The page (or the user) closed the dialog without us"""
        if self._pending.pop(view_id, None) is not None:
            logger.info(f"Dialog in {view_id} closed")

    def get_pending_dialog(self, view_id: str) -> DialogInfo | None:
        return self._pending.get(view_id)

    def rejected_count(self, view_id: str) -> int:
        return self._rejected.get(view_id, 0)

    async def handle(
        self,
        view_id: str,
        surface: BrowserSurface,
        accept: bool,
        prompt_text: str | None = None,
    ) -> DialogInfo:
        """
        Accept or dismiss the pending dialog.

        Raises:
            NoPendingDialogError: If no dialog is pending for the view
        """
        dialog = self._pending.get(view_id)
        if dialog is None:
            raise NoPendingDialogError()

        params: dict[str, Any] = {"accept": accept}
        if prompt_text is not None:
            params["promptText"] = prompt_text

        try:
            await surface.send_command("Page.handleJavaScriptDialog", params)
        except CDPError as e:
            if "No dialog is showing" in str(e):
                self._pending.pop(view_id, None)
                raise NoPendingDialogError() from e
            raise

        self._pending.pop(view_id, None)
        logger.info(f"Dialog in {view_id} {'accepted' if accept else 'dismissed'}")
        return dialog

    def forget(self, view_id: str) -> None:
        self._pending.pop(view_id, None)
        self._rejected.pop(view_id, None)

    def _on_dismiss_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Failed to dismiss rejected dialog: {error}")
