"""Tests for the page and navigation tool handlers"""

import asyncio

import pytest

from browser_control_mcp.browser.models import Bounds
from browser_control_mcp.browser.surface import DIALOG_OPENING
from browser_control_mcp.tools import pages
from browser_control_mcp.tools.pages import DEFAULT_BOUNDS


class TestListAndSelect:
    """Tests for browser_list_pages and browser_select_page"""

    @pytest.mark.asyncio
    async def test_no_pages(self, context):
        result = await pages.list_pages(context)

        assert result == {"text": "No browser pages are currently open.", "is_error": False}

    @pytest.mark.asyncio
    async def test_list_pages(self, context, page, provider):
        provider.on_create = lambda surface: surface.page_titles.update({"https://example.org": "Example Org"})
        await context.new_view("https://example.org")

        result = await pages.list_pages(context)

        assert result["text"].splitlines() == [
            "Open browser pages:",
            "[0] New Tab - https://example.com",
            "[1] Example Org - https://example.org",
        ]

    @pytest.mark.asyncio
    async def test_select_page(self, context, page):
        first_id, _ = page
        await context.new_view("https://example.org")

        result = await pages.select_page(context, 0)

        assert result["text"] == "Selected page [0]: New Tab - https://example.com"
        assert context.active_view_id() == first_id

    @pytest.mark.asyncio
    async def test_select_out_of_range(self, context, page):
        result = await pages.select_page(context, 5)

        assert result["is_error"] is True
        assert result["text"] == "Invalid page index: 5. Valid range: 0-0"

    @pytest.mark.asyncio
    async def test_bring_to_front_uses_default_bounds(self, context, page):
        view_id, surface = page

        await pages.select_page(context, 0, bring_to_front=True)

        assert surface.shown == [DEFAULT_BOUNDS]
        assert context.registry.get_state(view_id).is_visible is True

    @pytest.mark.asyncio
    async def test_bring_to_front_keeps_existing_bounds(self, context, page):
        view_id, surface = page
        await context.registry.resize(view_id, Bounds(5, 5, 640, 480))

        await pages.select_page(context, 0, bring_to_front=True)

        assert surface.shown == [Bounds(5, 5, 640, 480)]

    @pytest.mark.asyncio
    async def test_bring_to_front_failure_is_not_an_error(self, context, page):
        _, surface = page

        async def broken_show(bounds):
            raise RuntimeError("window gone")

        surface.show = broken_show

        result = await pages.select_page(context, 0, bring_to_front=True)

        assert result["is_error"] is False


class TestNewAndClose:
    """Tests for browser_new_page and browser_close_page"""

    @pytest.mark.asyncio
    async def test_new_page(self, context):
        result = await pages.new_page(context, "https://example.com")

        assert result == {"text": "Created new page: New Tab - https://example.com", "is_error": False}

    @pytest.mark.asyncio
    async def test_new_page_blank(self, context):
        result = await pages.new_page(context)

        assert result["text"] == "Created new page: New Tab - about:blank"

    @pytest.mark.asyncio
    async def test_new_page_load_failure(self, context, provider):
        provider.on_create = lambda surface: surface.failing_urls.update(
            {"https://down.test": (-105, "net::ERR_NAME_NOT_RESOLVED")}
        )

        result = await pages.new_page(context, "https://down.test")

        assert result["is_error"] is True
        assert result["text"].startswith("Failed to create new page:")
        assert "net::ERR_NAME_NOT_RESOLVED" in result["text"]

    @pytest.mark.asyncio
    async def test_close_last_page_refused(self, context, page):
        result = await pages.close_page(context, 0)

        assert result == {"text": "The last open page cannot be closed.", "is_error": True}

    @pytest.mark.asyncio
    async def test_close_invalid_index(self, context, page):
        result = await pages.close_page(context, 3)

        assert result["is_error"] is True

    @pytest.mark.asyncio
    async def test_close_active_selects_neighbour(self, context, page):
        first_id, _ = page
        await context.new_view("https://example.org")
        third = await context.new_view("https://example.net")

        result = await pages.close_page(context, 2)

        assert result["text"] == "Closed page [2]: New Tab"
        assert third.id not in context.registry
        assert context.active_view_id() == context.list_views()[1].id

    @pytest.mark.asyncio
    async def test_close_first_active_selects_new_first(self, context, page):
        first_id, _ = page
        second = await context.new_view("https://example.org")
        context.select_view(first_id)

        await pages.close_page(context, 0)

        assert context.active_view_id() == second.id

    @pytest.mark.asyncio
    async def test_close_inactive_keeps_selection(self, context, page):
        first_id, _ = page
        second = await context.new_view("https://example.org")

        await pages.close_page(context, 0)

        assert context.active_view_id() == second.id

    @pytest.mark.asyncio
    async def test_close_timeout_is_an_error_result(self, context, page, monkeypatch):
        await context.new_view("https://example.org")
        context.tool_timeout_ms = 20

        async def slow_close(view_id):
            await asyncio.sleep(1)

        monkeypatch.setattr(context, "close_view", slow_close)

        result = await pages.close_page(context, 0)

        assert result == {"text": "browser_close_page timed out after 20ms", "is_error": True}


class TestNavigate:
    """Tests for browser_navigate"""

    @pytest.mark.asyncio
    async def test_navigate_url(self, context, page):
        result = await pages.navigate(context, "url", "https://example.org")

        assert result == {"text": "Successfully navigated to https://example.org.", "is_error": False}

    @pytest.mark.asyncio
    async def test_type_defaults_to_url(self, context, page):
        result = await pages.navigate(context, url="example.org")

        assert result["text"] == "Successfully navigated to https://example.org."

    @pytest.mark.asyncio
    async def test_neither_type_nor_url(self, context, page):
        result = await pages.navigate(context)

        assert result == {"text": "Either URL or a type is required.", "is_error": True}

    @pytest.mark.asyncio
    async def test_history_messages(self, context, page):
        await pages.navigate(context, "url", "https://example.org")

        assert (await pages.navigate(context, "back"))["text"] == "Successfully navigated back."
        assert (await pages.navigate(context, "forward"))["text"] == "Successfully navigated forward."
        assert (await pages.navigate(context, "reload"))["text"] == "Successfully reloaded the page."

    @pytest.mark.asyncio
    async def test_back_without_history(self, context, page):
        await pages.navigate(context, "back")
        result = await pages.navigate(context, "back")

        assert result["is_error"] is True
        assert result["text"].startswith("Unable to navigate in the selected page:")

    @pytest.mark.asyncio
    async def test_no_active_page(self, context):
        result = await pages.navigate(context, "url", "https://example.org")

        assert result == {"text": "No active browser page. Use browser_new_page first.", "is_error": True}

    @pytest.mark.asyncio
    async def test_navigation_timeout(self, context, page):
        _, surface = page
        surface.auto_finish = False

        result = await pages.navigate(context, "url", "https://slow.test", timeout_ms=30)

        assert result["is_error"] is True
        assert "timed out after 30ms" in result["text"]


class TestWaitAndResize:
    """Tests for browser_wait_for and browser_resize"""

    @pytest.mark.asyncio
    async def test_text_found(self, context, page):
        result = await pages.wait_for(context, "Submit")

        assert result == {"text": 'Element with text "Submit" found.', "is_error": False}

    @pytest.mark.asyncio
    async def test_wait_does_not_replace_stored_snapshot(self, context, page):
        view_id, _ = page
        stored = await context.create_snapshot(view_id)

        await pages.wait_for(context, "Submit")

        assert context.get_snapshot(view_id) is stored

    @pytest.mark.asyncio
    async def test_text_timeout(self, context, page):
        result = await pages.wait_for(context, "Never shown", timeout_ms=40)

        assert result == {"text": 'Timeout waiting for text: "Never shown"', "is_error": True}

    @pytest.mark.asyncio
    async def test_resize(self, context, page):
        result = await pages.resize(context, 1024, 768)

        assert result["text"] == "Viewport resized to: 1024x768"

    @pytest.mark.asyncio
    async def test_resize_invalid(self, context, page):
        result = await pages.resize(context, -1, 768)

        assert result["is_error"] is True
        assert result["text"].startswith("Resize failed:")


class TestHandleDialog:
    """Tests for browser_handle_dialog"""

    @pytest.mark.asyncio
    async def test_accept(self, context, page):
        _, surface = page
        surface.emit(DIALOG_OPENING, {"type": "confirm", "message": "Leave?"})

        result = await pages.handle_dialog(context, "accept")

        assert result == {"text": "Successfully accepted the dialog", "is_error": False}

    @pytest.mark.asyncio
    async def test_dismiss_with_prompt_text(self, context, page):
        _, surface = page
        surface.emit(DIALOG_OPENING, {"type": "prompt", "message": "Name?"})

        result = await pages.handle_dialog(context, "dismiss", "Ada")

        assert result["text"] == "Successfully dismissed the dialog"
        assert surface.sent("Page.handleJavaScriptDialog") == [{"accept": False, "promptText": "Ada"}]

    @pytest.mark.asyncio
    async def test_no_dialog(self, context, page):
        result = await pages.handle_dialog(context, "accept")

        assert result == {"text": "No open dialog found", "is_error": True}

    @pytest.mark.asyncio
    async def test_invalid_action(self, context, page):
        result = await pages.handle_dialog(context, "ignore")

        assert result["is_error"] is True

    @pytest.mark.asyncio
    async def test_dialog_handled_while_operation_holds_lock(self, context, page):
        view_id, surface = page
        surface.emit(DIALOG_OPENING, {"type": "alert", "message": "Blocking"})
        released = asyncio.Event()

        async def blocked_operation():
            await released.wait()

        holder = asyncio.create_task(context.run_exclusive(view_id, blocked_operation))
        await asyncio.sleep(0.01)

        result = await pages.handle_dialog(context, "accept")
        released.set()
        await holder

        assert result["is_error"] is False
