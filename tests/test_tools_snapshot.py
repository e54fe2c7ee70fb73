"""Tests for the snapshot, screenshot and evaluate tool handlers"""

import base64

import pytest

from browser_control_mcp.browser.errors import EngineFailureError
from browser_control_mcp.tools import snapshot as snapshot_tools
from tests.fixtures.fake_surface import FAKE_IMAGE


class TestSnapshotTool:
    """Tests for browser_snapshot"""

    @pytest.mark.asyncio
    async def test_snapshot_text(self, context, page):
        result = await snapshot_tools.snapshot(context)

        lines = result["text"].splitlines()
        assert lines[0] == "# Page: New Tab"
        assert lines[1] == "URL: https://example.com"
        assert 'uid=snap_1_3 button "Submit"' in result["text"]

    @pytest.mark.asyncio
    async def test_snapshot_to_file(self, context, page, tmp_path):
        target = tmp_path / "out" / "snapshot.txt"

        result = await snapshot_tools.snapshot(context, file_path=str(target))

        assert result["text"].startswith(f"Snapshot saved to: {target}")
        assert "Elements: 8" in result["text"]
        assert 'uid=snap_1_3 button "Submit"' in target.read_text()

    @pytest.mark.asyncio
    async def test_snapshot_engine_failure(self, context, page):
        _, surface = page
        surface.fail_command("Accessibility.getFullAXTree", "Target crashed")

        result = await snapshot_tools.snapshot(context)

        assert result["is_error"] is True
        assert result["text"].startswith("Failed to take snapshot:")

    @pytest.mark.asyncio
    async def test_snapshot_without_page(self, context):
        result = await snapshot_tools.snapshot(context)

        assert result["is_error"] is True


class TestScreenshotTool:
    """Tests for browser_screenshot"""

    @pytest.mark.asyncio
    async def test_viewport(self, context, page):
        result = await snapshot_tools.screenshot(context)

        assert result["text"] == "Took a screenshot of the current page's viewport."
        assert result["mime_type"] == "image/png"
        assert base64.b64decode(result["image_data"]) == FAKE_IMAGE

    @pytest.mark.asyncio
    async def test_full_page(self, context, page):
        _, surface = page

        result = await snapshot_tools.screenshot(context, "jpeg", 60, full_page=True)

        assert result["text"] == "Took a screenshot of the full current page."
        assert surface.captures[0] == {"format": "jpeg", "quality": 60, "clip": None, "full_page": True}

    @pytest.mark.asyncio
    async def test_element(self, context, page):
        view_id, _ = page
        await context.create_snapshot(view_id)

        result = await snapshot_tools.screenshot(context, uid="snap_1_3")

        assert result["text"] == 'Took a screenshot of node with uid "snap_1_3".'

    @pytest.mark.asyncio
    async def test_uid_and_full_page(self, context, page):
        result = await snapshot_tools.screenshot(context, uid="snap_1_3", full_page=True)

        assert result == {"text": 'Providing both "uid" and "fullPage" is not allowed.', "is_error": True}

    @pytest.mark.asyncio
    async def test_save_to_file(self, context, page, tmp_path):
        target = tmp_path / "shots" / "page.png"

        result = await snapshot_tools.screenshot(context, file_path=str(target))

        assert "image_data" not in result
        assert result["text"].endswith(f"Saved screenshot to {target}.")
        assert target.read_bytes() == FAKE_IMAGE


class TestEvaluateTool:
    """Tests for browser_evaluate"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "value,rendered",
        [
            ({"a": 1}, '{\n  "a": 1\n}'),
            ([1, 2], "[\n  1,\n  2\n]"),
            (None, "undefined"),
            (True, "true"),
            (42, "42"),
            ("text", "text"),
        ],
    )
    async def test_result_rendering(self, context, page, value, rendered):
        _, surface = page
        surface.script_result = value

        result = await snapshot_tools.evaluate(context, "() => 1")

        assert result["text"] == f"Script ran on page and returned:\n```json\n{rendered}\n```"

    @pytest.mark.asyncio
    async def test_script_error(self, context, page):
        _, surface = page
        surface.script_error = EngineFailureError("ReferenceError: foo is not defined")

        result = await snapshot_tools.evaluate(context, "() => foo")

        assert result == {"text": "Script error: ReferenceError: foo is not defined", "is_error": True}

    @pytest.mark.asyncio
    async def test_empty_function(self, context, page):
        result = await snapshot_tools.evaluate(context, "  ")

        assert result["is_error"] is True

    @pytest.mark.asyncio
    async def test_element_args(self, context, page):
        view_id, surface = page
        await context.create_snapshot(view_id)
        surface.responses["Runtime.callFunctionOn"] = {"result": {"value": "Submit"}}

        result = await snapshot_tools.evaluate(context, "(el) => el.innerText", ["snap_1_3"])

        assert "Submit" in result["text"]
