"""Tests for keyboard parsing and element input"""

import pytest

from browser_control_mcp.browser.errors import (
    CDPError,
    ElementNotFoundError,
    InvalidArgumentError,
    OptionNotFoundError,
)
from browser_control_mcp.browser.input import (
    DRAG_STEPS,
    MODIFIER_CONTROL,
    MODIFIER_META,
    MODIFIER_SHIFT,
    InputController,
    parse_key,
)
from browser_control_mcp.browser.snapshot import build_snapshot
from tests.fixtures.fake_surface import FakeSurface, form_page_tree


@pytest.fixture
def surface():
    return FakeSurface("v1")


@pytest.fixture
def snapshot():
    return build_snapshot(form_page_tree(), "snap_1")


@pytest.fixture
def controller():
    return InputController(platform="linux")


def mouse_events(surface):
    return surface.sent("Input.dispatchMouseEvent")


class TestParseKey:
    """Tests for parse_key"""

    def test_plain_letter(self):
        info = parse_key("a")

        assert (info.key, info.code, info.modifiers, info.text) == ("a", "KeyA", 0, "a")
        assert info.key_code == ord("A")

    def test_special_key(self):
        info = parse_key("Enter")

        assert info.code == "Enter"
        assert info.key_code == 13
        assert info.text == "\r"

    def test_modifier_combination(self):
        info = parse_key("Control+Shift+R")

        assert info.key == "R"
        assert info.modifiers == MODIFIER_CONTROL | MODIFIER_SHIFT
        assert info.text is None

    def test_shift_keeps_text(self):
        assert parse_key("Shift+a").text == "a"

    def test_plus_key(self):
        info = parse_key("Control++")

        assert info.key == "+"
        assert info.code == "Equal"
        assert info.modifiers == MODIFIER_CONTROL

    def test_lone_plus(self):
        assert parse_key("+").key == "+"

    def test_digit(self):
        assert parse_key("7").code == "Digit7"

    def test_function_key(self):
        assert parse_key("F5").key_code == 116

    def test_unknown_modifier(self):
        with pytest.raises(InvalidArgumentError, match="Unknown modifier"):
            parse_key("Hyper+a")

    def test_empty(self):
        with pytest.raises(InvalidArgumentError):
            parse_key("")

    def test_key_down_carries_text_key_up_does_not(self):
        info = parse_key("a")

        assert info.event("keyDown")["text"] == "a"
        assert "text" not in info.event("keyUp")


class TestMouse:
    """Tests for click, hover and drag"""

    @pytest.mark.asyncio
    async def test_click_at_center(self, controller, surface, snapshot):
        await controller.click(surface, snapshot.get("snap_1_3"))

        events = mouse_events(surface)
        assert [e["type"] for e in events] == ["mousePressed", "mouseReleased"]
        assert all((e["x"], e["y"], e["clickCount"]) == (60, 40, 1) for e in events)

    @pytest.mark.asyncio
    async def test_click_scrolls_first(self, controller, surface, snapshot):
        await controller.click(surface, snapshot.get("snap_1_3"))

        methods = [method for method, _ in surface.commands]
        assert methods.index("Runtime.callFunctionOn") < methods.index("Input.dispatchMouseEvent")

    @pytest.mark.asyncio
    async def test_double_click(self, controller, surface, snapshot):
        await controller.click(surface, snapshot.get("snap_1_3"), double=True)

        assert all(e["clickCount"] == 2 for e in mouse_events(surface))

    @pytest.mark.asyncio
    async def test_hover(self, controller, surface, snapshot):
        await controller.hover(surface, snapshot.get("snap_1_3"))

        assert mouse_events(surface) == [{"type": "mouseMoved", "x": 60, "y": 40}]

    @pytest.mark.asyncio
    async def test_click_without_layout(self, controller, surface, snapshot):
        surface.responses["DOM.getBoxModel"] = {"model": {}}

        with pytest.raises(Exception, match="Could not get bounding box"):
            await controller.click(surface, snapshot.get("snap_1_3"))

    @pytest.mark.asyncio
    async def test_drag_moves_in_steps(self, controller, surface, snapshot):
        boxes = iter([[0, 0, 20, 0, 20, 20, 0, 20], [100, 100, 120, 100, 120, 120, 100, 120]])
        surface.responses["DOM.getBoxModel"] = lambda params: {"model": {"content": next(boxes)}}

        await controller.drag(surface, snapshot.get("snap_1_2"), snapshot.get("snap_1_3"))

        events = mouse_events(surface)
        assert len(events) == DRAG_STEPS + 2
        assert events[0]["type"] == "mousePressed"
        assert (events[0]["x"], events[0]["y"]) == (10, 10)
        assert events[-1]["type"] == "mouseReleased"
        assert (events[-1]["x"], events[-1]["y"]) == (110, 110)
        assert (events[-2]["x"], events[-2]["y"]) == (110, 110)


class TestKeyboard:
    """Tests for fill and press_key"""

    @pytest.mark.asyncio
    async def test_fill_replaces_text(self, controller, surface, snapshot):
        await controller.fill(surface, snapshot.get("snap_1_2"), "ada@example.com")

        keys = surface.sent("Input.dispatchKeyEvent")
        assert keys[0]["key"] == "a"
        assert keys[0]["modifiers"] == MODIFIER_CONTROL
        assert keys[2]["key"] == "Backspace"
        assert surface.sent("DOM.focus") == [{"backendNodeId": 103}]
        assert surface.sent("Input.insertText") == [{"text": "ada@example.com"}]

    @pytest.mark.asyncio
    async def test_select_all_uses_meta_on_mac(self, surface, snapshot):
        controller = InputController(platform="darwin")

        await controller.fill(surface, snapshot.get("snap_1_2"), "x")

        assert surface.sent("Input.dispatchKeyEvent")[0]["modifiers"] == MODIFIER_META

    @pytest.mark.asyncio
    async def test_press_key(self, controller, surface):
        info = await controller.press_key(surface, "Control+a")

        events = surface.sent("Input.dispatchKeyEvent")
        assert [e["type"] for e in events] == ["keyDown", "keyUp"]
        assert info.modifiers == MODIFIER_CONTROL


class TestForms:
    """Tests for select_option and fill_form_element"""

    @pytest.mark.asyncio
    async def test_select_option(self, controller, surface, snapshot):
        await controller.select_option(surface, snapshot.get("snap_1_4"), "Germany")

        calls = surface.sent("Runtime.callFunctionOn")
        assert calls[0]["objectId"] == "obj-107"
        assert calls[-1]["objectId"] == "obj-105"
        assert calls[-1]["arguments"] == [{"value": "Germany"}]

    @pytest.mark.asyncio
    async def test_select_option_uses_option_value(self, controller, surface, snapshot):
        surface.responses["Runtime.callFunctionOn"] = {"result": {"value": "de"}}

        await controller.select_option(surface, snapshot.get("snap_1_4"), "Germany")

        assert surface.sent("Runtime.callFunctionOn")[-1]["arguments"] == [{"value": "de"}]

    @pytest.mark.asyncio
    async def test_select_missing_option(self, controller, surface, snapshot):
        with pytest.raises(OptionNotFoundError, match='Could not find option with text "Spain"'):
            await controller.select_option(surface, snapshot.get("snap_1_4"), "Spain")

    @pytest.mark.asyncio
    async def test_select_on_non_select(self, controller, surface, snapshot):
        with pytest.raises(InvalidArgumentError):
            await controller.select_option(surface, snapshot.get("snap_1_3"), "x")

    @pytest.mark.asyncio
    async def test_fill_form_element_selects_combobox(self, controller, surface, snapshot):
        await controller.fill_form_element(surface, snapshot.get("snap_1_4"), "France")

        assert surface.sent("Input.insertText") == []

    @pytest.mark.asyncio
    async def test_fill_form_element_falls_back_to_text(self, controller, surface, snapshot):
        await controller.fill_form_element(surface, snapshot.get("snap_1_4"), "Spain")

        assert surface.sent("Input.insertText") == [{"text": "Spain"}]

    @pytest.mark.asyncio
    async def test_fill_form_element_propagates_engine_errors(self, controller, surface, snapshot):
        surface.fail_command("DOM.resolveNode", "Internal error")

        with pytest.raises(CDPError):
            await controller.fill_form_element(surface, snapshot.get("snap_1_4"), "France")

        assert surface.sent("Input.insertText") == []

    @pytest.mark.asyncio
    async def test_fill_form_element_on_removed_combobox(self, controller, surface, snapshot):
        surface.fail_command("DOM.resolveNode", "No node with given id found")

        with pytest.raises(ElementNotFoundError, match="no longer in the page"):
            await controller.fill_form_element(surface, snapshot.get("snap_1_4"), "France")

        assert surface.sent("Input.insertText") == []

    @pytest.mark.asyncio
    async def test_fill_form_element_text_field(self, controller, surface, snapshot):
        await controller.fill_form_element(surface, snapshot.get("snap_1_2"), "hello")

        assert surface.sent("Input.insertText") == [{"text": "hello"}]


class TestUpload:
    """Tests for upload_file"""

    @pytest.mark.asyncio
    async def test_upload(self, controller, surface, snapshot, tmp_path):
        upload = tmp_path / "report.pdf"
        upload.write_bytes(b"%PDF")

        path = await controller.upload_file(surface, snapshot.get("snap_1_3"), str(upload))

        assert path == upload.resolve()
        assert surface.sent("DOM.setFileInputFiles") == [
            {"files": [str(upload.resolve())], "backendNodeId": 104}
        ]

    @pytest.mark.asyncio
    async def test_upload_missing_file(self, controller, surface, snapshot, tmp_path):
        with pytest.raises(InvalidArgumentError, match="File not found"):
            await controller.upload_file(surface, snapshot.get("snap_1_3"), str(tmp_path / "nope.txt"))
