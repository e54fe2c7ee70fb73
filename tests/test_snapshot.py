"""Tests for accessibility snapshot building, formatting and uid resolution"""

import pytest

from browser_control_mcp.browser.errors import (
    CDPError,
    ElementNotFoundError,
    EngineFailureError,
    StaleSnapshotError,
)
from browser_control_mcp.browser.snapshot import (
    build_snapshot,
    get_bounding_box,
    parse_uid,
    resolve_object_id,
    resolve_uid,
    scroll_into_view,
)
from tests.fixtures.fake_surface import FakeSurface, ax, form_page_tree, link_parents


class TestBuildSnapshot:
    """Tests for build_snapshot"""

    def test_uids_follow_preorder(self):
        snapshot = build_snapshot(form_page_tree(), "snap_1")

        roles = {uid: node.role for uid, node in snapshot.id_to_node.items()}
        assert roles == {
            "snap_1_0": "RootWebArea",
            "snap_1_1": "heading",
            "snap_1_2": "textbox",
            "snap_1_3": "button",
            "snap_1_4": "combobox",
            "snap_1_5": "option",
            "snap_1_6": "option",
            "snap_1_7": "link",
        }

    def test_unnamed_generic_with_one_child_is_hoisted(self):
        snapshot = build_snapshot(form_page_tree(), "snap_1")

        assert snapshot.root.children[-1].role == "link"
        assert snapshot.root.children[-1].name == "More info"

    def test_unnamed_generic_with_several_children_becomes_group(self):
        nodes = link_parents(
            [
                ax(1, "RootWebArea", "Page", children=(2,)),
                ax(2, "generic", "", children=(3, 4)),
                ax(3, "button", "One"),
                ax(4, "button", "Two"),
            ]
        )

        snapshot = build_snapshot(nodes, "snap_1")

        group = snapshot.root.children[0]
        assert group.role == "group"
        assert [child.name for child in group.children] == ["One", "Two"]

    def test_empty_generic_is_dropped(self):
        nodes = link_parents(
            [
                ax(1, "RootWebArea", "Page", children=(2, 3)),
                ax(2, "generic", ""),
                ax(3, "button", "Go"),
            ]
        )

        snapshot = build_snapshot(nodes, "snap_1")

        assert [child.role for child in snapshot.root.children] == ["button"]

    def test_ignored_nodes_are_collapsed(self):
        nodes = link_parents(
            [
                ax(1, "RootWebArea", "Page", children=(2,)),
                ax(2, "none", "", children=(3,), ignored=True),
                ax(3, "button", "Go"),
            ]
        )

        snapshot = build_snapshot(nodes, "snap_1")

        assert snapshot.root.children[0].name == "Go"

    def test_properties_are_applied(self):
        nodes = link_parents(
            [
                ax(1, "RootWebArea", "Page", children=(2, 3)),
                ax(2, "checkbox", "Agree", properties={"checked": True, "required": True}),
                ax(3, "textbox", "Name", value="Ada", properties={"disabled": True}),
            ]
        )

        snapshot = build_snapshot(nodes, "snap_1")

        checkbox, textbox = snapshot.root.children
        assert checkbox.checked is True
        assert checkbox.required is True
        assert textbox.value == "Ada"
        assert textbox.disabled is True

    def test_description_only_in_verbose(self):
        nodes = link_parents(
            [ax(1, "RootWebArea", "Page", children=(2,)), ax(2, "button", "Go", description="Submits")]
        )

        assert build_snapshot(nodes, "snap_1").root.children[0].description is None
        assert build_snapshot(nodes, "snap_1", verbose=True).root.children[0].description == "Submits"

    def test_deterministic(self):
        first = build_snapshot(form_page_tree(), "snap_4", url="https://a.test", title="A")
        second = build_snapshot(form_page_tree(), "snap_4", url="https://a.test", title="A")

        assert first.format() == second.format()
        assert list(first.id_to_node) == list(second.id_to_node)

    def test_cycles_do_not_loop(self):
        nodes = link_parents(
            [ax(1, "RootWebArea", "Page", children=(2,)), ax(2, "button", "Loop", children=(1,))]
        )

        snapshot = build_snapshot(nodes, "snap_1")

        assert len(snapshot) == 2

    def test_empty_tree_rejected(self):
        with pytest.raises(EngineFailureError):
            build_snapshot([], "snap_1")

    def test_snapshot_is_read_only(self):
        snapshot = build_snapshot(form_page_tree(), "snap_1")

        with pytest.raises(TypeError):
            snapshot.id_to_node["snap_1_99"] = snapshot.root  # type: ignore[index]


class TestFormatSnapshot:
    """Tests for the text outline"""

    def test_header_and_indentation(self):
        snapshot = build_snapshot(form_page_tree(), "snap_1", url="https://example.com", title="Test Page")

        lines = snapshot.format().splitlines()

        assert lines[0] == "# Page: Test Page"
        assert lines[1] == "URL: https://example.com"
        assert lines[2] == ""
        assert lines[3] == 'uid=snap_1_0 RootWebArea "Test Page"'
        assert lines[4] == '  uid=snap_1_1 heading "Welcome" level="1"'
        assert lines[5] == '  uid=snap_1_2 textbox "Email" focusable'
        assert lines[7] == '  uid=snap_1_4 combobox "Country" expandable'
        assert lines[8] == '    uid=snap_1_5 option "France"'
        assert lines[-1] == '  uid=snap_1_7 link "More info"'

    def test_flags(self):
        nodes = link_parents(
            [
                ax(1, "RootWebArea", "Page", children=(2, 3)),
                ax(2, "checkbox", "Agree", properties={"checked": True, "focused": True}),
                ax(3, "textbox", "Name", value="Ada"),
            ]
        )

        text = build_snapshot(nodes, "snap_1").format()

        assert 'uid=snap_1_1 checkbox "Agree" focusable focused checked' in text
        assert 'uid=snap_1_2 textbox "Name" value="Ada"' in text

    def test_verbose_description(self):
        nodes = link_parents(
            [ax(1, "RootWebArea", "Page", children=(2,)), ax(2, "button", "Go", description="Submits")]
        )

        snapshot = build_snapshot(nodes, "snap_1", verbose=True)

        assert 'description="Submits"' in snapshot.format(verbose=True)
        assert "description=" not in snapshot.format(verbose=False)


class TestResolveUid:
    """Tests for uid lookup against the current snapshot"""

    def test_parse_uid(self):
        assert parse_uid("snap_3_12") == ("snap_3", 12)
        assert parse_uid("garbage") is None

    def test_current_uid(self):
        snapshot = build_snapshot(form_page_tree(), "snap_2")

        assert resolve_uid(snapshot, "snap_2_3").name == "Submit"

    def test_older_snapshot_is_stale(self):
        snapshot = build_snapshot(form_page_tree(), "snap_2")

        with pytest.raises(StaleSnapshotError) as exc_info:
            resolve_uid(snapshot, "snap_1_3")

        assert exc_info.value.current_snapshot_id == "snap_2"

    def test_unknown_index_is_not_found(self):
        snapshot = build_snapshot(form_page_tree(), "snap_2")

        with pytest.raises(ElementNotFoundError):
            resolve_uid(snapshot, "snap_2_99")

    def test_future_snapshot_is_not_found(self):
        snapshot = build_snapshot(form_page_tree(), "snap_2")

        with pytest.raises(ElementNotFoundError):
            resolve_uid(snapshot, "snap_5_1")

    def test_no_snapshot_yet(self):
        with pytest.raises(ElementNotFoundError, match="No snapshot"):
            resolve_uid(None, "snap_1_1")


class TestDomHelpers:
    """Tests for the DOM helpers used by element operations"""

    @pytest.mark.asyncio
    async def test_bounding_box_from_content_quad(self):
        surface = FakeSurface("v1")
        node = build_snapshot(form_page_tree(), "snap_1").get("snap_1_3")

        box = await get_bounding_box(surface, node)

        assert (box.x, box.y, box.width, box.height) == (10, 20, 100, 40)
        assert box.center == (60, 40)
        assert surface.sent("DOM.getBoxModel") == [{"backendNodeId": 104}]

    @pytest.mark.asyncio
    async def test_bounding_box_without_layout(self):
        surface = FakeSurface("v1")
        surface.responses["DOM.getBoxModel"] = {"model": {}}
        node = build_snapshot(form_page_tree(), "snap_1").get("snap_1_3")

        assert await get_bounding_box(surface, node) is None

    @pytest.mark.asyncio
    async def test_missing_node_maps_to_element_not_found(self):
        surface = FakeSurface("v1")
        surface.fail_command("DOM.resolveNode", "No node with given id found")
        node = build_snapshot(form_page_tree(), "snap_1").get("snap_1_3")

        with pytest.raises(ElementNotFoundError, match="no longer in the page"):
            await resolve_object_id(surface, node)

    @pytest.mark.asyncio
    async def test_other_cdp_errors_propagate(self):
        surface = FakeSurface("v1")
        surface.fail_command("DOM.getBoxModel", "Internal error")
        node = build_snapshot(form_page_tree(), "snap_1").get("snap_1_3")

        with pytest.raises(CDPError):
            await get_bounding_box(surface, node)

    @pytest.mark.asyncio
    async def test_scroll_failure_is_not_fatal(self):
        surface = FakeSurface("v1")
        surface.fail_command("Runtime.callFunctionOn", "Execution context was destroyed")
        node = build_snapshot(form_page_tree(), "snap_1").get("snap_1_3")

        await scroll_into_view(surface, node)

        assert surface.sent("DOM.resolveNode") == [{"backendNodeId": 104}]
