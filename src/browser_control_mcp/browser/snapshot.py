"""
Accessibility snapshots

Converts the flat node list returned by Accessibility.getFullAXTree into a
tree of AccessibilityNode objects, assigns each node a uid of the form
``{snapshotId}_{index}``, and renders the tree as an indented outline.

A uid is only meaningful against the snapshot that produced it. Resolving a
uid from a superseded snapshot raises StaleSnapshotError; resolving an
unknown uid raises ElementNotFoundError.
"""

import re
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ..utils.logging_config import get_logger
from .errors import CDPError, ElementNotFoundError, EngineFailureError, StaleSnapshotError
from .models import BoundingBox
from .surface import BrowserSurface

logger = get_logger(__name__)

INTERACTIVE_ROLES = frozenset(
    {
        "button",
        "link",
        "textbox",
        "searchbox",
        "combobox",
        "listbox",
        "option",
        "checkbox",
        "radio",
        "switch",
        "slider",
        "spinbutton",
        "menuitem",
        "menuitemcheckbox",
        "menuitemradio",
        "tab",
        "treeitem",
        "gridcell",
        "columnheader",
        "rowheader",
    }
)

STRUCTURAL_ROLES = frozenset(
    {
        "heading",
        "img",
        "figure",
        "table",
        "list",
        "listitem",
        "navigation",
        "main",
        "article",
        "region",
        "banner",
        "contentinfo",
        "complementary",
        "form",
        "search",
        "dialog",
        "alertdialog",
        "alert",
        "status",
        "tooltip",
        "progressbar",
        "meter",
    }
)

SNAPSHOT_ID_PATTERN = re.compile(r"^snap_(\d+)$")
_UID_PATTERN = re.compile(r"^(?P<snapshot>.+)_(?P<index>\d+)$")

# CDP error texts meaning the backend node no longer exists
_NODE_GONE_MARKERS = (
    "No node with given id",
    "Could not find node with given id",
    "No node found",
    "Node is detached",
    "Cannot find context with specified id",
)


@dataclass
class AccessibilityNode:
    """One node of a snapshot tree."""

    uid: str
    role: str
    name: str
    backend_node_id: int = 0
    children: list["AccessibilityNode"] = field(default_factory=list)
    value: str | None = None
    description: str | None = None
    focused: bool | None = None
    checked: bool | None = None
    disabled: bool | None = None
    expanded: bool | None = None
    selected: bool | None = None
    required: bool | None = None
    level: int | None = None
    bounding_box: BoundingBox | None = None

    def has_option_children(self) -> bool:
        return any(child.role == "option" for child in self.children)


@dataclass(frozen=True)
class AccessibilitySnapshot:
    """Immutable capture of a view's element tree"""

    root: AccessibilityNode
    snapshot_id: str
    timestamp: float
    url: str
    title: str
    id_to_node: Mapping[str, AccessibilityNode]

    def get(self, uid: str) -> AccessibilityNode | None:
        return self.id_to_node.get(uid)

    def format(self, verbose: bool = False) -> str:
        return format_snapshot(self, verbose)

    def __len__(self) -> int:
        return len(self.id_to_node)


def parse_uid(uid: str) -> tuple[str, int] | None:
    """Split ``snap_3_12`` into ``("snap_3", 12)``; None if malformed"""
    match = _UID_PATTERN.match(uid.strip())
    if not match:
        return None
    return match.group("snapshot"), int(match.group("index"))


def _snapshot_number(snapshot_id: str) -> int | None:
    match = SNAPSHOT_ID_PATTERN.match(snapshot_id)
    return int(match.group(1)) if match else None


def resolve_uid(snapshot: AccessibilitySnapshot | None, uid: str) -> AccessibilityNode:
    """
    Look up a uid in the current snapshot of a view.

    Raises:
        StaleSnapshotError: uid belongs to an older snapshot
        ElementNotFoundError: uid is unknown, or no snapshot exists yet
    """
    if snapshot is None:
        raise ElementNotFoundError(
            uid, f"Element not found: {uid}. No snapshot has been taken for this page yet."
        )

    node = snapshot.get(uid)
    if node is not None:
        return node

    parsed = parse_uid(uid)
    if parsed is not None:
        uid_snapshot_id = parsed[0]
        uid_number = _snapshot_number(uid_snapshot_id)
        current_number = _snapshot_number(snapshot.snapshot_id)
        if (
            uid_snapshot_id != snapshot.snapshot_id
            and uid_number is not None
            and current_number is not None
            and uid_number < current_number
        ):
            raise StaleSnapshotError(uid, uid_snapshot_id, snapshot.snapshot_id)

    raise ElementNotFoundError(uid)


# =============================================================================
# BUILDING
# =============================================================================


class _SnapshotBuilder:
    def __init__(self, ax_nodes: list[dict[str, Any]], snapshot_id: str, verbose: bool) -> None:
        self.snapshot_id = snapshot_id
        self.verbose = verbose
        self.nodes_by_id = {node["nodeId"]: node for node in ax_nodes if "nodeId" in node}
        self.id_to_node: dict[str, AccessibilityNode] = {}
        self.index = 0
        self.visited: set[str] = set()

    def next_uid(self) -> str:
        uid = f"{self.snapshot_id}_{self.index}"
        self.index += 1
        return uid

    def convert_children(self, ax_node: dict[str, Any]) -> list[AccessibilityNode]:
        children = []
        for child_id in ax_node.get("childIds") or []:
            child = self.nodes_by_id.get(child_id)
            if child is None:
                continue
            converted = self.convert(child)
            if converted is not None:
                children.append(converted)
        return children

    def collapse(self, ax_node: dict[str, Any]) -> AccessibilityNode | None:
        """Hoist a lone child, group several, drop none"""
        children = self.convert_children(ax_node)
        if len(children) == 1:
            return children[0]
        if len(children) > 1:
            node = AccessibilityNode(
                uid=self.next_uid(),
                role="group",
                name="",
                backend_node_id=ax_node.get("backendDOMNodeId") or 0,
                children=children,
            )
            self.id_to_node[node.uid] = node
            return node
        return None

    def convert(self, ax_node: dict[str, Any]) -> AccessibilityNode | None:
        node_id = ax_node.get("nodeId")
        if node_id in self.visited:
            return None
        self.visited.add(node_id)

        if ax_node.get("ignored"):
            return self.collapse(ax_node)

        role = _ax_value(ax_node.get("role")) or "generic"
        name = str(_ax_value(ax_node.get("name")) or "")

        if role == "generic" and not name.strip():
            return self.collapse(ax_node)

        node = AccessibilityNode(
            uid=self.next_uid(),
            role=str(role),
            name=name,
            backend_node_id=ax_node.get("backendDOMNodeId") or 0,
        )

        value = _ax_value(ax_node.get("value"))
        if value is not None:
            node.value = str(value)

        if self.verbose:
            description = _ax_value(ax_node.get("description"))
            if description:
                node.description = str(description)

        for prop in ax_node.get("properties") or []:
            _apply_property(node, prop.get("name"), _ax_value(prop.get("value")))

        node.children = self.convert_children(ax_node)
        self.id_to_node[node.uid] = node
        return node


def _ax_value(wrapper: dict[str, Any] | None) -> Any:
    if not wrapper:
        return None
    return wrapper.get("value")


def _apply_property(node: AccessibilityNode, name: str | None, value: Any) -> None:
    if name == "focused":
        node.focused = value is True
    elif name == "checked":
        node.checked = value is True or value == "true"
    elif name == "disabled":
        node.disabled = value is True
    elif name == "expanded":
        node.expanded = value is True
    elif name == "selected":
        node.selected = value is True
    elif name == "required":
        node.required = value is True
    elif name == "level":
        try:
            node.level = int(value)
        except (TypeError, ValueError):
            pass


def build_snapshot(
    ax_nodes: list[dict[str, Any]],
    snapshot_id: str,
    url: str = "",
    title: str = "",
    verbose: bool = False,
    timestamp: float | None = None,
) -> AccessibilitySnapshot:
    """
    Build a snapshot from raw CDP AXNode dicts.

    Identical input with the same snapshot_id always produces identical
    uids and identical formatted output.

    Raises:
        EngineFailureError: If the tree is empty
    """
    if not ax_nodes:
        raise EngineFailureError("Empty accessibility tree")

    builder = _SnapshotBuilder(ax_nodes, snapshot_id, verbose)
    root_ax = next(
        (n for n in ax_nodes if not n.get("ignored") and not n.get("parentId")),
        ax_nodes[0],
    )
    root = builder.convert(root_ax)
    if root is None:
        root = AccessibilityNode(uid=builder.next_uid(), role="document", name="Empty page")
        builder.id_to_node[root.uid] = root

    return AccessibilitySnapshot(
        root=root,
        snapshot_id=snapshot_id,
        timestamp=timestamp if timestamp is not None else time.time() * 1000,
        url=url,
        title=title,
        id_to_node=MappingProxyType(builder.id_to_node),
    )


# =============================================================================
# FORMATTING
# =============================================================================


def _format_node(node: AccessibilityNode, verbose: bool) -> str:
    attributes = [f"uid={node.uid}"]

    if node.role:
        attributes.append("ignored" if node.role == "none" else node.role)
    if node.name:
        attributes.append(f'"{node.name}"')

    # Tri-state flags: present means the property exists on the node
    for flag, capability in (
        ("disabled", "disableable"),
        ("expanded", "expandable"),
        ("focused", "focusable"),
        ("selected", "selectable"),
    ):
        flag_value = getattr(node, flag)
        if flag_value is not None:
            attributes.append(capability)
            if flag_value:
                attributes.append(flag)

    if node.checked:
        attributes.append("checked")
    if node.required:
        attributes.append("required")
    if node.value is not None:
        attributes.append(f'value="{node.value}"')
    if node.level is not None:
        attributes.append(f'level="{node.level}"')
    if verbose and node.description:
        attributes.append(f'description="{node.description}"')

    return " ".join(attributes)


def format_snapshot(snapshot: AccessibilitySnapshot, verbose: bool = False) -> str:
    """Render a snapshot as ``uid=X role "name" ...`` lines, two spaces per depth"""
    lines = [f"# Page: {snapshot.title}", f"URL: {snapshot.url}", ""]

    stack: list[tuple[AccessibilityNode, int]] = [(snapshot.root, 0)]
    while stack:
        node, depth = stack.pop()
        lines.append("  " * depth + _format_node(node, verbose))
        for child in reversed(node.children):
            stack.append((child, depth + 1))

    return "\n".join(lines)


# =============================================================================
# DOM HELPERS
# =============================================================================


def is_node_gone(error: Exception) -> bool:
    return isinstance(error, CDPError) and any(marker in str(error) for marker in _NODE_GONE_MARKERS)


async def node_command(
    surface: BrowserSurface, uid: str, method: str, params: dict[str, Any]
) -> dict[str, Any]:
    """Send a node-addressed command, mapping "node is gone" to ElementNotFoundError"""
    try:
        return await surface.send_command(method, params)
    except CDPError as e:
        if is_node_gone(e):
            raise ElementNotFoundError(uid, f"Element not found: {uid}. It is no longer in the page.") from e
        raise


async def get_bounding_box(
    surface: BrowserSurface, node: AccessibilityNode
) -> BoundingBox | None:
    """Element box from the DOM.getBoxModel content quad; None if it has no layout"""
    response = await node_command(
        surface, node.uid, "DOM.getBoxModel", {"backendNodeId": node.backend_node_id}
    )
    content = (response.get("model") or {}).get("content")
    if not content or len(content) < 8:
        return None

    xs = content[0::2]
    ys = content[1::2]
    box = BoundingBox(x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys))
    node.bounding_box = box
    return box


async def resolve_object_id(surface: BrowserSurface, node: AccessibilityNode) -> str:
    response = await node_command(
        surface, node.uid, "DOM.resolveNode", {"backendNodeId": node.backend_node_id}
    )
    object_id = (response.get("object") or {}).get("objectId")
    if not object_id:
        raise ElementNotFoundError(node.uid, f"Element not found: {node.uid}. It could not be resolved.")
    return object_id


async def scroll_into_view(surface: BrowserSurface, node: AccessibilityNode) -> None:
    """Center the element in the viewport; engine failures other than a missing node are logged"""
    try:
        object_id = await resolve_object_id(surface, node)
        await node_command(
            surface,
            node.uid,
            "Runtime.callFunctionOn",
            {
                "objectId": object_id,
                "functionDeclaration": (
                    "function() { this.scrollIntoView({behavior: 'instant', "
                    "block: 'center', inline: 'center'}); }"
                ),
                "awaitPromise": True,
            },
        )
    except ElementNotFoundError:
        raise
    except CDPError as e:
        logger.warning(f"Failed to scroll {node.uid} into view: {e}")


async def focus_element(surface: BrowserSurface, node: AccessibilityNode) -> None:
    await node_command(surface, node.uid, "DOM.focus", {"backendNodeId": node.backend_node_id})
