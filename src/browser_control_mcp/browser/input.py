"""
Element and keyboard input

Every element operation works on a node resolved from the view's current
snapshot. Mouse input is dispatched at the center of the element's box after
scrolling it into view; text input goes through focus plus Input.insertText.
"""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..utils.logging_config import get_logger
from .errors import EngineFailureError, InvalidArgumentError, OptionNotFoundError
from .snapshot import (
    AccessibilityNode,
    focus_element,
    get_bounding_box,
    node_command,
    resolve_object_id,
    scroll_into_view,
)
from .surface import BrowserSurface

logger = get_logger(__name__)

DRAG_STEPS = 10

MODIFIER_ALT = 1
MODIFIER_CONTROL = 2
MODIFIER_META = 4
MODIFIER_SHIFT = 8

_MODIFIERS = {
    "alt": MODIFIER_ALT,
    "option": MODIFIER_ALT,
    "control": MODIFIER_CONTROL,
    "ctrl": MODIFIER_CONTROL,
    "meta": MODIFIER_META,
    "cmd": MODIFIER_META,
    "command": MODIFIER_META,
    "shift": MODIFIER_SHIFT,
}

# name -> (key, code, windowsVirtualKeyCode, text)
_SPECIAL_KEYS: dict[str, tuple[str, str, int, str | None]] = {
    "Enter": ("Enter", "Enter", 13, "\r"),
    "Tab": ("Tab", "Tab", 9, None),
    "Escape": ("Escape", "Escape", 27, None),
    "Backspace": ("Backspace", "Backspace", 8, None),
    "Delete": ("Delete", "Delete", 46, None),
    "ArrowUp": ("ArrowUp", "ArrowUp", 38, None),
    "ArrowDown": ("ArrowDown", "ArrowDown", 40, None),
    "ArrowLeft": ("ArrowLeft", "ArrowLeft", 37, None),
    "ArrowRight": ("ArrowRight", "ArrowRight", 39, None),
    "Home": ("Home", "Home", 36, None),
    "End": ("End", "End", 35, None),
    "PageUp": ("PageUp", "PageUp", 33, None),
    "PageDown": ("PageDown", "PageDown", 34, None),
    "Space": (" ", "Space", 32, " "),
    "Insert": ("Insert", "Insert", 45, None),
}
_SPECIAL_KEYS.update({f"F{n}": (f"F{n}", f"F{n}", 111 + n, None) for n in range(1, 13)})

_PUNCTUATION_CODES = {
    "+": "Equal",
    "=": "Equal",
    "-": "Minus",
    "_": "Minus",
    ",": "Comma",
    ".": "Period",
    "/": "Slash",
    ";": "Semicolon",
    "'": "Quote",
    "[": "BracketLeft",
    "]": "BracketRight",
    "\\": "Backslash",
    "`": "Backquote",
    " ": "Space",
}


@dataclass(frozen=True)
class KeyInfo:
    """Parameters for a pair of Input.dispatchKeyEvent calls"""

    key: str
    code: str
    modifiers: int = 0
    text: str | None = None
    key_code: int | None = None

    def event(self, event_type: str) -> dict[str, Any]:
        params: dict[str, Any] = {"type": event_type, "key": self.key, "code": self.code}
        if self.modifiers:
            params["modifiers"] = self.modifiers
        if self.key_code is not None:
            params["windowsVirtualKeyCode"] = self.key_code
        if self.text is not None and event_type == "keyDown":
            params["text"] = self.text
        return params


def _split_combination(combination: str) -> tuple[list[str], str]:
    if combination == "+":
        return [], "+"
    if combination.endswith("++"):
        return combination[:-2].split("+"), "+"
    parts = combination.split("+")
    return parts[:-1], parts[-1]


def parse_key(combination: str) -> KeyInfo:
    """
    Parse ``Modifier+...+Key`` into key event parameters.

    ``Control+Shift+R``, ``Enter``, ``a`` and ``Control++`` are all valid.

    Raises:
        InvalidArgumentError: For an unknown modifier or an empty key
    """
    if not combination:
        raise InvalidArgumentError("Key must not be empty")

    modifier_names, key = _split_combination(combination)
    if not key:
        raise InvalidArgumentError(f"Invalid key combination: {combination}")

    modifiers = 0
    for name in modifier_names:
        flag = _MODIFIERS.get(name.strip().lower())
        if flag is None:
            raise InvalidArgumentError(f"Unknown modifier '{name}' in: {combination}")
        modifiers |= flag

    # Shortcuts with Control/Alt/Meta must not insert text
    inserts_text = not modifiers & (MODIFIER_CONTROL | MODIFIER_ALT | MODIFIER_META)

    if key in _SPECIAL_KEYS:
        name, code, key_code, text = _SPECIAL_KEYS[key]
        return KeyInfo(name, code, modifiers, text if inserts_text else None, key_code)

    if len(key) == 1:
        if key.isalpha():
            code = f"Key{key.upper()}"
            key_code = ord(key.upper())
        elif key.isdigit():
            code = f"Digit{key}"
            key_code = ord(key)
        else:
            code = _PUNCTUATION_CODES.get(key, key)
            key_code = None
        return KeyInfo(key, code, modifiers, key if inserts_text else None, key_code)

    return KeyInfo(key, key, modifiers, None, None)


class InputController:
    """Mouse, keyboard and form input against snapshot nodes"""

    def __init__(self, platform: str = sys.platform) -> None:
        self.select_all_modifier = MODIFIER_META if platform == "darwin" else MODIFIER_CONTROL

    async def _center(self, surface: BrowserSurface, node: AccessibilityNode) -> tuple[float, float]:
        box = await get_bounding_box(surface, node)
        if box is None:
            raise EngineFailureError(f"Could not get bounding box for element: {node.uid}")
        return box.center

    async def click(self, surface: BrowserSurface, node: AccessibilityNode, double: bool = False) -> None:
        await scroll_into_view(surface, node)
        x, y = await self._center(surface, node)
        click_count = 2 if double else 1
        for event_type in ("mousePressed", "mouseReleased"):
            await surface.send_command(
                "Input.dispatchMouseEvent",
                {"type": event_type, "x": x, "y": y, "button": "left", "clickCount": click_count},
            )

    async def hover(self, surface: BrowserSurface, node: AccessibilityNode) -> None:
        await scroll_into_view(surface, node)
        x, y = await self._center(surface, node)
        await surface.send_command("Input.dispatchMouseEvent", {"type": "mouseMoved", "x": x, "y": y})

    async def fill(self, surface: BrowserSurface, node: AccessibilityNode, value: str) -> None:
        """Replace the element's text: focus, select all, delete, insert"""
        await focus_element(surface, node)

        select_all = KeyInfo("a", "KeyA", self.select_all_modifier, None, ord("A"))
        backspace = parse_key("Backspace")
        for info in (select_all, backspace):
            await surface.send_command("Input.dispatchKeyEvent", info.event("keyDown"))
            await surface.send_command("Input.dispatchKeyEvent", info.event("keyUp"))

        await surface.send_command("Input.insertText", {"text": value})

    async def select_option(self, surface: BrowserSurface, node: AccessibilityNode, value: str) -> None:
        """
        Select the option whose accessible name equals value.

        Raises:
            InvalidArgumentError: If the node is not a combobox or listbox
            OptionNotFoundError: If no option child matches
        """
        if node.role not in ("combobox", "listbox"):
            raise InvalidArgumentError(f"Element is not a select/combobox: {node.role}")

        option = next(
            (child for child in node.children if child.role == "option" and child.name == value),
            None,
        )
        if option is None:
            raise OptionNotFoundError(value)

        option_object = await resolve_object_id(surface, option)
        response = await node_command(
            surface,
            option.uid,
            "Runtime.callFunctionOn",
            {
                "objectId": option_object,
                "functionDeclaration": "function() { return this.value; }",
                "returnByValue": True,
            },
        )
        option_value = (response.get("result") or {}).get("value") or value

        select_object = await resolve_object_id(surface, node)
        await node_command(
            surface,
            node.uid,
            "Runtime.callFunctionOn",
            {
                "objectId": select_object,
                "functionDeclaration": (
                    "function(val) {"
                    " this.value = val;"
                    " this.dispatchEvent(new Event('change', { bubbles: true }));"
                    " this.dispatchEvent(new Event('input', { bubbles: true }));"
                    " }"
                ),
                "arguments": [{"value": option_value}],
                "awaitPromise": True,
            },
        )

    async def fill_form_element(self, surface: BrowserSurface, node: AccessibilityNode, value: str) -> None:
        """
        Fill one form field, choosing select vs. text input by role.

        A combobox with option children is selected; only a missing option
        falls back to typing the text. Every other failure propagates.
        """
        if node.role == "combobox" and node.has_option_children():
            try:
                await self.select_option(surface, node, value)
                return
            except OptionNotFoundError:
                logger.info(f"No option '{value}' in {node.uid}, falling back to text fill")

        await self.fill(surface, node, value)

    async def drag(
        self,
        surface: BrowserSurface,
        source: AccessibilityNode,
        target: AccessibilityNode,
    ) -> None:
        """Press at the source, move in steps, release over the target"""
        from_x, from_y = await self._center(surface, source)
        to_x, to_y = await self._center(surface, target)

        await surface.send_command(
            "Input.dispatchMouseEvent",
            {"type": "mousePressed", "x": from_x, "y": from_y, "button": "left", "clickCount": 1},
        )
        for step in range(1, DRAG_STEPS + 1):
            fraction = step / DRAG_STEPS
            await surface.send_command(
                "Input.dispatchMouseEvent",
                {
                    "type": "mouseMoved",
                    "x": from_x + (to_x - from_x) * fraction,
                    "y": from_y + (to_y - from_y) * fraction,
                    "button": "left",
                },
            )
        await surface.send_command(
            "Input.dispatchMouseEvent",
            {"type": "mouseReleased", "x": to_x, "y": to_y, "button": "left", "clickCount": 1},
        )

    async def press_key(self, surface: BrowserSurface, combination: str) -> KeyInfo:
        info = parse_key(combination)
        await surface.send_command("Input.dispatchKeyEvent", info.event("keyDown"))
        await surface.send_command("Input.dispatchKeyEvent", info.event("keyUp"))
        return info

    async def upload_file(self, surface: BrowserSurface, node: AccessibilityNode, file_path: str) -> Path:
        """
        Attach a local file to a file input.

        Raises:
            InvalidArgumentError: If the file does not exist
        """
        path = Path(file_path).expanduser().resolve()
        if not path.is_file():
            raise InvalidArgumentError(f"File not found: {file_path}")

        await node_command(
            surface,
            node.uid,
            "DOM.setFileInputFiles",
            {"files": [str(path)], "backendNodeId": node.backend_node_id},
        )
        return path
