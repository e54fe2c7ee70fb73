"""
Type Definitions

Define TypedDict classes for tool results and tool arguments.
"""

from typing_extensions import TypedDict


class ToolResponse(TypedDict, total=False):
    """
    Uniform result of every browser tool.

    Tool handlers never raise for expected failures; they return a response
    with is_error set and a human-readable message in text.
    """

    text: str
    is_error: bool
    image_data: str  # base64
    mime_type: str


class FormElement(TypedDict):
    """One field for browser_fill_form"""

    uid: str
    value: str


class GeolocationInput(TypedDict):
    """Coordinates for browser_emulate"""

    latitude: float
    longitude: float
