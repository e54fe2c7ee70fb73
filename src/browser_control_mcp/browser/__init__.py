"""
Browser control engine

Views, accessibility snapshots, input, navigation, dialogs, network and
console monitoring, emulation and performance tracing over the DevTools
protocol.
"""

from .cdp import CDPConnection, CDPSurface, CDPSurfaceProvider
from .config import BrowserControlConfig, LaunchConfig, load_browser_config, load_launch_config
from .context import BrowserContext
from .errors import BrowserControlError
from .process_manager import BrowserProcessManager
from .registry import ViewRegistry
from .scheduler import DebounceScheduler

__all__ = [
    "BrowserContext",
    "BrowserControlConfig",
    "BrowserControlError",
    "BrowserProcessManager",
    "CDPConnection",
    "CDPSurface",
    "CDPSurfaceProvider",
    "DebounceScheduler",
    "LaunchConfig",
    "ViewRegistry",
    "load_browser_config",
    "load_launch_config",
]
