"""
Configuration management for Browser Control MCP

Loads configuration from environment variables with sensible defaults for
the DevTools connection, the optional browser subprocess, and the timing and
retention knobs of the control engine.
"""

import logging
import os
from pathlib import Path
from typing_extensions import TypedDict

from dotenv import load_dotenv

from ..utils.logging_config import log_dict

logger = logging.getLogger(__name__)

# Load environment variables from .env file
# Try multiple paths for .env file
env_loaded = False
for env_path in [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent.parent / ".env",
    Path.home() / ".env",
]:
    if env_path.exists():
        logger.info(f"Loading environment from: {env_path}")
        load_dotenv(env_path)
        env_loaded = True
        break

if not env_loaded:
    logger.warning("No .env file found, using system environment variables only")

ENV_PREFIX = "BROWSER_CONTROL_"

# Timeouts from the tool layer (milliseconds)
DEFAULT_TOOL_TIMEOUT_MS = 60_000
DEFAULT_NAVIGATION_TIMEOUT_MS = 30_000


class LaunchConfig(TypedDict, total=False):
    """Configuration for the browser subprocess"""

    binary: str | None
    headless: bool
    no_sandbox: bool
    user_data_dir: str | None
    extra_args: list[str]
    startup_timeout_ms: int


class BrowserControlConfig(TypedDict):
    """Complete engine configuration"""

    # DevTools endpoint
    cdp_host: str
    cdp_port: int
    launch_browser: bool
    launch: LaunchConfig

    # Timeouts (milliseconds)
    tool_timeout_ms: int
    navigation_timeout_ms: int
    wait_poll_ms: int
    perf_auto_stop_ms: int

    # View registry
    debounce_ms: int
    initial_url: str
    search_url: str

    # Monitors
    retained_navigations: int
    console_buffer_size: int

    # Logging
    log_file: str
    log_level: str


def _get_bool_env(key: str, default: bool) -> bool:
    """Get boolean environment variable"""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def _get_int_env(key: str, default: int) -> int:
    """Get integer environment variable"""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_list_env(key: str) -> list[str]:
    """Get comma-separated list environment variable"""
    value = os.getenv(key, "")
    return [item.strip() for item in value.split(",") if item.strip()]


# Each tuple: (env_suffix, config_key, default)
# The default's type selects the parser
_ENGINE_KEY_MAPPINGS: list[tuple[str, str, str | int | bool]] = [
    ("CDP_HOST", "cdp_host", "127.0.0.1"),
    ("CDP_PORT", "cdp_port", 9222),
    ("LAUNCH_BROWSER", "launch_browser", False),
    ("TOOL_TIMEOUT_MS", "tool_timeout_ms", DEFAULT_TOOL_TIMEOUT_MS),
    ("NAVIGATION_TIMEOUT_MS", "navigation_timeout_ms", DEFAULT_NAVIGATION_TIMEOUT_MS),
    ("WAIT_POLL_MS", "wait_poll_ms", 500),
    ("PERF_AUTO_STOP_MS", "perf_auto_stop_ms", 5000),
    ("DEBOUNCE_MS", "debounce_ms", 50),
    ("INITIAL_URL", "initial_url", "about:blank"),
    ("SEARCH_URL", "search_url", "https://www.google.com/search?q="),
    ("RETAINED_NAVIGATIONS", "retained_navigations", 3),
    ("CONSOLE_BUFFER_SIZE", "console_buffer_size", 1000),
    ("LOG_FILE", "log_file", "logs/browser-control-mcp.log"),
    ("LOG_LEVEL", "log_level", "INFO"),
]


def _read_env_value(env_var: str, default: str | int | bool) -> str | int | bool:
    if isinstance(default, bool):
        return _get_bool_env(env_var, default)
    if isinstance(default, int):
        return _get_int_env(env_var, default)
    return os.getenv(env_var, default)


def load_launch_config() -> LaunchConfig:
    """
    Load browser subprocess configuration from BROWSER_CONTROL_BROWSER_* variables.

    Returns:
        LaunchConfig with all settings
    """
    return {
        "binary": os.getenv(f"{ENV_PREFIX}BROWSER_BINARY") or None,
        "headless": _get_bool_env(f"{ENV_PREFIX}BROWSER_HEADLESS", True),
        "no_sandbox": _get_bool_env(f"{ENV_PREFIX}BROWSER_NO_SANDBOX", False),
        "user_data_dir": os.getenv(f"{ENV_PREFIX}BROWSER_USER_DATA_DIR") or None,
        "extra_args": _get_list_env(f"{ENV_PREFIX}BROWSER_ARGS"),
        "startup_timeout_ms": _get_int_env(f"{ENV_PREFIX}BROWSER_STARTUP_TIMEOUT_MS", 10_000),
    }


def load_browser_config() -> BrowserControlConfig:
    """
    Load the engine configuration from environment variables.

    Returns:
        BrowserControlConfig with all settings

    Raises:
        ValueError: If a timing or retention value is out of range
    """
    config: dict = {}
    for env_suffix, config_key, default in _ENGINE_KEY_MAPPINGS:
        config[config_key] = _read_env_value(f"{ENV_PREFIX}{env_suffix}", default)
    config["launch"] = load_launch_config()

    _validate_config(config)  # type: ignore[arg-type]

    logger.info("=" * 60)
    log_dict(logger, "Browser control configuration:", {k: v for k, v in config.items() if k != "launch"})
    if config["launch_browser"]:
        log_dict(logger, "Browser launch configuration:", dict(config["launch"]))
    logger.info("=" * 60)

    return config  # type: ignore[return-value]


def _validate_config(config: BrowserControlConfig) -> None:
    """Reject values the engine cannot work with"""
    for key in ("tool_timeout_ms", "navigation_timeout_ms", "wait_poll_ms"):
        if config[key] <= 0:  # type: ignore[literal-required]
            raise ValueError(f"{key} must be positive, got {config[key]}")  # type: ignore[literal-required]
    if config["debounce_ms"] < 0:
        raise ValueError(f"debounce_ms must be non-negative, got {config['debounce_ms']}")
    if config["retained_navigations"] < 1:
        raise ValueError(
            f"retained_navigations must be at least 1, got {config['retained_navigations']}"
        )
    if config["console_buffer_size"] < 1:
        raise ValueError(
            f"console_buffer_size must be at least 1, got {config['console_buffer_size']}"
        )
    if not 1 <= config["cdp_port"] <= 65535:
        raise ValueError(f"cdp_port must be between 1 and 65535, got {config['cdp_port']}")
