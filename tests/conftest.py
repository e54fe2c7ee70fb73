"""
Pytest Configuration and Fixtures

This module provides shared fixtures for all tests.
"""

import pytest

from browser_control_mcp.browser.context import BrowserContext
from tests.fixtures.fake_surface import FakeSurfaceProvider


@pytest.fixture
def test_config() -> dict:
    """Engine configuration with short timeouts for fast tests"""
    return {
        "tool_timeout_ms": 2000,
        "navigation_timeout_ms": 500,
        "wait_poll_ms": 10,
        "debounce_ms": 10,
        "perf_auto_stop_ms": 10,
    }


@pytest.fixture
def provider() -> FakeSurfaceProvider:
    return FakeSurfaceProvider()


@pytest.fixture
async def context(provider, test_config):
    """A started BrowserContext backed by fake surfaces, with no pages"""
    ctx = BrowserContext(provider, test_config)
    await ctx.start()
    yield ctx
    await ctx.stop()


@pytest.fixture
async def page(context, provider):
    """
    One page loaded at https://example.com and made active.

    Returns (view_id, surface).
    """
    await context.new_view("https://example.com")
    view_id = context.active_view_id()
    return view_id, provider.surfaces[view_id]
