"""
authpilot browser layer: headless page automation behind ``BrowserOperations``.

Two strategies share the same contract:
    selector  fixed CSS/text selector candidates (fast, brittle on unusual forms)
    vision    a multimodal model driving the page from screenshots

Usage:
    ops = create_browser_operations()          # picks strategy from config
    result = await ops.login(url, {"username": u, "password": p})
    await ops.close()
"""

from __future__ import annotations

from authpilot.browser.base import (
    BrowserOperations,
    LoginCredentials,
    LoginResult,
    RegisteredCredentials,
    RegistrationOptions,
    RegistrationResult,
)
from authpilot.browser.manager import BrowserManager
from authpilot.browser.selector import SelectorBrowserOperations
from authpilot.browser.vision import VisionBrowserOperations
from authpilot.config import STRATEGY_SELECTOR, STRATEGY_VISION, Config, get_config


def create_browser_operations(
    config: Config | None = None, manager: BrowserManager | None = None
) -> SelectorBrowserOperations | VisionBrowserOperations:
    """Build the configured strategy. The browser itself launches lazily."""
    cfg = config or get_config()
    manager = manager or BrowserManager(cfg.browser)
    if cfg.browser.strategy == STRATEGY_VISION:
        return VisionBrowserOperations(manager, cfg.vision)
    if cfg.browser.strategy == STRATEGY_SELECTOR:
        return SelectorBrowserOperations(manager)
    raise ValueError(f"Unknown browser strategy: {cfg.browser.strategy!r}")


__all__ = [
    "BrowserManager",
    "BrowserOperations",
    "LoginCredentials",
    "LoginResult",
    "RegisteredCredentials",
    "RegistrationOptions",
    "RegistrationResult",
    "SelectorBrowserOperations",
    "VisionBrowserOperations",
    "create_browser_operations",
]
