"""Tests for strategy selection."""

from __future__ import annotations

import pytest

from authpilot.browser import (
    BrowserManager,
    SelectorBrowserOperations,
    VisionBrowserOperations,
    create_browser_operations,
)
from authpilot.config import BrowserConfig, Config, VisionConfig, reset_config


class TestCreateBrowserOperations:
    def test_selector_is_default(self):
        ops = create_browser_operations(Config())
        assert isinstance(ops, SelectorBrowserOperations)
        assert isinstance(ops.manager, BrowserManager)
        assert ops.manager.is_running is False

    def test_vision_strategy(self):
        cfg = Config(browser=BrowserConfig(strategy="vision"), vision=VisionConfig(model="m"))
        ops = create_browser_operations(cfg)
        assert isinstance(ops, VisionBrowserOperations)
        assert ops.config.model == "m"

    def test_shared_manager(self):
        manager = BrowserManager()
        ops = create_browser_operations(Config(), manager=manager)
        assert ops.manager is manager

    def test_unknown_strategy(self):
        with pytest.raises(ValueError, match="Unknown browser strategy"):
            create_browser_operations(Config(browser=BrowserConfig(strategy="telepathy")))

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("AUTHPILOT_BROWSER_STRATEGY", "vision")
        reset_config()
        try:
            assert isinstance(create_browser_operations(), VisionBrowserOperations)
        finally:
            reset_config()
