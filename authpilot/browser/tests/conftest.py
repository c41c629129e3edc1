"""Shared fixtures for browser tests: a scriptable stand-in for a Playwright page."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from authpilot.config import BrowserConfig


class FakeElement:
    def __init__(self, visible: bool) -> None:
        self._visible = visible

    async def is_visible(self) -> bool:
        return self._visible


class FakePage:
    """Selectors in ``visible`` resolve to visible elements, ``hidden`` to hidden ones."""

    def __init__(
        self,
        visible: set[str] | None = None,
        hidden: set[str] | None = None,
        text: str = "",
        url: str = "https://example.com/login",
    ) -> None:
        self.visible = set(visible or ())
        self.hidden = set(hidden or ())
        self.text = text
        self.url = url
        self.actions: list[tuple] = []
        self.local_storage: dict[str, str] = {}
        self.session_storage: dict[str, str] = {}
        self.cookie_list: list[dict] = []
        self.on_click: Callable[[FakePage, str], None] | None = None
        self.goto_error: Exception | None = None
        self.viewport_size = {"width": 1280, "height": 720}
        self.mouse = MagicMock()
        for name in ("click", "dblclick", "move", "down", "up", "wheel"):
            setattr(self.mouse, name, AsyncMock())
        self.keyboard = MagicMock()
        self.keyboard.type = AsyncMock()
        self.keyboard.press = AsyncMock()
        self.context = MagicMock()
        self.context.cookies = AsyncMock(side_effect=lambda: list(self.cookie_list))
        self.closed = False

    async def goto(self, url, wait_until=None, timeout=None):
        self.actions.append(("goto", url))
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url

    async def query_selector(self, selector):
        if selector in self.visible:
            return FakeElement(True)
        if selector in self.hidden:
            return FakeElement(False)
        return None

    async def click(self, selector, timeout=None):
        self.actions.append(("click", selector))
        if self.on_click is not None:
            self.on_click(self, selector)

    async def fill(self, selector, value, timeout=None):
        self.actions.append(("fill", selector, value))

    async def check(self, selector, timeout=None):
        self.actions.append(("check", selector))

    async def wait_for_load_state(self, state=None, timeout=None):
        return None

    async def inner_text(self, selector):
        return self.text

    async def screenshot(self, **kwargs):
        return b"png-bytes"

    async def evaluate(self, expression, arg=None):
        storage = self.local_storage if "localStorage" in expression else self.session_storage
        return storage.get(arg)

    def set_default_timeout(self, timeout):
        pass

    def set_default_navigation_timeout(self, timeout):
        pass

    async def close(self):
        self.closed = True

    def filled(self) -> dict[str, str]:
        return {a[1]: a[2] for a in self.actions if a[0] == "fill"}


class FakeManager:
    """Hands out one FakePage through the same ``page()`` scope as BrowserManager."""

    def __init__(self, page: FakePage) -> None:
        self.config = BrowserConfig()
        self._page = page
        self.close = AsyncMock()

    @asynccontextmanager
    async def page(self) -> AsyncIterator[FakePage]:
        try:
            yield self._page
        finally:
            await self._page.close()


@pytest.fixture
def fake_page():
    return FakePage


@pytest.fixture
def fake_manager():
    return FakeManager
