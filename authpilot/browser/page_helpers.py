"""
Page-level primitives shared by both browser strategies.

Everything here takes a Playwright ``Page``. Navigation and form
interaction retry transient browser errors with exponential backoff;
screenshot and storage probing are best-effort and never raise.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_NAVIGATION_TIMEOUT_MS = 30_000
DEFAULT_INTERACTION_TIMEOUT_MS = 10_000
MAX_RETRIES = 2
RETRY_BASE_DELAY = 0.1

CAPTCHA_SELECTORS: tuple[tuple[str, str], ...] = (
    (".g-recaptcha", "recaptcha"),
    ("#g-recaptcha", "recaptcha"),
    ('iframe[src*="recaptcha"]', "recaptcha"),
    (".h-captcha", "hcaptcha"),
    ('iframe[src*="hcaptcha"]', "hcaptcha"),
    (".cf-turnstile", "turnstile"),
    ('iframe[src*="challenges.cloudflare.com"]', "turnstile"),
)

CAPTCHA_TEXT_RE = re.compile(
    r"verify (?:that )?you(?:'re| are) (?:a )?human"
    r"|are you a robot|i'?m not a robot|complete the security check",
    re.IGNORECASE,
)

ERROR_SELECTORS = (
    ".error",
    ".error-message",
    ".alert-danger",
    ".alert-error",
    '[role="alert"]',
    ".form-error",
    ".invalid-feedback",
)

ERROR_TEXT_RE = re.compile(
    r"invalid (?:credentials|password|username|email)"
    r"|incorrect (?:password|username|email)"
    r"|wrong password|login failed|authentication failed"
    r"|account not found|user not found|already (?:registered|exists|taken)",
    re.IGNORECASE,
)

STORAGE_TOKEN_KEYS = ("token", "auth_token", "session_token", "access_token", "jwt")

_TRANSIENT_MARKERS = (
    "page crashed",
    "target closed",
    "navigation timeout",
    "net::err_",
    "protocol error",
    "session closed",
)


@dataclass(frozen=True)
class CaptchaDetection:
    detected: bool
    type: str | None = None
    selector: str | None = None


@dataclass(frozen=True)
class SessionData:
    session_token: str | None = None
    cookies: str | None = None


def is_transient_error(error: BaseException) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = MAX_RETRIES,
    base_delay: float = RETRY_BASE_DELAY,
) -> T:
    """Run ``operation``, retrying only transient errors (100ms, 200ms, ...)."""
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_transient_error(e) or attempt >= max_retries:
                raise
            delay = base_delay * (2**attempt)
            logger.debug("Transient browser error (%s), retrying in %.1fs", e, delay)
            await asyncio.sleep(delay)
            attempt += 1


async def navigate(page: Page, url: str, timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS) -> None:
    async def _go() -> None:
        await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

    await with_retry(_go)


async def find_first(page: Page, selectors: Sequence[str]) -> str | None:
    """First selector that resolves to a visible element."""
    for selector in selectors:
        try:
            element = await page.query_selector(selector)
            if element is not None and await element.is_visible():
                return selector
        except PlaywrightError as e:
            logger.debug("Selector %s failed: %s", selector, e)
    return None


async def fill_field(
    page: Page, selector: str, value: str, timeout_ms: int = DEFAULT_INTERACTION_TIMEOUT_MS
) -> None:
    async def _fill() -> None:
        await page.click(selector, timeout=timeout_ms)
        await page.fill(selector, value, timeout=timeout_ms)

    await with_retry(_fill)


async def click_and_wait(
    page: Page,
    selector: str,
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
    interaction_timeout_ms: int = DEFAULT_INTERACTION_TIMEOUT_MS,
) -> None:
    """Click, then wait for the page to settle. SPAs may not navigate at all."""

    async def _click() -> None:
        await page.click(selector, timeout=interaction_timeout_ms)

    await with_retry(_click)
    try:
        await page.wait_for_load_state("networkidle", timeout=navigation_timeout_ms)
    except PlaywrightError as e:
        logger.debug("No navigation settled after clicking %s: %s", selector, e)


async def body_text(page: Page) -> str:
    try:
        return await page.inner_text("body")
    except PlaywrightError as e:
        logger.debug("Could not read page text: %s", e)
        return ""


async def detect_captcha(page: Page) -> CaptchaDetection:
    """Known vendor widgets first, then generic human-check wording."""
    for selector, captcha_type in CAPTCHA_SELECTORS:
        if await page.query_selector(selector) is not None:
            return CaptchaDetection(detected=True, type=captcha_type, selector=selector)
    if CAPTCHA_TEXT_RE.search(await body_text(page)):
        return CaptchaDetection(detected=True, type="generic")
    return CaptchaDetection(detected=False)


async def has_error_indicator(page: Page) -> bool:
    """True when the URL, an error element, or the page text signals failure."""
    if re.search(r"[?&#]error=", page.url or ""):
        return True
    for selector in ERROR_SELECTORS:
        element = await page.query_selector(selector)
        if element is not None and await element.is_visible():
            return True
    return bool(ERROR_TEXT_RE.search(await body_text(page)))


async def capture_screenshot(page: Page, full_page: bool = True) -> bytes | None:
    try:
        return await page.screenshot(full_page=full_page)
    except Exception as e:
        logger.debug("Screenshot failed: %s", e)
        return None


async def extract_session_data(page: Page) -> SessionData:
    """Token from localStorage then sessionStorage, plus every context cookie."""
    token = None
    for storage in ("localStorage", "sessionStorage"):
        try:
            for key in STORAGE_TOKEN_KEYS:
                value = await page.evaluate(f"(k) => {storage}.getItem(k)", key)
                if value:
                    token = value
                    break
        except PlaywrightError as e:
            logger.debug("%s not readable: %s", storage, e)
        if token:
            break

    cookies = None
    try:
        cookie_list = await page.context.cookies()
        if cookie_list:
            cookies = "; ".join(f"{c['name']}={c['value']}" for c in cookie_list)
    except PlaywrightError as e:
        logger.debug("Cookie extraction failed: %s", e)

    return SessionData(session_token=token, cookies=cookies)
