"""
Selector-based browser strategy.

Each form field is located by walking an ordered list of candidate
selectors (type-based CSS, then name/id based, then button text) until one
matches a visible element. CAPTCHA markers are checked before filling and
again after submitting.
"""

from __future__ import annotations

import logging
import re

from playwright.async_api import Page

from authpilot.browser.base import (
    LoginCredentials,
    LoginResult,
    RegistrationOptions,
    RegistrationResult,
)
from authpilot.browser.manager import BrowserManager
from authpilot.browser.page_helpers import (
    DEFAULT_INTERACTION_TIMEOUT_MS,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    body_text,
    capture_screenshot,
    click_and_wait,
    detect_captcha,
    extract_session_data,
    fill_field,
    find_first,
    has_error_indicator,
    navigate,
)

logger = logging.getLogger(__name__)

USERNAME_SELECTORS = (
    'input[type="email"]',
    'input[name="email"]',
    'input[name="username"]',
    'input[name="login"]',
    'input[id="username"]',
    'input[id="email"]',
    'input[autocomplete="username"]',
)

EMAIL_SELECTORS = (
    'input[type="email"]',
    'input[name="email"]',
    'input[id="email"]',
    'input[autocomplete="email"]',
)

PASSWORD_SELECTORS = (
    'input[type="password"]',
    'input[name="password"]',
    'input[id="password"]',
)

NAME_SELECTORS = (
    'input[name="name"]',
    'input[name="full_name"]',
    'input[name="fullName"]',
    'input[name="username"]',
    'input[id="name"]',
    'input[autocomplete="name"]',
)

TERMS_SELECTORS = (
    'input[type="checkbox"][name*="terms"]',
    'input[type="checkbox"][name*="agree"]',
    'input[type="checkbox"][id*="terms"]',
    'input[type="checkbox"][id*="agree"]',
)

LOGIN_SUBMIT_SELECTORS = (
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Log in")',
    'button:has-text("Login")',
    'button:has-text("Sign in")',
    'button:has-text("Continue")',
)

REGISTER_SUBMIT_SELECTORS = (
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Sign up")',
    'button:has-text("Register")',
    'button:has-text("Create account")',
    'button:has-text("Continue")',
)

VERIFY_EMAIL_RE = re.compile(
    r"check your (?:e-?mail|inbox)|verify your e-?mail|confirm your e-?mail"
    r"|(?:verification|confirmation) (?:e-?mail|link) (?:has been |was )?sent",
    re.IGNORECASE,
)


# ─── Login ───────────────────────────────────────────────────────────


async def login_to_service(
    page: Page,
    url: str,
    username: str,
    password: str,
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
    interaction_timeout_ms: int = DEFAULT_INTERACTION_TIMEOUT_MS,
) -> LoginResult:
    """Drive a username/password form on an already-open page."""
    try:
        await navigate(page, url, navigation_timeout_ms)

        captcha = await detect_captcha(page)
        if captcha.detected:
            return LoginResult(
                success=False,
                captcha_detected=True,
                captcha_type=captcha.type,
                error=f"CAPTCHA detected on login page ({captcha.type})",
                screenshot=await capture_screenshot(page),
            )

        username_sel = await find_first(page, USERNAME_SELECTORS)
        if username_sel is None:
            return LoginResult(success=False, error="Could not find username or email input")
        password_sel = await find_first(page, PASSWORD_SELECTORS)
        if password_sel is None:
            return LoginResult(success=False, error="Could not find password input")
        submit_sel = await find_first(page, LOGIN_SUBMIT_SELECTORS)
        if submit_sel is None:
            return LoginResult(success=False, error="Could not find submit button")

        url_before = page.url
        await fill_field(page, username_sel, username, interaction_timeout_ms)
        await fill_field(page, password_sel, password, interaction_timeout_ms)
        await click_and_wait(page, submit_sel, navigation_timeout_ms, interaction_timeout_ms)

        captcha = await detect_captcha(page)
        if captcha.detected:
            return LoginResult(
                success=False,
                captcha_detected=True,
                captcha_type=captcha.type,
                error=f"CAPTCHA detected after form submission ({captcha.type})",
                screenshot=await capture_screenshot(page),
            )

        if await has_error_indicator(page):
            return LoginResult(
                success=False,
                error="Login failed: error message detected on page",
                screenshot=await capture_screenshot(page),
            )

        logger.debug("Login judged successful (url changed: %s)", page.url != url_before)
        return LoginResult(success=True)
    except Exception as e:
        logger.warning("Login on %s raised: %s", url, e)
        return LoginResult(
            success=False,
            error=f"Login failed: {e}",
            screenshot=await capture_screenshot(page),
        )


# ─── Registration ────────────────────────────────────────────────────


async def register_on_service(
    page: Page,
    url: str,
    email: str,
    password: str,
    name: str | None = None,
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
    interaction_timeout_ms: int = DEFAULT_INTERACTION_TIMEOUT_MS,
) -> RegistrationResult:
    """Fill a signup form: email, password, optional name and terms box."""
    try:
        await navigate(page, url, navigation_timeout_ms)

        captcha = await detect_captcha(page)
        if captcha.detected:
            return RegistrationResult(
                success=False,
                captcha_detected=True,
                captcha_type=captcha.type,
                error=f"CAPTCHA detected on registration page ({captcha.type})",
                screenshot=await capture_screenshot(page),
            )

        email_sel = await find_first(page, EMAIL_SELECTORS)
        if email_sel is None:
            return RegistrationResult(success=False, error="Could not find email input")
        password_sel = await find_first(page, PASSWORD_SELECTORS)
        if password_sel is None:
            return RegistrationResult(success=False, error="Could not find password input")
        submit_sel = await find_first(page, REGISTER_SUBMIT_SELECTORS)
        if submit_sel is None:
            return RegistrationResult(success=False, error="Could not find submit button")

        if name:
            name_sel = await find_first(page, NAME_SELECTORS)
            if name_sel is not None and name_sel != email_sel:
                await fill_field(page, name_sel, name, interaction_timeout_ms)
        await fill_field(page, email_sel, email, interaction_timeout_ms)
        await fill_field(page, password_sel, password, interaction_timeout_ms)

        terms_sel = await find_first(page, TERMS_SELECTORS)
        if terms_sel is not None:
            await page.check(terms_sel, timeout=interaction_timeout_ms)

        await click_and_wait(page, submit_sel, navigation_timeout_ms, interaction_timeout_ms)

        captcha = await detect_captcha(page)
        if captcha.detected:
            return RegistrationResult(
                success=False,
                captcha_detected=True,
                captcha_type=captcha.type,
                error=f"CAPTCHA detected after form submission ({captcha.type})",
                screenshot=await capture_screenshot(page),
            )

        if await has_error_indicator(page):
            return RegistrationResult(
                success=False,
                error="Registration failed: error message detected on page",
                screenshot=await capture_screenshot(page),
            )

        needs_verification = bool(VERIFY_EMAIL_RE.search(await body_text(page)))
        return RegistrationResult(
            success=True,
            credentials={"username": name or email, "password": password, "email": email},
            needs_email_verification=needs_verification,
        )
    except Exception as e:
        logger.warning("Registration on %s raised: %s", url, e)
        return RegistrationResult(
            success=False,
            error=f"Registration failed: {e}",
            screenshot=await capture_screenshot(page),
        )


# ─── BrowserOperations ───────────────────────────────────────────────


class SelectorBrowserOperations:
    """``BrowserOperations`` backed by fixed selector candidate lists."""

    def __init__(self, manager: BrowserManager) -> None:
        self.manager = manager

    async def login(self, url: str, credentials: LoginCredentials) -> LoginResult:
        cfg = self.manager.config
        try:
            async with self.manager.page() as page:
                result = await login_to_service(
                    page,
                    url,
                    credentials["username"],
                    credentials["password"],
                    cfg.navigation_timeout_ms,
                    cfg.interaction_timeout_ms,
                )
                if result.success:
                    session = await extract_session_data(page)
                    result.session_token = session.session_token
                    result.cookies = session.cookies
                return result
        except Exception as e:
            logger.error("Browser unavailable for login: %s", e)
            return LoginResult(success=False, error=f"Login operation failed: {e}")

    async def register(self, url: str, options: RegistrationOptions) -> RegistrationResult:
        cfg = self.manager.config
        try:
            async with self.manager.page() as page:
                return await register_on_service(
                    page,
                    url,
                    options["email"],
                    options["password"],
                    options.get("name"),
                    cfg.navigation_timeout_ms,
                    cfg.interaction_timeout_ms,
                )
        except Exception as e:
            logger.error("Browser unavailable for registration: %s", e)
            return RegistrationResult(success=False, error=f"Registration operation failed: {e}")

    async def close(self) -> None:
        await self.manager.close()
