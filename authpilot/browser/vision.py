"""
Vision-model browser strategy.

A multimodal model (via litellm) looks at screenshots and drives the page
through a single ``computer`` tool: clicks, typing, key presses, scrolling,
drags and waits at pixel coordinates. After every action the page is
re-screenshotted and scanned for CAPTCHA markers. The model ends the task by
writing a status block, e.g.

    ```json
    {"status": "success"}
    ```

Status values: success, captcha_detected, failed, needs_email_verification.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import litellm
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from authpilot.browser.base import (
    LoginCredentials,
    LoginResult,
    RegistrationOptions,
    RegistrationResult,
)
from authpilot.browser.manager import BrowserManager
from authpilot.browser.page_helpers import (
    capture_screenshot,
    detect_captcha,
    extract_session_data,
    navigate,
)
from authpilot.config import VisionConfig

logger = logging.getLogger(__name__)

# Suppress litellm's verbose logging
litellm.suppress_debug_info = True

SCREENSHOT_QUALITY = 75
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 529})
SCROLL_STEP_PX = 100
TYPE_DELAY_MS = 30

KEY_ALIASES = {
    "Return": "Enter",
    "return": "Enter",
    "enter": "Enter",
    "space": " ",
    "Space": " ",
    "BackSpace": "Backspace",
    "Esc": "Escape",
}

_FENCED_RE = re.compile(r"```json\s*\n?\s*(\{[\s\S]*?\})\s*\n?\s*```")
_INLINE_RE = re.compile(
    r'\{\s*"status"\s*:\s*"(?:success|captcha_detected|failed|needs_email_verification)"[^}]*\}'
)


class LoopStatus(StrEnum):
    SUCCESS = "success"
    CAPTCHA_DETECTED = "captcha_detected"
    FAILED = "failed"
    NEEDS_EMAIL_VERIFICATION = "needs_email_verification"


@dataclass(frozen=True)
class Termination:
    status: LoopStatus
    captcha_type: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class LoopResult:
    status: LoopStatus
    iterations_used: int
    captcha_type: str | None = None
    error: str | None = None


# ── Prompts ──

_TERMINATION_BLOCKS = """\
When the task is finished, reply with EXACTLY one of these JSON blocks:
```json
{"status": "success"}
```
```json
{"status": "captcha_detected", "captcha_type": "<type>"}
```
```json
{"status": "failed", "error": "<brief description>"}
```"""

LOGIN_SYSTEM_PROMPT = f"""\
You are controlling a web browser to sign in to a website.

RULES:
1. Study each screenshot before acting.
2. Click an input field before typing into it.
3. Follow multi-step sign-in flows (e.g. username first, password on the next page).
4. If you see any CAPTCHA or human check (reCAPTCHA, hCaptcha, Turnstile, image grid, \
puzzle, "verify you are human"), report it immediately. Never try to solve it.
5. After submitting, confirm success by looking for a profile, dashboard or account menu.
6. Messages such as "incorrect password" or "account not found" mean failure.

{_TERMINATION_BLOCKS}"""

REGISTER_SYSTEM_PROMPT = f"""\
You are controlling a web browser to create a new account on a website.

RULES:
1. Study each screenshot before acting.
2. Click an input field before typing into it.
3. Continue through every step of multi-page signup wizards.
4. Fill every required field. Re-enter the same password when asked to confirm it.
5. Tick "I agree to the terms" style checkboxes.
6. If you see any CAPTCHA or human check (reCAPTCHA, hCaptcha, Turnstile, image grid, \
puzzle, "verify you are human"), report it immediately. Never try to solve it.
7. If the site says "check your email" or "verify your email", report \
needs_email_verification.

{_TERMINATION_BLOCKS}
If the account was created but the email address must be confirmed:
```json
{{"status": "needs_email_verification"}}
```"""


def computer_tool(width: int, height: int) -> dict[str, Any]:
    """Function-tool schema for low-level UI actions on a width x height screen."""
    point = {"type": "array", "items": {"type": "integer"}, "minItems": 2, "maxItems": 2}
    return {
        "type": "function",
        "function": {
            "name": "computer",
            "description": (
                f"Control the browser viewport ({width}x{height} pixels). "
                "Coordinates are [x, y] in screen pixels. A new screenshot is "
                "returned after every action."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "action": {
                        "type": "string",
                        "enum": [
                            "left_click",
                            "right_click",
                            "double_click",
                            "middle_click",
                            "triple_click",
                            "type",
                            "key",
                            "scroll",
                            "mouse_move",
                            "left_click_drag",
                            "screenshot",
                            "wait",
                        ],
                    },
                    "coordinate": point,
                    "start_coordinate": point,
                    "end_coordinate": point,
                    "text": {"type": "string"},
                    "duration": {"type": "number"},
                    "scroll_direction": {"type": "string", "enum": ["up", "down", "left", "right"]},
                    "scroll_amount": {"type": "integer"},
                },
                "required": ["action"],
            },
        },
    }


# ── Helpers ──


def parse_termination(text: str) -> Termination | None:
    """Status block from model text: fenced ```json first, then a loose inline object."""
    for pattern, group in ((_FENCED_RE, 1), (_INLINE_RE, 0)):
        match = pattern.search(text)
        if not match:
            continue
        try:
            parsed = json.loads(match.group(group))
        except json.JSONDecodeError:
            continue
        try:
            status = LoopStatus(parsed.get("status"))
        except (ValueError, AttributeError):
            continue
        return Termination(
            status=status,
            captcha_type=parsed.get("captcha_type"),
            error=parsed.get("error"),
        )
    return None


def is_transient_api_error(error: BaseException) -> bool:
    status = getattr(error, "status_code", None)
    if status in TRANSIENT_STATUS_CODES:
        return True
    message = str(error).lower()
    return "econnreset" in message or "socket hang up" in message or "connection reset" in message


async def take_screenshot(page: Page) -> str:
    """Viewport JPEG as base64."""
    raw = await page.screenshot(type="jpeg", quality=SCREENSHOT_QUALITY, full_page=False)
    return base64.b64encode(raw).decode()


def _image_part(screenshot_b64: str) -> dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{screenshot_b64}"}}


async def execute_action(page: Page, action: dict[str, Any], action_delay: float = 0.5) -> bool:
    """Run one ``computer`` action. Returns False for unknown or incomplete actions."""
    name = action.get("action")
    coord = action.get("coordinate")

    if name in ("left_click", "right_click", "middle_click", "double_click", "triple_click"):
        if not coord:
            return False
        x, y = coord
        if name == "double_click":
            await page.mouse.dblclick(x, y)
        elif name == "triple_click":
            await page.mouse.click(x, y, click_count=3)
        else:
            await page.mouse.click(x, y, button=name.split("_")[0])
    elif name == "type":
        if not action.get("text"):
            return False
        await page.keyboard.type(action["text"], delay=TYPE_DELAY_MS)
    elif name == "key":
        if not action.get("text"):
            return False
        await page.keyboard.press(KEY_ALIASES.get(action["text"], action["text"]))
    elif name == "scroll":
        amount = (action.get("scroll_amount") or 3) * SCROLL_STEP_PX
        dx, dy = {
            "down": (0, amount),
            "up": (0, -amount),
            "right": (amount, 0),
            "left": (-amount, 0),
        }.get(action.get("scroll_direction") or "down", (0, amount))
        if coord:
            await page.mouse.move(*coord)
        await page.mouse.wheel(dx, dy)
    elif name == "mouse_move":
        if not coord:
            return False
        await page.mouse.move(*coord)
        return True
    elif name == "left_click_drag":
        start, end = action.get("start_coordinate"), action.get("end_coordinate")
        if not start or not end:
            return False
        await page.mouse.move(*start)
        await page.mouse.down()
        await page.mouse.move(*end)
        await page.mouse.up()
    elif name == "screenshot":
        return True
    elif name == "wait":
        await asyncio.sleep(float(action.get("duration") or 2))
        return True
    else:
        logger.warning("Unknown computer action: %s", name)
        return False

    await asyncio.sleep(action_delay)
    return True


# ── Loop ──


class VisionLoop:
    """Screenshot → model → action loop for one page."""

    def __init__(self, config: VisionConfig | None = None) -> None:
        self.config = config or VisionConfig()

    async def run(
        self, page: Page, system_prompt: str, task: str, max_iterations: int
    ) -> LoopResult:
        viewport = page.viewport_size or {"width": 1280, "height": 720}
        tools = [computer_tool(viewport["width"], viewport["height"])]
        screenshot = await take_screenshot(page)
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": [{"type": "text", "text": task}, _image_part(screenshot)]},
        ]

        for iteration in range(1, max_iterations + 1):
            try:
                response = await self._call_with_retry(messages, tools)
            except Exception as e:
                return LoopResult(
                    status=LoopStatus.FAILED,
                    iterations_used=iteration,
                    error=f"Vision model error: {e}",
                )

            if not response.choices:
                return LoopResult(
                    status=LoopStatus.FAILED,
                    iterations_used=iteration,
                    error="Vision model returned no choices",
                )
            message = response.choices[0].message

            if message.content:
                termination = parse_termination(message.content)
                if termination:
                    logger.info(
                        "Vision loop finished: %s after %d turns", termination.status, iteration
                    )
                    return LoopResult(
                        status=termination.status,
                        iterations_used=iteration,
                        captcha_type=termination.captcha_type,
                        error=termination.error,
                    )

            tool_calls = message.tool_calls or []
            if not tool_calls:
                return LoopResult(
                    status=LoopStatus.FAILED,
                    iterations_used=iteration,
                    error="Model ended the conversation without reporting task outcome.",
                )

            for tc in tool_calls:
                if tc.function.name != "computer":
                    logger.warning("Ignoring unknown tool %s", tc.function.name)
                    continue
                try:
                    args = json.loads(tc.function.arguments or "{}")
                except json.JSONDecodeError:
                    args = {}
                try:
                    await execute_action(page, args, self.config.action_delay)
                except PlaywrightError as e:
                    logger.warning("Action %s failed: %s", args.get("action"), e)

                try:
                    captcha = await detect_captcha(page)
                except PlaywrightError as e:
                    logger.debug("CAPTCHA scan failed: %s", e)
                else:
                    if captcha.detected:
                        return LoopResult(
                            status=LoopStatus.CAPTCHA_DETECTED,
                            iterations_used=iteration,
                            captcha_type=captcha.type,
                        )

            try:
                await page.wait_for_load_state("domcontentloaded", timeout=3000)
            except PlaywrightError:
                pass  # already loaded
            screenshot = await take_screenshot(page)

            messages.append(
                {
                    "role": "assistant",
                    "content": message.content or "",
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.function.name,
                                "arguments": tc.function.arguments,
                            },
                        }
                        for tc in tool_calls
                    ],
                }
            )
            for tc in tool_calls:
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": tc.id,
                        "content": "Done. Current screen follows.",
                    }
                )
            messages.append(
                {
                    "role": "user",
                    "content": [{"type": "text", "text": "Screenshot:"}, _image_part(screenshot)],
                }
            )

        return LoopResult(
            status=LoopStatus.FAILED,
            iterations_used=max_iterations,
            error=f"Maximum iterations ({max_iterations}) reached without task completion.",
        )

    async def _call_with_retry(self, messages: list[dict[str, Any]], tools: list[dict]) -> Any:
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "tools": tools,
            "tool_choice": "auto",
            "max_tokens": self.config.max_tokens,
        }
        if self.config.api_key:
            kwargs["api_key"] = self.config.api_key

        attempt = 0
        while True:
            try:
                return await litellm.acompletion(**kwargs)
            except Exception as e:
                if not is_transient_api_error(e) or attempt >= self.config.max_api_retries:
                    raise
                delay = self.config.retry_base_delay * (2**attempt)
                logger.warning(
                    "Vision model call failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1,
                    self.config.max_api_retries + 1,
                    delay,
                    e,
                )
                await asyncio.sleep(delay)
                attempt += 1


# ── BrowserOperations ──


class VisionBrowserOperations:
    """``BrowserOperations`` driven by a vision model instead of selectors."""

    def __init__(self, manager: BrowserManager, config: VisionConfig | None = None) -> None:
        self.manager = manager
        self.config = config or VisionConfig()
        self.loop = VisionLoop(self.config)

    async def login(self, url: str, credentials: LoginCredentials) -> LoginResult:
        task = (
            "Log in to this website using these credentials:\n"
            f"- Username/Email: {credentials['username']}\n"
            f"- Password: {credentials['password']}\n\n"
            "Find the login form, enter the credentials, submit, and verify the login worked."
        )
        try:
            async with self.manager.page() as page:
                await navigate(page, url, self.manager.config.navigation_timeout_ms)
                result = await self.loop.run(
                    page, LOGIN_SYSTEM_PROMPT, task, self.config.login_max_iterations
                )
                if result.status == LoopStatus.SUCCESS:
                    session = await extract_session_data(page)
                    return LoginResult(
                        success=True,
                        session_token=session.session_token,
                        cookies=session.cookies,
                    )
                if result.status == LoopStatus.CAPTCHA_DETECTED:
                    return LoginResult(
                        success=False,
                        captcha_detected=True,
                        captcha_type=result.captcha_type,
                        error="CAPTCHA detected during login",
                        screenshot=await capture_screenshot(page),
                    )
                return LoginResult(success=False, error=result.error or "Login failed")
        except Exception as e:
            logger.warning("Vision login on %s failed: %s", url, e)
            return LoginResult(success=False, error=f"Vision login failed: {e}")

    async def register(self, url: str, options: RegistrationOptions) -> RegistrationResult:
        name = options.get("name")
        name_line = f"- Full Name: {name}\n" if name else ""
        task = (
            "Register a new account on this website with:\n"
            f"- Email: {options['email']}\n"
            f"- Password: {options['password']}\n"
            f"{name_line}\n"
            "Find the signup form, fill in all required fields, accept the terms if "
            "required, and submit. Then check whether email verification is needed."
        )
        try:
            async with self.manager.page() as page:
                await navigate(page, url, self.manager.config.navigation_timeout_ms)
                result = await self.loop.run(
                    page, REGISTER_SYSTEM_PROMPT, task, self.config.register_max_iterations
                )
                if result.status in (LoopStatus.SUCCESS, LoopStatus.NEEDS_EMAIL_VERIFICATION):
                    return RegistrationResult(
                        success=True,
                        credentials={
                            "username": options["email"],
                            "password": options["password"],
                            "email": options["email"],
                        },
                        needs_email_verification=(
                            result.status == LoopStatus.NEEDS_EMAIL_VERIFICATION
                        ),
                    )
                if result.status == LoopStatus.CAPTCHA_DETECTED:
                    return RegistrationResult(
                        success=False,
                        captcha_detected=True,
                        captcha_type=result.captcha_type,
                        error="CAPTCHA detected during registration",
                        screenshot=await capture_screenshot(page),
                    )
                return RegistrationResult(
                    success=False, error=result.error or "Registration failed"
                )
        except Exception as e:
            logger.warning("Vision registration on %s failed: %s", url, e)
            return RegistrationResult(success=False, error=f"Vision registration failed: {e}")

    async def close(self) -> None:
        await self.manager.close()
