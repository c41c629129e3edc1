"""Tests for the vision-model strategy with litellm mocked out."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from authpilot.browser.vision import (
    LOGIN_SYSTEM_PROMPT,
    LoopStatus,
    VisionBrowserOperations,
    VisionLoop,
    execute_action,
    is_transient_api_error,
    parse_termination,
)
from authpilot.config import VisionConfig

FAST = VisionConfig(model="test/model", action_delay=0, retry_base_delay=0)


def _tool_call(action: dict, call_id: str = "call_1"):
    return SimpleNamespace(
        id=call_id,
        function=SimpleNamespace(name="computer", arguments=json.dumps(action)),
    )


def _response(content: str | None = None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _patch_llm(mock: AsyncMock):
    return patch("authpilot.browser.vision.litellm.acompletion", new=mock)


class StatusError(Exception):
    def __init__(self, status_code: int, message: str = "api error") -> None:
        super().__init__(message)
        self.status_code = status_code


class TestParseTermination:
    def test_fenced_block(self):
        text = 'Logged in.\n```json\n{"status": "success"}\n```'
        assert parse_termination(text).status == LoopStatus.SUCCESS

    def test_inline_object(self):
        text = 'Result: {"status": "captcha_detected", "captcha_type": "recaptcha"} done'
        result = parse_termination(text)
        assert result.status == LoopStatus.CAPTCHA_DETECTED
        assert result.captcha_type == "recaptcha"

    def test_fenced_takes_precedence(self):
        text = '{"status": "failed"}\n```json\n{"status": "needs_email_verification"}\n```'
        assert parse_termination(text).status == LoopStatus.NEEDS_EMAIL_VERIFICATION

    def test_failed_with_error(self):
        result = parse_termination('```json\n{"status": "failed", "error": "bad password"}\n```')
        assert result.status == LoopStatus.FAILED
        assert result.error == "bad password"

    @pytest.mark.parametrize(
        "text",
        [
            "I will click the login button now.",
            '```json\n{"status": "thinking"}\n```',
            '```json\n{"status": \n```',
        ],
    )
    def test_no_termination(self, text):
        assert parse_termination(text) is None


class TestTransientApiErrors:
    @pytest.mark.parametrize("code", [429, 500, 502, 503, 529])
    def test_transient_status(self, code):
        assert is_transient_api_error(StatusError(code))

    def test_permanent_status(self):
        assert not is_transient_api_error(StatusError(400))

    def test_connection_reset_message(self):
        assert is_transient_api_error(Exception("read ECONNRESET"))
        assert is_transient_api_error(Exception("socket hang up"))


class TestExecuteAction:
    @pytest.mark.asyncio
    async def test_clicks(self, fake_page):
        page = fake_page()
        assert await execute_action(page, {"action": "left_click", "coordinate": [10, 20]}, 0)
        page.mouse.click.assert_awaited_with(10, 20, button="left")
        await execute_action(page, {"action": "double_click", "coordinate": [1, 2]}, 0)
        page.mouse.dblclick.assert_awaited_with(1, 2)
        await execute_action(page, {"action": "triple_click", "coordinate": [3, 4]}, 0)
        page.mouse.click.assert_awaited_with(3, 4, click_count=3)

    @pytest.mark.asyncio
    async def test_type_and_key_alias(self, fake_page):
        page = fake_page()
        await execute_action(page, {"action": "type", "text": "hello"}, 0)
        page.keyboard.type.assert_awaited_with("hello", delay=30)
        await execute_action(page, {"action": "key", "text": "Return"}, 0)
        page.keyboard.press.assert_awaited_with("Enter")

    @pytest.mark.asyncio
    async def test_scroll(self, fake_page):
        page = fake_page()
        await execute_action(
            page, {"action": "scroll", "scroll_direction": "up", "scroll_amount": 2}, 0
        )
        page.mouse.wheel.assert_awaited_with(0, -200)

    @pytest.mark.asyncio
    async def test_drag(self, fake_page):
        page = fake_page()
        await execute_action(
            page,
            {"action": "left_click_drag", "start_coordinate": [0, 0], "end_coordinate": [5, 5]},
            0,
        )
        page.mouse.down.assert_awaited_once()
        page.mouse.up.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_actions(self, fake_page):
        page = fake_page()
        assert await execute_action(page, {"action": "left_click"}, 0) is False
        assert await execute_action(page, {"action": "type"}, 0) is False
        assert await execute_action(page, {"action": "teleport"}, 0) is False


class TestVisionLoop:
    @pytest.mark.asyncio
    async def test_actions_then_success(self, fake_page):
        page = fake_page()
        responses = [
            _response(tool_calls=[_tool_call({"action": "left_click", "coordinate": [5, 5]})]),
            _response(content='```json\n{"status": "success"}\n```'),
        ]
        with _patch_llm(AsyncMock(side_effect=responses)) as llm:
            result = await VisionLoop(FAST).run(page, LOGIN_SYSTEM_PROMPT, "log in", 10)

        assert result.status == LoopStatus.SUCCESS
        assert result.iterations_used == 2
        page.mouse.click.assert_awaited_once()

        kwargs = llm.call_args_list[0].kwargs
        assert kwargs["model"] == "test/model"
        assert kwargs["tools"][0]["function"]["name"] == "computer"
        assert "api_key" not in kwargs
        first_user = kwargs["messages"][1]["content"]
        assert first_user[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")

        # Second call carries the assistant tool call, its result and a fresh screenshot
        roles = [m["role"] for m in llm.call_args_list[1].kwargs["messages"]]
        assert roles == ["system", "user", "assistant", "tool", "user"]

    @pytest.mark.asyncio
    async def test_captcha_appears_after_action(self, fake_page):
        page = fake_page()

        async def click(*args, **kwargs):
            page.visible.add(".g-recaptcha")

        page.mouse.click = AsyncMock(side_effect=click)
        responses = [
            _response(tool_calls=[_tool_call({"action": "left_click", "coordinate": [5, 5]})]),
        ]
        with _patch_llm(AsyncMock(side_effect=responses)):
            result = await VisionLoop(FAST).run(page, LOGIN_SYSTEM_PROMPT, "log in", 10)
        assert result.status == LoopStatus.CAPTCHA_DETECTED
        assert result.captcha_type == "recaptcha"

    @pytest.mark.asyncio
    async def test_iteration_cap(self, fake_page):
        page = fake_page()
        llm = AsyncMock(
            return_value=_response(tool_calls=[_tool_call({"action": "screenshot"})])
        )
        with _patch_llm(llm):
            result = await VisionLoop(FAST).run(page, LOGIN_SYSTEM_PROMPT, "log in", 3)
        assert result.status == LoopStatus.FAILED
        assert result.error == "Maximum iterations (3) reached without task completion."
        assert llm.await_count == 3

    @pytest.mark.asyncio
    async def test_no_tool_calls_and_no_status(self, fake_page):
        llm = AsyncMock(return_value=_response(content="I am not sure what to do."))
        with _patch_llm(llm):
            result = await VisionLoop(FAST).run(fake_page(), LOGIN_SYSTEM_PROMPT, "log in", 5)
        assert result.status == LoopStatus.FAILED
        assert "without reporting task outcome" in result.error

    @pytest.mark.asyncio
    async def test_transient_api_errors_are_retried(self, fake_page):
        llm = AsyncMock(
            side_effect=[
                StatusError(529),
                StatusError(503),
                _response(content='{"status": "success"}'),
            ]
        )
        with _patch_llm(llm):
            result = await VisionLoop(FAST).run(fake_page(), LOGIN_SYSTEM_PROMPT, "log in", 5)
        assert result.status == LoopStatus.SUCCESS
        assert llm.await_count == 3

    @pytest.mark.asyncio
    async def test_permanent_api_error_fails(self, fake_page):
        llm = AsyncMock(side_effect=StatusError(401, "invalid api key"))
        with _patch_llm(llm):
            result = await VisionLoop(FAST).run(fake_page(), LOGIN_SYSTEM_PROMPT, "log in", 5)
        assert result.status == LoopStatus.FAILED
        assert "invalid api key" in result.error
        assert llm.await_count == 1

    @pytest.mark.asyncio
    async def test_api_key_is_passed(self, fake_page):
        cfg = VisionConfig(model="test/model", api_key="sk-test", action_delay=0)
        llm = AsyncMock(return_value=_response(content='{"status": "success"}'))
        with _patch_llm(llm):
            await VisionLoop(cfg).run(fake_page(), LOGIN_SYSTEM_PROMPT, "log in", 1)
        assert llm.call_args.kwargs["api_key"] == "sk-test"


class TestVisionBrowserOperations:
    @pytest.mark.asyncio
    async def test_login_success_extracts_session(self, fake_page, fake_manager):
        page = fake_page()
        page.cookie_list = [{"name": "sid", "value": "9"}]
        ops = VisionBrowserOperations(fake_manager(page), FAST)
        llm = AsyncMock(return_value=_response(content='```json\n{"status": "success"}\n```'))
        with _patch_llm(llm):
            result = await ops.login("https://x.io/login", {"username": "bot", "password": "pw"})
        assert result.success is True
        assert result.cookies == "sid=9"
        assert ("goto", "https://x.io/login") in page.actions
        assert "bot" in llm.call_args.kwargs["messages"][1]["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_login_captcha(self, fake_page, fake_manager):
        ops = VisionBrowserOperations(fake_manager(fake_page()), FAST)
        llm = AsyncMock(
            return_value=_response(
                content='{"status": "captcha_detected", "captcha_type": "hcaptcha"}'
            )
        )
        with _patch_llm(llm):
            result = await ops.login("https://x.io/login", {"username": "bot", "password": "pw"})
        assert result.success is False
        assert result.captcha_detected is True
        assert result.captcha_type == "hcaptcha"
        assert result.error == "CAPTCHA detected during login"

    @pytest.mark.asyncio
    async def test_register_needs_email_verification(self, fake_page, fake_manager):
        ops = VisionBrowserOperations(fake_manager(fake_page()), FAST)
        llm = AsyncMock(return_value=_response(content='{"status": "needs_email_verification"}'))
        with _patch_llm(llm):
            result = await ops.register(
                "https://x.io/signup", {"email": "bot@mail.io", "password": "pw", "name": "Bot"}
            )
        assert result.success is True
        assert result.needs_email_verification is True
        assert result.credentials == {
            "username": "bot@mail.io",
            "password": "pw",
            "email": "bot@mail.io",
        }

    @pytest.mark.asyncio
    async def test_register_failure(self, fake_page, fake_manager):
        ops = VisionBrowserOperations(fake_manager(fake_page()), FAST)
        failed = '{"status": "failed", "error": "email taken"}'
        llm = AsyncMock(return_value=_response(content=failed))
        with _patch_llm(llm):
            result = await ops.register(
                "https://x.io/signup", {"email": "bot@mail.io", "password": "pw"}
            )
        assert result.success is False
        assert result.error == "email taken"
