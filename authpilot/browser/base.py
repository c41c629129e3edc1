"""
Browser capability contract shared by every automation strategy.

The orchestrator depends only on ``BrowserOperations``; the selector and
vision strategies are interchangeable implementations chosen by config.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NotRequired, Protocol, TypedDict, runtime_checkable


class LoginCredentials(TypedDict):
    username: str
    password: str


class RegistrationOptions(TypedDict):
    email: str
    password: str
    name: NotRequired[str]


class RegisteredCredentials(TypedDict):
    username: str
    password: str
    email: str


@dataclass
class LoginResult:
    success: bool
    session_token: str | None = None
    cookies: str | None = None
    captcha_detected: bool = False
    captcha_type: str | None = None
    error: str | None = None
    screenshot: bytes | None = None


@dataclass
class RegistrationResult:
    success: bool
    credentials: RegisteredCredentials | None = None
    needs_email_verification: bool = False
    captcha_detected: bool = False
    captcha_type: str | None = None
    error: str | None = None
    screenshot: bytes | None = None


@runtime_checkable
class BrowserOperations(Protocol):
    async def login(self, url: str, credentials: LoginCredentials) -> LoginResult: ...

    async def register(self, url: str, options: RegistrationOptions) -> RegistrationResult: ...
