"""
Centralized configuration for authpilot.

All configuration is loaded from environment variables with sensible defaults.
Key material is not part of the config. It is passed to the vault explicitly
(see authpilot.vault.keyfile for the file-based bootstrap).

Usage:
    from authpilot.config import get_config
    cfg = get_config()
    print(cfg.vault.db_path)        # ~/.authpilot/vault.db or $AUTHPILOT_VAULT_PATH
    print(cfg.browser.strategy)     # "selector" or "vision"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

STRATEGY_SELECTOR = "selector"
STRATEGY_VISION = "vision"


def _home() -> Path:
    return Path(os.environ.get("AUTHPILOT_HOME", Path.home() / ".authpilot"))


def _bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class VaultConfig:
    """Location of the encrypted store and the bootstrap key file."""

    db_path: Path = field(default_factory=lambda: _home() / "vault.db")
    key_path: Path = field(default_factory=lambda: _home() / ".vault-key")


@dataclass(frozen=True)
class BrowserConfig:
    """Headless browser parameters shared by both strategies."""

    strategy: str = STRATEGY_SELECTOR
    headless: bool = True
    proxy: str = ""  # e.g. socks5://127.0.0.1:1080
    navigation_timeout_ms: int = 30_000
    interaction_timeout_ms: int = 10_000


@dataclass(frozen=True)
class VisionConfig:
    """Vision-model loop parameters (litellm model id)."""

    model: str = "anthropic/claude-sonnet-4-5"
    api_key: str = ""
    login_max_iterations: int = 10
    register_max_iterations: int = 15
    max_api_retries: int = 2
    retry_base_delay: float = 1.0
    action_delay: float = 0.5
    max_tokens: int = 4096


@dataclass(frozen=True)
class AuthConfig:
    """Orchestrator policy."""

    max_retries: int = 2
    session_ttl_seconds: float = 3600.0
    email_wait_timeout: float = 30.0
    email_domain: str = "agent-mail.xyz"
    captcha_timeout_seconds: float = 300.0


@dataclass(frozen=True)
class NotifyConfig:
    """Owner notification channels."""

    webhook_urls: list[str] = field(default_factory=list)
    webhook_secret: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    dashboard_url: str = "https://dashboard.authpilot.local"


@dataclass(frozen=True)
class Config:
    """Top-level authpilot configuration."""

    home: Path = field(default_factory=_home)
    vault: VaultConfig = field(default_factory=VaultConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    vision: VisionConfig = field(default_factory=VisionConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    home = _home()

    vault = VaultConfig(
        db_path=Path(os.environ.get("AUTHPILOT_VAULT_PATH", home / "vault.db")),
        key_path=Path(os.environ.get("AUTHPILOT_KEY_PATH", home / ".vault-key")),
    )

    strategy = os.environ.get("AUTHPILOT_BROWSER_STRATEGY", STRATEGY_SELECTOR).lower()
    if strategy not in (STRATEGY_SELECTOR, STRATEGY_VISION):
        raise ValueError(
            f"AUTHPILOT_BROWSER_STRATEGY must be '{STRATEGY_SELECTOR}' or "
            f"'{STRATEGY_VISION}', got {strategy!r}"
        )

    browser = BrowserConfig(
        strategy=strategy,
        headless=_bool("AUTHPILOT_HEADLESS", True),
        proxy=os.environ.get("AUTHPILOT_PROXY", ""),
        navigation_timeout_ms=int(os.environ.get("AUTHPILOT_NAV_TIMEOUT_MS", "30000")),
        interaction_timeout_ms=int(os.environ.get("AUTHPILOT_INTERACTION_TIMEOUT_MS", "10000")),
    )

    vision = VisionConfig(
        model=os.environ.get("AUTHPILOT_VISION_MODEL", "anthropic/claude-sonnet-4-5"),
        api_key=os.environ.get("AUTHPILOT_VISION_API_KEY", ""),
        login_max_iterations=int(os.environ.get("AUTHPILOT_VISION_LOGIN_ITERATIONS", "10")),
        register_max_iterations=int(os.environ.get("AUTHPILOT_VISION_REGISTER_ITERATIONS", "15")),
    )

    auth = AuthConfig(
        max_retries=int(os.environ.get("AUTHPILOT_MAX_RETRIES", "2")),
        session_ttl_seconds=float(os.environ.get("AUTHPILOT_SESSION_TTL", "3600")),
        email_wait_timeout=float(os.environ.get("AUTHPILOT_EMAIL_WAIT_TIMEOUT", "30")),
        email_domain=os.environ.get("AUTHPILOT_EMAIL_DOMAIN", "agent-mail.xyz"),
        captcha_timeout_seconds=float(os.environ.get("AUTHPILOT_CAPTCHA_TIMEOUT", "300")),
    )

    webhook_urls = os.environ.get("AUTHPILOT_WEBHOOK_URLS", "")
    notify = NotifyConfig(
        webhook_urls=[u.strip() for u in webhook_urls.split(",") if u.strip()],
        webhook_secret=os.environ.get("AUTHPILOT_WEBHOOK_SECRET", ""),
        telegram_bot_token=os.environ.get("AUTHPILOT_TELEGRAM_BOT_TOKEN", ""),
        telegram_chat_id=os.environ.get("AUTHPILOT_TELEGRAM_CHAT_ID", ""),
        dashboard_url=os.environ.get(
            "AUTHPILOT_DASHBOARD_URL", "https://dashboard.authpilot.local"
        ),
    )

    return Config(
        home=home,
        vault=vault,
        browser=browser,
        vision=vision,
        auth=auth,
        notify=notify,
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
