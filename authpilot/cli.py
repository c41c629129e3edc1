"""
AuthPilot CLI: local management of the vault and one-shot authentication.

Usage:
    authpilot version                          # Show version
    authpilot key init                         # Create the vault key file
    authpilot identity create NAME --owner-email EMAIL
    authpilot identity list
    authpilot identity revoke PASSPORT_ID
    authpilot credentials list PASSPORT_ID
    authpilot credentials delete PASSPORT_ID SERVICE
    authpilot auth PASSPORT_ID URL [--strategy vision] [--timeout 120]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from pathlib import Path
from typing import Any

from authpilot.config import STRATEGY_SELECTOR, STRATEGY_VISION, Config, get_config

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authpilot",
        description="AuthPilot: fallback authentication for autonomous agents.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # version
    subparsers.add_parser("version", help="Show version")

    # key
    key_parser = subparsers.add_parser("key", help="Manage the vault key file")
    key_sub = key_parser.add_subparsers(dest="key_command")
    key_init = key_sub.add_parser("init", help="Generate the key file if it does not exist")
    key_init.add_argument("--path", type=Path, help="Key file location (default from config)")

    # identity
    id_parser = subparsers.add_parser("identity", help="Manage agent identities")
    id_sub = id_parser.add_subparsers(dest="identity_command")
    id_create = id_sub.add_parser("create", help="Create a new agent identity")
    id_create.add_argument("name", help="Agent name")
    id_create.add_argument(
        "--owner-email", "--owner", dest="owner", required=True, help="Owner email address"
    )
    id_create.add_argument("--description", default="", help="Free-form description")
    id_sub.add_parser("list", help="List identities")
    id_revoke = id_sub.add_parser("revoke", help="Revoke an identity")
    id_revoke.add_argument("passport_id")

    # credentials
    cred_parser = subparsers.add_parser("credentials", help="Inspect stored credentials")
    cred_sub = cred_parser.add_subparsers(dest="credentials_command")
    cred_list = cred_sub.add_parser("list", help="List an agent's credentials (no secrets)")
    cred_list.add_argument("passport_id")
    cred_delete = cred_sub.add_parser("delete", help="Forget an agent's service credential")
    cred_delete.add_argument("passport_id")
    cred_delete.add_argument("service")

    # auth
    auth_parser = subparsers.add_parser("auth", help="Authenticate an agent on a service")
    auth_parser.add_argument("passport_id")
    auth_parser.add_argument("url")
    auth_parser.add_argument(
        "--strategy",
        choices=[STRATEGY_SELECTOR, STRATEGY_VISION],
        help="Browser strategy (default from AUTHPILOT_BROWSER_STRATEGY)",
    )
    auth_parser.add_argument("--timeout", type=float, help="Overall timeout in seconds")
    auth_parser.add_argument("--headed", action="store_true", help="Show the browser window")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.version or args.command == "version":
        from authpilot import __version__

        print(f"authpilot {__version__}")
        return 0

    if args.command == "key":
        return _cmd_key(args, key_parser)
    elif args.command == "identity":
        return _run_with_vault(lambda vault, cfg: _cmd_identity(args, vault, cfg), id_parser)
    elif args.command == "credentials":
        return _run_with_vault(lambda vault, cfg: _cmd_credentials(args, vault), cred_parser)
    elif args.command == "auth":
        return _run_with_vault(lambda vault, cfg: _cmd_auth(args, vault, cfg))
    else:
        parser.print_help()
        return 0


def _cmd_key(args: argparse.Namespace, key_parser: argparse.ArgumentParser) -> int:
    from authpilot.vault.keyfile import init_key_file

    if args.key_command != "init":
        key_parser.print_help()
        return 0
    key_path = args.path or get_config().vault.key_path
    existed = key_path.exists()
    path = init_key_file(key_path)
    print(f"Key file {'already exists' if existed else 'created'}: {path}")
    return 0


def _run_with_vault(
    command: Callable[[Any, Config], Awaitable[int]],
    sub_parser: argparse.ArgumentParser | None = None,
) -> int:
    """Open the vault from the configured key file, run ``command``, close it."""
    from authpilot.errors import AuthPilotError
    from authpilot.vault import CredentialVault, load_key_file

    cfg = get_config()
    try:
        private_key = load_key_file(cfg.vault.key_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    async def run() -> int:
        vault = CredentialVault(cfg.vault.db_path, private_key)
        await vault.init()
        try:
            return await command(vault, cfg)
        finally:
            vault.close()

    try:
        rc = asyncio.run(run())
    except AuthPilotError as e:
        print(f"Error: {e}")
        return 1
    if rc == 2 and sub_parser is not None:
        sub_parser.print_help()
        return 0
    return rc


async def _cmd_identity(args: argparse.Namespace, vault: Any, cfg: Config) -> int:
    from authpilot.auth.identity import IdentityService

    identities = IdentityService(vault, cfg.auth.email_domain)
    if args.identity_command == "create":
        identity = await identities.create_identity(args.name, args.owner, args.description)
        print(json.dumps(identity.passport.model_dump(), indent=2))
        return 0
    if args.identity_command == "list":
        entries = await identities.list_identities()
        if not entries:
            print("No identities.")
        for entry in entries:
            print(f"{entry.passport_id}  {entry.status:<8}  {entry.name}")
        return 0
    if args.identity_command == "revoke":
        if await identities.revoke_identity(args.passport_id):
            print(f"Revoked {args.passport_id}")
            return 0
        print(f"Identity not found: {args.passport_id}")
        return 1
    return 2


async def _cmd_credentials(args: argparse.Namespace, vault: Any) -> int:
    from authpilot.vault import credential_key

    if args.credentials_command == "list":
        entries = await vault.list(passport_id=args.passport_id)
        if not entries:
            print("No credentials.")
        for entry in entries:
            print(f"{entry.service:<30}  {entry.username:<30}  {entry.registered_at}")
        return 0
    if args.credentials_command == "delete":
        if await vault.delete(credential_key(args.passport_id, args.service)):
            print(f"Deleted credential for {args.service}")
            return 0
        print(f"No credential for {args.service}")
        return 1
    return 2


async def _cmd_auth(args: argparse.Namespace, vault: Any, cfg: Config) -> int:
    from authpilot.auth.captcha import CaptchaService
    from authpilot.auth.fallback import FallbackAuthService
    from authpilot.auth.identity import IdentityService
    from authpilot.auth.recovery import ErrorRecoveryService
    from authpilot.auth.relay import TelegramRelay
    from authpilot.auth.session import SessionService
    from authpilot.auth.webhooks import WebhookService
    from authpilot.browser import create_browser_operations

    browser_cfg = cfg.browser
    if args.strategy:
        browser_cfg = replace(browser_cfg, strategy=args.strategy)
    if args.headed:
        browser_cfg = replace(browser_cfg, headless=False)
    cfg = replace(cfg, browser=browser_cfg)

    webhooks = WebhookService()
    for url in cfg.notify.webhook_urls:
        webhooks.add_webhook(url, secret=cfg.notify.webhook_secret or None)

    telegram = None
    if cfg.notify.telegram_bot_token and cfg.notify.telegram_chat_id:
        telegram = TelegramRelay(cfg.notify.telegram_bot_token, cfg.notify.telegram_chat_id)

    browser = create_browser_operations(cfg)
    service = FallbackAuthService(
        IdentityService(vault, cfg.auth.email_domain),
        vault,
        SessionService(),
        webhooks,
        CaptchaService(
            webhooks,
            timeout_seconds=cfg.auth.captcha_timeout_seconds,
            dashboard_url=cfg.notify.dashboard_url,
        ),
        browser,
        # No inbound mail source in a one-shot process; verification is skipped
        mailbox=None,
        recovery=ErrorRecoveryService(webhooks, cfg.notify.dashboard_url),
        max_retries=cfg.auth.max_retries,
        session_ttl=cfg.auth.session_ttl_seconds,
        email_wait_timeout=cfg.auth.email_wait_timeout,
    )
    try:
        result = await service.authenticate_on_service(
            args.passport_id, args.url, timeout=args.timeout
        )
    finally:
        await browser.close()
        if telegram is not None:
            await telegram.close()

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1
