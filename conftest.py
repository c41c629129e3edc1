"""
Root-level shared test fixtures.

Every test starts from a clean AUTHPILOT_* environment and a fresh config
singleton, with the home directory pointed at a temporary path.
"""

from __future__ import annotations

import os

import pytest

from authpilot.auth import relay
from authpilot.config import reset_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Remove AUTHPILOT_* env vars that leak between tests."""
    for key in list(os.environ):
        if key.startswith("AUTHPILOT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("AUTHPILOT_HOME", str(tmp_path / "authpilot-home"))
    reset_config()
    yield
    reset_config()
    relay.set_relay_sender(None)
