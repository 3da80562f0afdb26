"""
Root-level shared test fixtures.

Inherited by the top-level tests/ suite and the per-package test directories.
"""

from __future__ import annotations

import uuid

import pytest

from ganesh.config import reset_config

GANESH_ENV_VARS = [
    "GANESH_HOME",
    "GANESH_VAULT_PATH",
    "GANESH_POLICY_PATH",
    "GANESH_AUDIT_DIR",
    "GANESH_POLICY_GATE",
    "GANESH_SECRETS_BACKEND",
    "GANESH_MFA_CHAT_ID",
    "GANESH_MFA_BOT_TOKEN",
    "PASSWORD_STORE_DIR",
]


@pytest.fixture
def test_prefix():
    """Unique prefix for test isolation."""
    return f"test_{uuid.uuid4().hex[:8]}"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Point all ganesh state at a temp home and drop leaking env vars."""
    for key in GANESH_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("GANESH_HOME", str(tmp_path / "ganesh-home"))
    reset_config()
    yield
    reset_config()
