"""
Centralized configuration for Ganesh.

All configuration is loaded from environment variables with sensible defaults.

Usage:
    from ganesh.config import get_config
    cfg = get_config()
    print(cfg.vault_path)     # "/home/user/.ganesh/vault" or $GANESH_VAULT_PATH
    print(cfg.policy_gate)    # None unless GANESH_POLICY_GATE is set
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

_TRUTHY = {"1", "true", "on", "yes"}
_FALSY = {"0", "false", "off", "no"}


def parse_switch(value: str | None) -> bool | None:
    """Parse an on/off environment switch. Unset or unrecognized → None."""
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    return None


@dataclass(frozen=True)
class MfaEnvConfig:
    """Environment overrides for tier-3 approvals."""

    chat_id: str = ""  # operator chat identity; beats the per-vault mfa-config.json
    bot_token: str = ""  # fallback when no per-vault config provides one


@dataclass(frozen=True)
class Config:
    """Top-level Ganesh configuration."""

    home: Path = field(default_factory=lambda: Path.home() / ".ganesh")
    vault_path: Path = field(default_factory=lambda: Path.home() / ".ganesh" / "vault")
    policy_path: Path = field(
        default_factory=lambda: Path.home() / ".ganesh" / "config" / "security-policy.json"
    )
    audit_dir: Path = field(default_factory=lambda: Path.home() / ".ganesh" / "audit")

    # None = enabled iff the policy file exists
    policy_gate: bool | None = None

    default_backend: str = "pass"
    password_store_dir: Path = field(default_factory=lambda: Path.home() / ".password-store")

    mfa: MfaEnvConfig = field(default_factory=MfaEnvConfig)


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
    home = Path(os.environ.get("GANESH_HOME", Path.home() / ".ganesh")).expanduser()

    mfa = MfaEnvConfig(
        chat_id=os.environ.get("GANESH_MFA_CHAT_ID", ""),
        bot_token=os.environ.get("GANESH_MFA_BOT_TOKEN", ""),
    )

    return Config(
        home=home,
        vault_path=Path(os.environ.get("GANESH_VAULT_PATH", home / "vault")).expanduser(),
        policy_path=Path(
            os.environ.get("GANESH_POLICY_PATH", home / "config" / "security-policy.json")
        ).expanduser(),
        audit_dir=Path(os.environ.get("GANESH_AUDIT_DIR", home / "audit")).expanduser(),
        policy_gate=parse_switch(os.environ.get("GANESH_POLICY_GATE")),
        default_backend=os.environ.get("GANESH_SECRETS_BACKEND", "pass").strip().lower()
        or "pass",
        password_store_dir=Path(
            os.environ.get("PASSWORD_STORE_DIR", Path.home() / ".password-store")
        ).expanduser(),
        mfa=mfa,
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
