"""
Secrets data models.

References, resolution results, and the per-backend configuration variants.
All models are plain dataclasses. Backend configs form a closed union keyed by
their ``kind``; anything else is rejected when a backend is constructed.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import ClassVar


class SecretsBackendType(StrEnum):
    PASS = "pass"
    VAULT = "vault"
    KEYRING = "keyring"
    ENV = "env"
    FILE = "file"
    GANESH = "ganesh"


class SecretRefError(ValueError):
    """A reference string that cannot be parsed into a usable SecretRef."""


class BackendNotImplementedError(NotImplementedError):
    """The backend kind is known but has no resolving implementation."""


@dataclass(frozen=True)
class SecretRef:
    """Parsed ``[backend:]path[#field]`` reference."""

    backend: SecretsBackendType
    path: str
    field: str | None = None


@dataclass(frozen=True)
class SecretResolutionResult:
    """Outcome of resolving one reference. ``ok=False`` always carries ``error``."""

    ok: bool
    value: str | None = None
    error: str | None = None
    cached: bool = False

    @classmethod
    def success(cls, value: str, *, cached: bool = False) -> SecretResolutionResult:
        return cls(ok=True, value=value, cached=cached)

    @classmethod
    def failure(cls, error: str) -> SecretResolutionResult:
        return cls(ok=False, error=error)


# ── Backend configuration variants ──


@dataclass(frozen=True)
class PassBackendConfig:
    kind: ClassVar[SecretsBackendType] = SecretsBackendType.PASS

    store_path: Path | None = None  # default: $PASSWORD_STORE_DIR or ~/.password-store
    gpg_opts: str = ""  # passed through as PASSWORD_STORE_GPG_OPTS
    timeout: float = 10.0


@dataclass(frozen=True)
class GaneshBackendConfig:
    kind: ClassVar[SecretsBackendType] = SecretsBackendType.GANESH

    vault_path: Path | None = None  # default: $GANESH_VAULT_PATH or ~/.ganesh/vault
    auto_unlock: bool = True
    require_totp: bool = False  # tier-2 vaults: unlock needs a valid one-time code
    timeout: float = 30.0  # per age invocation


@dataclass(frozen=True)
class VaultBackendConfig:
    kind: ClassVar[SecretsBackendType] = SecretsBackendType.VAULT

    address: str = ""
    token: str = ""
    token_env: str = ""
    namespace: str = ""
    mount_path: str = "secret"
    kv_version: int = 2


@dataclass(frozen=True)
class KeyringBackendConfig:
    kind: ClassVar[SecretsBackendType] = SecretsBackendType.KEYRING

    service: str = "ganesh"


@dataclass(frozen=True)
class EnvBackendConfig:
    kind: ClassVar[SecretsBackendType] = SecretsBackendType.ENV


@dataclass(frozen=True)
class FileBackendConfig:
    kind: ClassVar[SecretsBackendType] = SecretsBackendType.FILE


BackendConfig = (
    PassBackendConfig
    | GaneshBackendConfig
    | VaultBackendConfig
    | KeyringBackendConfig
    | EnvBackendConfig
    | FileBackendConfig
)

DEFAULT_CONFIGS: dict[SecretsBackendType, type[BackendConfig]] = {
    SecretsBackendType.PASS: PassBackendConfig,
    SecretsBackendType.GANESH: GaneshBackendConfig,
    SecretsBackendType.VAULT: VaultBackendConfig,
    SecretsBackendType.KEYRING: KeyringBackendConfig,
    SecretsBackendType.ENV: EnvBackendConfig,
    SecretsBackendType.FILE: FileBackendConfig,
}
