"""
Vault on-disk schemas: tier manifest and per-vault MFA config.

``manifest.json`` is the only source of tier classification. A path belongs to
the first group listing it; unlisted paths get ``defaultTier``.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)

Tier = Literal[1, 2, 3]

DEFAULT_GROUP_ID = "default"


class ManifestError(ValueError):
    """Manifest missing, unreadable, or invalid."""


class SecretGroup(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    tier: Tier
    secrets: list[str] = Field(default_factory=list)


class VaultManifest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: int = 1
    groups: list[SecretGroup] = Field(default_factory=list)
    default_tier: Tier = Field(1, alias="defaultTier")
    last_modified: str | None = Field(None, alias="lastModified")

    @model_validator(mode="after")
    def _warn_duplicates(self) -> VaultManifest:
        seen: dict[str, str] = {}
        for group in self.groups:
            for secret in group.secrets:
                if secret in seen:
                    logger.warning(
                        "vault: %r is listed in groups %r and %r; using %r",
                        secret,
                        seen[secret],
                        group.id,
                        seen[secret],
                    )
                else:
                    seen[secret] = group.id
        return self

    def group_for(self, secret_id: str) -> SecretGroup | None:
        for group in self.groups:
            if secret_id in group.secrets:
                return group
        return None

    def tier_for(self, secret_id: str) -> int:
        group = self.group_for(secret_id)
        return group.tier if group else self.default_tier

    def track(self, secret_id: str) -> bool:
        """Add ``secret_id`` to the default group unless a group already has it."""
        if self.group_for(secret_id) is not None:
            return False
        default = next((g for g in self.groups if g.id == DEFAULT_GROUP_ID), None)
        if default is None:
            default = SecretGroup(id=DEFAULT_GROUP_ID, name="Default", tier=1)
            self.groups.append(default)
        default.secrets.append(secret_id)
        return True


class MfaConfigFile(BaseModel):
    """``mfa-config.json`` in the vault root."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    bot_token: str = Field("", alias="botToken")
    chat_id: str = Field("", alias="chatId")
    timeout_ms: int = Field(60_000, alias="timeoutMs", gt=0)


def write_private(path: Path, text: str) -> None:
    """Write ``text`` atomically with mode 0600."""
    tmp = path.with_name(f".{path.name}.tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(text)
    os.replace(tmp, path)
    path.chmod(0o600)


def load_manifest(path: Path) -> VaultManifest:
    try:
        return VaultManifest.model_validate_json(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ManifestError(f"Manifest not found: {path}") from None
    except (OSError, ValidationError) as e:
        raise ManifestError(f"Invalid manifest {path}: {e}") from e


def save_manifest(manifest: VaultManifest, path: Path) -> None:
    manifest.last_modified = datetime.now(UTC).isoformat()
    data = manifest.model_dump(by_alias=True, exclude_none=True)
    write_private(path, json.dumps(data, indent=2) + "\n")


def load_mfa_config(path: Path) -> MfaConfigFile | None:
    """Read ``mfa-config.json``. Missing → None; invalid → None with a warning."""
    if not path.exists():
        return None
    try:
        return MfaConfigFile.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.warning("vault: ignoring invalid MFA config %s: %s", path, e)
        return None
