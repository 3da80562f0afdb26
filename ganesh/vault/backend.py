"""
Ganesh Vault backend — age-encrypted secret store with tiered access.

Vault layout (per vault root):
    manifest.json     tier groups (0600)
    identity.key      age identity (0600)
    secrets.age       {"secrets": {path: {"value": ..., "metadata": {...}}}}
    mfa-config.json   optional {"botToken", "chatId", "timeoutMs"}
    totp.key          base32 shared secret for one-time codes

Tiers:
    1  direct access once the vault is unlocked
    2  direct access (one-time code checked at unlock when require_totp is set)
    3  operator approval over chat for every single read; never cached
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from ganesh.config import MfaEnvConfig, get_config
from ganesh.mfa.approval import DEFAULT_TIMEOUT, MfaApprover, MfaConfig
from ganesh.mfa.telegram import TelegramTransport
from ganesh.mfa.totp import generate_totp_secret, verify_totp
from ganesh.secrets.backends.base import SecretsBackend
from ganesh.secrets.models import GaneshBackendConfig, SecretsBackendType
from ganesh.vault.crypto import (
    AgeError,
    age_installed,
    decrypt_file,
    encrypt_to_file,
    generate_identity,
    recipient_for,
)
from ganesh.vault.manifest import (
    ManifestError,
    SecretGroup,
    VaultManifest,
    load_manifest,
    load_mfa_config,
    save_manifest,
    write_private,
)

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"
IDENTITY_FILE = "identity.key"
SECRETS_FILE = "secrets.age"
MFA_CONFIG_FILE = "mfa-config.json"
TOTP_FILE = "totp.key"

# Tier-1 secret consulted for the approval bot when mfa-config.json has none
MFA_BOT_TOKEN_SECRET = "ganesh/telegram-bot-token"


class VaultError(RuntimeError):
    """Vault contents or prerequisites are unusable."""


class VaultState(StrEnum):
    LOCKED = "locked"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"


def _select_field(value: str, field: str) -> str | None:
    """Pick ``field`` out of a JSON-object secret."""
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or data.get(field) is None:
        return None
    return str(data[field])


class GaneshBackend(SecretsBackend):
    """Tiered vault. One instance owns one decrypted in-memory map."""

    name = SecretsBackendType.GANESH

    def __init__(
        self,
        config: GaneshBackendConfig | None = None,
        *,
        approver: MfaApprover | None = None,
        mfa_env: MfaEnvConfig | None = None,
    ) -> None:
        self.config = config or GaneshBackendConfig()
        self.vault_path = Path(self.config.vault_path or get_config().vault_path).expanduser()
        self._approver = approver
        self._mfa_env = mfa_env

        self._state = VaultState.LOCKED
        self._recipient: str | None = None
        self._manifest: VaultManifest | None = None
        self._secrets: dict[str, str] = {}
        self._metadata: dict[str, dict[str, Any]] = {}

        self._unlock_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    # ── Paths & state ──

    def _file(self, name: str) -> Path:
        return self.vault_path / name

    @property
    def state(self) -> VaultState:
        return self._state

    @property
    def unlocked(self) -> bool:
        return self._state is VaultState.UNLOCKED

    async def is_available(self) -> bool:
        if not self._file(MANIFEST_FILE).is_file():
            return False
        if not self._file(IDENTITY_FILE).is_file():
            return False
        return age_installed()

    # ── Lock / unlock ──

    async def unlock(self, totp_code: str | None = None) -> bool:
        """Load the identity, manifest and secrets. Idempotent and single-flight."""
        if self.unlocked:
            return True
        async with self._unlock_lock:
            if self.unlocked:
                return True
            self._state = VaultState.UNLOCKING
            try:
                if self.config.require_totp:
                    self._check_totp(totp_code)
                identity = self._file(IDENTITY_FILE)
                if not identity.is_file():
                    raise VaultError(f"identity not found: {identity}")
                recipient = await recipient_for(identity, timeout=self.config.timeout)
                manifest = load_manifest(self._file(MANIFEST_FILE))
                secrets_map, metadata = await self._load_secrets(identity)
            except (AgeError, ManifestError, VaultError, OSError) as e:
                self._state = VaultState.LOCKED
                logger.error("vault: failed to unlock %s: %s", self.vault_path, e)
                return False

            self._recipient = recipient
            self._manifest = manifest
            self._secrets = secrets_map
            self._metadata = metadata
            self._state = VaultState.UNLOCKED
            logger.info("vault: unlocked %s (%d secrets)", self.vault_path, len(secrets_map))
            return True

    def lock(self) -> None:
        """Forget the decrypted secrets and manifest."""
        self._state = VaultState.LOCKED
        self._recipient = None
        self._manifest = None
        self._secrets.clear()
        self._metadata.clear()

    def _check_totp(self, code: str | None) -> None:
        if not code:
            raise VaultError("one-time code required to unlock")
        try:
            shared = self._file(TOTP_FILE).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            raise VaultError(f"{TOTP_FILE} missing; cannot verify one-time code") from None
        if not verify_totp(shared, code):
            raise VaultError("invalid one-time code")

    async def _ensure_unlocked(self) -> bool:
        if self.unlocked:
            return True
        if not self.config.auto_unlock:
            logger.error("vault: locked and auto-unlock is disabled")
            return False
        return await self.unlock()

    async def _load_secrets(
        self, identity: Path
    ) -> tuple[dict[str, str], dict[str, dict[str, Any]]]:
        blob = self._file(SECRETS_FILE)
        if not blob.exists():
            return {}, {}
        raw = await decrypt_file(blob, identity, timeout=self.config.timeout)
        try:
            store = json.loads(raw)
        except json.JSONDecodeError as e:
            raise VaultError(f"decrypted store is not JSON: {e.msg}") from None
        entries = store.get("secrets") if isinstance(store, dict) else None
        if not isinstance(entries, dict):
            raise VaultError("decrypted store has no 'secrets' mapping")

        secrets_map: dict[str, str] = {}
        metadata: dict[str, dict[str, Any]] = {}
        for secret_id, entry in entries.items():
            if not isinstance(entry, dict) or not isinstance(entry.get("value"), str):
                logger.warning("vault: skipping malformed entry %r", secret_id)
                continue
            secrets_map[secret_id] = entry["value"]
            metadata[secret_id] = dict(entry.get("metadata") or {})
        return secrets_map, metadata

    async def _save_secrets(self) -> None:
        if self._recipient is None:
            raise VaultError("vault not unlocked")
        store = {
            "secrets": {
                secret_id: {"value": value, "metadata": self._metadata.get(secret_id, {})}
                for secret_id, value in self._secrets.items()
            }
        }
        await encrypt_to_file(
            json.dumps(store).encode("utf-8"),
            self._recipient,
            self._file(SECRETS_FILE),
            timeout=self.config.timeout,
        )

    # ── Tiers ──

    def group_for(self, secret_id: str) -> SecretGroup | None:
        return self._manifest.group_for(secret_id) if self._manifest else None

    def tier_for(self, secret_id: str) -> int:
        if self._manifest is None:
            raise VaultError("manifest not loaded")
        return self._manifest.tier_for(secret_id)

    def cacheable(self, path: str) -> bool:
        return self._manifest is not None and self.tier_for(path) < 3

    # ── MFA ──

    def mfa_config(self) -> MfaConfig | None:
        """Approval settings: mfa-config.json, then the vault, then the environment."""
        file_cfg = load_mfa_config(self._file(MFA_CONFIG_FILE))
        env = self._mfa_env or get_config().mfa

        bot_token = (
            (file_cfg.bot_token if file_cfg else "")
            or self._secrets.get(MFA_BOT_TOKEN_SECRET, "")
            or env.bot_token
        )
        chat_id = env.chat_id or (file_cfg.chat_id if file_cfg else "")
        if not bot_token or not chat_id:
            return None
        timeout = file_cfg.timeout_ms / 1000 if file_cfg else DEFAULT_TIMEOUT
        return MfaConfig(bot_token=bot_token, chat_id=chat_id, timeout=timeout)

    async def _approve(self, secret_id: str) -> bool:
        group = self.group_for(secret_id)
        group_name = group.name if group else "default"
        logger.info("vault: requesting tier 3 approval for %s", secret_id)

        if self._approver is not None:
            result = await self._approver.request(secret_id, group_name)
        else:
            mfa = self.mfa_config()
            if mfa is None:
                logger.error("vault: tier 3 secret requested but MFA is not configured")
                return False
            async with TelegramTransport(mfa.bot_token) as transport:
                approver = MfaApprover(transport, mfa.chat_id, timeout=mfa.timeout)
                result = await approver.request(secret_id, group_name)

        if not result.approved:
            logger.error("vault: tier 3 access to %s refused: %s", secret_id, result.error)
            return False
        logger.info("vault: tier 3 access approved for %s", secret_id)
        return True

    # ── SecretsBackend ──

    async def resolve(self, path: str, field: str | None = None) -> str | None:
        if not await self._ensure_unlocked():
            logger.error("vault: locked and could not unlock")
            return None

        if path not in self._secrets:
            return None
        if self.tier_for(path) >= 3 and not await self._approve(path):
            return None

        # read after approval; the vault may have been locked meanwhile
        value = self._secrets.get(path)
        if value is None:
            return None
        return _select_field(value, field) if field else value

    async def store(self, path: str, value: str) -> bool:
        if not path.strip():
            return False
        if not await self._ensure_unlocked():
            return False

        async with self._write_lock:
            previous = self._secrets.get(path)
            previous_meta = self._metadata.get(path)
            now = datetime.now(UTC).isoformat()
            meta = dict(previous_meta or {})
            meta.setdefault("created", now)
            meta["updated"] = now

            self._secrets[path] = value
            self._metadata[path] = meta
            try:
                await self._save_secrets()
            except (AgeError, VaultError, OSError) as e:
                if previous is None:
                    self._secrets.pop(path, None)
                    self._metadata.pop(path, None)
                else:
                    self._secrets[path] = previous
                    self._metadata[path] = previous_meta or {}
                logger.error("vault: failed to store %s: %s", path, e)
                return False

            manifest = self._manifest
            if manifest is not None:
                untracked = manifest.model_copy(deep=True)
                if manifest.track(path):
                    try:
                        save_manifest(manifest, self._file(MANIFEST_FILE))
                    except OSError as e:
                        # The secret is persisted; keep the manifest matching disk
                        self._manifest = untracked
                        logger.warning(
                            "vault: stored %s but could not update manifest: %s", path, e
                        )
        return True

    async def list(self, prefix: str | None = None) -> list[str]:
        if not await self._ensure_unlocked():
            return []
        return sorted(s for s in self._secrets if not prefix or s.startswith(prefix))


async def init_vault(vault_path: Path, *, timeout: float = 30.0) -> str:
    """Create a vault at ``vault_path``; existing files are left untouched.

    Returns the vault's age recipient.
    """
    vault_path.mkdir(parents=True, exist_ok=True)
    vault_path.chmod(0o700)

    identity = vault_path / IDENTITY_FILE
    if identity.exists():
        recipient = await recipient_for(identity, timeout=timeout)
    else:
        recipient = await generate_identity(identity, timeout=timeout)

    manifest_path = vault_path / MANIFEST_FILE
    if not manifest_path.exists():
        manifest = VaultManifest(
            groups=[SecretGroup(id="default", name="Default", tier=1)], default_tier=1
        )
        save_manifest(manifest, manifest_path)

    totp_path = vault_path / TOTP_FILE
    if not totp_path.exists():
        write_private(totp_path, generate_totp_secret() + "\n")

    secrets_path = vault_path / SECRETS_FILE
    if not secrets_path.exists():
        await encrypt_to_file(
            json.dumps({"secrets": {}}).encode("utf-8"), recipient, secrets_path, timeout=timeout
        )
    return recipient
