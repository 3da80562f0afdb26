"""
Credential helpers — prefer a secret reference, fall back to a direct value.

Auth profiles carry either a plaintext value (``key`` / ``token``) or a
reference (``keyRef`` / ``tokenRef``), or both during migration.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ganesh.secrets.models import BackendConfig
from ganesh.secrets.resolver import SecretResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialResolution:
    value: str
    from_ref: bool
    error: str | None = None


def _usable(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


async def resolve_credential_value(
    resolver: SecretResolver,
    direct_value: str | None,
    ref_value: str | None,
    config: BackendConfig | None = None,
) -> CredentialResolution | None:
    """Resolve a credential, trying the reference first.

    Returns None when neither the reference nor a direct value is usable.
    """
    if _usable(ref_value):
        result = await resolver.resolve(ref_value, config)  # type: ignore[arg-type]
        if result.ok and result.value:
            return CredentialResolution(value=result.value, from_ref=True)
        if _usable(direct_value):
            logger.warning(
                "secrets: failed to resolve ref %r, falling back to direct value: %s",
                ref_value,
                result.error,
            )
            return CredentialResolution(
                value=direct_value, from_ref=False, error=result.error  # type: ignore[arg-type]
            )
        return None

    if _usable(direct_value):
        return CredentialResolution(value=direct_value, from_ref=False)  # type: ignore[arg-type]
    return None


def has_secret_ref(cred: Mapping[str, Any]) -> bool:
    """Check if a credential carries a key or token reference."""
    return _usable(cred.get("keyRef")) or _usable(cred.get("tokenRef"))


async def resolve_api_key(
    resolver: SecretResolver,
    cred: Mapping[str, Any],
    config: BackendConfig | None = None,
) -> str | None:
    """Resolve an ``api_key`` credential (``key`` / ``keyRef``)."""
    result = await resolve_credential_value(resolver, cred.get("key"), cred.get("keyRef"), config)
    return result.value if result else None


async def resolve_token(
    resolver: SecretResolver,
    cred: Mapping[str, Any],
    config: BackendConfig | None = None,
) -> str | None:
    """Resolve a ``token`` credential (``token`` / ``tokenRef``)."""
    result = await resolve_credential_value(
        resolver, cred.get("token"), cred.get("tokenRef"), config
    )
    return result.value if result else None
