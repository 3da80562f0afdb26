"""
Ganesh secrets — pluggable secret backends behind symbolic references.

Public API:
    resolver = SecretResolver(default_backend="pass")
    await resolver.resolve("pass:ganesh/api-key")     → SecretResolutionResult
    await resolver.resolve_refs({"tokenRef": "..."})   → {"tokenRef": ..., "token": ...}
    parse_secret_ref("vault:secret/app#field")        → SecretRef
"""

from __future__ import annotations

from ganesh.secrets.models import (
    BackendConfig,
    BackendNotImplementedError,
    GaneshBackendConfig,
    PassBackendConfig,
    SecretRef,
    SecretRefError,
    SecretResolutionResult,
    SecretsBackendType,
)
from ganesh.secrets.resolver import (
    SecretResolver,
    create_backend,
    is_secret_ref,
    parse_secret_ref,
)

__all__ = [
    "BackendConfig",
    "BackendNotImplementedError",
    "GaneshBackendConfig",
    "PassBackendConfig",
    "SecretRef",
    "SecretRefError",
    "SecretResolutionResult",
    "SecretResolver",
    "SecretsBackendType",
    "create_backend",
    "is_secret_ref",
    "parse_secret_ref",
]
