"""
Secrets Resolver — parse secret references and resolve them through backends.

Reference format: ``[backend:]path[#field]``

    pass:ganesh/telegram-token        -> pass,   "ganesh/telegram-token"
    vault:secret/data/app#api_key     -> vault,  "secret/data/app", field "api_key"
    ganesh:anthropic/api-key          -> ganesh, "anthropic/api-key"
    ganesh/telegram-token             -> <default backend>, "ganesh/telegram-token"

A ``SecretResolver`` owns its value cache and its backend instances. Values are
cached per exact reference string for ``CACHE_TTL_SECONDS`` unless the backend
declares the path uncacheable (tier-3 vault secrets).
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from ganesh.secrets.backends.base import SecretsBackend
from ganesh.secrets.backends.pass_store import PassBackend
from ganesh.secrets.models import (
    DEFAULT_CONFIGS,
    BackendConfig,
    BackendNotImplementedError,
    EnvBackendConfig,
    FileBackendConfig,
    GaneshBackendConfig,
    KeyringBackendConfig,
    PassBackendConfig,
    SecretRef,
    SecretRefError,
    SecretResolutionResult,
    SecretsBackendType,
    VaultBackendConfig,
)

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 5 * 60

REF_SUFFIXES = ("Ref", "_ref")
ERRORS_KEY = "_secret_errors"

_BACKEND_NAMES = "|".join(t.value for t in SecretsBackendType)
_PREFIX_RE = re.compile(rf"^({_BACKEND_NAMES}):(.*)$", re.DOTALL)
_FIELD_RE = re.compile(r"^(.+)#(\w+)$", re.DOTALL)
# Prefixes that point at an external store (``file:`` is a literal location)
_EXTERNAL_PREFIX_RE = re.compile(r"^(pass|vault|keyring|env|ganesh):\S")


def parse_secret_ref(
    ref: str,
    default_backend: SecretsBackendType | str = SecretsBackendType.PASS,
) -> SecretRef:
    """Parse a reference string into a SecretRef.

    Raises SecretRefError when no usable path remains.
    """
    if not isinstance(ref, str) or not ref.strip():
        raise SecretRefError("Empty secret reference")

    ref = ref.strip()
    prefix_match = _PREFIX_RE.match(ref)
    if prefix_match:
        backend = SecretsBackendType(prefix_match.group(1))
        path_with_field = prefix_match.group(2)
    else:
        backend = SecretsBackendType(default_backend)
        path_with_field = ref

    field_match = _FIELD_RE.match(path_with_field)
    if field_match:
        path, field = field_match.group(1), field_match.group(2)
    else:
        path, field = path_with_field, None

    if not path.strip():
        raise SecretRefError(f"Secret reference has an empty path: {ref!r}")
    return SecretRef(backend=backend, path=path, field=field)


def is_secret_ref(value: Any) -> bool:
    """True for strings carrying an external backend prefix."""
    return isinstance(value, str) and bool(_EXTERNAL_PREFIX_RE.match(value))


def create_backend(config: BackendConfig) -> SecretsBackend:
    """Construct the backend for one config variant."""
    # Deferred: ganesh.vault imports from ganesh.secrets
    from ganesh.vault.backend import GaneshBackend

    match config:
        case PassBackendConfig():
            return PassBackend(config)
        case GaneshBackendConfig():
            return GaneshBackend(config)
        case VaultBackendConfig():
            raise BackendNotImplementedError("Vault backend not yet implemented")
        case KeyringBackendConfig():
            raise BackendNotImplementedError("Keyring backend not yet implemented")
        case EnvBackendConfig():
            raise BackendNotImplementedError("Env backend not yet implemented")
        case FileBackendConfig():
            raise BackendNotImplementedError("File backend does not support resolution")
        case _:
            raise ValueError(f"Unknown secrets backend config: {config!r}")


def _coerce_backend_type(value: SecretsBackendType | str) -> SecretsBackendType:
    try:
        return SecretsBackendType(value)
    except ValueError:
        raise ValueError(
            f"Unknown secrets backend: {value!r} "
            f"(expected one of: {', '.join(t.value for t in SecretsBackendType)})"
        ) from None


@dataclass
class _CacheEntry:
    value: str
    resolved_at: float


class SecretResolver:
    """Resolve references with a TTL cache and lazily-built backend instances."""

    def __init__(
        self,
        default_backend: SecretsBackendType | str = SecretsBackendType.PASS,
        configs: Iterable[BackendConfig] = (),
        *,
        cache_ttl: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_backend = _coerce_backend_type(default_backend)
        self._configs: dict[SecretsBackendType, BackendConfig] = {}
        for cfg in configs:
            kind = getattr(cfg, "kind", None)
            if kind not in DEFAULT_CONFIGS or not isinstance(cfg, DEFAULT_CONFIGS[kind]):
                raise ValueError(f"Unknown secrets backend config: {cfg!r}")
            self._configs[kind] = cfg
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._backends: dict[SecretsBackendType, SecretsBackend] = {}

    def get_backend(
        self, kind: SecretsBackendType, config: BackendConfig | None = None
    ) -> SecretsBackend:
        """Get or create the single backend instance for ``kind``."""
        backend = self._backends.get(kind)
        if backend is None:
            if config is None or config.kind != kind:
                config = self._configs.get(kind) or DEFAULT_CONFIGS[kind]()
            backend = create_backend(config)
            self._backends[kind] = backend
        return backend

    def register_backend(self, backend: SecretsBackend) -> None:
        """Install a pre-built backend instance (replaces any existing one)."""
        self._backends[backend.name] = backend

    def _cached(self, ref: str) -> str | None:
        entry = self._cache.get(ref)
        if entry is None:
            return None
        if self._clock() - entry.resolved_at >= self.cache_ttl:
            del self._cache[ref]
            return None
        return entry.value

    async def resolve(
        self, ref: str, config: BackendConfig | None = None
    ) -> SecretResolutionResult:
        """Resolve one reference. Never raises for expected failures."""
        cached = self._cached(ref) if isinstance(ref, str) else None
        if cached is not None:
            logger.debug("secrets: cache hit for %s", ref)
            return SecretResolutionResult.success(cached, cached=True)

        try:
            default = config.kind if config is not None else self.default_backend
            parsed = parse_secret_ref(ref, default)
            backend = self.get_backend(parsed.backend, config)

            if not await backend.is_available():
                return SecretResolutionResult.failure(
                    f'Backend "{parsed.backend}" is not available'
                )

            value = await backend.resolve(parsed.path, parsed.field)
            if value is None:
                return SecretResolutionResult.failure(f"Secret not found: {ref}")

            if backend.cacheable(parsed.path):
                self._cache[ref] = _CacheEntry(value=value, resolved_at=self._clock())
            return SecretResolutionResult.success(value)
        except (SecretRefError, BackendNotImplementedError) as e:
            return SecretResolutionResult.failure(str(e))
        except Exception as e:
            logger.warning("secrets: unexpected error resolving %s: %s", ref, e)
            return SecretResolutionResult.failure(str(e))

    async def resolve_refs(
        self, obj: Mapping[str, Any], config: BackendConfig | None = None
    ) -> dict[str, Any]:
        """Resolve every top-level ``*Ref`` / ``*_ref`` string field.

        ``{"tokenRef": "pass:ganesh/token"}`` becomes
        ``{"tokenRef": "pass:ganesh/token", "token": "<value>"}``. Failures are
        collected under ``_secret_errors`` keyed by the reference field name.
        """
        result = dict(obj)
        errors: dict[str, str] = {}

        for key, value in obj.items():
            if not isinstance(value, str):
                continue
            suffix = next((s for s in REF_SUFFIXES if key.endswith(s) and len(key) > len(s)), None)
            if suffix is None:
                continue
            target_key = key[: -len(suffix)]
            resolution = await self.resolve(value, config)
            if resolution.ok and resolution.value:
                result[target_key] = resolution.value
            else:
                errors[key] = resolution.error or "Unknown error"

        if errors:
            result[ERRORS_KEY] = errors
        return result

    def clear_cache(self) -> None:
        """Drop all cached values (backend instances are kept)."""
        self._cache.clear()

    def reset(self) -> None:
        """Drop cached values and backend instances."""
        self._cache.clear()
        self._backends.clear()
