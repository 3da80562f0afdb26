"""Capability contract shared by every secrets backend."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ganesh.secrets.models import SecretsBackendType


class SecretsBackend(ABC):
    """A pluggable secret provider.

    Expected absence (tool missing, store uninitialized, secret missing) is
    reported as ``False`` / ``None`` / ``[]``, never raised.
    """

    name: SecretsBackendType

    @abstractmethod
    async def is_available(self) -> bool:
        """Check that the backend's prerequisites are present."""

    @abstractmethod
    async def resolve(self, path: str, field: str | None = None) -> str | None:
        """Return the secret at ``path`` (optionally one ``field``), or None."""

    async def store(self, path: str, value: str) -> bool:
        """Store a secret. Read-only backends return False."""
        return False

    async def list(self, prefix: str | None = None) -> list[str]:
        """List secret paths, optionally under ``prefix``."""
        return []

    def cacheable(self, path: str) -> bool:
        """Whether a resolved value for ``path`` may be kept in a resolver cache."""
        return True
