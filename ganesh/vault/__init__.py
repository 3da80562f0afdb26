"""
Ganesh Vault — age-encrypted, tiered secret store.

Public API:
    backend = GaneshBackend(GaneshBackendConfig(vault_path=...))
    await backend.unlock()            → True/False
    await backend.resolve(path)       → value or None (tier 3 asks the operator)
    await backend.store(path, value)  → True/False
    await backend.list(prefix)        → [path, ...]
    backend.lock()
    await init_vault(path)            → age recipient of a new vault
"""

from __future__ import annotations

from ganesh.vault.backend import GaneshBackend, VaultState, init_vault
from ganesh.vault.manifest import SecretGroup, VaultManifest

__all__ = ["GaneshBackend", "SecretGroup", "VaultManifest", "VaultState", "init_vault"]
