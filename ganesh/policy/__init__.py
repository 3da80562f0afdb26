"""
Ganesh policy gate — pre-execution checks for shell commands.

Public API:
    gate = PolicyGate(policy_path, AuditLog(audit_dir))
    gate.evaluate("rm -rf /tmp/x", cwd="/srv")   → PolicyGateResult
"""

from __future__ import annotations

from ganesh.policy.gate import PolicyGate, extract_base_command
from ganesh.policy.models import PolicyConfig, PolicyDecision, PolicyGateResult, PolicyRule

__all__ = [
    "PolicyConfig",
    "PolicyDecision",
    "PolicyGate",
    "PolicyGateResult",
    "PolicyRule",
    "extract_base_command",
]
