"""
Ganesh Policy Gate — pre-execution policy check for shell commands.

Evaluates a command against ``security-policy.json`` before it runs:

- Fail-open: an unreadable or invalid policy allows the command, logs a
  warning and still writes an audit record.
- Switchable: an explicit ``enabled`` argument beats ``GANESH_POLICY_GATE``,
  which beats "on if the policy file exists".
- Audited: every evaluation of an enabled gate appends one JSONL record.

Rules with ``subject == "command"`` are tried in descending priority (ties keep
file order); the first rule whose conditions all hold decides.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ganesh.audit.logger import AuditLog
from ganesh.config import get_config
from ganesh.policy.models import (
    ConditionOp,
    PolicyCondition,
    PolicyConfig,
    PolicyDecision,
    PolicyGateResult,
)

logger = logging.getLogger(__name__)

POLICY_CACHE_TTL = 30.0  # seconds between file stats
AUDIT_EVENT = "policy_gate_check"

MAX_PATTERN_LENGTH = 512
MAX_MATCH_INPUT = 8192

_ENV_ASSIGNMENTS = re.compile(r"^(\w+=\S*\s+)+")
_SUDO_PREFIX = re.compile(r"^sudo(\s+-\S+)*\s+")


class PolicyLoadError(RuntimeError):
    """Policy file exists but cannot be read or validated."""


# ── Helpers ──


def extract_base_command(command: str) -> str:
    """Bare executable name: no env assignments, sudo (and its flags), or directory."""
    trimmed = command.strip()
    stripped = _ENV_ASSIGNMENTS.sub("", trimmed)
    stripped = _SUDO_PREFIX.sub("", stripped)
    first = stripped.split(maxsplit=1)
    if not first:
        return trimmed
    return first[0].rsplit("/", 1)[-1] or first[0]


def normalize_action(action: str | None) -> PolicyDecision:
    """``allow`` / ``deny`` pass through; ``ask``, ``mfa`` and anything else → ask."""
    lowered = (action or "").strip().lower()
    if lowered == PolicyDecision.ALLOW:
        return PolicyDecision.ALLOW
    if lowered == PolicyDecision.DENY:
        return PolicyDecision.DENY
    return PolicyDecision.ASK


def get_nested_value(obj: dict[str, Any], field_path: str) -> Any:
    current: Any = obj
    for part in field_path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _regex_match(pattern: Any, value: Any) -> bool:
    if not isinstance(pattern, str) or not isinstance(value, str):
        return False
    if len(pattern) > MAX_PATTERN_LENGTH or len(value) > MAX_MATCH_INPUT:
        return False
    try:
        return re.search(pattern, value) is not None
    except re.error:
        return False


def evaluate_condition(condition: PolicyCondition, details: dict[str, Any]) -> bool:
    value = get_nested_value(details, condition.field)
    expected = condition.value

    match condition.op:
        case ConditionOp.EQ:
            return value == expected
        case ConditionOp.NEQ:
            return value != expected
        case ConditionOp.CONTAINS:
            if isinstance(value, str) and isinstance(expected, str):
                return expected in value
            if isinstance(value, list):
                return expected in value
            return False
        case ConditionOp.MATCHES:
            return _regex_match(expected, value)
        case ConditionOp.IN:
            return isinstance(expected, list) and value in expected
        case ConditionOp.GT:
            return _is_number(value) and _is_number(expected) and value > expected
        case ConditionOp.LT:
            return _is_number(value) and _is_number(expected) and value < expected
        case _:
            logger.debug("policy-gate: unknown operator %r", condition.op)
            return False


def _truncate(text: str, max_len: int = 80) -> str:
    return text if len(text) <= max_len else text[: max_len - 3] + "..."


# ── Gate ──


class PolicyGate:
    """Command gate with a cached policy and an audit trail."""

    def __init__(
        self,
        policy_path: Path | str | None = None,
        audit: AuditLog | None = None,
        *,
        enabled: bool | None = None,
        cache_ttl: float = POLICY_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        cfg = get_config()
        self.policy_path = Path(policy_path) if policy_path else cfg.policy_path
        self.audit = audit or AuditLog(cfg.audit_dir)
        self._enabled = enabled
        self.cache_ttl = cache_ttl
        self._clock = clock

        self._policy: PolicyConfig | None = None
        self._policy_mtime: float | None = None
        self._last_check: float | None = None

    def is_enabled(self) -> bool:
        if self._enabled is not None:
            return self._enabled
        env_switch = get_config().policy_gate
        if env_switch is not None:
            return env_switch
        return self.policy_path.exists()

    def reset(self) -> None:
        """Forget the cached policy (for testing)."""
        self._policy = None
        self._policy_mtime = None
        self._last_check = None

    def load_policy(self) -> PolicyConfig | None:
        """Cached policy, re-validated against mtime at most every ``cache_ttl``.

        Returns None when no policy file exists; raises PolicyLoadError when it
        exists but is unusable.
        """
        now = self._clock()
        if (
            self._policy is not None
            and self._last_check is not None
            and now - self._last_check < self.cache_ttl
        ):
            return self._policy
        self._last_check = now

        try:
            mtime = self.policy_path.stat().st_mtime
        except FileNotFoundError:
            self._policy = None
            return None
        except OSError as e:
            raise PolicyLoadError(f"cannot stat {self.policy_path}: {e}") from e

        if self._policy is not None and mtime == self._policy_mtime:
            return self._policy

        try:
            policy = PolicyConfig.model_validate_json(self.policy_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            self._policy = None
            raise PolicyLoadError(f"invalid policy {self.policy_path}: {e}") from e

        self._policy = policy
        self._policy_mtime = mtime
        return policy

    def evaluate(
        self,
        command: str,
        *,
        agent_id: str | None = None,
        session_key: str | None = None,
        host: str | None = None,
        cwd: str | None = None,
    ) -> PolicyGateResult:
        now = datetime.now(UTC).isoformat()

        if not self.is_enabled():
            return PolicyGateResult(
                decision=PolicyDecision.ALLOW, reason="Policy gate disabled", evaluated_at=now
            )

        audit_ctx = {"agent_id": agent_id, "session_key": session_key, "host": host}

        try:
            policy = self.load_policy()
        except PolicyLoadError as e:
            logger.warning("policy-gate: error loading policy, failing open: %s", e)
            return self._record(
                command,
                PolicyGateResult(
                    decision=PolicyDecision.ALLOW,
                    reason=f"Fail-open: policy load error: {e}",
                    evaluated_at=now,
                ),
                audit_ctx,
            )

        if policy is None:
            return self._record(
                command,
                PolicyGateResult(
                    decision=PolicyDecision.ALLOW, reason="No policy config found", evaluated_at=now
                ),
                audit_ctx,
            )

        base_command = extract_base_command(command)
        details: dict[str, Any] = {
            "command": command,
            "baseCommand": base_command,
            "name": base_command,
            "host": host,
            "cwd": cwd,
            "agentId": agent_id,
            "sessionKey": session_key,
        }

        # sorted() is stable, so equal priorities keep file order
        rules = sorted(
            (r for r in policy.rules if r.subject == "command" and r.enabled is not False),
            key=lambda r: r.priority or 0,
            reverse=True,
        )
        for rule in rules:
            if all(evaluate_condition(c, details) for c in rule.conditions):
                decision = normalize_action(rule.action)
                result = PolicyGateResult(
                    decision=decision,
                    reason=rule.description or f"Matched rule: {rule.id}",
                    matched_rule=rule.id,
                    evaluated_at=now,
                )
                logger.info(
                    'policy-gate: %s "%s" (rule: %s)', decision, _truncate(command), rule.id
                )
                return self._record(command, result, audit_ctx)

        decision = normalize_action(policy.default_action)
        logger.info('policy-gate: %s "%s" (default policy)', decision, _truncate(command))
        return self._record(
            command,
            PolicyGateResult(
                decision=decision,
                reason="No matching rule, using default policy",
                evaluated_at=now,
            ),
            audit_ctx,
        )

    def _record(
        self, command: str, result: PolicyGateResult, ctx: dict[str, str | None]
    ) -> PolicyGateResult:
        entry: dict[str, Any] = {
            "timestamp": result.evaluated_at,
            "event": AUDIT_EVENT,
            "command": command,
            "decision": str(result.decision),
            "reason": result.reason,
        }
        if result.matched_rule:
            entry["matched_rule"] = result.matched_rule
        entry.update({k: v for k, v in ctx.items() if v is not None})
        self.audit.write(entry)
        return result
