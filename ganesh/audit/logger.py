"""
Ganesh Audit Log — append-only JSONL records of access-control decisions.

One file per UTC calendar day (``<prefix>-YYYY-MM-DD.jsonl``), one JSON object
per line, mode 0600 inside a 0700 directory. Records are never rewritten.

Usage:
    from ganesh.audit.logger import AuditLog
    audit = AuditLog(Path("~/.ganesh/audit").expanduser())
    audit.write({"event": "policy_gate_check", "command": "ls", "decision": "allow"})
"""

from __future__ import annotations

import json
import logging
import os
from collections import Counter
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "policy-gate"


class AuditLog:
    """Date-partitioned audit trail rooted at ``audit_dir``."""

    def __init__(self, audit_dir: Path | str, prefix: str = DEFAULT_PREFIX) -> None:
        self.audit_dir = Path(audit_dir)
        self.prefix = prefix
        self._dir_ready = False

    def path_for(self, day: date) -> Path:
        return self.audit_dir / f"{self.prefix}-{day.isoformat()}.jsonl"

    def _ensure_dir(self) -> None:
        if self._dir_ready and self.audit_dir.is_dir():
            return
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        self.audit_dir.chmod(0o700)
        self._dir_ready = True

    def write(self, entry: dict[str, Any]) -> bool:
        """Append one record. Returns True on success.

        Failures are logged, never raised.
        """
        try:
            self._ensure_dir()
            record = dict(entry)
            record.setdefault("timestamp", datetime.now(UTC).isoformat())
            line = json.dumps(record, default=str) + "\n"
            path = self.path_for(datetime.now(UTC).date())
            fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
            with os.fdopen(fd, "a", encoding="utf-8") as f:
                f.write(line)
            return True
        except Exception as e:
            logger.warning("Audit write failed: %s", e)
            return False

    def query(
        self,
        day: date | None = None,
        *,
        decision: str | None = None,
        event: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Read back records for one day, newest first."""
        path = self.path_for(day or datetime.now(UTC).date())
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning("Audit query failed: %s", e)
            return []

        results: list[dict[str, Any]] = []
        for line in reversed(lines):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping corrupt audit line in %s", path)
                continue
            if decision and record.get("decision") != decision:
                continue
            if event and record.get("event") != event:
                continue
            results.append(record)
            if len(results) >= limit:
                break
        return results

    def stats(self, day: date | None = None) -> dict[str, Any]:
        """Decision counts for one day."""
        records = self.query(day, limit=1_000_000)
        by_decision = Counter(r.get("decision", "unknown") for r in records)
        by_rule = Counter(r["matched_rule"] for r in records if r.get("matched_rule"))
        return {
            "total_events": len(records),
            "by_decision": dict(by_decision),
            "by_rule": dict(by_rule.most_common(20)),
        }
