"""Tests for ganesh.audit.logger — date-partitioned JSONL audit trail."""

import json
import stat
from datetime import UTC, date, datetime
from pathlib import Path
from unittest.mock import patch

from ganesh.audit.logger import AuditLog


def _today() -> date:
    return datetime.now(UTC).date()


class TestWrite:
    def test_appends_jsonl(self, tmp_path: Path):
        audit = AuditLog(tmp_path / "audit")
        assert audit.write({"event": "policy_gate_check", "command": "ls", "decision": "allow"})
        assert audit.write({"event": "policy_gate_check", "command": "rm", "decision": "deny"})

        lines = audit.path_for(_today()).read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["command"] == "ls"
        assert json.loads(lines[1])["decision"] == "deny"

    def test_file_name_is_date_partitioned(self, tmp_path: Path):
        audit = AuditLog(tmp_path)
        assert audit.path_for(date(2026, 3, 1)).name == "policy-gate-2026-03-01.jsonl"

    def test_permissions(self, tmp_path: Path):
        audit = AuditLog(tmp_path / "audit")
        audit.write({"event": "x"})
        file_mode = audit.path_for(_today()).stat().st_mode
        dir_mode = (tmp_path / "audit").stat().st_mode
        assert stat.S_IMODE(file_mode) == 0o600
        assert stat.S_IMODE(dir_mode) == 0o700

    def test_adds_timestamp(self, tmp_path: Path):
        audit = AuditLog(tmp_path)
        audit.write({"event": "x"})
        record = json.loads(audit.path_for(_today()).read_text())
        assert "timestamp" in record

    def test_keeps_caller_timestamp(self, tmp_path: Path):
        audit = AuditLog(tmp_path)
        audit.write({"event": "x", "timestamp": "2026-01-01T00:00:00+00:00"})
        record = json.loads(audit.path_for(_today()).read_text())
        assert record["timestamp"] == "2026-01-01T00:00:00+00:00"

    def test_failure_is_swallowed(self, tmp_path: Path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        audit = AuditLog(blocker / "audit")
        assert audit.write({"event": "x"}) is False

    def test_open_failure_is_swallowed(self, tmp_path: Path):
        audit = AuditLog(tmp_path)
        with patch("ganesh.audit.logger.os.open", side_effect=OSError("disk full")):
            assert audit.write({"event": "x"}) is False


class TestQuery:
    def test_newest_first(self, tmp_path: Path):
        audit = AuditLog(tmp_path)
        for cmd in ["a", "b", "c"]:
            audit.write({"event": "policy_gate_check", "command": cmd, "decision": "allow"})
        assert [r["command"] for r in audit.query()] == ["c", "b", "a"]

    def test_filter_and_limit(self, tmp_path: Path):
        audit = AuditLog(tmp_path)
        audit.write({"command": "ls", "decision": "allow"})
        audit.write({"command": "rm", "decision": "deny"})
        audit.write({"command": "dd", "decision": "deny"})
        denied = audit.query(decision="deny")
        assert [r["command"] for r in denied] == ["dd", "rm"]
        assert len(audit.query(limit=1)) == 1

    def test_missing_day(self, tmp_path: Path):
        assert AuditLog(tmp_path).query(date(2001, 1, 1)) == []

    def test_skips_corrupt_lines(self, tmp_path: Path):
        audit = AuditLog(tmp_path)
        audit.write({"command": "ok", "decision": "allow"})
        with audit.path_for(_today()).open("a") as f:
            f.write("{not json\n")
        assert [r["command"] for r in audit.query()] == ["ok"]

    def test_stats(self, tmp_path: Path):
        audit = AuditLog(tmp_path)
        audit.write({"decision": "allow"})
        audit.write({"decision": "deny", "matched_rule": "no-rm"})
        audit.write({"decision": "deny", "matched_rule": "no-rm"})
        s = audit.stats()
        assert s["total_events"] == 3
        assert s["by_decision"] == {"allow": 1, "deny": 2}
        assert s["by_rule"] == {"no-rm": 2}
