"""Tests for the policy schema and the condition/command helpers."""

import pytest
from pydantic import ValidationError

from ganesh.policy.gate import (
    evaluate_condition,
    extract_base_command,
    get_nested_value,
    normalize_action,
)
from ganesh.policy.models import PolicyCondition, PolicyConfig, PolicyDecision


def cond(field: str, op: str, value) -> PolicyCondition:
    return PolicyCondition(field=field, op=op, value=value)


class TestSchema:
    def test_camel_case_keys(self):
        policy = PolicyConfig.model_validate(
            {
                "version": 1,
                "defaultAction": "deny",
                "defaultTier": 2,
                "rules": [
                    {
                        "id": "r1",
                        "subject": "command",
                        "conditions": [{"field": "command", "operator": "contains", "value": "x"}],
                        "action": "deny",
                        "requiredTier": 3,
                        "priority": None,
                    }
                ],
            }
        )
        assert policy.default_action == "deny"
        assert policy.default_tier == 2
        rule = policy.rules[0]
        assert rule.required_tier == 3
        assert rule.priority is None
        assert rule.conditions[0].op == "contains"

    def test_defaults(self):
        policy = PolicyConfig.model_validate({})
        assert policy.default_action == "ask"
        assert policy.rules == []

    def test_rule_requires_id(self):
        with pytest.raises(ValidationError):
            PolicyConfig.model_validate({"rules": [{"subject": "command", "action": "deny"}]})


class TestBaseCommand:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("ls -la", "ls"),
            ("/usr/bin/rm -rf /tmp/x", "rm"),
            ("sudo rm -rf /", "rm"),
            ("sudo -E /bin/systemctl restart x", "systemctl"),
            ("FOO=1 BAR=two ./deploy.sh --prod", "deploy.sh"),
            ("  git push  ", "git"),
            ("", ""),
        ],
    )
    def test_extract(self, raw, expected):
        assert extract_base_command(raw) == expected


class TestNormalizeAction:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("allow", PolicyDecision.ALLOW),
            ("DENY", PolicyDecision.DENY),
            ("ask", PolicyDecision.ASK),
            ("mfa", PolicyDecision.ASK),
            ("block", PolicyDecision.ASK),
            (None, PolicyDecision.ASK),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_action(raw) is expected


class TestConditions:
    CTX = {
        "command": "rm -rf /var/log",
        "baseCommand": "rm",
        "args": ["-rf"],
        "size": 10,
        "meta": {"user": {"name": "deploy"}},
    }

    def test_nested_value(self):
        assert get_nested_value(self.CTX, "meta.user.name") == "deploy"
        assert get_nested_value(self.CTX, "meta.user.missing") is None
        assert get_nested_value(self.CTX, "command.length") is None

    @pytest.mark.parametrize(
        "condition, expected",
        [
            (cond("baseCommand", "eq", "rm"), True),
            (cond("baseCommand", "eq", "ls"), False),
            (cond("baseCommand", "neq", "ls"), True),
            (cond("command", "contains", "-rf"), True),
            (cond("args", "contains", "-rf"), True),
            (cond("size", "contains", 1), False),
            (cond("command", "matches", r"^rm\s+-rf"), True),
            (cond("command", "matches", r"^ls"), False),
            (cond("baseCommand", "in", ["rm", "dd"]), True),
            (cond("baseCommand", "in", "rm"), False),
            (cond("size", "gt", 5), True),
            (cond("size", "lt", 5), False),
            (cond("command", "gt", 5), False),
            (cond("meta.user.name", "eq", "deploy"), True),
            (cond("missing", "eq", None), True),
            (cond("command", "startsWith", "rm"), False),
        ],
    )
    def test_operators(self, condition, expected):
        assert evaluate_condition(condition, self.CTX) is expected

    def test_booleans_are_not_numbers(self):
        assert not evaluate_condition(cond("flag", "gt", 0), {"flag": True})

    def test_invalid_regex_is_non_match(self):
        assert not evaluate_condition(cond("command", "matches", "(unclosed"), self.CTX)

    def test_oversized_pattern_is_non_match(self):
        assert not evaluate_condition(cond("command", "matches", "r" + "?" * 600), self.CTX)

    def test_oversized_input_is_non_match(self):
        ctx = {"command": "rm " + "x" * 10_000}
        assert not evaluate_condition(cond("command", "matches", "^rm"), ctx)
