"""
Policy file schema and gate results.

``security-policy.json`` is validated with pydantic; camelCase keys map onto
snake_case attributes. Condition operators are kept as plain strings so an
unknown operator only disables its own condition instead of the whole file.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class PolicyDecision(StrEnum):
    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"


class ConditionOp(StrEnum):
    EQ = "eq"
    NEQ = "neq"
    CONTAINS = "contains"
    MATCHES = "matches"
    IN = "in"
    GT = "gt"
    LT = "lt"


class PolicyCondition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    field: str
    op: str = Field(validation_alias=AliasChoices("op", "operator"))
    value: Any = None


class PolicyRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    description: str | None = None
    subject: str
    conditions: list[PolicyCondition] = Field(default_factory=list)
    action: str
    required_tier: int | None = Field(None, alias="requiredTier")
    priority: int | None = None
    enabled: bool | None = None


class PolicyConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: int = 1
    name: str | None = None
    default_action: str = Field("ask", alias="defaultAction")
    default_tier: int | None = Field(None, alias="defaultTier")
    rules: list[PolicyRule] = Field(default_factory=list)


@dataclass(frozen=True)
class PolicyGateResult:
    decision: PolicyDecision
    reason: str
    evaluated_at: str
    matched_rule: str | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is PolicyDecision.ALLOW
