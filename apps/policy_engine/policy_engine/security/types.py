from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class Scope(StrEnum):
    OWN = "own"
    TEAM = "team"
    ORG = "org"
    GLOBAL = "global"

    @property
    def rank(self) -> int:
        return _SCOPE_ORDER.index(self)

    @classmethod
    def broadest(cls, *scopes: Scope) -> Scope:
        return max(scopes, key=lambda item: item.rank)

    @classmethod
    def narrowest(cls, *scopes: Scope) -> Scope:
        return min(scopes, key=lambda item: item.rank)


_SCOPE_ORDER = (Scope.OWN, Scope.TEAM, Scope.ORG, Scope.GLOBAL)


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    @classmethod
    def highest(cls, *levels: RiskLevel) -> RiskLevel:
        return max(levels, key=lambda item: item.rank)


_RISK_ORDER = (RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL)


class ConditionOperator(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"


@dataclass(frozen=True, slots=True)
class Condition:
    """Predicate over the evaluation namespace ``{"user_id": ..., "context": {...}}``."""

    field: str
    operator: ConditionOperator
    value: Any = None
    value_from: str | None = None


@dataclass(frozen=True, slots=True)
class PermissionGrant:
    resource: str
    action: str
    minimum_scope: Scope
    conditions: tuple[Condition, ...] = ()
    risk_weight: int = 1

    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}"


@dataclass(frozen=True, slots=True)
class Role:
    role_id: str
    grants: tuple[PermissionGrant, ...] = ()
    parent: str | None = None
    description: str | None = None


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken to be UTC.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


@dataclass(frozen=True, slots=True)
class RoleAssignment:
    user_id: str
    role_id: str
    scope: Scope = Scope.GLOBAL
    is_active: bool = True
    expires_at: datetime | None = None

    def is_effective(self, now: datetime) -> bool:
        if not self.is_active:
            return False
        if self.expires_at is None:
            return True
        return _as_utc(self.expires_at) > _as_utc(now)


@dataclass(frozen=True, slots=True)
class RoleSnapshot:
    """Immutable view of one user's effective role assignments."""

    user_id: str
    assignments: tuple[RoleAssignment, ...]
    fetched_at: datetime

    @property
    def role_ids(self) -> tuple[str, ...]:
        return tuple(assignment.role_id for assignment in self.assignments)


@dataclass(frozen=True, slots=True)
class PermissionCheckResult:
    granted: bool
    reason: str
    conditions_met: bool
    effective_scope: Scope
    risk_level: RiskLevel
    requires_additional_auth: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "granted": self.granted,
            "reason": self.reason,
            "conditions_met": self.conditions_met,
            "effective_scope": self.effective_scope.value,
            "risk_level": self.risk_level.value,
            "requires_additional_auth": self.requires_additional_auth,
        }


@dataclass(frozen=True, slots=True)
class DecisionRecord:
    id: str
    user_id: str
    resource: str
    action: str
    granted: bool
    reason: str
    effective_scope: Scope
    risk_level: RiskLevel
    context_fingerprint: str
    decided_at: datetime
    correlation_id: str | None = None
    roles: tuple[str, ...] = field(default_factory=tuple)


def permission_key(resource: str, action: str) -> str:
    return f"{resource}:{action}"
