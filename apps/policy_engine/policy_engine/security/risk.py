from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from policy_engine.core.config import Settings
from policy_engine.security.errors import ConfigurationError
from policy_engine.security.types import RiskLevel, Scope


_DEFAULT_SCOPE_WEIGHTS: dict[Scope, int] = {
    Scope.OWN: 0,
    Scope.TEAM: 1,
    Scope.ORG: 2,
    Scope.GLOBAL: 3,
}


@dataclass(frozen=True, slots=True)
class RiskPolicy:
    """Monotonic mapping of (grant risk_weight, effective scope) to a risk level.

    score = risk_weight + scope_weight[scope], bucketed by the thresholds.
    A global scope never resolves below medium and sensitive pairs never
    below high.
    """

    medium_threshold: int = 2
    high_threshold: int = 4
    critical_threshold: int = 6
    scope_weights: Mapping[Scope, int] = field(default_factory=lambda: dict(_DEFAULT_SCOPE_WEIGHTS))

    def __post_init__(self) -> None:
        if not (0 < self.medium_threshold < self.high_threshold < self.critical_threshold):
            raise ConfigurationError(
                "Risk thresholds must be positive and strictly increasing "
                f"(medium={self.medium_threshold}, high={self.high_threshold}, critical={self.critical_threshold})"
            )
        missing = [scope.value for scope in Scope if scope not in self.scope_weights]
        if missing:
            raise ConfigurationError(f"Risk scope weights missing for: {', '.join(missing)}")
        weights = [self.scope_weights[scope] for scope in Scope]
        if any(later < earlier for earlier, later in zip(weights, weights[1:])):
            raise ConfigurationError("Risk scope weights must not decrease as scope broadens")

    @classmethod
    def from_settings(cls, settings: Settings) -> RiskPolicy:
        return cls(
            medium_threshold=settings.risk_medium_threshold,
            high_threshold=settings.risk_high_threshold,
            critical_threshold=settings.risk_critical_threshold,
        )

    def score(self, risk_weight: int, scope: Scope) -> int:
        return max(0, risk_weight) + self.scope_weights[scope]

    def level(self, risk_weight: int, scope: Scope, *, sensitive: bool = False) -> RiskLevel:
        score = self.score(risk_weight, scope)
        if score >= self.critical_threshold:
            level = RiskLevel.CRITICAL
        elif score >= self.high_threshold:
            level = RiskLevel.HIGH
        elif score >= self.medium_threshold:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW

        if scope == Scope.GLOBAL:
            level = RiskLevel.highest(level, RiskLevel.MEDIUM)
        if sensitive:
            level = RiskLevel.highest(level, RiskLevel.HIGH)
        return level
