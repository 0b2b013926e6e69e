from policy_engine.main import build_evaluator
from policy_engine.security import (
    ConfigurationError,
    EvaluationAborted,
    EvaluationFailure,
    PermissionCheckResult,
    PolicyEvaluator,
    RiskLevel,
    Scope,
)

__all__ = [
    "build_evaluator",
    "ConfigurationError",
    "EvaluationAborted",
    "EvaluationFailure",
    "PermissionCheckResult",
    "PolicyEvaluator",
    "RiskLevel",
    "Scope",
]
