from policy_engine.security.cache import DecisionCache, DecisionKey, RoleSnapshotCache
from policy_engine.security.context import EvaluationContext, context_fingerprint
from policy_engine.security.directory import InMemoryRoleDirectory, RoleDirectory, SqlRoleDirectory
from policy_engine.security.errors import (
    AuthorizationError,
    ConfigurationError,
    DirectoryUnavailableError,
    EvaluationAborted,
    EvaluationFailure,
    RoleNotFoundError,
)
from policy_engine.security.evaluator import PolicyEvaluator
from policy_engine.security.grants import PermissionGrantTable
from policy_engine.security.handles import EvaluationHandle
from policy_engine.security.risk import RiskPolicy
from policy_engine.security.types import (
    Condition,
    ConditionOperator,
    DecisionRecord,
    PermissionCheckResult,
    PermissionGrant,
    RiskLevel,
    Role,
    RoleAssignment,
    RoleSnapshot,
    Scope,
)

__all__ = [
    "AuthorizationError",
    "ConfigurationError",
    "DirectoryUnavailableError",
    "EvaluationAborted",
    "EvaluationFailure",
    "RoleNotFoundError",
    "Condition",
    "ConditionOperator",
    "DecisionRecord",
    "PermissionCheckResult",
    "PermissionGrant",
    "RiskLevel",
    "Role",
    "RoleAssignment",
    "RoleSnapshot",
    "Scope",
    "EvaluationContext",
    "context_fingerprint",
    "DecisionCache",
    "DecisionKey",
    "RoleSnapshotCache",
    "RoleDirectory",
    "InMemoryRoleDirectory",
    "SqlRoleDirectory",
    "PermissionGrantTable",
    "RiskPolicy",
    "EvaluationHandle",
    "PolicyEvaluator",
]
