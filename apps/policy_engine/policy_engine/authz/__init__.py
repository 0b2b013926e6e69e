from policy_engine.authz.models import Role, UserRole

__all__ = [
    "Role",
    "UserRole",
]
