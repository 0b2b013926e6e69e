from __future__ import annotations


class AuthorizationError(Exception):
    """Base error for the policy engine."""


class RoleNotFoundError(AuthorizationError):
    """Raised by a role directory when the user has no profile."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"No role profile for user '{user_id}'")


class EvaluationFailure(AuthorizationError):
    """The decision could not be determined, as opposed to being denied."""

    def __init__(self, user_id: str | None, message: str) -> None:
        self.user_id = user_id
        super().__init__(message)


class DirectoryUnavailableError(EvaluationFailure):
    """Raised when the external role store cannot be reached."""


class ConfigurationError(AuthorizationError):
    """Raised at load time for a malformed grant table or risk configuration."""


class EvaluationAborted(AuthorizationError):
    """Raised when the result of an aborted evaluation handle is requested."""
