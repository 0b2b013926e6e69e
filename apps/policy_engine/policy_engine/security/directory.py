from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from datetime import timezone
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from policy_engine.authz.models import Role, UserRole
from policy_engine.security.errors import DirectoryUnavailableError, RoleNotFoundError
from policy_engine.security.types import RoleAssignment, Scope


logger = logging.getLogger("policy_engine.directory")


class RoleDirectory(Protocol):
    """Read-only adapter to the external identity/role store."""

    async def resolve(self, user_id: str) -> Sequence[RoleAssignment]:
        ...


class InMemoryRoleDirectory:
    """Role directory backed by a dict of assignments; users are known once registered."""

    def __init__(self, assignments: Iterable[RoleAssignment] = ()) -> None:
        self._assignments: dict[str, list[RoleAssignment]] = {}
        self.resolve_calls = 0
        for assignment in assignments:
            self.assign(assignment)

    def register_user(self, user_id: str) -> None:
        self._assignments.setdefault(user_id, [])

    def assign(self, assignment: RoleAssignment) -> None:
        self._assignments.setdefault(assignment.user_id, []).append(assignment)

    def revoke(self, user_id: str, role_id: str) -> None:
        current = self._assignments.get(user_id, [])
        self._assignments[user_id] = [item for item in current if item.role_id != role_id]

    def remove_user(self, user_id: str) -> None:
        self._assignments.pop(user_id, None)

    async def resolve(self, user_id: str) -> Sequence[RoleAssignment]:
        self.resolve_calls += 1
        # Yield so concurrent callers overlap the way a networked store would.
        await asyncio.sleep(0)
        if user_id not in self._assignments:
            raise RoleNotFoundError(user_id)
        return tuple(self._assignments[user_id])


class SqlRoleDirectory:
    """Reads role assignments from the external store's ``authz_user_role`` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    async def resolve(self, user_id: str) -> Sequence[RoleAssignment]:
        return await asyncio.to_thread(self._resolve_sync, user_id)

    def _resolve_sync(self, user_id: str) -> tuple[RoleAssignment, ...]:
        try:
            with self._session_factory() as session:
                rows = session.scalars(
                    select(UserRole)
                    .join(Role, UserRole.role_id == Role.id)
                    .where(UserRole.user_id == user_id)
                    .order_by(UserRole.role_id.asc())
                ).all()
                assignments = [self._to_assignment(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.error("authz.directory.unavailable", extra={"user_id": user_id, "error": str(exc)})
            raise DirectoryUnavailableError(user_id, "Role store is unavailable") from exc

        if not assignments:
            raise RoleNotFoundError(user_id)
        return tuple(assignments)

    @staticmethod
    def _to_assignment(row: UserRole) -> RoleAssignment:
        expires_at = row.expires_at
        if expires_at is not None and expires_at.tzinfo is None:
            # SQLite drops tzinfo; stored values are UTC.
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        try:
            scope = Scope(str(row.scope).lower())
        except ValueError:
            logger.warning(
                "authz.directory.unknown_scope",
                extra={"user_id": row.user_id, "role_id": row.role_id, "error": f"scope={row.scope}"},
            )
            scope = Scope.OWN
        return RoleAssignment(
            user_id=row.user_id,
            role_id=row.role_id,
            scope=scope,
            is_active=bool(row.is_active),
            expires_at=expires_at,
        )
