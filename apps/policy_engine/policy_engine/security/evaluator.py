from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from policy_engine.metrics import observe_decision, observe_evaluation_failure, observe_role_resolution
from policy_engine.otel import get_tracer
from policy_engine.security.cache import DecisionCache, DecisionKey, RoleSnapshotCache
from policy_engine.security.conditions import conditions_hold
from policy_engine.security.context import EvaluationContext, build_namespace, context_fingerprint, freeze_value
from policy_engine.security.directory import RoleDirectory
from policy_engine.security.errors import EvaluationFailure, RoleNotFoundError
from policy_engine.security.grants import PermissionGrantTable
from policy_engine.security.handles import EvaluationHandle
from policy_engine.security.risk import RiskPolicy
from policy_engine.security.types import (
    PermissionCheckResult,
    PermissionGrant,
    RiskLevel,
    RoleSnapshot,
    Scope,
    permission_key,
)

if TYPE_CHECKING:
    from policy_engine.audit import DecisionRecorder


logger = logging.getLogger("policy_engine.evaluator")
tracer = get_tracer("policy_engine.security")

REASON_UNAUTHENTICATED = "User not authenticated"
REASON_NO_MATCH = "No matching grant"
REASON_CONDITIONS_NOT_MET = "Conditions not met"
REASON_GRANTED = "Grant matched"

UNAUTHENTICATED_RESULT = PermissionCheckResult(
    granted=False,
    reason=REASON_UNAUTHENTICATED,
    conditions_met=False,
    effective_scope=Scope.OWN,
    risk_level=RiskLevel.LOW,
)

NO_MATCH_RESULT = PermissionCheckResult(
    granted=False,
    reason=REASON_NO_MATCH,
    conditions_met=False,
    effective_scope=Scope.OWN,
    risk_level=RiskLevel.LOW,
)

PermissionRequest = tuple[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_authenticated(user_id: str | None) -> bool:
    return isinstance(user_id, str) and bool(user_id.strip())


class PolicyEvaluator:
    """Deny-by-default, union-of-grants permission evaluator.

    The role directory lookup is the only suspension point; matching,
    condition checks and risk are synchronous and pure.
    """

    def __init__(
        self,
        directory: RoleDirectory,
        grant_table: PermissionGrantTable,
        *,
        risk_policy: RiskPolicy | None = None,
        decision_cache: DecisionCache | None = None,
        snapshot_cache: RoleSnapshotCache | None = None,
        recorder: DecisionRecorder | None = None,
        record_metrics: bool = True,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._directory = directory
        self._grants = grant_table
        self._risk = risk_policy or RiskPolicy()
        if decision_cache is None:
            decision_cache = DecisionCache(ttl_seconds=300.0, record_metrics=record_metrics)
        self._decisions = decision_cache
        self._snapshots = snapshot_cache if snapshot_cache is not None else RoleSnapshotCache()
        self._recorder = recorder
        self._record_metrics = record_metrics
        self._now = now

    @property
    def grant_table(self) -> PermissionGrantTable:
        return self._grants

    @property
    def decision_cache(self) -> DecisionCache:
        return self._decisions

    async def load(self, user_id: str) -> RoleSnapshot:
        """Role snapshot for ``user_id``, fetched once and reused until refresh."""

        return await self._snapshots.get_or_compute(user_id, lambda: self._fetch_snapshot(user_id))

    async def _fetch_snapshot(self, user_id: str) -> RoleSnapshot:
        started = time.perf_counter()
        with tracer.start_as_current_span("authz.role_resolution") as span:
            span.set_attribute("authz.user_id", user_id)
            try:
                assignments = tuple(await self._directory.resolve(user_id))
                status = "ok"
            except RoleNotFoundError:
                assignments = ()
                status = "not_found"
            except EvaluationFailure as exc:
                self._on_resolution_failure(user_id, started, exc)
                raise
            except Exception as exc:
                self._on_resolution_failure(user_id, started, exc)
                raise EvaluationFailure(user_id, f"Role directory failed for user '{user_id}': {exc}") from exc
            span.set_attribute("authz.role_resolution.status", status)

        duration = time.perf_counter() - started
        if self._record_metrics:
            observe_role_resolution(status, duration)
        logger.debug(
            "authz.role_resolution",
            extra={"user_id": user_id, "status": status, "duration_ms": round(duration * 1000, 2)},
        )

        fetched_at = self._now()
        effective = tuple(item for item in assignments if item.is_effective(fetched_at))
        for assignment in effective:
            if not self._grants.has_role(assignment.role_id):
                logger.warning("authz.unknown_role", extra={"user_id": user_id, "role_id": assignment.role_id})
        return RoleSnapshot(user_id=user_id, assignments=effective, fetched_at=fetched_at)

    def _on_resolution_failure(self, user_id: str, started: float, exc: BaseException) -> None:
        if self._record_metrics:
            observe_role_resolution("failed", time.perf_counter() - started)
            observe_evaluation_failure()
        logger.warning("authz.role_resolution.failed", extra={"user_id": user_id, "error": str(exc)})

    async def evaluate(
        self,
        user_id: str | None,
        resource: str,
        action: str,
        context: EvaluationContext | None = None,
    ) -> PermissionCheckResult:
        if user_id is None or not is_authenticated(user_id):
            return UNAUTHENTICATED_RESULT

        resource, action = str(resource), str(action)
        frozen_context = freeze_value(copy.deepcopy(dict(context))) if context else {}
        fingerprint = context_fingerprint(frozen_context)
        key = DecisionKey(user_id, resource, action, fingerprint)

        with tracer.start_as_current_span("authz.evaluate") as span:
            span.set_attribute("authz.resource", resource)
            span.set_attribute("authz.action", action)
            result = await self._decisions.get_or_compute(
                key,
                lambda: self._compute(user_id, resource, action, frozen_context, fingerprint),
            )
            span.set_attribute("authz.granted", result.granted)
            span.set_attribute("authz.risk_level", result.risk_level.value)
        return result

    async def _compute(
        self,
        user_id: str,
        resource: str,
        action: str,
        context: EvaluationContext,
        fingerprint: str,
    ) -> PermissionCheckResult:
        snapshot = await self.load(user_id)
        result = self.decide(snapshot, resource, action, context)
        if self._record_metrics:
            observe_decision(resource, action, result.granted)
        if self._recorder is not None:
            self._recorder.record(snapshot, resource, action, result, fingerprint)
        return result

    def decide(
        self,
        snapshot: RoleSnapshot,
        resource: str,
        action: str,
        context: EvaluationContext | None = None,
    ) -> PermissionCheckResult:
        """Pure decision over an already resolved role snapshot."""

        if not self._grants.is_known(resource, action):
            logger.warning(
                "authz.unknown_permission",
                extra={"user_id": snapshot.user_id, "resource": resource, "action": action},
            )
            return NO_MATCH_RESULT

        matched: list[tuple[PermissionGrant, Scope]] = []
        for assignment in snapshot.assignments:
            for grant in self._grants.grants_for(assignment.role_id):
                if grant.resource == resource and grant.action == action:
                    matched.append((grant, Scope.narrowest(grant.minimum_scope, assignment.scope)))

        if not matched:
            return NO_MATCH_RESULT

        sensitive = self._grants.is_sensitive(resource, action)
        namespace = build_namespace(snapshot.user_id, context)
        satisfied = [(grant, scope) for grant, scope in matched if conditions_hold(grant.conditions, namespace)]

        if not satisfied:
            return PermissionCheckResult(
                granted=False,
                reason=REASON_CONDITIONS_NOT_MET,
                conditions_met=False,
                effective_scope=Scope.broadest(*(scope for _, scope in matched)),
                risk_level=self._risk_for(matched, sensitive),
            )

        risk_level = self._risk_for(satisfied, sensitive)
        return PermissionCheckResult(
            granted=True,
            reason=REASON_GRANTED,
            conditions_met=True,
            effective_scope=Scope.broadest(*(scope for _, scope in satisfied)),
            risk_level=risk_level,
            requires_additional_auth=risk_level == RiskLevel.CRITICAL,
        )

    def _risk_for(self, grants: list[tuple[PermissionGrant, Scope]], sensitive: bool) -> RiskLevel:
        return RiskLevel.highest(
            *(self._risk.level(grant.risk_weight, scope, sensitive=sensitive) for grant, scope in grants)
        )

    async def evaluate_all(
        self,
        user_id: str | None,
        requests: Iterable[PermissionRequest],
        context: EvaluationContext | None = None,
    ) -> dict[str, PermissionCheckResult]:
        """Evaluate many (resource, action) pairs concurrently, keyed ``resource:action``."""

        pairs = list(dict.fromkeys((str(resource), str(action)) for resource, action in requests))
        if not pairs:
            return {}

        with tracer.start_as_current_span("authz.evaluate_all") as span:
            span.set_attribute("authz.request_count", len(pairs))
            tasks = [asyncio.ensure_future(self.evaluate(user_id, resource, action, context)) for resource, action in pairs]
            try:
                results = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                raise

        return {permission_key(resource, action): result for (resource, action), result in zip(pairs, results)}

    def submit(
        self,
        user_id: str | None,
        resource: str,
        action: str,
        context: EvaluationContext | None = None,
    ) -> EvaluationHandle[PermissionCheckResult]:
        return EvaluationHandle(self.evaluate(user_id, resource, action, context))

    def submit_all(
        self,
        user_id: str | None,
        requests: Iterable[PermissionRequest],
        context: EvaluationContext | None = None,
    ) -> EvaluationHandle[dict[str, PermissionCheckResult]]:
        return EvaluationHandle(self.evaluate_all(user_id, list(requests), context))

    def invalidate(self, user_id: str) -> None:
        snapshots = self._snapshots.invalidate(user_id)
        decisions = self._decisions.invalidate(user_id)
        logger.info("authz.cache.invalidated", extra={"user_id": user_id, "entries": snapshots + decisions})

    async def refresh(self, user_id: str | None) -> None:
        """Drop cached state for ``user_id`` and re-resolve its roles."""

        if user_id is None or not is_authenticated(user_id):
            return
        self.invalidate(user_id)
        await self.load(user_id)

    async def effective_grants(self, user_id: str) -> tuple[PermissionGrant, ...]:
        snapshot = await self.load(user_id)
        grants: list[PermissionGrant] = []
        for role_id in snapshot.role_ids:
            for grant in self._grants.grants_for(role_id):
                if grant not in grants:
                    grants.append(grant)
        return tuple(grants)
