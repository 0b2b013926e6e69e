from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from policy_engine.context import get_correlation_id
from policy_engine.core.events import InProcessEventBus
from policy_engine.security.types import DecisionRecord, PermissionCheckResult, RoleSnapshot

DECISION_EVENT = "authz.decision"

logger = logging.getLogger("policy_engine.audit")


class DecisionRecorder:
    """Emits one DecisionRecord per computed decision; storing them is up to subscribers."""

    def __init__(self, event_bus: InProcessEventBus | None = None, *, log_decisions: bool = True) -> None:
        self.event_bus = event_bus or InProcessEventBus()
        self._log_decisions = log_decisions

    def record(
        self,
        snapshot: RoleSnapshot,
        resource: str,
        action: str,
        result: PermissionCheckResult,
        context_fingerprint: str,
        correlation_id: str | None = None,
    ) -> DecisionRecord:
        record = DecisionRecord(
            id=str(uuid.uuid4()),
            user_id=snapshot.user_id,
            resource=resource,
            action=action,
            granted=result.granted,
            reason=result.reason,
            effective_scope=result.effective_scope,
            risk_level=result.risk_level,
            context_fingerprint=context_fingerprint,
            decided_at=datetime.now(timezone.utc),
            correlation_id=correlation_id or get_correlation_id(),
            roles=snapshot.role_ids,
        )
        if self._log_decisions:
            logger.info(
                DECISION_EVENT,
                extra={
                    "user_id": record.user_id,
                    "resource": resource,
                    "action": action,
                    "granted": record.granted,
                    "reason": record.reason,
                    "effective_scope": record.effective_scope.value,
                    "risk_level": record.risk_level.value,
                    "context_fingerprint": context_fingerprint,
                },
            )
        self.event_bus.publish(DECISION_EVENT, record)
        return record
