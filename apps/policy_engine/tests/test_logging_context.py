from __future__ import annotations

import asyncio
import json
import logging

import pytest

from policy_engine.audit import DecisionRecorder
from policy_engine.authz.seed import DEFAULT_GRANT_TABLE
from policy_engine.context import get_log_context, reset_correlation_id, set_correlation_id
from policy_engine.logging import CorrelationIdFilter, JsonLogFormatter
from policy_engine.security.directory import InMemoryRoleDirectory
from policy_engine.security.errors import EvaluationFailure
from policy_engine.security.evaluator import PolicyEvaluator
from policy_engine.security.grants import PermissionGrantTable
from policy_engine.security.types import RoleAssignment, Scope


def _evaluator(directory: InMemoryRoleDirectory, *, log_decisions: bool = True) -> PolicyEvaluator:
    return PolicyEvaluator(
        directory,
        PermissionGrantTable.from_config(DEFAULT_GRANT_TABLE),
        recorder=DecisionRecorder(log_decisions=log_decisions),
    )


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "policy_engine.audit",
            "levelname": "INFO",
            "msg": "authz.decision",
            "user_id": "u1",
            "granted": True,
            "risk_level": "medium",
            "password": "hunter2",
        }
    )
    token = set_correlation_id("corr-42")
    try:
        CorrelationIdFilter().filter(record)
    finally:
        reset_correlation_id(token)

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "authz.decision"
    assert payload["correlation_id"] == "corr-42"
    assert payload["fields"] == {"user_id": "u1", "granted": True, "risk_level": "medium"}


def test_json_formatter_truncates_long_errors() -> None:
    record = logging.makeLogRecord({"msg": "authz.role_resolution.failed", "error": "x" * 2000})

    payload = json.loads(JsonLogFormatter().format(record))

    assert len(payload["fields"]["error"]) == 500


def test_log_context_reflects_current_correlation_id() -> None:
    token = set_correlation_id("abc-123")
    try:
        assert get_log_context() == {"correlation_id": "abc-123"}
    finally:
        reset_correlation_id(token)
    assert get_log_context() == {"correlation_id": None}


def test_decisions_are_logged_with_structured_fields(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    evaluator = _evaluator(InMemoryRoleDirectory([RoleAssignment(user_id="u1", role_id="agent", scope=Scope.TEAM)]))

    asyncio.run(evaluator.evaluate("u1", "customers", "update", {"region": "EU"}))

    records = [record for record in caplog.records if record.getMessage() == "authz.decision"]
    assert len(records) == 1
    record = records[0]
    assert getattr(record, "user_id", None) == "u1"
    assert getattr(record, "resource", None) == "customers"
    assert getattr(record, "granted", None) is True
    assert getattr(record, "effective_scope", None) == "team"
    assert len(getattr(record, "context_fingerprint", "")) == 64


def test_decision_logging_can_be_disabled(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    evaluator = _evaluator(InMemoryRoleDirectory([RoleAssignment(user_id="u1", role_id="agent")]), log_decisions=False)

    asyncio.run(evaluator.evaluate("u1", "customers", "update"))

    assert not [record for record in caplog.records if record.getMessage() == "authz.decision"]


def test_role_resolution_failure_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    class _DownDirectory(InMemoryRoleDirectory):
        async def resolve(self, user_id: str):
            raise TimeoutError("role store timed out")

    caplog.set_level(logging.WARNING)
    evaluator = _evaluator(_DownDirectory())

    with pytest.raises(EvaluationFailure):
        asyncio.run(evaluator.evaluate("u1", "quotes", "read"))

    records = [record for record in caplog.records if record.getMessage() == "authz.role_resolution.failed"]
    assert records
    assert getattr(records[0], "user_id", None) == "u1"
    assert "timed out" in getattr(records[0], "error", "")
