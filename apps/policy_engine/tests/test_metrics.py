from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from policy_engine import build_evaluator
from policy_engine.authz.seed import DEFAULT_GRANT_TABLE
from policy_engine.core.config import Settings
from policy_engine.metrics import generate_metrics_payload, metrics_content_type
from policy_engine.security.directory import InMemoryRoleDirectory
from policy_engine.security.errors import EvaluationFailure
from policy_engine.security.evaluator import PolicyEvaluator
from policy_engine.security.grants import PermissionGrantTable
from policy_engine.security.types import RoleAssignment


def _sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_decision_and_cache_counters() -> None:
    directory = InMemoryRoleDirectory([RoleAssignment(user_id="metrics-user", role_id="claims_viewer")])
    evaluator = PolicyEvaluator(directory, PermissionGrantTable.from_config(DEFAULT_GRANT_TABLE))
    granted_labels = {"resource": "claim", "action": "read", "outcome": "granted"}
    denied_labels = {"resource": "claim", "action": "delete", "outcome": "denied"}

    before = {
        "granted": _sample("authz_decisions_total", granted_labels),
        "denied": _sample("authz_decisions_total", denied_labels),
        "hit": _sample("authz_decision_cache_hit_total"),
        "miss": _sample("authz_decision_cache_miss_total"),
        "resolved": _sample("authz_role_resolutions_total", {"status": "ok"}),
    }

    async def _scenario() -> None:
        await evaluator.evaluate("metrics-user", "claim", "read")
        await evaluator.evaluate("metrics-user", "claim", "read")
        await evaluator.evaluate("metrics-user", "claim", "delete")

    asyncio.run(_scenario())

    assert _sample("authz_decisions_total", granted_labels) - before["granted"] == 1
    assert _sample("authz_decisions_total", denied_labels) - before["denied"] == 1
    assert _sample("authz_decision_cache_hit_total") - before["hit"] == 1
    assert _sample("authz_decision_cache_miss_total") - before["miss"] == 2
    assert _sample("authz_role_resolutions_total", {"status": "ok"}) - before["resolved"] == 1


def test_failed_resolution_is_counted() -> None:
    class _DownDirectory(InMemoryRoleDirectory):
        async def resolve(self, user_id: str):
            raise OSError("unreachable")

    evaluator = PolicyEvaluator(_DownDirectory(), PermissionGrantTable.from_config(DEFAULT_GRANT_TABLE))
    before = _sample("authz_evaluation_failures_total")

    with pytest.raises(EvaluationFailure):
        asyncio.run(evaluator.evaluate("metrics-user", "claim", "read"))

    assert _sample("authz_evaluation_failures_total") - before == 1


def test_metrics_payload_exposes_authz_series() -> None:
    payload = generate_metrics_payload().decode("utf-8")

    assert "authz_decisions_total" in payload
    assert "authz_role_resolution_duration_seconds" in payload
    assert metrics_content_type().startswith("text/plain")


@pytest.mark.parametrize(("enabled", "expected_delta"), [(False, 0), (True, 1)])
def test_metrics_flag_gates_recording(enabled: bool, expected_delta: int) -> None:
    user_id = f"flag-user-{enabled}"
    directory = InMemoryRoleDirectory([RoleAssignment(user_id=user_id, role_id="customer")])
    evaluator = build_evaluator(Settings(metrics_enabled=enabled), directory=directory)
    labels = {"resource": "quotes", "action": "create", "outcome": "granted"}
    before = {
        "decisions": _sample("authz_decisions_total", labels),
        "miss": _sample("authz_decision_cache_miss_total"),
        "resolved": _sample("authz_role_resolutions_total", {"status": "ok"}),
    }

    asyncio.run(evaluator.evaluate(user_id, "quotes", "create"))

    assert _sample("authz_decisions_total", labels) - before["decisions"] == expected_delta
    assert _sample("authz_decision_cache_miss_total") - before["miss"] == expected_delta
    assert _sample("authz_role_resolutions_total", {"status": "ok"}) - before["resolved"] == expected_delta
