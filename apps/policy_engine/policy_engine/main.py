from __future__ import annotations

import logging

from policy_engine.audit import DecisionRecorder
from policy_engine.authz.seed import DEFAULT_GRANT_TABLE
from policy_engine.core.config import Settings, get_settings
from policy_engine.core.database import create_session_factory
from policy_engine.core.events import InProcessEventBus
from policy_engine.logging import configure_logging
from policy_engine.otel import setup_otel
from policy_engine.security.cache import DecisionCache, RoleSnapshotCache
from policy_engine.security.directory import InMemoryRoleDirectory, RoleDirectory, SqlRoleDirectory
from policy_engine.security.evaluator import PolicyEvaluator
from policy_engine.security.grants import PermissionGrantTable
from policy_engine.security.risk import RiskPolicy


logger = logging.getLogger("policy_engine.lifecycle")


def load_grant_table(settings: Settings) -> PermissionGrantTable:
    if settings.grant_table_path:
        return PermissionGrantTable.from_json_file(settings.grant_table_path)
    return PermissionGrantTable.from_config(DEFAULT_GRANT_TABLE)


def build_directory(settings: Settings) -> RoleDirectory:
    if settings.database_url:
        return SqlRoleDirectory(create_session_factory(settings.database_url))
    logger.warning("authz.directory.inmemory", extra={"status": "no database_url configured"})
    return InMemoryRoleDirectory()


def build_evaluator(
    settings: Settings | None = None,
    *,
    directory: RoleDirectory | None = None,
    grant_table: PermissionGrantTable | None = None,
    event_bus: InProcessEventBus | None = None,
) -> PolicyEvaluator:
    """Wire an evaluator from settings; ConfigurationError aborts startup."""

    settings = settings or get_settings()
    risk_policy = RiskPolicy.from_settings(settings)
    table = grant_table or load_grant_table(settings)
    return PolicyEvaluator(
        directory if directory is not None else build_directory(settings),
        table,
        risk_policy=risk_policy,
        decision_cache=DecisionCache(
            ttl_seconds=settings.decision_cache_ttl_seconds,
            record_metrics=settings.metrics_enabled,
        ),
        snapshot_cache=RoleSnapshotCache(ttl_seconds=settings.snapshot_cache_ttl_seconds),
        recorder=DecisionRecorder(event_bus, log_decisions=settings.decision_log_enabled),
        record_metrics=settings.metrics_enabled,
    )


def bootstrap(settings: Settings | None = None) -> PolicyEvaluator:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    setup_otel(settings)
    evaluator = build_evaluator(settings)
    logger.info("authz.engine.started", extra={"entries": len(evaluator.grant_table.role_ids)})
    return evaluator
