from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


authz_decisions_total = Counter(
    "authz_decisions_total",
    "Authorization decisions computed by outcome",
    ["resource", "action", "outcome"],
)

authz_decision_cache_hit_total = Counter(
    "authz_decision_cache_hit_total",
    "Decision cache hits",
)

authz_decision_cache_miss_total = Counter(
    "authz_decision_cache_miss_total",
    "Decision cache misses",
)

authz_decision_cache_join_total = Counter(
    "authz_decision_cache_join_total",
    "Requests that joined an in-flight decision computation",
)

authz_role_resolutions_total = Counter(
    "authz_role_resolutions_total",
    "Role directory resolutions by status",
    ["status"],
)

authz_role_resolution_duration_seconds = Histogram(
    "authz_role_resolution_duration_seconds",
    "Role directory resolution duration in seconds",
)

authz_evaluation_failures_total = Counter(
    "authz_evaluation_failures_total",
    "Evaluations that could not be determined",
)


def observe_decision(resource: str, action: str, granted: bool) -> None:
    outcome = "granted" if granted else "denied"
    authz_decisions_total.labels(resource=resource, action=action, outcome=outcome).inc()


def observe_decision_cache_hit() -> None:
    authz_decision_cache_hit_total.inc()


def observe_decision_cache_miss() -> None:
    authz_decision_cache_miss_total.inc()


def observe_decision_cache_join() -> None:
    authz_decision_cache_join_total.inc()


def observe_role_resolution(status: str, duration: float) -> None:
    authz_role_resolutions_total.labels(status=status).inc()
    authz_role_resolution_duration_seconds.observe(duration)


def observe_evaluation_failure() -> None:
    authz_evaluation_failures_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
