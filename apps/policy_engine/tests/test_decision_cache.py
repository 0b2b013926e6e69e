from __future__ import annotations

import asyncio
from collections.abc import Sequence

import pytest

from policy_engine.authz.seed import DEFAULT_GRANT_TABLE
from policy_engine.security.cache import DecisionCache, DecisionKey
from policy_engine.security.directory import InMemoryRoleDirectory
from policy_engine.security.evaluator import PolicyEvaluator
from policy_engine.security.grants import PermissionGrantTable
from policy_engine.security.types import PermissionCheckResult, RiskLevel, RoleAssignment, Scope


KEY = DecisionKey("u1", "claim", "read", "-")
GRANTED = PermissionCheckResult(
    granted=True,
    reason="Grant matched",
    conditions_met=True,
    effective_scope=Scope.TEAM,
    risk_level=RiskLevel.MEDIUM,
)


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class _Computation:
    def __init__(self) -> None:
        self.calls = 0
        self.cancelled = False
        self.gate = asyncio.Event()
        self.error: Exception | None = None

    async def __call__(self) -> PermissionCheckResult:
        self.calls += 1
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return GRANTED


class _CountingDirectory(InMemoryRoleDirectory):
    async def resolve(self, user_id: str) -> Sequence[RoleAssignment]:
        result = await super().resolve(user_id)
        await asyncio.sleep(0.01)
        return result


def test_concurrent_identical_requests_resolve_roles_once() -> None:
    directory = _CountingDirectory([RoleAssignment(user_id="u1", role_id="claims_viewer")])
    evaluator = PolicyEvaluator(directory, PermissionGrantTable.from_config(DEFAULT_GRANT_TABLE))

    async def _burst() -> list[PermissionCheckResult]:
        return await asyncio.gather(*(evaluator.evaluate("u1", "claim", "read") for _ in range(25)))

    results = asyncio.run(_burst())

    assert directory.resolve_calls == 1
    assert all(result is results[0] for result in results)
    assert results[0].granted is True


def test_concurrent_consumers_share_one_computation() -> None:
    async def _scenario() -> tuple[int, list[PermissionCheckResult]]:
        cache = DecisionCache(ttl_seconds=None)
        compute = _Computation()
        consumers = [asyncio.create_task(cache.get_or_compute(KEY, compute)) for _ in range(5)]
        await _settle()
        assert cache.in_flight(KEY)
        compute.gate.set()
        results = await asyncio.gather(*consumers)
        return compute.calls, results

    calls, results = asyncio.run(_scenario())

    assert calls == 1
    assert results == [GRANTED] * 5


def test_entries_expire_after_ttl() -> None:
    now = [100.0]

    async def _scenario() -> int:
        cache = DecisionCache(ttl_seconds=10.0, clock=lambda: now[0])
        compute = _Computation()
        compute.gate.set()
        await cache.get_or_compute(KEY, compute)
        now[0] = 105.0
        await cache.get_or_compute(KEY, compute)
        now[0] = 111.0
        assert cache.peek(KEY) is None
        await cache.get_or_compute(KEY, compute)
        return compute.calls

    assert asyncio.run(_scenario()) == 2


def test_zero_ttl_keeps_single_flight_but_not_results() -> None:
    async def _scenario() -> int:
        cache = DecisionCache(ttl_seconds=0)
        compute = _Computation()
        compute.gate.set()
        await asyncio.gather(cache.get_or_compute(KEY, compute), cache.get_or_compute(KEY, compute))
        await cache.get_or_compute(KEY, compute)
        return compute.calls

    assert asyncio.run(_scenario()) == 2


def test_invalidate_drops_only_that_users_entries() -> None:
    other = DecisionKey("u2", "claim", "read", "-")

    async def _scenario() -> DecisionCache:
        cache = DecisionCache(ttl_seconds=None)
        compute = _Computation()
        compute.gate.set()
        await cache.get_or_compute(KEY, compute)
        await cache.get_or_compute(other, compute)
        assert cache.invalidate("u1") == 1
        return cache

    cache = asyncio.run(_scenario())

    assert cache.peek(KEY) is None
    assert cache.peek(other) == GRANTED
    assert len(cache) == 1


def test_invalidation_during_flight_is_not_cached() -> None:
    async def _scenario() -> tuple[PermissionCheckResult, PermissionCheckResult | None, bool]:
        cache = DecisionCache(ttl_seconds=None)
        compute = _Computation()
        consumer = asyncio.create_task(cache.get_or_compute(KEY, compute))
        await _settle()
        cache.invalidate("u1")
        joined_after_invalidate = cache.in_flight(KEY)
        compute.gate.set()
        result = await consumer
        return result, cache.peek(KEY), joined_after_invalidate

    result, cached, still_in_flight = asyncio.run(_scenario())

    assert result == GRANTED
    assert cached is None
    assert still_in_flight is False


def test_cancelled_consumer_does_not_cancel_shared_computation() -> None:
    async def _scenario() -> tuple[PermissionCheckResult, bool, bool, int]:
        cache = DecisionCache(ttl_seconds=None)
        compute = _Computation()
        leaving = asyncio.create_task(cache.get_or_compute(KEY, compute))
        staying = asyncio.create_task(cache.get_or_compute(KEY, compute))
        await _settle()
        leaving.cancel()
        await _settle()
        compute.gate.set()
        result = await staying
        return result, leaving.cancelled(), cache.peek(KEY) == GRANTED, compute.calls

    result, leaving_cancelled, cached, calls = asyncio.run(_scenario())

    assert result == GRANTED
    assert leaving_cancelled is True
    assert cached is True
    assert calls == 1


def test_computation_is_cancelled_when_every_consumer_leaves() -> None:
    async def _scenario() -> tuple[bool, bool, int]:
        cache = DecisionCache(ttl_seconds=None)
        compute = _Computation()
        consumers = [asyncio.create_task(cache.get_or_compute(KEY, compute)) for _ in range(3)]
        await _settle()
        for consumer in consumers:
            consumer.cancel()
        await _settle()
        in_flight = cache.in_flight(KEY)
        compute.gate.set()
        await cache.get_or_compute(KEY, compute)
        return compute.cancelled, in_flight, compute.calls

    cancelled, in_flight, calls = asyncio.run(_scenario())

    assert cancelled is True
    assert in_flight is False
    assert calls == 2


def test_failures_reach_every_consumer_and_are_not_cached() -> None:
    async def _scenario() -> tuple[list[BaseException | PermissionCheckResult], PermissionCheckResult, int]:
        cache = DecisionCache(ttl_seconds=None)
        compute = _Computation()
        compute.error = RuntimeError("store down")
        consumers = [asyncio.create_task(cache.get_or_compute(KEY, compute)) for _ in range(2)]
        await _settle()
        compute.gate.set()
        outcomes = await asyncio.gather(*consumers, return_exceptions=True)
        compute.error = None
        retried = await cache.get_or_compute(KEY, compute)
        return outcomes, retried, compute.calls

    outcomes, retried, calls = asyncio.run(_scenario())

    assert all(isinstance(outcome, RuntimeError) for outcome in outcomes)
    assert retried == GRANTED
    assert calls == 2


@pytest.mark.parametrize("ttl", [None, 60.0])
def test_clear_empties_cache(ttl: float | None) -> None:
    async def _scenario() -> DecisionCache:
        cache = DecisionCache(ttl_seconds=ttl)
        compute = _Computation()
        compute.gate.set()
        await cache.get_or_compute(KEY, compute)
        cache.clear()
        return cache

    assert len(asyncio.run(_scenario())) == 0
