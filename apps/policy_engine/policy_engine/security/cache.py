from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Generic, NamedTuple, TypeVar

from policy_engine.metrics import (
    observe_decision_cache_hit,
    observe_decision_cache_join,
    observe_decision_cache_miss,
)
from policy_engine.security.types import PermissionCheckResult, RoleSnapshot


logger = logging.getLogger("policy_engine.cache")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class DecisionKey(NamedTuple):
    user_id: str
    resource: str
    action: str
    context_fingerprint: str


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    result: V
    created_at: float


@dataclass(slots=True)
class _Flight(Generic[V]):
    task: asyncio.Future[V]
    consumers: int = 0


class SingleFlightCache(Generic[K, V]):
    """Per-user keyed memoization with at most one in-flight computation per key.

    Consumers of a shared computation cancel independently; the computation
    itself is cancelled only once every consumer has gone away. Results are
    stored only if the owning user was not invalidated while computing.
    ``ttl_seconds=None`` keeps entries until invalidation, ``<= 0`` disables
    retention (single-flight still applies).
    """

    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, dict[K, CacheEntry[V]]] = {}
        self._inflight: dict[K, _Flight[V]] = {}
        self._generations: dict[str, int] = {}

    def _user_of(self, key: K) -> str:
        raise NotImplementedError

    def _on_hit(self) -> None:
        pass

    def _on_miss(self) -> None:
        pass

    def _on_join(self) -> None:
        pass

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._entries.values())

    def in_flight(self, key: K) -> bool:
        return key in self._inflight

    def peek(self, key: K) -> V | None:
        entry = self._lookup(key)
        return entry.result if entry is not None else None

    def _lookup(self, key: K) -> CacheEntry[V] | None:
        bucket = self._entries.get(self._user_of(key))
        if not bucket:
            return None
        entry = bucket.get(key)
        if entry is None:
            return None
        if self._ttl is not None and self._clock() - entry.created_at >= self._ttl:
            del bucket[key]
            return None
        return entry

    def _store(self, key: K, result: V) -> None:
        if self._ttl is not None and self._ttl <= 0:
            return
        bucket = self._entries.setdefault(self._user_of(key), {})
        bucket[key] = CacheEntry(result=result, created_at=self._clock())

    async def get_or_compute(self, key: K, compute_fn: Callable[[], Awaitable[V]]) -> V:
        entry = self._lookup(key)
        if entry is not None:
            self._on_hit()
            return entry.result

        flight = self._inflight.get(key)
        if flight is None:
            self._on_miss()
            user_id = self._user_of(key)
            generation = self._generations.get(user_id, 0)
            flight = _Flight(task=asyncio.ensure_future(self._run(key, generation, compute_fn)))
            self._inflight[key] = flight
        else:
            self._on_join()

        flight.consumers += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.consumers -= 1
            if flight.consumers == 0 and not flight.task.done():
                self._forget_flight(key, flight)
                flight.task.cancel()

    async def _run(self, key: K, generation: int, compute_fn: Callable[[], Awaitable[V]]) -> V:
        try:
            result = await compute_fn()
            if self._generations.get(self._user_of(key), 0) == generation:
                self._store(key, result)
            return result
        finally:
            flight = self._inflight.get(key)
            if flight is not None and flight.task is asyncio.current_task():
                del self._inflight[key]

    def _forget_flight(self, key: K, flight: _Flight[V]) -> None:
        if self._inflight.get(key) is flight:
            del self._inflight[key]

    def invalidate(self, user_id: str) -> int:
        """Drop every entry and in-flight join point for ``user_id``.

        Running computations are not cancelled; their current consumers still
        receive the result, but it is not stored.
        """

        self._generations[user_id] = self._generations.get(user_id, 0) + 1
        dropped = len(self._entries.pop(user_id, {}))
        for key in [key for key in self._inflight if self._user_of(key) == user_id]:
            del self._inflight[key]
        return dropped

    def clear(self) -> None:
        for user_id in set(self._entries) | {self._user_of(key) for key in self._inflight}:
            self.invalidate(user_id)


class DecisionCache(SingleFlightCache[DecisionKey, PermissionCheckResult]):
    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        record_metrics: bool = True,
    ) -> None:
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self.record_metrics = record_metrics

    def _user_of(self, key: DecisionKey) -> str:
        return key.user_id

    def _on_hit(self) -> None:
        if self.record_metrics:
            observe_decision_cache_hit()

    def _on_miss(self) -> None:
        if self.record_metrics:
            observe_decision_cache_miss()

    def _on_join(self) -> None:
        if self.record_metrics:
            observe_decision_cache_join()


class RoleSnapshotCache(SingleFlightCache[str, RoleSnapshot]):
    def _user_of(self, key: str) -> str:
        return key
