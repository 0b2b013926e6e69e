from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from policy_engine.security.errors import EvaluationAborted


T = TypeVar("T")


class EvaluationHandle(Generic[T]):
    """Abortable wrapper around one evaluation (single or batched).

    Aborting only detaches this consumer: work shared with other callers
    through the decision cache keeps running for them.
    """

    def __init__(self, operation: Awaitable[T]) -> None:
        self._task: asyncio.Future[T] = asyncio.ensure_future(operation)
        self._aborted = False
        self._task.add_done_callback(self._settle)

    @staticmethod
    def _settle(task: asyncio.Future[T]) -> None:
        if not task.cancelled():
            task.exception()

    @property
    def aborted(self) -> bool:
        return self._aborted

    def done(self) -> bool:
        return self._task.done()

    def abort(self) -> bool:
        """Cancel delivery; returns False (no-op) when already finished."""

        if self._task.done():
            return False
        self._aborted = True
        self._task.cancel()
        return True

    async def result(self) -> T:
        if self._aborted:
            raise EvaluationAborted("Evaluation was aborted")
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._aborted:
                raise EvaluationAborted("Evaluation was aborted") from None
            raise

    def on_result(self, callback: Callable[[T], None]) -> None:
        """Invoke ``callback`` with the result unless aborted or failed."""

        def _deliver(task: asyncio.Future[T]) -> None:
            if self._aborted or task.cancelled() or task.exception() is not None:
                return
            callback(task.result())

        self._task.add_done_callback(_deliver)
