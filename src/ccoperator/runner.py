"""
Controller runtime: watch events feed a de-duplicating work queue drained
by a fixed number of workers, each running one reconciliation pass at a
time for a given record.
"""

from __future__ import annotations

import asyncio
from collections import deque

import structlog

from ccoperator.config import Settings, get_settings
from ccoperator.reconcile.controller import (
    CruiseControlOperationReconciler,
    ReconcileRequest,
    ReconcileResult,
)
from ccoperator.reconcile.predicates import should_reconcile
from ccoperator.store.base import OperationEvent, OperationStore

logger = structlog.get_logger()


class ReconcileQueue:
    """asyncio work queue keyed by record.

    A key is never handed to two workers at once: adding a key that is
    being processed marks it dirty and it is queued again on done().
    """

    def __init__(self, *, backoff_base: float = 0.005, backoff_max: float = 1000.0) -> None:
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._queue: deque[ReconcileRequest] = deque()
        self._dirty: set[ReconcileRequest] = set()
        self._processing: set[ReconcileRequest] = set()
        self._failures: dict[ReconcileRequest, int] = {}
        self._timers: set[asyncio.TimerHandle] = set()
        self._has_items = asyncio.Event()
        self._shutting_down = False

    def add(self, request: ReconcileRequest) -> None:
        if self._shutting_down or request in self._dirty:
            return
        self._dirty.add(request)
        if request in self._processing:
            return
        self._queue.append(request)
        self._has_items.set()

    def add_after(self, request: ReconcileRequest, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(request)
            return

        def fire() -> None:
            self._timers.discard(handle)
            self.add(request)

        handle = asyncio.get_running_loop().call_later(delay, fire)
        self._timers.add(handle)

    def add_rate_limited(self, request: ReconcileRequest) -> float:
        failures = self._failures.get(request, 0)
        self._failures[request] = failures + 1
        delay = min(self._backoff_base * (2**failures), self._backoff_max)
        self.add_after(request, delay)
        return delay

    def forget(self, request: ReconcileRequest) -> None:
        self._failures.pop(request, None)

    def num_requeues(self, request: ReconcileRequest) -> int:
        return self._failures.get(request, 0)

    async def get(self) -> ReconcileRequest:
        while not self._queue:
            self._has_items.clear()
            await self._has_items.wait()
        request = self._queue.popleft()
        self._dirty.discard(request)
        self._processing.add(request)
        return request

    def done(self, request: ReconcileRequest) -> None:
        self._processing.discard(request)
        if request in self._dirty:
            self._queue.append(request)
            self._has_items.set()

    def shutdown(self) -> None:
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()

    def __len__(self) -> int:
        return len(self._queue)


class OperationController:
    """Runs the reconciler for every relevant change of operation records."""

    def __init__(
        self,
        store: OperationStore,
        reconciler: CruiseControlOperationReconciler,
        *,
        namespace: str,
        settings: Settings | None = None,
        queue: ReconcileQueue | None = None,
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self._namespace = namespace
        self._settings = settings or get_settings()
        self.queue = queue or ReconcileQueue(
            backoff_base=self._settings.error_backoff_base_seconds,
            backoff_max=self._settings.error_backoff_max_seconds,
        )

    def enqueue_event(self, event: OperationEvent) -> bool:
        if not should_reconcile(event):
            return False
        self.queue.add(ReconcileRequest.from_operation(event.operation))
        return True

    async def process_next(self) -> None:
        request = await self.queue.get()
        try:
            await self._process(request)
        finally:
            self.queue.done(request)

    async def _process(self, request: ReconcileRequest) -> None:
        log = logger.bind(namespace=request.namespace, name=request.name)
        try:
            result = await self._reconciler.reconcile(request)
        except Exception as exc:
            delay = self.queue.add_rate_limited(request)
            log.error(
                "reconcile_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in=delay,
                requeues=self.queue.num_requeues(request),
            )
            return
        self._apply(request, result, log)

    def _apply(
        self,
        request: ReconcileRequest,
        result: ReconcileResult,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        if result.error is not None:
            delay = self.queue.add_rate_limited(request)
            log.debug(
                "reconcile_requeued_with_error",
                retry_in=delay,
                requeues=self.queue.num_requeues(request),
            )
        elif result.requeue_after is not None:
            self.queue.forget(request)
            self.queue.add_after(request, result.requeue_after)
        else:
            self.queue.forget(request)

    async def _watch(self) -> None:
        async for event in self._store.watch(self._namespace):
            self.enqueue_event(event)

    async def _worker(self) -> None:
        while True:
            await self.process_next()

    async def run(self, stop: asyncio.Event) -> None:
        """Watch and reconcile until stop is set or the watch fails."""
        workers = max(1, self._settings.max_concurrent_reconciles)
        logger.info("controller_started", namespace=self._namespace, workers=workers)

        watch_task = asyncio.create_task(self._watch())
        worker_tasks = [asyncio.create_task(self._worker()) for _ in range(workers)]
        stop_task = asyncio.create_task(stop.wait())
        try:
            await asyncio.wait({watch_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self.queue.shutdown()
            tasks = [watch_task, stop_task, *worker_tasks]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("controller_stopped", namespace=self._namespace)

        if watch_task.done() and not watch_task.cancelled() and watch_task.exception():
            raise watch_task.exception()  # type: ignore[misc]
