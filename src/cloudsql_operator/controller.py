"""Resync driver feeding resource keys to the reconciler.

A thin local substitute for a watch/requeue substrate:
- Polls the record store and starts a pass for every key that is due
- A key is due when its requeue delay elapsed or its record changed
  (new generation or deletion requested)
- At most one pass per key is in flight; passes for different keys run
  concurrently up to max_concurrent_reconciles
- Passes that returned an error back off exponentially per key, except
  write conflicts, which are retried on the next poll
"""

from __future__ import annotations

import asyncio
import logging
import time

from .config import RETRY_BACKOFF_BASE_SECONDS, RETRY_BACKOFF_MAX_SECONDS, Config
from .errors import ConflictError, StoreError
from .models import ResourceKey
from .reconciler import Action, ReconcileResult, Reconciler

logger = logging.getLogger(__name__)

WATCH_POLL_SECONDS = 2.0


class Controller:
    """Schedules reconciliation passes for every record in the store."""

    def __init__(self, config: Config, reconciler: Reconciler) -> None:
        self._config = config
        self._reconciler = reconciler
        self._store = reconciler.store
        self._semaphore = asyncio.Semaphore(config.max_concurrent_reconciles)
        self._shutdown_event = asyncio.Event()

        # Per-key scheduling state, keyed by ResourceKey
        self._due: dict[ResourceKey, float] = {}
        self._failures: dict[ResourceKey, int] = {}
        self._seen: dict[ResourceKey, tuple[int, bool]] = {}
        self._in_flight: dict[ResourceKey, asyncio.Task[ReconcileResult]] = {}

    @property
    def in_flight(self) -> set[ResourceKey]:
        return set(self._in_flight)

    async def run(self) -> None:
        """Poll and dispatch passes until shutdown() is called.

        In-flight passes are awaited, not cancelled, so a running create or
        delete is never cut off by an orderly shutdown.
        """
        logger.info(
            "Starting controller",
            extra={
                "namespace": self._config.namespace,
                "resync_interval_seconds": self._config.resync_interval_seconds,
                "max_concurrent_reconciles": self._config.max_concurrent_reconciles,
            },
        )

        while not self._shutdown_event.is_set():
            try:
                self.dispatch_due()
            except StoreError as e:
                logger.error("Failed to list records", extra={"error": str(e)})

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=WATCH_POLL_SECONDS)
            except TimeoutError:
                pass

        if self._in_flight:
            logger.info("Waiting for in-flight passes", extra={"count": len(self._in_flight)})
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)

        logger.info("Controller shutdown complete")

    def shutdown(self) -> None:
        """Signal the controller to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    def dispatch_due(self) -> list[ResourceKey]:
        """Start a pass for every due key that has none in flight."""
        keys = self._store.list_keys(self._config.namespace)
        self._forget_missing(set(keys))

        now = time.monotonic()
        started = []
        for key in keys:
            if key in self._in_flight or not self._is_due(key, now):
                continue
            task = asyncio.create_task(self._run_one(key), name=f"reconcile {key}")
            self._in_flight[key] = task
            task.add_done_callback(lambda _t, k=key: self._in_flight.pop(k, None))
            started.append(key)
        return started

    async def reconcile_all(self) -> list[ReconcileResult]:
        """Run one pass for every key, regardless of schedule."""
        keys = self._store.list_keys(self._config.namespace)
        return list(await asyncio.gather(*(self._run_one(key) for key in keys)))

    def next_delay(self, key: ResourceKey, result: ReconcileResult) -> float:
        """Seconds until the next pass for a key, given the last result."""
        if result.error is None:
            self._failures.pop(key, None)
            if result.requeue_after is not None:
                return result.requeue_after
            if result.action is Action.FINALIZER_ADDED:
                return 0.0
            return float(self._config.resync_interval_seconds)

        if isinstance(result.error, ConflictError):
            return 0.0

        failures = self._failures.get(key, 0) + 1
        self._failures[key] = failures
        if result.requeue_after is not None:
            return result.requeue_after
        return float(
            min(RETRY_BACKOFF_BASE_SECONDS * 2 ** (failures - 1), RETRY_BACKOFF_MAX_SECONDS)
        )

    async def _run_one(self, key: ResourceKey) -> ReconcileResult:
        async with self._semaphore:
            # Changes landing while the pass runs must still make the key due
            marker = self._marker(key)
            result = await self._reconciler.reconcile(key)
        delay = self.next_delay(key, result)
        self._due[key] = time.monotonic() + delay
        if marker is None:
            self._seen.pop(key, None)
        else:
            self._seen[key] = marker
        logger.debug("Next pass scheduled", extra={"key": str(key), "delay_seconds": delay})
        return result

    def _is_due(self, key: ResourceKey, now: float) -> bool:
        if self._due.get(key, 0.0) <= now:
            return True
        try:
            record = self._store.get(key)
        except StoreError:
            return True
        if record is None:
            return False
        marker = (record.metadata.generation, record.metadata.deletion_requested)
        return self._seen.get(key) != marker

    def _marker(self, key: ResourceKey) -> tuple[int, bool] | None:
        """Return the (generation, deletion requested) pair of the stored record."""
        try:
            record = self._store.get(key)
        except StoreError:
            return None
        if record is None:
            return None
        return (record.metadata.generation, record.metadata.deletion_requested)

    def _forget_missing(self, present: set[ResourceKey]) -> None:
        for state in (self._due, self._failures, self._seen):
            for key in [k for k in state if k not in present]:
                del state[key]
