"""Reconciliation state machine for CloudSQLInstance records.

One pass over one resource key:
1. Load the desired-state record (missing record: nothing to do)
2. Deletion requested: run finalizer teardown and stop
3. Cleanup finalizer missing: add it, persist, and stop
4. Describe the external instance (not found: create it)
5. Project observed version, state and IP address into the status
6. Classify the lifecycle label (transient: requeue, unknown: report)
7. Operational: compare the drift allow-list and update on mismatch

The reconciler holds no state between passes; everything is derived from
the record and a fresh describe. Status is written once at the end of the
pass, as a compare-and-set against the revision read in step 1, and only
when it changed. Errors are returned in the ReconcileResult rather than
raised, so the caller decides on backoff.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .config import Config
from .drift import drift_report, needs_update
from .errors import CreateFailed, OperatorError, UpdateFailed
from .finalizers import FinalizerManager
from .invoker import Failed, Found, NotFound, SledgeInvoker
from .models import CloudSQLInstance, InstanceStatus, ObservedInstance, Phase, ResourceKey
from .provenance import get_provenance_logger
from .status import (
    MESSAGE_CREATED,
    MESSAGE_IN_SYNC,
    MESSAGE_UPDATED,
    classify,
    project_observed,
    set_phase,
)
from .store import RecordStore

logger = logging.getLogger(__name__)


class Action(str, Enum):
    """Externally visible change made by a pass."""

    NONE = "none"
    FINALIZER_ADDED = "finalizer_added"
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass
class ReconcileResult:
    """Result of a single reconciliation pass."""

    key: ResourceKey
    requeue_after: float | None = None
    error: Exception | None = None
    phase: Phase | None = None
    action: Action = Action.NONE
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if the pass succeeded."""
        return self.error is None


class Reconciler:
    """Drives one CloudSQLInstance toward its desired state per pass.

    Safe to run concurrently for different keys. The caller must not run
    two passes for the same key at once.
    """

    def __init__(
        self,
        config: Config,
        store: RecordStore,
        invoker: SledgeInvoker | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._invoker = invoker or SledgeInvoker(config)
        self._finalizers = FinalizerManager(store, self._invoker)

    @property
    def config(self) -> Config:
        """Get the reconciler configuration."""
        return self._config

    @property
    def store(self) -> RecordStore:
        return self._store

    async def reconcile(self, key: ResourceKey) -> ReconcileResult:
        """Run one reconciliation pass for a resource key.

        Cancelling the awaiting task abandons the in-flight CLI call.
        """
        result = ReconcileResult(key=key)
        provenance_logger = get_provenance_logger()
        provenance = provenance_logger.create_provenance(str(key))

        try:
            record = self._store.get(key)
            if record is None:
                logger.info("Record not found, treating as deleted", extra={"key": str(key)})
            else:
                provenance.generation = record.metadata.generation
                provenance.resource_version = record.metadata.resource_version
                await self._reconcile_record(record, result)
        except OperatorError as e:
            logger.error("Reconciliation failed", extra={"key": str(key), "error": str(e)})
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation", extra={"key": str(key)})
            result.error = e

        result.end_time = datetime.now(UTC)

        provenance.phase = result.phase.value if result.phase else None
        provenance.action = result.action.value
        provenance.requeue_after = result.requeue_after
        provenance.duration_seconds = result.duration_seconds
        if result.error:
            provenance.error = str(result.error)
            provenance.error_type = type(result.error).__name__
        provenance_logger.log_provenance(provenance)

        return result

    async def _reconcile_record(self, record: CloudSQLInstance, result: ReconcileResult) -> None:
        if record.metadata.deletion_requested:
            if await self._finalizers.teardown(record):
                result.action = Action.DELETED
            return

        # Return right after adding the finalizer; the write triggers the next
        # pass, which then provisions with cleanup already guaranteed.
        if self._finalizers.ensure(record):
            result.action = Action.FINALIZER_ADDED
            return

        original_status = record.status.model_copy(deep=True)
        spec = record.spec

        described = await self._invoker.describe(spec.project_id, spec.instance_name)
        match described:
            case NotFound():
                logger.info(
                    "Instance not found, creating with sledge create",
                    extra={"key": str(record.key), "instance": spec.instance_name},
                )
                try:
                    await self._invoker.create(spec)
                except CreateFailed as e:
                    set_phase(record.status, Phase.ERROR_CREATING, str(e))
                    result.error = e
                else:
                    set_phase(record.status, Phase.READY, MESSAGE_CREATED)
                    result.action = Action.CREATED

            case Failed(error=error):
                set_phase(record.status, Phase.ERROR_DESCRIBE, str(error))
                result.error = error

            case Found(observed=observed):
                await self._converge(record, observed, result)

        self._write_status(record, original_status, result)

    async def _converge(
        self,
        record: CloudSQLInstance,
        observed: ObservedInstance,
        result: ReconcileResult,
    ) -> None:
        status = record.status
        project_observed(status, observed)

        classification = classify(observed, self._config.pending_requeue_seconds)
        set_phase(status, classification.phase, classification.message)
        result.requeue_after = classification.requeue_after

        # Drift is only checked against an operational instance
        if not classification.operational:
            if classification.phase is Phase.ERROR:
                logger.warning(
                    "Unexpected instance state",
                    extra={"key": str(record.key), "state": observed.state},
                )
            return

        spec = record.spec
        if not needs_update(spec, observed, self._config.drift_fields):
            if self._config.report_in_sync:
                set_phase(status, Phase.READY, MESSAGE_IN_SYNC)
            return

        logger.info(
            "Specs differ from actual, updating with sledge",
            extra={
                "key": str(record.key),
                "drift": drift_report(spec, observed, self._config.drift_fields),
            },
        )
        try:
            await self._invoker.update(spec)
        except UpdateFailed as e:
            set_phase(status, Phase.ERROR_UPDATING, str(e))
            result.requeue_after = float(self._config.update_retry_seconds)
            result.error = e
        else:
            set_phase(status, Phase.READY, MESSAGE_UPDATED)
            result.action = Action.UPDATED

    def _write_status(
        self,
        record: CloudSQLInstance,
        original: InstanceStatus,
        result: ReconcileResult,
    ) -> None:
        """Persist the status once per pass; a failed write fails the pass."""
        result.phase = record.status.phase
        if record.status == original:
            logger.debug("Status unchanged, skipping write", extra={"key": str(record.key)})
            return

        try:
            self._store.update_status(record)
        except OperatorError as e:
            logger.error(
                "Failed to write status",
                extra={"key": str(record.key), "error": str(e)},
            )
            # A tool failure already drives the retry; keep it as the reported cause
            if result.error is None:
                result.error = e
                result.requeue_after = None
