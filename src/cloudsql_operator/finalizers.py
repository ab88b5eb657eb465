"""Finalizer lifecycle: cleanup of the external instance before record removal.

The cleanup token is added before any provisioning work and removed only
after the provisioning CLI reported a successful delete. Removing it is the
single signal that lets the store garbage-collect the record.
"""

from __future__ import annotations

import logging

from .invoker import SledgeInvoker
from .models import CloudSQLInstance, Finalizer
from .store import RecordStore

logger = logging.getLogger(__name__)


class FinalizerManager:
    """Adds and honours the cleanup finalizer on CloudSQLInstance records."""

    def __init__(
        self,
        store: RecordStore,
        invoker: SledgeInvoker,
        token: Finalizer = Finalizer.CLEANUP,
    ) -> None:
        self._store = store
        self._invoker = invoker
        self._token = token

    @property
    def token(self) -> Finalizer:
        return self._token

    def ensure(self, record: CloudSQLInstance) -> bool:
        """Add the cleanup token and persist the record if it is missing.

        Returns:
            True if the record was changed and written.

        Raises:
            StoreError: If the write fails (ConflictError on a stale read).
        """
        if not record.metadata.add_finalizer(self._token):
            return False
        self._store.update(record)
        logger.info(
            "Finalizer added",
            extra={"key": str(record.key), "finalizer": self._token.value},
        )
        return True

    async def teardown(self, record: CloudSQLInstance) -> bool:
        """Delete the external instance, then release the record.

        Safe to repeat: a failed delete keeps the token, so the next pass
        starts the deletion again from scratch.

        Returns:
            True if a delete was performed, False if the token was already gone.

        Raises:
            DeleteFailed: If the provisioning CLI could not delete the instance.
            StoreError: If the record could not be written after the delete.
        """
        if not record.metadata.has_finalizer(self._token):
            logger.debug("No cleanup finalizer, nothing to tear down", extra={"key": str(record.key)})
            return False

        spec = record.spec
        logger.info(
            "Deleting instance via sledge",
            extra={"key": str(record.key), "instance": spec.instance_name},
        )
        await self._invoker.delete(spec.project_id, spec.instance_name)

        record.metadata.remove_finalizer(self._token)
        self._store.update(record)
        logger.info(
            "Instance deleted, finalizer removed",
            extra={"key": str(record.key), "instance": spec.instance_name},
        )
        return True
