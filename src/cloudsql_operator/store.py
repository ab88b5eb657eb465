"""Record store for CloudSQLInstance desired-state records.

Two implementations share one compare-and-set contract:
- InMemoryStore: dict-backed, for tests and embedding
- YamlFileStore: one YAML document per record under <root>/<namespace>/<name>.yaml

Every write carries the resourceVersion the caller read. A stale version
raises ConflictError and nothing is written. Deletion follows the
Kubernetes convention: a record with finalizers is only marked with a
deletionTimestamp, and is removed once its last finalizer is dropped.

SECURITY: Record files are size-checked before reading and parsed with
yaml.safe_load only.
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_RECORD_FILE_SIZE_BYTES
from .errors import ConflictError, RecordLoadError, RecordNotFoundError, StoreError
from .models import CloudSQLInstance, ResourceKey

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".yaml"


def _format_validation_error(source: str, error: ValidationError) -> str:
    errors = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        errors.append(f"  - {loc}: {item['msg']}")
    return f"Validation failed for {source}:\n" + "\n".join(errors)


def parse_record(data: Any, source: str, default_key: ResourceKey | None = None) -> CloudSQLInstance:
    """Validate a raw mapping as a CloudSQLInstance.

    Supports both the Kubernetes-style document (apiVersion, kind, metadata,
    spec) and a flat mapping holding only the spec fields, in which case the
    record is named after default_key.

    Raises:
        RecordLoadError: If the data is not a mapping or fails validation.
    """
    if not isinstance(data, dict):
        raise RecordLoadError(f"Record must be a mapping: {source}")

    if "spec" not in data:
        if default_key is None:
            raise RecordLoadError(f"Record has no spec section and no name: {source}")
        data = {
            "metadata": {"name": default_key.name, "namespace": default_key.namespace},
            "spec": data,
        }

    try:
        return CloudSQLInstance.model_validate(data)
    except ValidationError as e:
        raise RecordLoadError(_format_validation_error(source, e)) from e


def load_record_file(path: Path) -> CloudSQLInstance:
    """Load and validate a record from a YAML file.

    Raises:
        RecordLoadError: If the file cannot be read, parsed or validated.
    """
    if not path.exists():
        raise RecordLoadError(f"Record file not found: {path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise RecordLoadError(f"Failed to stat record file {path}: {e}") from e

    if file_size > MAX_RECORD_FILE_SIZE_BYTES:
        raise RecordLoadError(
            f"Record file exceeds maximum size of {MAX_RECORD_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RecordLoadError(f"Failed to read record file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise RecordLoadError(f"Invalid YAML in {path}: {e}") from e

    default_key = ResourceKey(path.parent.name, path.stem)
    return parse_record(raw_data, str(path), default_key)


class RecordStore(ABC):
    """Compare-and-set store of desired-state records.

    Records handed out are copies; changes only take effect through
    update() or update_status(). Not thread-safe: use from one event loop.
    """

    @abstractmethod
    def _read(self, key: ResourceKey) -> CloudSQLInstance | None: ...

    @abstractmethod
    def _write(self, record: CloudSQLInstance) -> None: ...

    @abstractmethod
    def _remove(self, key: ResourceKey) -> None: ...

    @abstractmethod
    def _keys(self) -> list[ResourceKey]: ...

    def get(self, key: ResourceKey) -> CloudSQLInstance | None:
        """Fetch a record, or None if it does not exist."""
        return self._read(key)

    def list_keys(self, namespace: str | None = None) -> list[ResourceKey]:
        """List record keys, optionally restricted to one namespace."""
        keys = self._keys()
        if namespace is not None:
            keys = [k for k in keys if k.namespace == namespace]
        return sorted(keys)

    def create(self, record: CloudSQLInstance) -> CloudSQLInstance:
        """Store a new record.

        Raises:
            StoreError: If a record with the same key exists.
        """
        if self._read(record.key) is not None:
            raise StoreError(f"Record already exists: {record.key}")
        stored = record.model_copy(deep=True)
        stored.metadata.resource_version = 1
        stored.metadata.generation = 1
        stored.metadata.deletion_timestamp = None
        self._write(stored)
        logger.info("Record created", extra={"key": str(stored.key)})
        return stored.model_copy(deep=True)

    def apply(self, record: CloudSQLInstance) -> CloudSQLInstance:
        """Create a record or replace the spec of an existing one.

        Finalizers, status and deletion marker of an existing record are kept.
        """
        current = self._read(record.key)
        if current is None:
            return self.create(record)
        if current.spec == record.spec:
            return current
        current.spec = record.spec
        current.metadata.generation += 1
        return self.update(current)

    def update(self, record: CloudSQLInstance) -> CloudSQLInstance:
        """Write metadata and spec of a record; status is left untouched.

        If deletion was requested and no finalizers remain, the record is
        removed instead.

        Raises:
            ConflictError: If the record changed since it was read.
            RecordNotFoundError: If the record no longer exists.
        """
        current = self._check_version(record)
        stored = record.model_copy(deep=True)
        stored.status = current.status
        stored.metadata.deletion_timestamp = current.metadata.deletion_timestamp
        stored.metadata.resource_version = current.metadata.resource_version + 1

        if stored.metadata.deletion_requested and not stored.metadata.finalizers:
            self._remove(stored.key)
            logger.info("Record removed after finalizers cleared", extra={"key": str(stored.key)})
            return stored

        self._write(stored)
        return stored.model_copy(deep=True)

    def update_status(self, record: CloudSQLInstance) -> CloudSQLInstance:
        """Write only the status sub-record.

        Raises:
            ConflictError: If the record changed since it was read.
            RecordNotFoundError: If the record no longer exists.
        """
        current = self._check_version(record)
        current.status = record.status.model_copy(deep=True)
        current.metadata.resource_version += 1
        self._write(current)
        return current.model_copy(deep=True)

    def request_deletion(self, key: ResourceKey) -> bool:
        """Mark a record for deletion.

        Returns:
            False if the record does not exist.
        """
        current = self._read(key)
        if current is None:
            return False
        if not current.metadata.finalizers:
            self._remove(key)
            logger.info("Record removed", extra={"key": str(key)})
            return True
        if current.metadata.deletion_timestamp is None:
            current.metadata.deletion_timestamp = datetime.now(UTC)
            current.metadata.resource_version += 1
            self._write(current)
            logger.info(
                "Record marked for deletion",
                extra={"key": str(key), "finalizers": current.metadata.finalizers},
            )
        return True

    def _check_version(self, record: CloudSQLInstance) -> CloudSQLInstance:
        current = self._read(record.key)
        if current is None:
            raise RecordNotFoundError(f"Record not found: {record.key}")
        if current.metadata.resource_version != record.metadata.resource_version:
            raise ConflictError(
                str(record.key),
                expected=record.metadata.resource_version,
                actual=current.metadata.resource_version,
            )
        return current


class InMemoryStore(RecordStore):
    """Dict-backed record store."""

    def __init__(self, records: list[CloudSQLInstance] | None = None) -> None:
        self._records: dict[ResourceKey, CloudSQLInstance] = {}
        for record in records or []:
            self.create(record)

    def _read(self, key: ResourceKey) -> CloudSQLInstance | None:
        record = self._records.get(key)
        return record.model_copy(deep=True) if record is not None else None

    def _write(self, record: CloudSQLInstance) -> None:
        self._records[record.key] = record.model_copy(deep=True)

    def _remove(self, key: ResourceKey) -> None:
        self._records.pop(key, None)

    def _keys(self) -> list[ResourceKey]:
        return list(self._records)


class YamlFileStore(RecordStore):
    """Record store keeping one YAML file per record."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: ResourceKey) -> Path:
        return self._root / key.namespace / f"{key.name}{RECORD_SUFFIX}"

    def _read(self, key: ResourceKey) -> CloudSQLInstance | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        record = load_record_file(path)
        if record.key != key:
            raise RecordLoadError(f"Record {record.key} is stored under the wrong path: {path}")
        return record

    def _write(self, record: CloudSQLInstance) -> None:
        path = self.path_for(record.key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            content = yaml.safe_dump(record.to_document(), sort_keys=False)
            # Write to a sibling temp file so readers never see a partial document
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(content)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreError(f"Failed to write record file {path}: {e}") from e

    def _remove(self, key: ResourceKey) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to remove record file {self.path_for(key)}: {e}") from e

    def _keys(self) -> list[ResourceKey]:
        if not self._root.is_dir():
            return []
        keys = []
        for path in self._root.glob(f"*/*{RECORD_SUFFIX}"):
            keys.append(ResourceKey(path.parent.name, path.stem))
        return keys
