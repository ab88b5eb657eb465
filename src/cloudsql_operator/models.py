"""Pydantic models for the CloudSQLInstance resource.

These models provide:
1. Type-safe parsing of desired-state records (YAML or dicts)
2. Validation at the boundary (fail fast, fail loudly)
3. Parsing of the provisioning CLI's describe output
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

API_VERSION = "cloudsql.uipath.studio/v1alpha1"
KIND = "CloudSQLInstance"
DEFAULT_NAMESPACE = "default"

# Values end up as --flag=value arguments of the provisioning CLI
VALID_ARGUMENT_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$"

# Record names and namespaces double as path segments in the file store
VALID_NAME_PATTERN = r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$"


class Finalizer(str, Enum):
    """Cleanup obligations the operator places on records."""

    CLEANUP = "cloudsql.uipath.studio/finalizer"


class Phase(str, Enum):
    """Phase reported in the status sub-record."""

    PENDING = "Pending"
    READY = "Ready"
    ERROR = "Error"
    ERROR_CREATING = "ErrorCreating"
    ERROR_DESCRIBE = "ErrorDescribe"
    ERROR_UPDATING = "ErrorUpdating"


class InstanceState(str, Enum):
    """Lifecycle labels the provisioning CLI is known to report."""

    PENDING_CREATE = "PENDING_CREATE"
    MAINTENANCE = "MAINTENANCE"
    BACKUP_IN_PROGRESS = "BACKUP_IN_PROGRESS"
    RUNNABLE = "RUNNABLE"


TRANSIENT_STATES: frozenset[str] = frozenset(
    {
        InstanceState.PENDING_CREATE.value,
        InstanceState.MAINTENANCE.value,
        InstanceState.BACKUP_IN_PROGRESS.value,
    }
)


@dataclass(frozen=True, order=True)
class ResourceKey:
    """Namespaced name identifying one desired-state record."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> ResourceKey:
        """Parse "namespace/name" (or a bare name in the default namespace).

        Raises:
            ValueError: If the value is not one or two valid name segments.
        """
        parts = value.split("/")
        if len(parts) == 1:
            parts = [DEFAULT_NAMESPACE, parts[0]]
        if len(parts) == 2 and all(re.fullmatch(VALID_NAME_PATTERN, p) for p in parts):
            return cls(parts[0], parts[1])
        raise ValueError(f"Invalid resource key '{value}', expected namespace/name")


# =============================================================================
# Desired State
# =============================================================================


class InstanceSpec(BaseModel):
    """User-declared target configuration of a database instance."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    project_id: Annotated[str, Field(min_length=1, alias="projectID")]
    instance_name: Annotated[str, Field(min_length=1, max_length=98, alias="instanceName")]
    region: Annotated[str, Field(min_length=1)]
    database_version: Annotated[str, Field(min_length=1, alias="databaseVersion")]
    tier: Annotated[str, Field(min_length=1)]

    @field_validator("project_id", "instance_name", "region", "database_version", "tier")
    @classmethod
    def validate_argument(cls, v: str) -> str:
        # Rejects whitespace and leading dashes so values cannot become extra flags
        if not re.fullmatch(VALID_ARGUMENT_PATTERN, v):
            raise ValueError(f"must match pattern {VALID_ARGUMENT_PATTERN}")
        return v


class ObjectMeta(BaseModel):
    """Record metadata owned by the store, with finalizers owned by the operator."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=253, pattern=VALID_NAME_PATTERN)]
    namespace: Annotated[
        str, Field(min_length=1, max_length=63, pattern=VALID_NAME_PATTERN)
    ] = DEFAULT_NAMESPACE
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: datetime | None = Field(None, alias="deletionTimestamp")
    resource_version: int = Field(0, alias="resourceVersion")
    generation: int = 1

    @field_validator("finalizers")
    @classmethod
    def dedupe_finalizers(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @property
    def deletion_requested(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, token: Finalizer) -> bool:
        return token.value in self.finalizers

    def add_finalizer(self, token: Finalizer) -> bool:
        """Append a finalizer token. Returns False if it was already present."""
        if self.has_finalizer(token):
            return False
        self.finalizers.append(token.value)
        return True

    def remove_finalizer(self, token: Finalizer) -> bool:
        """Remove exactly one finalizer token, preserving all others."""
        if not self.has_finalizer(token):
            return False
        self.finalizers = [f for f in self.finalizers if f != token.value]
        return True


class InstanceStatus(BaseModel):
    """Status sub-record, written only by the operator."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    phase: Phase | None = None
    message: str = ""
    observed_version: str = Field("", alias="observedVersion")
    observed_state: str = Field("", alias="observedState")
    observed_ip_address: str = Field("", alias="observedIPAddress")


class CloudSQLInstance(BaseModel):
    """Desired-state record for one managed database instance."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field(API_VERSION, alias="apiVersion")
    kind: str = KIND
    metadata: ObjectMeta
    spec: InstanceSpec
    status: InstanceStatus = Field(default_factory=InstanceStatus)

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        if v != KIND:
            raise ValueError(f"kind must be {KIND}")
        return v

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.metadata.namespace, self.metadata.name)

    def to_document(self) -> dict[str, Any]:
        """Serialize to a plain dict using the wire field names."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# =============================================================================
# Observed State
# =============================================================================


class InstanceSettings(BaseModel):
    """Settings grouping of the describe output."""

    model_config = {"extra": "ignore"}

    tier: str = ""

    @field_validator("tier", mode="before")
    @classmethod
    def null_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class IpAddressEntry(BaseModel):
    """One entry of the describe output's ipAddresses list."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    ip_address: str = Field("", alias="ipAddress")
    type: str = ""

    @field_validator("ip_address", "type", mode="before")
    @classmethod
    def null_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class ObservedInstance(BaseModel):
    """Ground truth reported by the provisioning CLI's describe command.

    Every field defaults to empty so that unparseable output yields a
    zero-valued instance rather than an exception.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: str = ""
    region: str = ""
    database_version: str = Field("", alias="databaseVersion")
    state: str = ""
    settings: InstanceSettings = Field(default_factory=InstanceSettings)
    ip_addresses: list[IpAddressEntry] = Field(default_factory=list, alias="ipAddresses")

    @field_validator("name", "region", "database_version", "state", mode="before")
    @classmethod
    def null_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("settings", mode="before")
    @classmethod
    def null_settings(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("ip_addresses", mode="before")
    @classmethod
    def null_ip_addresses(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [{} if entry is None else entry for entry in v]
        return v

    @property
    def tier(self) -> str:
        return self.settings.tier

    @property
    def first_ip_address(self) -> str:
        for entry in self.ip_addresses:
            if entry.ip_address:
                return entry.ip_address
        return ""

    @property
    def is_transient(self) -> bool:
        return self.state in TRANSIENT_STATES

    @property
    def is_runnable(self) -> bool:
        return self.state == InstanceState.RUNNABLE.value
