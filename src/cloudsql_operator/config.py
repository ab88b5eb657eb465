"""Configuration management with validation.

Bounds are enforced at configuration load time so that a misconfigured
operator fails on startup rather than in the middle of a reconciliation pass.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from .drift import DEFAULT_DRIFT_FIELDS, DriftField


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_SLEDGE_BINARY = "sledge"
DEFAULT_UPDATE_VERB = "upgrade"

DEFAULT_RESYNC_INTERVAL_SECONDS = 60
MIN_RESYNC_INTERVAL_SECONDS = 10
MAX_RESYNC_INTERVAL_SECONDS = 3600

DEFAULT_PENDING_REQUEUE_SECONDS = 20
DEFAULT_UPDATE_RETRY_SECONDS = 30

DEFAULT_MAX_CONCURRENT_RECONCILES = 4
MAX_CONCURRENT_RECONCILES = 64

# Backoff for passes that returned an error
RETRY_BACKOFF_BASE_SECONDS = 5
RETRY_BACKOFF_MAX_SECONDS = 300

# Captured tool output kept in errors and logs
DEFAULT_OUTPUT_LIMIT = 4096
MIN_OUTPUT_LIMIT = 256

# Record files larger than this are rejected
MAX_RECORD_FILE_SIZE_BYTES = 1024 * 1024

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_UPDATE_VERB_PATTERN = r"^[a-z][a-z-]{0,31}$"


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # External tool
    sledge_binary: str = DEFAULT_SLEDGE_BINARY
    update_verb: str = DEFAULT_UPDATE_VERB
    command_timeout_seconds: int = 0  # 0 disables the timeout
    output_limit: int = DEFAULT_OUTPUT_LIMIT
    not_found_patterns: tuple[str, ...] = ()

    # Record store
    store_dir: Path = field(default_factory=lambda: Path("/records"))
    namespace: str | None = None

    # Timing
    resync_interval_seconds: int = DEFAULT_RESYNC_INTERVAL_SECONDS
    pending_requeue_seconds: int = DEFAULT_PENDING_REQUEUE_SECONDS
    update_retry_seconds: int = DEFAULT_UPDATE_RETRY_SECONDS
    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES

    # Behavior
    drift_fields: tuple[DriftField, ...] = DEFAULT_DRIFT_FIELDS
    report_in_sync: bool = False

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        import re

        errors: list[str] = []

        if not self.sledge_binary:
            errors.append("SLEDGE_BIN is required")

        if not re.match(VALID_UPDATE_VERB_PATTERN, self.update_verb):
            errors.append(
                f"SLEDGE_UPDATE_VERB must match pattern {VALID_UPDATE_VERB_PATTERN}: "
                f"{self.update_verb}"
            )

        if self.command_timeout_seconds < 0:
            errors.append("SLEDGE_TIMEOUT cannot be negative")

        if self.output_limit < MIN_OUTPUT_LIMIT:
            errors.append(f"SLEDGE_OUTPUT_LIMIT must be at least {MIN_OUTPUT_LIMIT}")

        if not (
            MIN_RESYNC_INTERVAL_SECONDS
            <= self.resync_interval_seconds
            <= MAX_RESYNC_INTERVAL_SECONDS
        ):
            errors.append(
                f"RESYNC_INTERVAL must be between {MIN_RESYNC_INTERVAL_SECONDS} "
                f"and {MAX_RESYNC_INTERVAL_SECONDS} seconds"
            )

        if self.pending_requeue_seconds < 1:
            errors.append("PENDING_REQUEUE must be at least 1 second")

        if self.update_retry_seconds < 1:
            errors.append("UPDATE_RETRY_REQUEUE must be at least 1 second")

        if not (1 <= self.max_concurrent_reconciles <= MAX_CONCURRENT_RECONCILES):
            errors.append(
                f"MAX_CONCURRENT_RECONCILES must be between 1 and {MAX_CONCURRENT_RECONCILES}"
            )

        if not self.drift_fields:
            errors.append("DRIFT_FIELDS must name at least one field")

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            SLEDGE_BIN: Path or name of the provisioning CLI (default: sledge)
            SLEDGE_UPDATE_VERB: Verb used for in-place updates (default: upgrade)
            SLEDGE_TIMEOUT: Seconds before a tool call is killed, 0 for none (default: 0)
            SLEDGE_OUTPUT_LIMIT: Characters of tool output kept in errors (default: 4096)
            SLEDGE_NOT_FOUND_PATTERNS: Comma-separated describe output fragments
                that mean "instance does not exist". Empty treats every failed
                describe as not found.
            STORE_DIR: Directory holding desired-state records (default: /records)
            WATCH_NAMESPACE: Only reconcile records in this namespace (default: all)
            RESYNC_INTERVAL: Seconds between passes for settled records (default: 60)
            PENDING_REQUEUE: Seconds before re-checking a transient state (default: 20)
            UPDATE_RETRY_REQUEUE: Seconds before retrying a failed update (default: 30)
            MAX_CONCURRENT_RECONCILES: Passes allowed in flight at once (default: 4)
            DRIFT_FIELDS: Comma-separated fields compared for drift
                (default: databaseVersion,tier)
            REPORT_IN_SYNC: If "true", report "Instance in sync" when no drift
            LOG_LEVEL: Root log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_list(key: str) -> tuple[str, ...]:
            value = os.environ.get(key, "")
            return tuple(item.strip() for item in value.split(",") if item.strip())

        def get_drift_fields() -> tuple[DriftField, ...]:
            names = get_list("DRIFT_FIELDS")
            if not names:
                return DEFAULT_DRIFT_FIELDS
            try:
                return tuple(DriftField(name) for name in names)
            except ValueError as e:
                valid = [f.value for f in DriftField]
                raise ConfigurationError(f"DRIFT_FIELDS entries must be in {valid}: {names}") from e

        return cls(
            sledge_binary=os.environ.get("SLEDGE_BIN", DEFAULT_SLEDGE_BINARY),
            update_verb=os.environ.get("SLEDGE_UPDATE_VERB", DEFAULT_UPDATE_VERB),
            command_timeout_seconds=get_int("SLEDGE_TIMEOUT", 0),
            output_limit=get_int("SLEDGE_OUTPUT_LIMIT", DEFAULT_OUTPUT_LIMIT),
            not_found_patterns=get_list("SLEDGE_NOT_FOUND_PATTERNS"),
            store_dir=Path(os.environ.get("STORE_DIR", "/records")),
            namespace=os.environ.get("WATCH_NAMESPACE") or None,
            resync_interval_seconds=get_int("RESYNC_INTERVAL", DEFAULT_RESYNC_INTERVAL_SECONDS),
            pending_requeue_seconds=get_int("PENDING_REQUEUE", DEFAULT_PENDING_REQUEUE_SECONDS),
            update_retry_seconds=get_int("UPDATE_RETRY_REQUEUE", DEFAULT_UPDATE_RETRY_SECONDS),
            max_concurrent_reconciles=get_int(
                "MAX_CONCURRENT_RECONCILES", DEFAULT_MAX_CONCURRENT_RECONCILES
            ),
            drift_fields=get_drift_fields(),
            report_in_sync=get_bool("REPORT_IN_SYNC", False),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
