"""Per-pass provenance records for audit.

Every reconciliation pass is stamped with one record answering:
- "What did the operator decide for this resource at time T?"
- "Which operator version and record revision was it looking at?"
- "What failed, and what is scheduled next?"
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
OPERATOR_VERSION = os.environ.get("OPERATOR_VERSION", "dev")


@dataclass
class ReconcileProvenance:
    """Provenance record for one reconciliation pass."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    key: str = ""
    operator_version: str = OPERATOR_VERSION
    operator_instance_id: str = ""

    # Record revision the pass worked from
    generation: int = 0
    resource_version: int = 0

    # Outcome
    phase: str | None = None
    action: str = "none"
    requeue_after: float | None = None
    duration_seconds: float = 0.0

    # Error tracking
    error: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Logs provenance records through the structured logger."""

    def __init__(self) -> None:
        self._instance_id = os.environ.get("HOSTNAME", "")

    def create_provenance(self, key: str) -> ReconcileProvenance:
        """Create a new provenance record for a pass over one resource."""
        return ReconcileProvenance(
            key=key,
            operator_version=OPERATOR_VERSION,
            operator_instance_id=self._instance_id,
        )

    def log_provenance(self, provenance: ReconcileProvenance) -> None:
        """Log a completed provenance record.

        Passes that returned an error are logged at ERROR so they stand out
        from routine resyncs.
        """
        log_level = logging.ERROR if provenance.error else logging.INFO

        logger.log(
            log_level,
            "Reconciliation provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "key": provenance.key,
                "phase": provenance.phase,
                "action": provenance.action,
                "requeue_after": provenance.requeue_after,
                "operator_version": provenance.operator_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )


# Global singleton for provenance logging
_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
