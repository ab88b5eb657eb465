"""Projection of observed instance state into the status sub-record."""

from __future__ import annotations

from dataclasses import dataclass

from .models import InstanceStatus, ObservedInstance, Phase

MESSAGE_CREATED = "Instance created"
MESSAGE_UPDATED = "Instance updated"
MESSAGE_OPERATIONAL = "Instance is fully operational."
MESSAGE_IN_SYNC = "Instance in sync"


@dataclass(frozen=True)
class Classification:
    """Phase decision for one observed lifecycle label."""

    phase: Phase
    message: str
    requeue_after: float | None = None

    @property
    def operational(self) -> bool:
        return self.phase is Phase.READY


def project_observed(status: InstanceStatus, observed: ObservedInstance) -> None:
    """Copy observed version, state and first IP address into the status.

    A zero-valued observation clears the fields, so missing data stays
    visible in the status instead of leaving the previous values in place.
    """
    status.observed_version = observed.database_version
    status.observed_state = observed.state
    status.observed_ip_address = observed.first_ip_address


def classify(observed: ObservedInstance, pending_requeue_seconds: int) -> Classification:
    """Map a lifecycle label to a phase, message and requeue hint."""
    if observed.is_transient:
        return Classification(
            phase=Phase.PENDING,
            message=(
                f"Instance is in {observed.state} state; "
                f"re-checking in {pending_requeue_seconds}s."
            ),
            requeue_after=float(pending_requeue_seconds),
        )
    if observed.is_runnable:
        return Classification(phase=Phase.READY, message=MESSAGE_OPERATIONAL)
    return Classification(phase=Phase.ERROR, message=f"Unexpected instance state: {observed.state}")


def set_phase(status: InstanceStatus, phase: Phase, message: str) -> None:
    """Set phase and message together; a phase never changes without a message."""
    status.phase = phase
    status.message = message
