"""Drift detection between desired and observed instance configuration.

Only fields on an explicit allow-list are compared. Server-generated or
externally managed fields in the describe output (IP addresses, backup
settings, maintenance windows) never cause an update.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from enum import Enum

from .models import InstanceSpec, ObservedInstance


class DriftField(str, Enum):
    """Fields the operator enforces on the external instance."""

    DATABASE_VERSION = "databaseVersion"
    TIER = "tier"
    REGION = "region"


DEFAULT_DRIFT_FIELDS: tuple[DriftField, ...] = (DriftField.DATABASE_VERSION, DriftField.TIER)

_ACCESSORS: dict[
    DriftField,
    tuple[Callable[[InstanceSpec], str], Callable[[ObservedInstance], str]],
] = {
    DriftField.DATABASE_VERSION: (
        lambda spec: spec.database_version,
        lambda observed: observed.database_version,
    ),
    DriftField.TIER: (lambda spec: spec.tier, lambda observed: observed.tier),
    DriftField.REGION: (lambda spec: spec.region, lambda observed: observed.region),
}


def field_values(field: DriftField, spec: InstanceSpec, observed: ObservedInstance) -> tuple[str, str]:
    """Return (desired, observed) values of one compared field."""
    desired_of, observed_of = _ACCESSORS[field]
    return desired_of(spec), observed_of(observed)


def needs_update(
    spec: InstanceSpec,
    observed: ObservedInstance,
    fields: Iterable[DriftField] = DEFAULT_DRIFT_FIELDS,
) -> bool:
    """Check whether the observed instance differs from the desired spec.

    Args:
        spec: Desired configuration.
        observed: Configuration reported by the last describe.
        fields: Comparison allow-list, checked in order.

    Returns:
        True on the first mismatching field.
    """
    for field in fields:
        desired, actual = field_values(field, spec, observed)
        if desired != actual:
            return True
    return False


def drift_report(
    spec: InstanceSpec,
    observed: ObservedInstance,
    fields: Iterable[DriftField] = DEFAULT_DRIFT_FIELDS,
) -> dict[str, dict[str, str]]:
    """Describe every mismatching field, for logging."""
    report: dict[str, dict[str, str]] = {}
    for field in fields:
        desired, actual = field_values(field, spec, observed)
        if desired != actual:
            report[field.value] = {"desired": desired, "observed": actual}
    return report
