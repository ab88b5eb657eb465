"""Tests for drift detection."""

import pytest

from cloudsql_operator.drift import (
    DEFAULT_DRIFT_FIELDS,
    DriftField,
    drift_report,
    needs_update,
)
from cloudsql_operator.models import InstanceSpec, ObservedInstance


@pytest.fixture
def spec() -> InstanceSpec:
    return InstanceSpec(
        project_id="p1",
        instance_name="db1",
        region="us-east1",
        database_version="POSTGRES_14",
        tier="db-f1-micro",
    )


def observed(**overrides: str) -> ObservedInstance:
    data = {
        "name": "db1",
        "region": "us-east1",
        "databaseVersion": "POSTGRES_14",
        "state": "RUNNABLE",
        "settings": {"tier": "db-f1-micro"},
        "ipAddresses": [{"ipAddress": "10.0.0.5"}],
    }
    tier = overrides.pop("tier", None)
    if tier is not None:
        data["settings"] = {"tier": tier}
    data.update(overrides)
    return ObservedInstance.model_validate(data)


class TestNeedsUpdate:
    """Tests for needs_update()."""

    def test_in_sync(self, spec: InstanceSpec) -> None:
        """Matching version and tier need no update."""
        assert needs_update(spec, observed()) is False

    def test_version_mismatch(self, spec: InstanceSpec) -> None:
        """A different database version is drift."""
        assert needs_update(spec, observed(databaseVersion="POSTGRES_13")) is True

    def test_tier_mismatch(self, spec: InstanceSpec) -> None:
        """A different tier is drift."""
        assert needs_update(spec, observed(tier="db-custom-2-7680")) is True

    def test_region_not_compared_by_default(self, spec: InstanceSpec) -> None:
        """Region is outside the default allow-list."""
        assert DriftField.REGION not in DEFAULT_DRIFT_FIELDS
        assert needs_update(spec, observed(region="europe-west1")) is False

    def test_region_compared_when_configured(self, spec: InstanceSpec) -> None:
        """Region counts once it is on the allow-list."""
        fields = (*DEFAULT_DRIFT_FIELDS, DriftField.REGION)
        assert needs_update(spec, observed(region="europe-west1"), fields) is True

    def test_server_generated_fields_ignored(self, spec: InstanceSpec) -> None:
        """IP addresses and other describe fields never count as drift."""
        assert needs_update(spec, observed(ipAddresses=[], name="renamed")) is False

    def test_zero_valued_observation_is_drift(self, spec: InstanceSpec) -> None:
        """Missing observed data is never reported as in sync."""
        assert needs_update(spec, ObservedInstance()) is True

    def test_deterministic(self, spec: InstanceSpec) -> None:
        """Repeated calls give the same answer and do not mutate inputs."""
        current = observed(databaseVersion="POSTGRES_13")
        before = current.model_dump()

        assert needs_update(spec, current) == needs_update(spec, current)
        assert current.model_dump() == before


class TestDriftReport:
    """Tests for drift_report()."""

    def test_lists_every_mismatch(self, spec: InstanceSpec) -> None:
        report = drift_report(spec, observed(databaseVersion="POSTGRES_13", tier="db-g1-small"))

        assert report == {
            "databaseVersion": {"desired": "POSTGRES_14", "observed": "POSTGRES_13"},
            "tier": {"desired": "db-f1-micro", "observed": "db-g1-small"},
        }

    def test_empty_when_in_sync(self, spec: InstanceSpec) -> None:
        assert drift_report(spec, observed()) == {}
