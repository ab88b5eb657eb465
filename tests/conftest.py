"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for sledge_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from cloudsql_operator.config import Config  # noqa: E402
from cloudsql_operator.models import CloudSQLInstance, Finalizer  # noqa: E402
from sledge_mock import MockSledge  # noqa: E402


def make_record(
    name: str = "db1",
    *,
    namespace: str = "default",
    finalizers: list[str] | None = None,
    database_version: str = "POSTGRES_14",
    tier: str = "db-f1-micro",
    region: str = "us-east1",
    project_id: str = "p1",
) -> CloudSQLInstance:
    """Build a desired-state record with the end-to-end defaults."""
    return CloudSQLInstance.model_validate(
        {
            "metadata": {
                "name": name,
                "namespace": namespace,
                "finalizers": finalizers or [],
            },
            "spec": {
                "projectID": project_id,
                "instanceName": name,
                "region": region,
                "databaseVersion": database_version,
                "tier": tier,
            },
        }
    )


def make_finalized_record(name: str = "db1", **kwargs) -> CloudSQLInstance:
    """Build a record that already carries the cleanup finalizer."""
    return make_record(name, finalizers=[Finalizer.CLEANUP.value], **kwargs)


@pytest.fixture
def sledge(tmp_path: Path) -> MockSledge:
    """Fake sledge CLI installed in a temporary directory."""
    return MockSledge(tmp_path / "bin")


@pytest.fixture
def config(tmp_path: Path, sledge: MockSledge) -> Config:
    """Operator configuration pointing at the fake CLI."""
    store_dir = tmp_path / "records"
    store_dir.mkdir()
    return Config(sledge_binary=str(sledge.binary), store_dir=store_dir)
