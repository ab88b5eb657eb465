"""Mock sledge CLI for integration testing.

Installs a fake sledge executable in a temporary directory. Tests seed
instances, inject failures and read back the exact invocations.
"""

from __future__ import annotations

import json
import stat
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .script import SCRIPT_TEMPLATE


@dataclass(frozen=True)
class MockCall:
    """One recorded invocation of the fake CLI."""

    verb: str
    args: list[str]
    flags: dict[str, str] = field(default_factory=dict)


class MockSledge:
    """Fake provisioning CLI backed by a JSON scenario file.

    Usage:
        sledge = MockSledge(tmp_path)
        sledge.set_instance("db1", state="RUNNABLE", database_version="POSTGRES_14")
        config = Config(sledge_binary=str(sledge.binary), ...)

        # ... run the invoker or reconciler ...

        assert sledge.calls_for("create") == []
    """

    def __init__(self, directory: Path, *, update_verb: str = "upgrade") -> None:
        """Write the executable and an empty scenario.

        Args:
            directory: Directory to install into (created if missing).
            update_verb: Verb the fake accepts for in-place updates.
        """
        directory.mkdir(parents=True, exist_ok=True)
        self._directory = directory
        self._binary = directory / "sledge"
        self._scenario_path = directory / "scenario.json"
        self._calls_path = directory / "calls.jsonl"

        self._binary.write_text(SCRIPT_TEMPLATE.format(python=sys.executable), encoding="utf-8")
        self._binary.chmod(self._binary.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

        self._write({"instances": {}, "failures": {}, "update_verb": update_verb})

    @property
    def binary(self) -> Path:
        return self._binary

    # -------------------------------------------------------------------------
    # Scenario setup
    # -------------------------------------------------------------------------

    def set_instance(
        self,
        name: str,
        *,
        state: str = "RUNNABLE",
        database_version: str = "POSTGRES_14",
        tier: str = "db-f1-micro",
        region: str = "us-east1",
        ip_addresses: list[str] | None = None,
    ) -> None:
        """Seed or replace an instance returned by describe."""
        scenario = self._read()
        scenario["instances"][name] = {
            "name": name,
            "region": region,
            "databaseVersion": database_version,
            "state": state,
            "settings": {"tier": tier, "backupConfiguration": {"enabled": True}},
            "ipAddresses": [{"type": "PRIMARY", "ipAddress": ip} for ip in ip_addresses or []],
        }
        self._write(scenario)

    def set_state(self, name: str, state: str) -> None:
        """Change the lifecycle label of an existing instance."""
        scenario = self._read()
        scenario["instances"][name]["state"] = state
        self._write(scenario)

    def set_raw_describe(self, output: str | None) -> None:
        """Make describe print this text instead of the instance document."""
        scenario = self._read()
        scenario["raw_describe"] = output
        self._write(scenario)

    def set_create_state(self, state: str) -> None:
        """Lifecycle label given to instances created through the CLI."""
        scenario = self._read()
        scenario["create_state"] = state
        self._write(scenario)

    def fail(self, verb: str, *, exit_code: int = 1, output: str = "", sleep: float = 0) -> None:
        """Make every call of a verb fail (or hang for `sleep` seconds first)."""
        scenario = self._read()
        scenario["failures"][verb] = {"exit_code": exit_code, "output": output, "sleep": sleep}
        self._write(scenario)

    def recover(self, verb: str) -> None:
        """Remove an injected failure."""
        scenario = self._read()
        scenario["failures"].pop(verb, None)
        self._write(scenario)

    # -------------------------------------------------------------------------
    # Assertions
    # -------------------------------------------------------------------------

    def instance(self, name: str) -> dict[str, Any] | None:
        """Current fake state of an instance, or None if it does not exist."""
        return self._read()["instances"].get(name)

    @property
    def calls(self) -> list[MockCall]:
        """Every invocation, in order."""
        if not self._calls_path.exists():
            return []
        lines = self._calls_path.read_text(encoding="utf-8").splitlines()
        return [MockCall(**json.loads(line)) for line in lines if line]

    def calls_for(self, verb: str) -> list[MockCall]:
        return [call for call in self.calls if call.verb == verb]

    def mutating_calls(self) -> list[MockCall]:
        """Every call other than describe."""
        return [call for call in self.calls if call.verb != "describe"]

    def reset_calls(self) -> None:
        self._calls_path.unlink(missing_ok=True)

    def _read(self) -> dict[str, Any]:
        return json.loads(self._scenario_path.read_text(encoding="utf-8"))

    def _write(self, scenario: dict[str, Any]) -> None:
        self._scenario_path.write_text(json.dumps(scenario), encoding="utf-8")
