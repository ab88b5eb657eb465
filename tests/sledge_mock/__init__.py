"""Sledge CLI Mock for Integration Testing.

Provides a fake sledge executable so the invoker's subprocess handling,
argument building and output classification are exercised for real.

Key Features:
- Stateful instances (create, upgrade and delete change what describe returns)
- Failure injection per verb, including hangs for cancellation tests
- Recorded invocations for exact argument assertions

Usage:
    from sledge_mock import MockSledge

    sledge = MockSledge(tmp_path / "bin")
    sledge.set_instance("db1", state="RUNNABLE")
    ...
    assert [c.verb for c in sledge.calls] == ["describe"]
"""

from .cli import MockCall, MockSledge

__all__ = [
    "MockCall",
    "MockSledge",
]
