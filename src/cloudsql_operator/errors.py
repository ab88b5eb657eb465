"""Exception taxonomy for the operator.

Tool failures carry the captured output of the provisioning CLI so the
message surfaced in the status record is enough to diagnose the failure.
Store failures distinguish optimistic-concurrency conflicts, which are
retried immediately, from everything else.
"""

from __future__ import annotations


class OperatorError(Exception):
    """Base class for all operator errors."""

    pass


class ToolError(OperatorError):
    """Raised when an invocation of the provisioning CLI fails.

    Attributes:
        operation: Verb that was invoked (describe, create, upgrade, delete).
        instance: Instance name the call targeted.
        exit_code: Process exit code, or None if the process never ran.
        output: Captured combined stdout/stderr, already truncated.
    """

    operation = "run"

    def __init__(
        self,
        instance: str,
        reason: str,
        *,
        exit_code: int | None = None,
        output: str = "",
    ) -> None:
        self.instance = instance
        self.reason = reason
        self.exit_code = exit_code
        self.output = output
        message = f"error {self.operation} instance {instance}: {reason}"
        if output:
            message = f"{message}\n{output}"
        super().__init__(message)


class DescribeFailed(ToolError):
    """Describe failed for a reason other than a missing instance."""

    operation = "describing"


class CreateFailed(ToolError):
    """Create returned a non-zero exit."""

    operation = "creating"


class UpdateFailed(ToolError):
    """Update returned a non-zero exit."""

    operation = "updating"


class DeleteFailed(ToolError):
    """Delete returned a non-zero exit."""

    operation = "deleting"


class StoreError(OperatorError):
    """Raised when the record store cannot serve a request."""

    pass


class ConflictError(StoreError):
    """Raised when a write carries a stale resourceVersion."""

    def __init__(self, key: str, expected: int, actual: int) -> None:
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Conflict writing {key}: resourceVersion {expected} is stale (current {actual})"
        )


class RecordNotFoundError(StoreError):
    """Raised when a write targets a record that no longer exists."""

    pass


class RecordLoadError(StoreError):
    """Raised when a stored record cannot be read or fails validation."""

    pass
