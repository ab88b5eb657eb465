"""Invocation of the external provisioning CLI (sledge).

Every operation is a single out-of-process call with stdout and stderr
captured as one stream. Operations never retry; retry is expressed by the
reconciler through requeue delays.

The CLI has no structured error taxonomy. The only place that inspects its
output text to tell "instance does not exist" from other failures is
classify_describe_failure(); everything downstream consumes the tagged
DescribeResult instead.

Cancellation: if the awaiting task is cancelled, the child process is
killed and reaped before CancelledError propagates.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from .config import Config
from .errors import CreateFailed, DeleteFailed, DescribeFailed, ToolError, UpdateFailed
from .models import InstanceSpec, ObservedInstance

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "...(truncated)\n"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one CLI process."""

    args: tuple[str, ...]
    exit_code: int
    output: str


@dataclass(frozen=True)
class Found:
    """Describe succeeded.

    parse_error is set when the output was not a valid describe document;
    observed is then zero-valued.
    """

    observed: ObservedInstance
    raw_output: str
    parse_error: str | None = None


@dataclass(frozen=True)
class NotFound:
    """Describe reported that the instance does not exist."""

    detail: str


@dataclass(frozen=True)
class Failed:
    """Describe failed for any other reason."""

    error: DescribeFailed


DescribeResult = Found | NotFound | Failed


def truncate_output(output: str, limit: int) -> str:
    """Keep the tail of the output, where CLI errors are usually printed."""
    if len(output) <= limit:
        return output
    return TRUNCATION_MARKER + output[-limit:]


def classify_describe_failure(output: str, not_found_patterns: tuple[str, ...]) -> bool:
    """Decide whether a failed describe means the instance does not exist.

    With no patterns configured every failed describe is treated as not
    found, which is the contract of the sledge CLI. With patterns, only
    output containing one of them (case-insensitive) is.
    """
    if not not_found_patterns:
        return True
    lowered = output.lower()
    return any(pattern.lower() in lowered for pattern in not_found_patterns)


def parse_describe_output(raw: str) -> tuple[ObservedInstance, str | None]:
    """Parse describe JSON into an ObservedInstance.

    Returns:
        (observed, None) on success, (zero-valued instance, reason) otherwise.
    """
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        return ObservedInstance(), f"invalid JSON: {e}"

    if not isinstance(data, dict):
        return ObservedInstance(), f"expected a JSON object, got {type(data).__name__}"

    try:
        return ObservedInstance.model_validate(data), None
    except ValidationError as e:
        return ObservedInstance(), f"unexpected describe document: {e.error_count()} errors"


class SledgeInvoker:
    """Runs describe, create, update and delete against the provisioning CLI."""

    def __init__(self, config: Config) -> None:
        self._binary = config.sledge_binary
        self._update_verb = config.update_verb
        self._timeout = config.command_timeout_seconds or None
        self._output_limit = config.output_limit
        self._not_found_patterns = config.not_found_patterns

    async def describe(self, project_id: str, instance_name: str) -> DescribeResult:
        """Fetch the current state of an instance."""
        flags = [f"--project={project_id}", f"--instance={instance_name}"]
        try:
            result = await self._run("describe", flags)
        except (OSError, TimeoutError) as e:
            error = DescribeFailed(instance_name, self._launch_reason(e))
            logger.error(
                "sledge describe could not run",
                extra={"instance": instance_name, "error": str(error)},
            )
            return Failed(error)

        if result.exit_code != 0:
            error = DescribeFailed(
                instance_name,
                f"exit status {result.exit_code}",
                exit_code=result.exit_code,
                output=truncate_output(result.output, self._output_limit),
            )
            not_found = classify_describe_failure(result.output, self._not_found_patterns)
            logger.info(
                "sledge describe failed",
                extra={
                    "instance": instance_name,
                    "exit_code": result.exit_code,
                    "not_found": not_found,
                    "output": error.output,
                },
            )
            if not_found:
                return NotFound(str(error))
            return Failed(error)

        logger.info(
            "sledge describe output",
            extra={
                "instance": instance_name,
                "output": truncate_output(result.output, self._output_limit),
            },
        )
        observed, parse_error = parse_describe_output(result.output)
        if parse_error is not None:
            logger.warning(
                "Failed to parse sledge describe output",
                extra={"instance": instance_name, "error": parse_error},
            )
        return Found(observed=observed, raw_output=result.output, parse_error=parse_error)

    async def create(self, spec: InstanceSpec) -> None:
        """Create an instance with every desired-state field.

        Raises:
            CreateFailed: If the CLI exits non-zero or cannot run.
        """
        flags = [
            f"--project={spec.project_id}",
            f"--instance={spec.instance_name}",
            f"--region={spec.region}",
            f"--dbVersion={spec.database_version}",
            f"--tier={spec.tier}",
        ]
        await self._invoke("create", flags, spec.instance_name, CreateFailed)

    async def update(self, spec: InstanceSpec) -> None:
        """Converge version and tier of an existing instance.

        Raises:
            UpdateFailed: If the CLI exits non-zero or cannot run.
        """
        flags = [
            f"--project={spec.project_id}",
            f"--instance={spec.instance_name}",
            f"--dbVersion={spec.database_version}",
            f"--tier={spec.tier}",
        ]
        await self._invoke(self._update_verb, flags, spec.instance_name, UpdateFailed)

    async def delete(self, project_id: str, instance_name: str) -> None:
        """Delete an instance.

        Raises:
            DeleteFailed: If the CLI exits non-zero or cannot run.
        """
        flags = [f"--project={project_id}", f"--instance={instance_name}"]
        await self._invoke("delete", flags, instance_name, DeleteFailed)

    async def _invoke(
        self,
        verb: str,
        flags: list[str],
        instance_name: str,
        error_cls: type[ToolError],
    ) -> None:
        try:
            result = await self._run(verb, flags)
        except (OSError, TimeoutError) as e:
            raise error_cls(instance_name, self._launch_reason(e)) from e

        output = truncate_output(result.output, self._output_limit)
        if result.exit_code != 0:
            logger.error(
                f"sledge {verb} failed",
                extra={"instance": instance_name, "exit_code": result.exit_code, "output": output},
            )
            raise error_cls(
                instance_name,
                f"exit status {result.exit_code}",
                exit_code=result.exit_code,
                output=output,
            )

        logger.info(f"sledge {verb} output", extra={"instance": instance_name, "output": output})

    async def _run(self, verb: str, flags: list[str]) -> CommandResult:
        """Run one CLI process to completion.

        Raises:
            OSError: If the binary cannot be started.
            TimeoutError: If a timeout is configured and exceeded.
        """
        args = (self._binary, verb, *flags)
        logger.debug("Running sledge", extra={"command": list(args)})

        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            if self._timeout is None:
                stdout, _ = await process.communicate()
            else:
                stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except (asyncio.CancelledError, TimeoutError):
            await _terminate(process)
            raise

        return CommandResult(
            args=args,
            exit_code=process.returncode if process.returncode is not None else -1,
            output=stdout.decode("utf-8", errors="replace") if stdout else "",
        )

    def _launch_reason(self, error: Exception) -> str:
        if isinstance(error, TimeoutError):
            return f"timed out after {self._timeout}s"
        return f"could not run {self._binary}: {error}"


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill a child process and wait for it to exit."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()
