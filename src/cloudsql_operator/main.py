"""Main entry point for the CloudSQL instance operator."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from .config import Config, ConfigurationError
from .controller import Controller
from .reconciler import Reconciler
from .store import YamlFileStore

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging with JSON output on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    logging.getLogger("asyncio").setLevel(logging.WARNING)


def build_controller(config: Config) -> Controller:
    """Wire the file store, reconciler and controller for a configuration."""
    store = YamlFileStore(config.store_dir)
    reconciler = Reconciler(config, store)
    return Controller(config, reconciler)


async def main() -> int:
    """Run the operator.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.log_level)
    logger.info(
        "Starting CloudSQL instance operator",
        extra={
            "store_dir": str(config.store_dir),
            "namespace": config.namespace,
            "sledge_binary": config.sledge_binary,
            "drift_fields": [f.value for f in config.drift_fields],
        },
    )

    controller = build_controller(config)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        controller.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await controller.run()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Operator stopped")
    return 0


def run() -> None:
    """Entry point for running the operator process."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
