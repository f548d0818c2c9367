"""Main entry point for the cluster configure job.

The job runs once per pod start. It reads the mounted configuration bundle,
connects to the control plane and runs the fixed list of sync steps. Every
step is idempotent, so the job can be re-run from the top at any time.

Exit codes:
    0: every step succeeded or was skipped
    1: configuration error, client setup failure, or a failed step
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path

import click

from .bootstrap import connect_clients
from .config import Config, ConfigurationError
from .loader import ConfigLoader, ConfigLoadError
from .pipeline import run_pipeline
from .steps import SYNC_STEPS

# Attributes every LogRecord has; anything else came in through extra=
_RESERVED_RECORD_ATTRS = frozenset(
    (
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
    )
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
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if isinstance(handler.formatter, JsonFormatter):
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the HTTP stack
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def main(config: Config) -> int:
    """Run every sync step against the configured cluster.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    logger = logging.getLogger(__name__)
    logger.info(
        "Starting cluster configuration",
        extra={"config_root": str(config.config_root), "address": config.base_url},
    )

    if not config.config_root.exists():
        logger.warning(
            "Config root does not exist, every step will be skipped",
            extra={"config_root": str(config.config_root)},
        )

    loader = ConfigLoader(config.config_root)

    try:
        clients = connect_clients(config, loader)
    except (ConfigLoadError, ConfigurationError) as e:
        logger.error("Failed to set up control-plane clients", extra={"error": str(e)})
        return 1

    try:
        result = await run_pipeline(SYNC_STEPS, clients.context(loader))
    finally:
        await clients.close()

    if not result.success:
        failed = result.failed_step
        logger.error(
            "Cluster configuration failed",
            extra={"step": failed.name if failed else None},
        )
        return 1

    return 0


@click.command(name="configure")
@click.option(
    "--config-root",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Configuration bundle directory (overrides CONFIG_ROOT).",
)
@click.option(
    "--address",
    default=None,
    help="Control-plane address (overrides PACHD_ADDRESS).",
)
@click.option(
    "--list-steps",
    is_flag=True,
    help="Print the sync steps in execution order and exit.",
)
def run(config_root: Path | None, address: str | None, list_steps: bool) -> None:
    """Configure a cluster by syncing it with a mounted configuration bundle."""
    if list_steps:
        for index, step in enumerate(SYNC_STEPS, start=1):
            click.echo(f"{index:2d}. {step.name}")
        return

    try:
        config = Config.from_env()
        overrides: dict[str, object] = {}
        if config_root is not None:
            overrides["config_root"] = config_root
        if address is not None:
            overrides["address"] = address
        if overrides:
            config = replace(config, **overrides)
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        sys.exit(1)

    setup_logging(config.log_level)
    sys.exit(asyncio.run(main(config)))


if __name__ == "__main__":
    run()
