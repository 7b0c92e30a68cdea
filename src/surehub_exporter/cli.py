"""CLI for the SureHub Prometheus exporter."""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from surehub_exporter.app import run_exporter
from surehub_exporter.config import ConfigError, ExporterConfig
from surehub_exporter.core.logging import configure_logging, verbosity_to_level

logger = logging.getLogger(__name__)

__version__ = "0.1.0"


@click.command()
@click.version_option(version=__version__)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase log verbosity and detail by specifying this flag one or more times",
)
@click.option(
    "--listen-address",
    default=None,
    help="[host]:port for the metrics server (default :8080, or $EXPORTER_LISTEN_ADDRESS)",
)
@click.option(
    "--interval",
    "poll_interval_s",
    type=float,
    default=None,
    help="Seconds between poll cycles (default 60, or $SUREHUB_POLL_INTERVAL_S)",
)
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"]),
    default=None,
    help="Log output format (default text, or $EXPORTER_LOG_FORMAT)",
)
def cli(
    verbose: int,
    listen_address: str | None,
    poll_interval_s: float | None,
    log_format: str | None,
) -> None:
    """Export SureHub pet feeder metrics for Prometheus.

    Credentials are read from $SUREHUB_EMAIL and $SUREHUB_PASSWORD.
    """
    try:
        config = ExporterConfig.from_env(
            listen_address=listen_address,
            poll_interval_s=poll_interval_s,
            log_format=log_format,
        )
    except ConfigError as exc:
        click.echo(str(exc), err=True)
        sys.exit(1)

    level = verbosity_to_level(verbose, default=config.log_level)
    configure_logging(level=level, fmt=config.log_format, log_root=config.log_dir)
    logger.info("Startup", extra={"debug": level == "DEBUG", "version": __version__})

    sys.exit(asyncio.run(run_exporter(config)))


if __name__ == "__main__":
    cli()
