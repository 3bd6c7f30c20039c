"""Application entry point for healthprobe.

This module ties configuration, logging, signal handling and the cycle
orchestrator together and maps the outcome to a process exit status:

- 0: every endpoint passed (skips allowed), or watch mode ended by a signal
- 1: at least one endpoint failed in one-shot mode
- 2: configuration error
"""

from __future__ import annotations

import argparse
import json
import ssl
import sys
from dataclasses import replace

from healthprobe.cli import parse_args
from healthprobe.config import Config, ConfigError, load_config
from healthprobe.config_schema import config_json_schema
from healthprobe.logging import get_logger, setup_logging
from healthprobe.models import CycleSummary
from healthprobe.orchestrator import CycleOrchestrator
from healthprobe.shutdown import create_shutdown_handler

logger = get_logger(__name__)

EXIT_CONFIG_ERROR = 2


def print_summary_json(summary: CycleSummary) -> None:
    """Write one cycle summary as a single JSON line on stdout."""
    print(json.dumps(summary.to_dict(), sort_keys=True), flush=True)


def apply_cli_overrides(config: Config, parsed: argparse.Namespace) -> Config:
    """Apply command-line overrides on top of the loaded configuration.

    Raises:
        ConfigError: If ``--watch-interval`` is negative.
    """
    overrides: dict[str, object] = {}
    if parsed.log_level:
        overrides["log_level"] = parsed.log_level
    if parsed.watch_interval is not None:
        if parsed.watch_interval < 0:
            raise ConfigError(
                f"--watch-interval must be >= 0, got {parsed.watch_interval}"
            )
        overrides["watch_interval_sec"] = parsed.watch_interval or None
    if parsed.once:
        overrides["watch_interval_sec"] = None
    return replace(config, **overrides) if overrides else config


def run_once_mode(orchestrator: CycleOrchestrator) -> int:
    """Run a single sweep.

    Returns:
        Exit code: 0 if no endpoint failed, 1 otherwise.
    """
    summary = orchestrator.run_once()
    logger.info(
        "Completed: %d/%d up, %d skipped",
        summary.succeeded,
        summary.total,
        summary.skipped,
    )
    return CycleOrchestrator.exit_code(summary)


def run_watch_mode(orchestrator: CycleOrchestrator, interval: float) -> int:
    """Run sweeps until a shutdown signal arrives.

    Returns:
        Exit code: always 0; endpoint failures are reported, not fatal.
    """
    orchestrator.run_watch(interval)
    return 0


def run_application(config: Config) -> int:
    """Build the orchestrator from ``config`` and run the configured mode.

    Args:
        config: Validated configuration, CLI overrides applied.

    Returns:
        Exit code for the application.
    """
    on_summary = print_summary_json if config.summary_json else None
    try:
        orchestrator = CycleOrchestrator.from_config(config, on_summary=on_summary)
    except (OSError, ssl.SSLError) as e:
        logger.error("Failed to set up HTTP client: %s", e)
        return EXIT_CONFIG_ERROR

    # Signals also cut one-shot retries and backoff short.
    create_shutdown_handler(orchestrator.request_shutdown)
    try:
        if config.watch_enabled:
            assert config.watch_interval_sec is not None
            return run_watch_mode(orchestrator, float(config.watch_interval_sec))
        return run_once_mode(orchestrator)
    finally:
        orchestrator.close()


def main(args: list[str] | None = None) -> int:
    """Main entry point for the application.

    Args:
        args: Optional list of command-line arguments.

    Returns:
        Exit code for the application.
    """
    parsed = parse_args(args)

    if parsed.print_schema:
        print(json.dumps(config_json_schema(), indent=2))
        return 0

    try:
        config = apply_cli_overrides(load_config(parsed.config, parsed.env_file), parsed)
    except ConfigError as e:
        setup_logging(parsed.log_level or "INFO")
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG_ERROR

    setup_logging(config.log_level, json_format=config.json_logging)
    logger.info("Loaded configuration with %d endpoint(s)", len(config.endpoints))
    return run_application(config)


if __name__ == "__main__":
    sys.exit(main())
