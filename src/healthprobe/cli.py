"""Command-line interface argument parsing for healthprobe."""

from __future__ import annotations

import argparse
from pathlib import Path


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Optional list of arguments to parse. If None, uses sys.argv.

    Returns:
        Parsed arguments namespace with the following attributes:
        - config: Path to the config document (None = env var or default)
        - print_schema: Print the config JSON schema and exit
        - once: Run a single sweep even if watch mode is configured
        - watch_interval: Watch interval override in seconds
        - log_level: Logging level override
        - env_file: Path to .env file
    """
    parser = argparse.ArgumentParser(
        prog="healthprobe",
        description="Concurrent HTTP endpoint health checker with retries and circuit breaking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to config file (default: $HEALTHPROBE_CONFIG_PATH or ./config/config.json)",
    )

    parser.add_argument(
        "--print-schema",
        action="store_true",
        help="Print the JSON schema of the config file and exit",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit, ignoring watch_interval_sec",
    )

    parser.add_argument(
        "--watch-interval",
        type=int,
        default=None,
        metavar="SEC",
        help="Repeat sweeps every SEC seconds (overrides watch_interval_sec; 0 = once)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides log_level and HEALTHPROBE_LOG_LEVEL)",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: ./.env)",
    )

    return parser.parse_args(args)


__all__ = ["parse_args"]
