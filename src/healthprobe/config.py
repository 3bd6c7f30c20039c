"""Configuration loading from a JSON/YAML document plus environment overrides.

Load order:
1. ``.env`` (``--env-file`` or ``./.env``) is loaded into the environment.
2. The document is read from ``--config``, ``$HEALTHPROBE_CONFIG_PATH``,
   ``$CONFIG_PATH`` or ``./config/config.json``; ``.yaml``/``.yml`` files are
   parsed as YAML, everything else as JSON.
3. The document is validated (see ``config_schema``); any problem raises
   ``ConfigError``.
4. Environment overrides are applied. Invalid override values are logged and
   the document value is kept:
   - HEALTHPROBE_CONCURRENCY (or CONCURRENCY)
   - HEALTHPROBE_REQUEST_TIMEOUT_MS (or REQUEST_TIMEOUT_MS)
   - HEALTHPROBE_RETRIES (or RETRIES)
   - HEALTHPROBE_LOG_LEVEL
   - HEALTHPROBE_LOG_JSON

The unprefixed names are accepted for existing deployments; when both forms
are set the HEALTHPROBE_ one is used.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from healthprobe.circuit_breaker import CircuitBreakerConfig
from healthprobe.config_schema import ConfigDocument, EndpointEntry
from healthprobe.models import BackoffConfig, EndpointSpec, StatusRange
from healthprobe.probe import DEFAULT_USER_AGENT, TransportConfig

DEFAULT_CONFIG_PATH = Path("./config/config.json")
CONFIG_PATH_ENV_VAR = "HEALTHPROBE_CONFIG_PATH"
LEGACY_CONFIG_PATH_ENV_VAR = "CONFIG_PATH"

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

_YAML_SUFFIXES = frozenset({".yaml", ".yml"})


class ConfigError(Exception):
    """Raised when the configuration document is missing, unreadable or invalid."""


@dataclass(frozen=True)
class EndpointSettings:
    """One endpoint as configured, before global defaults are applied."""

    url: str
    method: str = "GET"
    timeout_ms: int | None = None
    retries: int | None = None
    status_min: int | None = None
    status_max: int | None = None
    headers: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Config:
    """Validated application configuration.

    This dataclass is frozen (immutable) to prevent accidental modification
    after creation. Durations are kept in the document's units (ms / s) and
    converted to seconds by the accessor methods.
    """

    endpoints: tuple[EndpointSettings, ...] = ()

    # Probing
    request_timeout_ms: int = 5000
    concurrency: int = 8
    retries: int = 0
    user_agent: str = DEFAULT_USER_AGENT

    # Backoff between retries
    base_backoff_ms: int = 200
    max_backoff_ms: int = 5000
    backoff_jitter: bool = False

    # Circuit breaker
    cb_failures_threshold: int = 3
    cb_cooldown_sec: int = 60

    # Modes
    watch_interval_sec: int | None = None
    metrics_log_interval_sec: int | None = None

    # Output
    log_level: str = "INFO"
    json_logging: bool = False
    summary_json: bool = False

    # TLS
    danger_accept_invalid_certs: bool = False
    ca_bundle_path: str | None = None

    @property
    def watch_enabled(self) -> bool:
        return bool(self.watch_interval_sec)

    @property
    def metrics_log_interval(self) -> float | None:
        return float(self.metrics_log_interval_sec) if self.metrics_log_interval_sec else None

    def endpoint_specs(self) -> tuple[EndpointSpec, ...]:
        """Endpoint specs with global defaults filled in."""
        specs = []
        for ep in self.endpoints:
            status_kwargs = {}
            if ep.status_min is not None:
                status_kwargs["min"] = ep.status_min
            if ep.status_max is not None:
                status_kwargs["max"] = ep.status_max
            specs.append(
                EndpointSpec.create(
                    url=ep.url,
                    method=ep.method,
                    timeout=(ep.timeout_ms or self.request_timeout_ms) / 1000,
                    retries=self.retries if ep.retries is None else ep.retries,
                    expected_status=StatusRange(**status_kwargs),
                    headers=dict(ep.headers),
                )
            )
        return tuple(specs)

    def backoff_config(self) -> BackoffConfig:
        return BackoffConfig(
            base=self.base_backoff_ms / 1000,
            max=self.max_backoff_ms / 1000,
            jitter=self.backoff_jitter,
        )

    def breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.cb_failures_threshold,
            cooldown=float(self.cb_cooldown_sec),
        )

    def transport_config(self) -> TransportConfig:
        return TransportConfig(
            user_agent=self.user_agent,
            timeout=self.request_timeout_ms / 1000,
            insecure_skip_verify=self.danger_accept_invalid_certs,
            ca_bundle_path=self.ca_bundle_path,
            max_connections=self.concurrency,
        )


def _parse_positive_int(value: str, name: str, default: int) -> int:
    """Parse a string as a positive integer with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The value to keep if parsing fails.

    Returns:
        The parsed positive integer, or the default if invalid.
    """
    try:
        parsed = int(value)
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using %d", name, value, default
        )
        return default
    if parsed <= 0:
        logging.warning("Invalid %s: %d is not positive, using %d", name, parsed, default)
        return default
    return parsed


def _parse_non_negative_int(value: str, name: str, default: int) -> int:
    """Parse a string as a non-negative integer, keeping ``default`` if invalid."""
    try:
        parsed = int(value)
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using %d", name, value, default
        )
        return default
    if parsed < 0:
        logging.warning("Invalid %s: %d is negative, using %d", name, parsed, default)
        return default
    return parsed


def _parse_bool(value: str) -> bool:
    """True if value is "true", "1", or "yes" (case-insensitive)."""
    return value.lower() in ("true", "1", "yes")


def _validate_log_level(value: str, default: str = "INFO") -> str:
    """Validate and normalize a log level string.

    Args:
        value: The log level string to validate.
        default: The value to use if invalid.

    Returns:
        The validated log level (uppercase), or the default if invalid.
    """
    normalized = value.upper()
    if normalized not in VALID_LOG_LEVELS:
        logging.warning(
            "Invalid log level: '%s' is not valid, using '%s'. Valid values: %s",
            value,
            default,
            ", ".join(sorted(VALID_LOG_LEVELS)),
        )
        return default
    return normalized


def resolve_config_path(cli_path: Path | None = None) -> Path:
    """Pick the config path: CLI flag, then environment, then the default."""
    if cli_path is not None:
        return cli_path
    env_path = os.getenv(CONFIG_PATH_ENV_VAR) or os.getenv(LEGACY_CONFIG_PATH_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _read_document(path: Path) -> dict[str, Any]:
    """Read and parse the raw document.

    Raises:
        ConfigError: If the file is missing, unreadable or not a mapping.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    try:
        if path.suffix.lower() in _YAML_SUFFIXES:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return data


def _format_validation_errors(exc: ValidationError) -> str:
    lines = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "<root>"
        lines.append(f"  {location}: {err['msg']}")
    return "\n".join(lines)


def _endpoint_settings(entry: EndpointEntry) -> EndpointSettings:
    status = entry.expected_status
    return EndpointSettings(
        url=entry.url,
        method=entry.method,
        timeout_ms=entry.timeout_ms,
        retries=entry.retries,
        status_min=status.min if status else None,
        status_max=status.max if status else None,
        headers=tuple(sorted((entry.headers or {}).items())),
    )


def config_from_document(data: dict[str, Any], source: str = "<config>") -> Config:
    """Validate a parsed document and build a Config (without env overrides).

    Raises:
        ConfigError: If the document fails validation.
    """
    try:
        doc = ConfigDocument.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {source}:\n{_format_validation_errors(e)}") from e

    if doc.endpoints is not None:
        endpoints = tuple(_endpoint_settings(entry) for entry in doc.endpoints)
    else:
        endpoints = tuple(EndpointSettings(url=url) for url in doc.endpoints_to_check)

    return Config(
        endpoints=endpoints,
        request_timeout_ms=doc.request_timeout_ms,
        concurrency=doc.concurrency,
        retries=doc.retries,
        user_agent=doc.user_agent or DEFAULT_USER_AGENT,
        base_backoff_ms=doc.base_backoff_ms,
        max_backoff_ms=doc.max_backoff_ms,
        backoff_jitter=doc.backoff_jitter,
        cb_failures_threshold=doc.cb_failures_threshold,
        cb_cooldown_sec=doc.cb_cooldown_sec,
        watch_interval_sec=doc.watch_interval_sec or None,
        metrics_log_interval_sec=doc.metrics_log_interval_sec,
        log_level=_validate_log_level(doc.log_level) if doc.log_level else "INFO",
        json_logging=doc.json_logging,
        summary_json=doc.summary_json,
        danger_accept_invalid_certs=doc.danger_accept_invalid_certs,
        ca_bundle_path=doc.ca_bundle_path,
    )


def _getenv_with_legacy(name: str) -> tuple[str, str | None]:
    """Look up ``HEALTHPROBE_<name>``, falling back to the bare ``<name>``.

    Returns:
        The variable that was found (for messages) and its value.
    """
    prefixed = f"HEALTHPROBE_{name}"
    if value := os.getenv(prefixed):
        return prefixed, value
    return name, os.getenv(name)


def apply_env_overrides(config: Config) -> Config:
    """Apply environment overrides on top of the document values.

    CONCURRENCY, REQUEST_TIMEOUT_MS and RETRIES are also read without the
    HEALTHPROBE_ prefix; the prefixed variable wins when both are set.
    """
    overrides: dict[str, Any] = {}

    name, value = _getenv_with_legacy("CONCURRENCY")
    if value:
        overrides["concurrency"] = _parse_positive_int(value, name, config.concurrency)
    name, value = _getenv_with_legacy("REQUEST_TIMEOUT_MS")
    if value:
        overrides["request_timeout_ms"] = _parse_positive_int(
            value, name, config.request_timeout_ms
        )
    name, value = _getenv_with_legacy("RETRIES")
    if value:
        overrides["retries"] = _parse_non_negative_int(value, name, config.retries)
    if value := os.getenv("HEALTHPROBE_LOG_LEVEL"):
        overrides["log_level"] = _validate_log_level(value, config.log_level)
    if value := os.getenv("HEALTHPROBE_LOG_JSON"):
        overrides["json_logging"] = _parse_bool(value)

    return replace(config, **overrides) if overrides else config


def load_config(path: Path | None = None, env_file: Path | None = None) -> Config:
    """Load configuration from the document and environment.

    Args:
        path: Config document path. Resolved via ``resolve_config_path`` when None.
        env_file: Optional path to a .env file. If not provided, looks for
            .env in the current directory.

    Returns:
        Config with validated values.

    Raises:
        ConfigError: If the document is missing or invalid.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    config_path = resolve_config_path(path)
    data = _read_document(config_path)
    config = config_from_document(data, source=str(config_path))
    return apply_env_overrides(config)
