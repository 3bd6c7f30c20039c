"""Pydantic models of the configuration document.

The document is JSON or YAML. Either ``endpoints_to_check`` (plain URL list)
or ``endpoints`` (per-endpoint objects) lists the targets; when ``endpoints``
is present it replaces the plain list.

``config_json_schema()`` backs ``healthprobe --print-schema``.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from healthprobe.models import MAX_STATUS_CODE, MIN_STATUS_CODE
from healthprobe.types import HttpMethod

__all__: list[str] = [
    "ConfigDocument",
    "EndpointEntry",
    "ExpectedStatusEntry",
    "config_json_schema",
]


# RFC 9110 token for names; visible ASCII plus space and tab for values.
_HEADER_NAME = re.compile(r"[!#$%&'*+.^_`|~0-9A-Za-z-]+")
_HEADER_VALUE = re.compile(r"[\x20-\x7e\t]*")


def _check_http_url(value: str) -> str:
    value = value.strip()
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"'{value}' is not an absolute http(s) URL")
    return value


class ExpectedStatusEntry(BaseModel):
    """Inclusive status code range. A missing bound keeps its default (200 / 399)."""

    model_config = ConfigDict(extra="forbid")

    min: int | None = Field(default=None, ge=MIN_STATUS_CODE, le=MAX_STATUS_CODE)
    max: int | None = Field(default=None, ge=MIN_STATUS_CODE, le=MAX_STATUS_CODE)

    @model_validator(mode="after")
    def _check_order(self) -> ExpectedStatusEntry:
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"min ({self.min}) must not be greater than max ({self.max})")
        return self


class EndpointEntry(BaseModel):
    """Advanced per-endpoint configuration."""

    model_config = ConfigDict(extra="forbid")

    url: str = Field(..., min_length=1, description="Absolute http(s) URL to probe.")
    method: str = Field(default="GET", description="HTTP method.")
    timeout_ms: int | None = Field(
        default=None, gt=0, description="Request timeout; defaults to request_timeout_ms."
    )
    retries: int | None = Field(default=None, ge=0, description="Defaults to the global retries.")
    expected_status: ExpectedStatusEntry | None = Field(
        default=None, description="Healthy status range; defaults to 200-399."
    )
    headers: dict[str, str] | None = Field(default=None, description="Extra request headers.")

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        return _check_http_url(v)

    @field_validator("method")
    @classmethod
    def _validate_method(cls, v: str) -> str:
        if not HttpMethod.is_valid(v):
            raise ValueError(
                f"unsupported method '{v}'; expected one of {', '.join(m.value for m in HttpMethod)}"
            )
        return v.upper()

    @field_validator("headers")
    @classmethod
    def _validate_headers(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        for name, value in (v or {}).items():
            if not _HEADER_NAME.fullmatch(name):
                raise ValueError(f"header name {name!r} must be an ASCII token")
            if not _HEADER_VALUE.fullmatch(value):
                raise ValueError(f"header {name!r} value must be printable ASCII")
        return v


class ConfigDocument(BaseModel):
    """Top-level configuration document."""

    model_config = ConfigDict(extra="forbid")

    endpoints_to_check: list[str] = Field(
        default_factory=list, description="List of HTTP/HTTPS endpoints to check."
    )
    endpoints: list[EndpointEntry] | None = Field(
        default=None,
        description="Advanced endpoint configs (overrides endpoints_to_check if provided).",
    )
    request_timeout_ms: int = Field(default=5000, gt=0, description="Request timeout in ms.")
    concurrency: int = Field(default=8, ge=1, description="Maximum number of concurrent checks.")
    retries: int = Field(default=0, ge=0, description="Retries per endpoint (0 = no retry).")
    base_backoff_ms: int = Field(default=200, gt=0, description="Base backoff between retries.")
    max_backoff_ms: int = Field(default=5000, gt=0, description="Maximum backoff between retries.")
    backoff_jitter: bool = Field(default=False, description="Randomize backoff delays.")
    user_agent: str | None = Field(default=None, description="User-Agent for outbound requests.")
    log_level: str | None = Field(default=None, description="Log level (e.g. INFO, DEBUG).")
    json_logging: bool = Field(default=False, description="Output logs as JSON.")
    summary_json: bool = Field(
        default=False, description="Print each cycle summary as one JSON line on stdout."
    )
    metrics_log_interval_sec: int | None = Field(
        default=None, ge=1, description="Seconds between cumulative metrics logs (watch mode)."
    )
    watch_interval_sec: int | None = Field(
        default=None, ge=0, description="Run repeatedly with this interval; 0 or unset = once."
    )
    cb_failures_threshold: int = Field(
        default=3, ge=1, description="Consecutive failures before a circuit opens."
    )
    cb_cooldown_sec: int = Field(
        default=60, ge=0, description="Seconds an open circuit waits before a trial probe."
    )
    danger_accept_invalid_certs: bool = Field(
        default=False, description="Accept invalid TLS certificates (dangerous)."
    )
    ca_bundle_path: str | None = Field(default=None, description="Extra PEM CA bundle to trust.")

    @field_validator("endpoints_to_check")
    @classmethod
    def _validate_urls(cls, v: list[str]) -> list[str]:
        return [_check_http_url(url) for url in v]

    @model_validator(mode="after")
    def _check_backoff(self) -> ConfigDocument:
        if self.max_backoff_ms < self.base_backoff_ms:
            raise ValueError(
                f"max_backoff_ms ({self.max_backoff_ms}) must be >= "
                f"base_backoff_ms ({self.base_backoff_ms})"
            )
        return self


def config_json_schema() -> dict[str, Any]:
    """JSON schema of the configuration document."""
    return ConfigDocument.model_json_schema()
