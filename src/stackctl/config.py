"""Configuration management with validation.

Configuration is loaded once at the boundary (environment or explicit
construction) and validated immediately, so a bad value fails before any
CloudFormation call is made.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

LOG_FORMATS = ("text", "json")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
MIN_POLL_INTERVAL_SECONDS = 0.01
MAX_POLL_INTERVAL_SECONDS = 300.0

# CloudFormation limits
MAX_STACK_NAME_LENGTH = 128
MAX_TEMPLATE_FILE_SIZE_BYTES = 1024 * 1024  # 1MB, the TemplateURL limit

DEFAULT_CAPABILITIES: tuple[str, ...] = ("CAPABILITY_IAM", "CAPABILITY_NAMED_IAM")

VALID_REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d+$"

# Process-wide poll interval, used only when neither the call options nor the
# Config carry one. Changed through configure().
_default_poll_interval_seconds = DEFAULT_POLL_INTERVAL_SECONDS


def configure(poll_interval_seconds: float) -> None:
    """Set the process-wide default poll interval.

    Raises:
        ConfigurationError: If the interval is out of bounds.
    """
    global _default_poll_interval_seconds
    _validate_poll_interval(poll_interval_seconds)
    _default_poll_interval_seconds = float(poll_interval_seconds)


def default_poll_interval() -> float:
    """Get the process-wide default poll interval in seconds."""
    return _default_poll_interval_seconds


def _validate_poll_interval(value: float) -> None:
    if not (MIN_POLL_INTERVAL_SECONDS <= value <= MAX_POLL_INTERVAL_SECONDS):
        raise ConfigurationError(
            f"Poll interval must be between {MIN_POLL_INTERVAL_SECONDS} "
            f"and {MAX_POLL_INTERVAL_SECONDS} seconds: {value}"
        )


@dataclass(frozen=True)
class Config:
    """Runtime configuration for talking to CloudFormation.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-operation.
    Credential resolution is left entirely to boto3.
    """

    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None
    proxy: str | None = None

    # Polling. None means "use the process-wide default".
    poll_interval_seconds: float | None = None
    poll_timeout_seconds: float | None = None

    # Logging
    log_format: str = "text"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if self.region is not None and not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.region}")

        if self.poll_interval_seconds is not None:
            try:
                _validate_poll_interval(self.poll_interval_seconds)
            except ConfigurationError as e:
                errors.append(str(e))

        if self.poll_timeout_seconds is not None and self.poll_timeout_seconds <= 0:
            errors.append(f"Poll timeout must be positive: {self.poll_timeout_seconds}")

        if self.log_format not in LOG_FORMATS:
            errors.append(f"STACKCTL_LOG_FORMAT must be one of {list(LOG_FORMATS)}: {self.log_format}")

        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"STACKCTL_LOG_LEVEL must be one of {list(LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def effective_poll_interval(self) -> float:
        """Poll interval to use when the call options do not set one."""
        if self.poll_interval_seconds is not None:
            return self.poll_interval_seconds
        return default_poll_interval()

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AWS_REGION / AWS_DEFAULT_REGION: Target region (default: boto3 resolution)
            AWS_PROFILE: Named credentials profile
            STACKCTL_ENDPOINT_URL: Alternative CloudFormation endpoint
            PROXY / https_proxy / http_proxy: HTTPS proxy for API calls
            STACKCTL_POLL_INTERVAL: Seconds between event polls
            STACKCTL_POLL_TIMEOUT: Give up polling after this many seconds
            STACKCTL_LOG_FORMAT: text or json (default: text)
            STACKCTL_LOG_LEVEL: Root log level (default: INFO)
        """

        def get_float(key: str) -> float | None:
            value = os.environ.get(key)
            if not value:
                return None
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        return cls(
            region=os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION"),
            profile=os.environ.get("AWS_PROFILE") or None,
            endpoint_url=os.environ.get("STACKCTL_ENDPOINT_URL") or None,
            proxy=(
                os.environ.get("PROXY")
                or os.environ.get("https_proxy")
                or os.environ.get("http_proxy")
                or None
            ),
            poll_interval_seconds=get_float("STACKCTL_POLL_INTERVAL"),
            poll_timeout_seconds=get_float("STACKCTL_POLL_TIMEOUT"),
            log_format=os.environ.get("STACKCTL_LOG_FORMAT", "text").lower(),
            log_level=os.environ.get("STACKCTL_LOG_LEVEL", "INFO").upper(),
        )
