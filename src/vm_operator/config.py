"""Provider configuration with validation.

Invalid settings are rejected when the configuration is built, never at the
first lifecycle call. A parallelism ceiling below one would make every
operation wait on the admission gate forever, so it is a configuration error.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from urllib.parse import urlparse


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_MAX_PARALLEL = 4
MAX_MAX_PARALLEL = 256

DEFAULT_HTTP_TIMEOUT_SECONDS = 300
DEFAULT_CREATE_TIMEOUT_SECONDS = 20 * 60  # guest agent wait deadline
DEFAULT_AGENT_POLL_INTERVAL_SECONDS = 5.0

DEFAULT_LOG_FILE = "vm-operator.log"

MAX_SPEC_FILE_SIZE_BYTES = 256 * 1024
MAX_STATE_FILE_SIZE_BYTES = 4 * 1024 * 1024

# Privileges the API token must hold on "/" for every lifecycle operation
MINIMUM_PERMISSIONS: tuple[str, ...] = (
    "Datastore.AllocateSpace",
    "Datastore.Audit",
    "Pool.Allocate",
    "Sys.Audit",
    "Sys.Console",
    "Sys.Modify",
    "VM.Allocate",
    "VM.Audit",
    "VM.Clone",
    "VM.Config.CDROM",
    "VM.Config.Cloudinit",
    "VM.Config.CPU",
    "VM.Config.Disk",
    "VM.Config.HWType",
    "VM.Config.Memory",
    "VM.Config.Network",
    "VM.Config.Options",
    "VM.Migrate",
    "VM.Monitor",
    "VM.PowerMgmt",
)

# Input validation patterns
VALID_TOKEN_ID_PATTERN = r"^[^@!\s]+@[^@!\s]+![A-Za-z][A-Za-z0-9._-]*$"
VALID_LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL")


def parse_log_levels(raw: str) -> dict[str, str]:
    """Parse a ``logger=LEVEL,logger=LEVEL`` string.

    Raises:
        ConfigurationError: If an entry is not a ``key=value`` pair.
    """
    levels: dict[str, str] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, level = item.partition("=")
        if not sep or not name.strip():
            raise ConfigurationError(f"PM_LOG_LEVELS entries must be logger=LEVEL: {item}")
        levels[name.strip()] = level.strip()
    return levels


@dataclass(frozen=True)
class ProviderConfig:
    """Provider configuration loaded from environment variables.

    All fields are validated at construction time. A ProviderConfig is
    shared read-only by every operation of the provider session built from it.
    """

    # Required fields
    api_url: str
    token_id: str
    token_secret: str

    # Transport
    verify_ssl: bool = True
    http_timeout_seconds: int = DEFAULT_HTTP_TIMEOUT_SECONDS

    # Admission control
    max_parallel: int = DEFAULT_MAX_PARALLEL
    gate_timeout_seconds: float | None = None

    # Connection discovery
    create_timeout_seconds: float = DEFAULT_CREATE_TIMEOUT_SECONDS
    agent_poll_interval_seconds: float = DEFAULT_AGENT_POLL_INTERVAL_SECONDS
    discovery_outside_gate: bool = True

    # Read behaviour
    dangerously_ignore_unknown_attributes: bool = False

    # Logging
    log_enable: bool = False
    log_file: str = DEFAULT_LOG_FILE
    log_levels: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.api_url:
            errors.append("PM_API_URL is required")
        else:
            parsed = urlparse(self.api_url)
            if parsed.scheme not in ("http", "https") or not parsed.hostname:
                errors.append(f"PM_API_URL must be an http(s) URL: {self.api_url}")

        if not self.token_id:
            errors.append("PM_API_TOKEN_ID is required")
        elif not re.match(VALID_TOKEN_ID_PATTERN, self.token_id):
            errors.append(
                f"PM_API_TOKEN_ID must look like user@realm!tokenname: {self.token_id}"
            )

        if not self.token_secret:
            errors.append("PM_API_TOKEN_SECRET is required")

        if self.max_parallel < 1:
            errors.append(f"PM_PARALLEL must be at least 1: {self.max_parallel}")
        elif self.max_parallel > MAX_MAX_PARALLEL:
            errors.append(f"PM_PARALLEL cannot exceed {MAX_MAX_PARALLEL}")

        if self.gate_timeout_seconds is not None and self.gate_timeout_seconds <= 0:
            errors.append("PM_GATE_TIMEOUT must be positive when set")

        if self.http_timeout_seconds < 1:
            errors.append("PM_TIMEOUT must be at least 1 second")

        if self.create_timeout_seconds <= 0:
            errors.append("PM_CREATE_TIMEOUT must be positive")

        if self.agent_poll_interval_seconds < 0:
            errors.append("PM_AGENT_POLL_INTERVAL cannot be negative")

        for logger_name, level in self.log_levels.items():
            if not isinstance(level, str) or level.upper() not in VALID_LOG_LEVELS:
                errors.append(f"invalid logging level {level} for {logger_name}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def user_id(self) -> str:
        """Identity that owns the API token (the part before ``!``)."""
        return self.token_id.split("!")[0]

    @property
    def api_host(self) -> str:
        """Host name of the API endpoint."""
        return urlparse(self.api_url).hostname or ""

    @property
    def api_port(self) -> int:
        """Port of the API endpoint, defaulting to the PVE port."""
        return urlparse(self.api_url).port or 8006

    def resolved_log_levels(self) -> dict[str, int]:
        """Map configured logger names to numeric :mod:`logging` levels."""
        resolved: dict[str, int] = {}
        for logger_name, level in self.log_levels.items():
            name = level.upper()
            match name:
                case "TRACE":
                    resolved[logger_name] = logging.DEBUG
                case "WARN":
                    resolved[logger_name] = logging.WARNING
                case _:
                    resolved[logger_name] = logging.getLevelName(name)
        return resolved

    @classmethod
    def from_env(cls) -> ProviderConfig:
        """Load configuration from environment variables.

        Environment Variables:
            PM_API_URL: API endpoint, e.g. https://pve.example.com:8006/api2/json
            PM_API_TOKEN_ID: Token identity, e.g. terraform@pve!ops
            PM_API_TOKEN_SECRET: Token secret
            PM_TLS_INSECURE: If "true", skip TLS verification (default: false)
            PM_TIMEOUT: HTTP timeout in seconds (default: 300)
            PM_PARALLEL: Maximum concurrent lifecycle operations (default: 4)
            PM_GATE_TIMEOUT: Seconds to wait for gate admission (default: unbounded)
            PM_CREATE_TIMEOUT: Guest agent wait deadline in seconds (default: 1200)
            PM_AGENT_POLL_INTERVAL: Seconds between agent polls (default: 5)
            PM_DISCOVERY_OUTSIDE_GATE: Release the gate before discovery (default: true)
            PM_DANGEROUSLY_IGNORE_UNKNOWN_ATTRIBUTES: Accept unknown disk keys on read

        Logging Variables:
            PM_LOG_ENABLE: Also write JSON logs to PM_LOG_FILE (default: false)
            PM_LOG_FILE: Log file path (default: vm-operator.log)
            PM_LOG_LEVELS: Per-logger levels, e.g. "vm_operator.discovery=DEBUG"
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float | None) -> float | None:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            api_url=os.environ.get("PM_API_URL", ""),
            token_id=os.environ.get("PM_API_TOKEN_ID", ""),
            token_secret=os.environ.get("PM_API_TOKEN_SECRET", ""),
            verify_ssl=not get_bool("PM_TLS_INSECURE", False),
            http_timeout_seconds=get_int("PM_TIMEOUT", DEFAULT_HTTP_TIMEOUT_SECONDS),
            max_parallel=get_int("PM_PARALLEL", DEFAULT_MAX_PARALLEL),
            gate_timeout_seconds=get_float("PM_GATE_TIMEOUT", None),
            create_timeout_seconds=get_float(
                "PM_CREATE_TIMEOUT", DEFAULT_CREATE_TIMEOUT_SECONDS
            ),
            agent_poll_interval_seconds=get_float(
                "PM_AGENT_POLL_INTERVAL", DEFAULT_AGENT_POLL_INTERVAL_SECONDS
            ),
            discovery_outside_gate=get_bool("PM_DISCOVERY_OUTSIDE_GATE", True),
            dangerously_ignore_unknown_attributes=get_bool(
                "PM_DANGEROUSLY_IGNORE_UNKNOWN_ATTRIBUTES", False
            ),
            log_enable=get_bool("PM_LOG_ENABLE", False),
            log_file=os.environ.get("PM_LOG_FILE", DEFAULT_LOG_FILE),
            log_levels=parse_log_levels(os.environ.get("PM_LOG_LEVELS", "")),
        )
