"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Configuration of one coordinator node.

- Loaded from environment (and .env) by from_env()
- validate() returns every problem at once
- Timing relations the election depends on are checked here

============================================================
"""

import getpass
import os
import socket
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from booking.types import SystemCode
from core.exceptions import ConfigurationError, InvalidConfigError
from election.coordinator import DEFAULT_LOCK_NAME


LOG_FORMATS = ("json", "text")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidConfigError(name, raw, "must be a number") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidConfigError(name, raw, "must be an integer") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class CoordinatorConfig:
    """Configuration for a coordinator node."""

    # Database
    database_url: Optional[str] = None
    """SQLAlchemy URL of the shared database."""

    # Identity
    user_name: str = ""
    """User this instance runs as (presence, priority, lease holder)."""

    machine_name: str = ""
    """Machine this instance runs on."""

    # Election
    lock_name: str = DEFAULT_LOCK_NAME
    """Name of the master lease row."""

    lease_ttl_seconds: float = 30
    """Lease lifetime written on every acquire or renew."""

    presence_ttl_seconds: float = 30
    """Heartbeat freshness window."""

    heartbeat_interval_seconds: float = 10
    """Interval between presence heartbeats."""

    election_interval_seconds: float = 12
    """Interval between election ticks."""

    election_initial_delay_seconds: float = 2
    """Delay before the first election tick."""

    election_failure_threshold: int = 2
    """Consecutive failed ticks before a master demotes."""

    # Ingestion
    mx3_response_folder: Optional[str] = None
    """Folder MX3 writes answer files to."""

    calypso_response_folder: Optional[str] = None
    """Folder Calypso writes acknowledgement files to."""

    response_poll_interval_seconds: float = 2
    """Interval between response folder polls."""

    file_settle_seconds: float = 1
    """Minimum file age before a response is read."""

    # Audit
    log_workflow_mastership: bool = True
    """Write MasterAcquired / MasterReleased workflow events."""

    # Logging
    log_level: str = "INFO"
    """Logging level."""

    log_format: str = "json"
    """Log output format: json or text."""

    def __post_init__(self) -> None:
        if not self.user_name:
            self.user_name = getpass.getuser()
        if not self.machine_name:
            self.machine_name = socket.gethostname()

    @property
    def node_id(self) -> str:
        return f"{self.user_name}@{self.machine_name}"

    @property
    def response_folders(self) -> Dict[SystemCode, Optional[str]]:
        return {
            SystemCode.MX3: self.mx3_response_folder,
            SystemCode.CALYPSO: self.calypso_response_folder,
        }

    @classmethod
    def from_env(cls) -> "CoordinatorConfig":
        """
        Load configuration from environment variables.

        Raises:
            InvalidConfigError: A numeric variable does not parse
        """
        load_dotenv()
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            user_name=os.getenv("BLOTTER_USER", ""),
            machine_name=os.getenv("BLOTTER_MACHINE", ""),
            lock_name=os.getenv("MASTER_LOCK_NAME", DEFAULT_LOCK_NAME),
            lease_ttl_seconds=_env_float("LEASE_TTL_SECONDS", 30),
            presence_ttl_seconds=_env_float("PRESENCE_TTL_SECONDS", 30),
            heartbeat_interval_seconds=_env_float("HEARTBEAT_INTERVAL_SECONDS", 10),
            election_interval_seconds=_env_float("ELECTION_INTERVAL_SECONDS", 12),
            election_initial_delay_seconds=_env_float("ELECTION_INITIAL_DELAY_SECONDS", 2),
            election_failure_threshold=_env_int("ELECTION_FAILURE_THRESHOLD", 2),
            mx3_response_folder=os.getenv("MX3_RESPONSE_FOLDER") or None,
            calypso_response_folder=os.getenv("CALYPSO_RESPONSE_FOLDER") or None,
            response_poll_interval_seconds=_env_float("RESPONSE_POLL_INTERVAL_SECONDS", 2),
            file_settle_seconds=_env_float("FILE_SETTLE_SECONDS", 1),
            log_workflow_mastership=_env_bool("LOG_WORKFLOW_MASTERSHIP", True),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        positive = {
            "lease_ttl_seconds": self.lease_ttl_seconds,
            "presence_ttl_seconds": self.presence_ttl_seconds,
            "heartbeat_interval_seconds": self.heartbeat_interval_seconds,
            "election_interval_seconds": self.election_interval_seconds,
            "response_poll_interval_seconds": self.response_poll_interval_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                errors.append(f"{name} must be positive")

        if self.election_initial_delay_seconds < 0:
            errors.append("election_initial_delay_seconds must not be negative")

        if self.file_settle_seconds < 0:
            errors.append("file_settle_seconds must not be negative")

        if self.election_failure_threshold < 1:
            errors.append("election_failure_threshold must be at least 1")

        if self.heartbeat_interval_seconds * 3 > self.presence_ttl_seconds:
            errors.append("heartbeat_interval_seconds must be at most presence_ttl_seconds / 3")

        if self.election_interval_seconds >= self.lease_ttl_seconds:
            errors.append("election_interval_seconds must be less than lease_ttl_seconds")

        if not self.lock_name:
            errors.append("lock_name must not be empty")

        if self.log_format not in LOG_FORMATS:
            errors.append(f"log_format must be one of {', '.join(LOG_FORMATS)}")

        return errors

    def require_valid(self) -> "CoordinatorConfig":
        """
        Raise if the configuration is invalid.

        Raises:
            ConfigurationError: With every validation error
        """
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                f"Invalid configuration: {'; '.join(errors)}",
                context={"errors": errors},
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for startup logging (database credentials masked)."""
        data = asdict(self)
        if self.database_url:
            data["database_url"] = self.database_url.split("@")[-1]
        return data
