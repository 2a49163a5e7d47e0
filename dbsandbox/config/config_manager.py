"""
Configuration for dbsandbox environments.

A ProvisionConfig is passed explicitly to the Provisioner; nothing in the
package reads module level settings. ProvisionConfig.from_env() builds one
from DBSANDBOX_* environment variables and an optional .env file.
"""

import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from ..retry import RetryPolicy


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


class EscalationPolicy(str, Enum):
    """What to do once the connection stage exhausts its retry budget."""
    FAIL_FAST = "fail_fast"
    RECREATE_ONCE = "recreate_once"


class DataDirMount(str, Enum):
    """How the database data directory is backed inside its container."""
    TMPFS = "tmpfs"
    VOLUME = "volume"
    NONE = "none"


class MigrationAddressMode(str, Enum):
    """How the migration runner reaches the database container."""
    ALIAS = "alias"
    IP = "ip"


ENV_PREFIX = "DBSANDBOX_"

POSTGRES_DATA_DIR = "/var/lib/postgresql/data"


@dataclass(frozen=True)
class ProvisionConfig:
    """
    Everything needed to provision one environment.

    Images, credentials, readiness patterns and per-stage retry policies are
    all fields here so that concurrent environments can use different
    settings without sharing state.
    """
    name: str = "dbsandbox"

    # Database container
    database_image: str = "postgres:17"
    database_name: str = "app"
    database_user: str = "postgres"
    database_password: str = "postgres"
    database_port: int = 5432
    data_dir_mount: DataDirMount = DataDirMount.TMPFS
    network_alias: str = "postgresdb"
    database_ready_pattern: str = "database system is ready to accept connections"
    # The postgres image logs the line once for the init server and once for the real one
    database_ready_occurrences: int = 2
    database_ready_timeout: float = 60.0

    # Migration runner
    migration_image: str = "flyway/flyway:10.17.1"
    migrations_dir: Path = Path("migrations")
    migration_address_mode: MigrationAddressMode = MigrationAddressMode.ALIAS
    baseline_version: str = "0"
    migration_success_pattern: str = r"Successfully applied|No migration necessary|is up to date"
    migration_timeout: float = 60.0

    # Connection
    connect_timeout: float = 10.0
    escalation_policy: EscalationPolicy = EscalationPolicy.FAIL_FAST
    host_override: Optional[str] = None

    # Per-stage retry policies
    network_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy.constant(10, 0.5))
    container_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy.exponential(3, 0.5))
    migration_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy.exponential(5, 0.5))
    connection_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy.exponential(5, 0.5, max_delay=5.0))

    poll_interval: float = 0.25
    stop_timeout: int = 10
    deadline: Optional[float] = None
    labels: Dict[str, str] = field(default_factory=dict)

    def with_overrides(self, **changes: Any) -> "ProvisionConfig":
        """Return a copy of this configuration with the given fields replaced."""
        return replace(self, **changes)

    def validate(self) -> "ProvisionConfig":
        """
        Check the configuration for values that can never work.

        Returns:
            self, so calls can be chained

        Raises:
            ConfigValidationError: On the first invalid value found
        """
        if not (1 <= self.database_port <= 65535):
            raise ConfigValidationError(
                f"Invalid database_port: '{self.database_port}' - port must be between 1 and 65535"
            )

        for name in ("database_image", "migration_image", "database_name", "database_user", "network_alias"):
            if not getattr(self, name):
                raise ConfigValidationError(f"{name} must not be empty")

        try:
            DataDirMount(self.data_dir_mount)
        except ValueError:
            raise ConfigValidationError(f"Unknown data_dir_mount: '{self.data_dir_mount}'")
        try:
            MigrationAddressMode(self.migration_address_mode)
        except ValueError:
            raise ConfigValidationError(f"Unknown migration_address_mode: '{self.migration_address_mode}'")
        try:
            EscalationPolicy(self.escalation_policy)
        except ValueError:
            raise ConfigValidationError(f"Unknown escalation_policy: '{self.escalation_policy}'")

        if self.database_ready_occurrences < 1:
            raise ConfigValidationError("database_ready_occurrences must be at least 1")

        for name in ("database_ready_timeout", "migration_timeout", "connect_timeout", "poll_interval"):
            if getattr(self, name) <= 0:
                raise ConfigValidationError(f"{name} must be positive")
        if self.deadline is not None and self.deadline <= 0:
            raise ConfigValidationError("deadline must be positive when set")

        for name in ("network_retry", "container_retry", "migration_retry", "connection_retry"):
            policy: RetryPolicy = getattr(self, name)
            if policy.max_attempts < 1:
                raise ConfigValidationError(f"{name}.max_attempts must be at least 1")
            if policy.initial_delay < 0 or policy.max_delay < 0 or policy.multiplier < 1:
                raise ConfigValidationError(f"{name} has an invalid backoff schedule")

        if not Path(self.migrations_dir).is_dir():
            raise ConfigValidationError(f"Migrations directory not found: {self.migrations_dir}")

        return self

    @classmethod
    def from_env(
        cls,
        config_dir: Optional[Union[str, Path]] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> "ProvisionConfig":
        """
        Build a configuration from DBSANDBOX_* variables.

        Values in the process environment take precedence over values in
        ``<config_dir>/.env``. Unset variables keep the dataclass defaults.
        Retry policies are configured with DBSANDBOX_<STAGE>_RETRY_ATTEMPTS,
        DBSANDBOX_<STAGE>_RETRY_DELAY and DBSANDBOX_<STAGE>_RETRY_MULTIPLIER.

        Args:
            config_dir: Directory containing the .env file (default: cwd)
            environ: Environment mapping to read instead of os.environ

        Raises:
            ConfigValidationError: If a variable cannot be converted
        """
        values: Dict[str, str] = {}
        env_path = (Path(config_dir) if config_dir else Path.cwd()) / ".env"
        if env_path.exists():
            values.update(_load_env_file(env_path))
        values.update(os.environ if environ is None else environ)

        defaults = cls()
        overrides: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name in _RETRY_FIELDS or f.name == "labels":
                continue
            raw = values.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            overrides[f.name] = _convert(f.name, raw, _CONVERTERS.get(f.name, str))

        for name in _RETRY_FIELDS:
            stage = name.replace("_retry", "").upper()
            current: RetryPolicy = getattr(defaults, name)
            attempts = values.get(f"{ENV_PREFIX}{stage}_RETRY_ATTEMPTS")
            delay = values.get(f"{ENV_PREFIX}{stage}_RETRY_DELAY")
            multiplier = values.get(f"{ENV_PREFIX}{stage}_RETRY_MULTIPLIER")
            if attempts is None and delay is None and multiplier is None:
                continue
            overrides[name] = replace(
                current,
                max_attempts=_convert(f"{stage}_RETRY_ATTEMPTS", attempts, int) if attempts is not None else current.max_attempts,
                initial_delay=_convert(f"{stage}_RETRY_DELAY", delay, float) if delay is not None else current.initial_delay,
                multiplier=_convert(f"{stage}_RETRY_MULTIPLIER", multiplier, float) if multiplier is not None else current.multiplier,
            )

        return replace(defaults, **overrides)


_RETRY_FIELDS = ("network_retry", "container_retry", "migration_retry", "connection_retry")


def _optional_float(value: str) -> Optional[float]:
    return float(value) if value.strip() else None


def _optional_str(value: str) -> Optional[str]:
    return value or None


_CONVERTERS: Dict[str, Callable[[str], Any]] = {
    "database_port": int,
    "database_ready_occurrences": int,
    "database_ready_timeout": float,
    "data_dir_mount": DataDirMount,
    "migrations_dir": Path,
    "migration_address_mode": MigrationAddressMode,
    "migration_timeout": float,
    "connect_timeout": float,
    "escalation_policy": EscalationPolicy,
    "host_override": _optional_str,
    "poll_interval": float,
    "stop_timeout": int,
    "deadline": _optional_float,
}


def _convert(name: str, raw: str, converter: Callable[[str], Any]) -> Any:
    try:
        return converter(raw)
    except ValueError:
        raise ConfigValidationError(f"Invalid {ENV_PREFIX}{name.upper()}: '{raw}'")


def _load_env_file(env_path: Path) -> Dict[str, str]:
    """Load KEY=VALUE lines from a single environment file."""
    env_vars = {}
    with open(env_path, 'r') as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#') and '=' in line:
                key, value = line.split('=', 1)
                env_vars[key.strip()] = value.strip()
    return env_vars
