"""
dbsandbox

Disposable PostgreSQL environments for integration tests: an isolated Docker
network, a database container, Flyway migrations and a live asyncpg
connection, with guaranteed teardown.
"""

from .config import ConfigValidationError, EscalationPolicy, ProvisionConfig
from .database import ConnectionHandle, MigrationOutcome, MigrationStatus
from .errors import (
    ConnectionFailure,
    ContainerExitedError,
    DeadlineExceeded,
    FatalProvisioningError,
    MigrationFailure,
    ProvisioningError,
    RetryExhaustedError,
    StartupTimeout,
    TeardownError,
    TransientInfraError,
)
from .retry import RetryPolicy
from .testing import Environment, Provisioner, provision, provisioned, sweep_orphans

__version__ = "0.1.0"

__all__ = [
    "ConfigValidationError",
    "ConnectionFailure",
    "ConnectionHandle",
    "ContainerExitedError",
    "DeadlineExceeded",
    "Environment",
    "EscalationPolicy",
    "FatalProvisioningError",
    "MigrationFailure",
    "MigrationOutcome",
    "MigrationStatus",
    "ProvisionConfig",
    "ProvisioningError",
    "Provisioner",
    "RetryExhaustedError",
    "RetryPolicy",
    "StartupTimeout",
    "TeardownError",
    "TransientInfraError",
    "provision",
    "provisioned",
    "sweep_orphans",
]
