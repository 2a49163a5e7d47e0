"""
Shared test configuration and fixtures for dbsandbox.

Unit tests run against a mocked DockerRuntime and a patched asyncpg.connect;
integration tests (tests/integration) need a reachable Docker daemon.
"""

import itertools
import logging
from pathlib import Path
from typing import Dict
from unittest.mock import AsyncMock, Mock, patch

import pytest

from dbsandbox.config import ProvisionConfig
from dbsandbox.containers import ContainerSpec, DockerRuntime
from dbsandbox.retry import RetryPolicy

# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DATABASE_READY_LOGS = [
    "PostgreSQL init process complete; ready for start up.",
    "LOG:  database system is ready to accept connections",
    "LOG:  database system is shut down",
    "LOG:  database system is ready to accept connections",
]

MIGRATION_APPLIED_LOGS = [
    "Flyway OSS Edition 10.17.1 by Redgate",
    'Successfully validated 1 migration (execution time 00:00.012s)',
    'Creating Schema History table "public"."flyway_schema_history" ...',
    'Migrating schema "public" to version "1 - create users table"',
    'Successfully applied 1 migration to schema "public", now at version v1 (execution time 00:00.021s)',
]


@pytest.fixture
def migrations_dir(tmp_path):
    """A migrations directory holding the users table migration."""
    directory = tmp_path / "migrations"
    directory.mkdir()
    (directory / "V1__create_users_table.sql").write_text(
        (PROJECT_ROOT / "migrations" / "V1__create_users_table.sql").read_text()
    )
    return directory


@pytest.fixture
def test_config(migrations_dir):
    """ProvisionConfig with zero backoff delays and short timeouts for unit tests."""
    return ProvisionConfig(
        name="dbsandbox",
        migrations_dir=migrations_dir,
        network_retry=RetryPolicy.constant(3, 0),
        container_retry=RetryPolicy.constant(2, 0),
        migration_retry=RetryPolicy.constant(3, 0),
        connection_retry=RetryPolicy.constant(3, 0),
        poll_interval=0.001,
        database_ready_timeout=1.0,
        migration_timeout=1.0,
        connect_timeout=1.0,
    )


@pytest.fixture
def mock_runtime():
    """
    Mock DockerRuntime behaving like a healthy Docker daemon.

    Database containers log the postgres ready line twice; migration runners
    log a successful Flyway run. Started specs are recorded in
    ``runtime.started`` and the migration output can be swapped through
    ``runtime.migration_logs``.
    """
    runtime = Mock(spec=DockerRuntime)
    runtime.started = []
    runtime.migration_logs = list(MIGRATION_APPLIED_LOGS)
    counter = itertools.count(1)
    specs: Dict[str, ContainerSpec] = {}

    def start(spec):
        container_id = f"{spec.name_prefix}-{next(counter):04d}"
        specs[container_id] = spec
        runtime.started.append((container_id, spec))
        return container_id, f"{spec.name_prefix}_{container_id[-4:]}"

    def logs(container_id):
        if "_migrate" in container_id:
            return list(runtime.migration_logs)
        return list(DATABASE_READY_LOGS)

    def mapped_ports(container_id):
        return {port: 54320 + index for index, port in enumerate(specs[container_id].exposed_ports, start=1)}

    runtime.start.side_effect = start
    runtime.logs.side_effect = logs
    runtime.mapped_ports.side_effect = mapped_ports
    runtime.status.return_value = "running"
    runtime.exit_code.return_value = 0
    runtime.host.return_value = "localhost"
    runtime.internal_address.return_value = "172.18.0.2"
    runtime.stop.return_value = True
    runtime.create_network.side_effect = lambda name, labels=None: (f"net-{name}", name)
    runtime.remove_network.return_value = True
    return runtime


@pytest.fixture
def mock_connection():
    """Mock asyncpg connection whose liveness probe succeeds."""
    connection = AsyncMock()
    connection.fetchval.return_value = 1
    connection.is_closed = Mock(return_value=False)
    return connection


@pytest.fixture
def mock_connect(mock_connection):
    """Patch asyncpg.connect to hand out mock_connection."""
    with patch("asyncpg.connect", new_callable=AsyncMock) as connect:
        connect.return_value = mock_connection
        yield connect


# Pytest configuration

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "docker: mark test as requiring Docker")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.docker)
