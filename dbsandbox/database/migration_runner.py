"""
Migration Runner

Applies the schema migrations of a host directory to the database
container by running a one-shot Flyway container on the same network.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..config.config_manager import MigrationAddressMode, ProvisionConfig
from ..containers.models import ContainerHandle, ContainerSpec, Mount, MountType
from ..containers.orchestrator import ContainerOrchestrator
from ..containers.readiness import ReadinessPredicate
from ..errors import (
    ContainerExitedError,
    MigrationFailure,
    RetryExhaustedError,
    StartupTimeout,
    TransientInfraError,
)
from ..network.network_manager import Network
from ..retry import retry_async

FLYWAY_SQL_DIR = "/flyway/sql"

_APPLIED_RE = re.compile(r"Successfully applied (\d+) migration")
_NO_OP_RE = re.compile(r"No migration necessary|is up to date")


class MigrationStatus(str, Enum):
    """Result of a migration run."""
    APPLIED = "applied"
    NO_OP = "no_op"
    FAILED = "failed"


@dataclass(frozen=True)
class MigrationOutcome:
    """
    Outcome of one migration run.

    Attributes:
        status: applied, no_op or failed
        logs: Raw output of the migration tool
        applied_count: Number of migrations applied by this run
    """
    status: MigrationStatus
    logs: List[str] = field(default_factory=list)
    applied_count: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status in (MigrationStatus.APPLIED, MigrationStatus.NO_OP)

    @classmethod
    def from_logs(cls, logs: Sequence[str]) -> "MigrationOutcome":
        """Classify Flyway output."""
        lines = list(logs)
        for line in lines:
            match = _APPLIED_RE.search(line)
            if match:
                return cls(MigrationStatus.APPLIED, lines, int(match.group(1)))
        if any(_NO_OP_RE.search(line) for line in lines):
            return cls(MigrationStatus.NO_OP, lines)
        return cls(MigrationStatus.FAILED, lines)


class MigrationRunner:
    """Runs Flyway once against a database container."""

    def __init__(
        self,
        orchestrator: ContainerOrchestrator,
        config: ProvisionConfig,
        labels: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.orchestrator = orchestrator
        self.config = config
        self.labels = dict(labels or {})
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    def database_address(self, database: ContainerHandle) -> str:
        """
        Host name the runner uses to reach the database.

        The network alias only resolves for containers on the same
        user-defined network; the internal IP works from any network that
        can route to it.
        """
        if MigrationAddressMode(self.config.migration_address_mode) == MigrationAddressMode.IP:
            if not database.internal_ip:
                raise MigrationFailure(
                    f"Database container {database.name} has no internal IP address",
                    MigrationOutcome(MigrationStatus.FAILED),
                )
            return database.internal_ip
        return self.config.network_alias

    def build_command(self, database: ContainerHandle) -> List[str]:
        config = self.config
        url = (
            f"jdbc:postgresql://{self.database_address(database)}:"
            f"{config.database_port}/{config.database_name}"
        )
        return [
            f"-url={url}",
            f"-user={config.database_user}",
            f"-password={config.database_password}",
            "-connectRetries=10",
            "-baselineOnMigrate=true",
            f"-baselineVersion={config.baseline_version}",
            f"-locations=filesystem:{FLYWAY_SQL_DIR}",
            "-validateOnMigrate=false",
            "migrate",
        ]

    def build_spec(self, database: ContainerHandle, network: Network) -> ContainerSpec:
        migrations_dir = Path(self.config.migrations_dir).resolve()
        return ContainerSpec(
            image=self.config.migration_image,
            command=tuple(self.build_command(database)),
            mounts=(
                Mount(target=FLYWAY_SQL_DIR, type=MountType.BIND, source=str(migrations_dir), read_only=True),
            ),
            network=network.name,
            readiness=ReadinessPredicate(
                pattern=self.config.migration_success_pattern,
                occurrences=1,
                timeout=self.config.migration_timeout,
            ),
            labels=self.labels,
            name_prefix=f"{self.config.name}_migrate",
        )

    async def run(self, database: ContainerHandle, network: Network) -> MigrationOutcome:
        """
        Apply pending migrations.

        Both "applied" and "no migration necessary" are successful outcomes,
        so running against an already migrated schema is fine. Only a runner
        container that fails to start is retried.

        Raises:
            MigrationFailure: If the runner could not be started within the
                retry budget, or finished without a success signal
        """
        spec = self.build_spec(database, network)
        self.logger.info(f"Running migrations from {spec.mounts[0].source}")

        try:
            runner = await retry_async(
                lambda: self.orchestrator.start(spec),
                self.config.migration_retry,
                description="Starting migration runner",
                logger=self.logger,
            )
        except RetryExhaustedError as e:
            raise MigrationFailure(
                f"Migration runner could not be started: {e}",
                MigrationOutcome(MigrationStatus.FAILED),
            ) from e
        except (StartupTimeout, ContainerExitedError) as e:
            self._forward_logs(e.logs)
            raise MigrationFailure(
                f"Migration did not succeed: {e}",
                MigrationOutcome(MigrationStatus.FAILED, e.logs),
            ) from e

        try:
            self._forward_logs(runner.logs)
            outcome = MigrationOutcome.from_logs(runner.logs)
        finally:
            try:
                await self.orchestrator.terminate(runner)
            except TransientInfraError as e:
                # Stays tracked by the orchestrator and is retried during teardown
                self.logger.warning(f"Failed to remove migration runner {runner.name}: {e}")

        if not outcome.succeeded:
            raise MigrationFailure("Migration runner finished without a success signal", outcome)

        if outcome.status == MigrationStatus.APPLIED:
            self.logger.info(f"Applied {outcome.applied_count} migration(s)")
        else:
            self.logger.info("Schema is up to date, no migration necessary")
        return outcome

    def _forward_logs(self, lines: Sequence[str]):
        for line in lines:
            self.logger.debug(f"[flyway] {line}")
