"""
Container data model: launch specifications and the handles of started containers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .readiness import ReadinessPredicate


class MountType(str, Enum):
    """Docker mount types supported for test containers."""
    BIND = "bind"
    VOLUME = "volume"
    TMPFS = "tmpfs"


@dataclass(frozen=True)
class Mount:
    """A filesystem mount inside a container. ``source`` is only used for bind mounts."""
    target: str
    type: MountType = MountType.BIND
    source: Optional[str] = None
    read_only: bool = False


@dataclass(frozen=True)
class ContainerSpec:
    """
    Immutable description of how to launch one container.

    Attributes:
        image: Image reference including tag
        readiness: Condition that marks the container ready
        command: Arguments passed to the image entrypoint
        environment: Environment variables
        exposed_ports: Container TCP ports published on random host ports
        mounts: Filesystem mounts
        network: Name of the network to join, if any
        network_aliases: DNS aliases on that network
        labels: Docker labels used to find orphaned resources later
        name_prefix: Prefix of the generated container name
    """
    image: str
    readiness: ReadinessPredicate
    command: Tuple[str, ...] = ()
    environment: Dict[str, str] = field(default_factory=dict)
    exposed_ports: Tuple[int, ...] = ()
    mounts: Tuple[Mount, ...] = ()
    network: Optional[str] = None
    network_aliases: Tuple[str, ...] = ()
    labels: Dict[str, str] = field(default_factory=dict)
    name_prefix: str = "dbsandbox"


class ContainerState(str, Enum):
    """Lifecycle states of a ContainerHandle."""
    CREATED = "created"
    STARTING = "starting"
    READY = "ready"
    TERMINATING = "terminating"
    TERMINATED = "terminated"
    FAILED = "failed"


@dataclass
class ContainerHandle:
    """
    A container started by a ContainerOrchestrator.

    Only the orchestrator that created the handle changes its state.
    """
    name: str
    id: Optional[str] = None
    host: Optional[str] = None
    ports: Dict[int, int] = field(default_factory=dict)
    internal_ip: Optional[str] = None
    state: ContainerState = ContainerState.CREATED
    logs: List[str] = field(default_factory=list)

    def mapped_port(self, port: int) -> int:
        """Return the host port published for a container port."""
        if port not in self.ports:
            raise KeyError(f"Port {port} is not published by container {self.name}")
        return self.ports[port]

    @property
    def short_id(self) -> str:
        return self.id[:12] if self.id else "none"
