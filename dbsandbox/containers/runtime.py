"""
Docker Runtime

Thin adapter over the Docker SDK. Every method is blocking; callers run them
in a thread executor. Docker SDK errors are translated into
TransientInfraError so that the layers above can retry them.
"""

import logging
import os
import uuid
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import docker
from docker.errors import DockerException, ImageNotFound, NotFound
from docker.types import Mount as DockerMount

from ..errors import FatalProvisioningError, TransientInfraError
from .models import ContainerSpec, Mount, MountType

logger = logging.getLogger(__name__)

MANAGED_LABEL = "dbsandbox.managed"
ENVIRONMENT_LABEL = "dbsandbox.environment"


class DockerRuntime:
    """Container runtime backed by the local (or DOCKER_HOST) Docker daemon."""

    def __init__(self, client: Optional[docker.DockerClient] = None, host_override: Optional[str] = None):
        """
        Initialize the runtime.

        Args:
            client: Docker client to use (default: docker.from_env())
            host_override: Hostname used to reach published ports instead of
                the one derived from the daemon URL

        Raises:
            FatalProvisioningError: If no Docker daemon can be reached
        """
        if client is None:
            try:
                client = docker.from_env()
            except DockerException as e:
                raise FatalProvisioningError(f"Docker daemon is not reachable: {e}")
        self.client = client
        self.host_override = host_override

    # Networks

    def create_network(self, name: str, labels: Optional[Dict[str, str]] = None) -> Tuple[str, str]:
        """Create a bridge network and return its (id, name)."""
        try:
            network = self.client.networks.create(name=name, driver="bridge", labels=labels or {})
        except DockerException as e:
            raise TransientInfraError(f"Failed to create network {name}: {e}")
        return network.id, network.name

    def remove_network(self, network_id: str) -> bool:
        """
        Remove a network.

        Returns:
            False if the network did not exist, True otherwise
        """
        try:
            self.client.networks.get(network_id).remove()
        except NotFound:
            return False
        except DockerException as e:
            raise TransientInfraError(f"Failed to remove network {network_id}: {e}")
        return True

    # Containers

    def start(self, spec: ContainerSpec) -> Tuple[str, str]:
        """
        Create, attach and start a container.

        The container is attached to ``spec.network`` with its aliases before
        it starts. A container that was created but could not be started is
        removed again.

        Returns:
            (container id, container name)
        """
        name = f"{spec.name_prefix}_{uuid.uuid4().hex[:12]}"
        container = None
        try:
            self._ensure_image(spec.image)
            container = self.client.containers.create(
                image=spec.image,
                command=list(spec.command) or None,
                name=name,
                environment=dict(spec.environment),
                ports={f"{port}/tcp": None for port in spec.exposed_ports},
                mounts=[self._docker_mount(m) for m in spec.mounts],
                labels=dict(spec.labels),
            )
            if spec.network:
                self.client.networks.get(spec.network).connect(
                    container, aliases=list(spec.network_aliases)
                )
            container.start()
            return container.id, name
        except DockerException as e:
            if container is not None:
                self._force_remove(container)
            raise TransientInfraError(f"Failed to start container from {spec.image}: {e}")

    def stop(self, container_id: str, timeout: int = 10) -> bool:
        """
        Stop and remove a container together with its anonymous volumes.

        Returns:
            False if the container did not exist, True otherwise
        """
        try:
            container = self.client.containers.get(container_id)
        except NotFound:
            return False
        except DockerException as e:
            raise TransientInfraError(f"Failed to look up container {container_id[:12]}: {e}")

        try:
            container.stop(timeout=timeout)
        except NotFound:
            return False
        except DockerException as e:
            # Already stopped containers still get force removed below
            logger.debug(f"Stopping container {container_id[:12]} failed, forcing removal: {e}")

        try:
            container.remove(force=True, v=True)
        except NotFound:
            pass
        except DockerException as e:
            raise TransientInfraError(f"Failed to remove container {container_id[:12]}: {e}")
        return True

    def logs(self, container_id: str) -> List[str]:
        """Return stdout and stderr of a container as a list of lines."""
        try:
            raw = self.client.containers.get(container_id).logs(stdout=True, stderr=True)
        except DockerException as e:
            raise TransientInfraError(f"Failed to read logs of container {container_id[:12]}: {e}")
        return raw.decode("utf-8", errors="replace").splitlines()

    def status(self, container_id: str) -> str:
        """Return the Docker status of a container ('running', 'exited', ...)."""
        try:
            container = self.client.containers.get(container_id)
        except NotFound:
            return "removed"
        except DockerException as e:
            raise TransientInfraError(f"Failed to inspect container {container_id[:12]}: {e}")
        return container.status

    def exit_code(self, container_id: str) -> Optional[int]:
        try:
            container = self.client.containers.get(container_id)
        except DockerException:
            return None
        return container.attrs.get("State", {}).get("ExitCode")

    def host(self) -> str:
        """Hostname on which published container ports are reachable."""
        if self.host_override:
            return self.host_override
        base_url = getattr(self.client.api, "base_url", "") or os.getenv("DOCKER_HOST", "")
        parsed = urlparse(base_url)
        if parsed.scheme in ("tcp", "http", "https") and parsed.hostname:
            return parsed.hostname
        return "localhost"

    def mapped_ports(self, container_id: str) -> Dict[int, int]:
        """Return the container TCP port -> host port mapping."""
        try:
            container = self.client.containers.get(container_id)
        except DockerException as e:
            raise TransientInfraError(f"Failed to inspect container {container_id[:12]}: {e}")

        mapping = {}
        for key, bindings in (container.ports or {}).items():
            port, _, protocol = key.partition("/")
            if protocol != "tcp" or not bindings:
                continue
            mapping[int(port)] = int(bindings[0]["HostPort"])
        return mapping

    def internal_address(self, container_id: str, network_name: str) -> Optional[str]:
        """Return the container IP address on the given network."""
        try:
            container = self.client.containers.get(container_id)
        except DockerException as e:
            raise TransientInfraError(f"Failed to inspect container {container_id[:12]}: {e}")

        networks = container.attrs.get("NetworkSettings", {}).get("Networks", {})
        address = networks.get(network_name, {}).get("IPAddress")
        return address or None

    # Orphan discovery

    def list_managed_containers(self, environment: Optional[str] = None) -> List[Tuple[str, str]]:
        """Return (id, name) of every container carrying the managed label."""
        try:
            containers = self.client.containers.list(all=True, filters={"label": self._label_filter(environment)})
        except DockerException as e:
            raise TransientInfraError(f"Failed to list containers: {e}")
        return [(c.id, c.name) for c in containers]

    def list_managed_networks(self, environment: Optional[str] = None) -> List[Tuple[str, str]]:
        """Return (id, name) of every network carrying the managed label."""
        try:
            networks = self.client.networks.list(filters={"label": self._label_filter(environment)})
        except DockerException as e:
            raise TransientInfraError(f"Failed to list networks: {e}")
        return [(n.id, n.name) for n in networks]

    def _label_filter(self, environment: Optional[str]) -> List[str]:
        labels = [f"{MANAGED_LABEL}=true"]
        if environment:
            labels.append(f"{ENVIRONMENT_LABEL}={environment}")
        return labels

    def _ensure_image(self, image: str):
        try:
            self.client.images.get(image)
        except ImageNotFound:
            logger.info(f"Pulling image {image}")
            self.client.images.pull(image)

    def _force_remove(self, container):
        try:
            container.remove(force=True, v=True)
        except DockerException as e:
            logger.warning(f"Failed to remove half-started container {container.id[:12]}: {e}")

    @staticmethod
    def _docker_mount(mount: Mount) -> DockerMount:
        mount_type = MountType(mount.type)
        source = mount.source if mount_type == MountType.BIND else None
        return DockerMount(
            target=mount.target,
            source=source,
            type=mount_type.value,
            read_only=mount.read_only,
        )
