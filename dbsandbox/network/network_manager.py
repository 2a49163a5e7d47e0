"""
Network Manager

Creates and removes the isolated bridge network each environment runs in.
"""

import asyncio
import functools
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from ..containers.runtime import DockerRuntime
from ..errors import TransientInfraError
from ..retry import RetryPolicy, retry_async


@dataclass(frozen=True)
class Network:
    """An isolated Docker network owned by one environment."""
    id: str
    name: str


class NetworkManager:
    """Creates per-environment networks with bounded retries and removes them idempotently."""

    def __init__(
        self,
        runtime: DockerRuntime,
        retry_policy: Optional[RetryPolicy] = None,
        name_prefix: str = "dbsandbox",
        labels: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.runtime = runtime
        self.retry_policy = retry_policy or RetryPolicy.constant(10, 0.5)
        self.name_prefix = name_prefix
        self.labels = dict(labels or {})
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    async def create_isolated_network(self) -> Network:
        """
        Create a uniquely named bridge network.

        Network creation races with other processes for address pools and
        the like, so failures are retried with the configured constant backoff.

        Returns:
            The created network

        Raises:
            RetryExhaustedError: If every attempt failed
        """
        async def attempt() -> Network:
            # Fresh name per attempt, a failed attempt may have half-registered the old one
            name = f"{self.name_prefix}_{uuid.uuid4().hex[:12]}"
            future = self._submit(self.runtime.create_network, name, self.labels)
            try:
                network_id, network_name = await asyncio.shield(future)
            except asyncio.CancelledError:
                # The worker thread keeps going; remove whatever it creates
                await self._remove_abandoned(future, name)
                raise
            return Network(id=network_id, name=network_name)

        network = await retry_async(
            attempt,
            self.retry_policy,
            description="Creating isolated network",
            logger=self.logger,
        )
        self.logger.info(f"Created network {network.name}")
        return network

    async def remove(self, network: Optional[Network]):
        """
        Remove a network.

        Removing a network that was never fully created, or that is already
        gone, only logs a warning.

        Raises:
            TransientInfraError: If the daemon refused to remove an existing network
        """
        if network is None or not network.id:
            self.logger.warning("Skipping removal of a network that was never created")
            return

        removed = await self._run(self.runtime.remove_network, network.id)
        if removed:
            self.logger.info(f"Removed network {network.name}")
        else:
            self.logger.warning(f"Network {network.name} was already removed")

    async def _remove_abandoned(self, future: asyncio.Future, name: str):
        try:
            network_id, _ = await future
        except TransientInfraError as e:
            self.logger.debug(f"Cancelled creation of network {name} failed: {e}")
            return
        try:
            await self._run(self.runtime.remove_network, network_id)
        except TransientInfraError as e:
            self.logger.warning(f"Failed to remove network {name} after cancellation: {e}")
        else:
            self.logger.info(f"Removed network {name} created after cancellation")

    def _submit(self, func, *args) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, functools.partial(func, *args))

    async def _run(self, func, *args):
        return await self._submit(func, *args)
