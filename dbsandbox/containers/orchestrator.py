"""
Container Orchestrator

Starts containers from a ContainerSpec, blocks until their readiness
predicate holds, and tears them down idempotently.
"""

import asyncio
import functools
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import (
    ContainerExitedError,
    StartupTimeout,
    TeardownError,
    TransientInfraError,
)
from ..retry import RetryPolicy, retry_async
from .models import ContainerHandle, ContainerSpec, ContainerState
from .runtime import DockerRuntime

EXITED_STATUSES = ("exited", "dead", "removed")


class ContainerOrchestrator:
    """
    Owns the lifecycle of the containers it starts.

    Every started container is tracked until it is terminated, so that
    terminate_all() can clean up stragglers (e.g. a one-shot container whose
    removal failed).
    """

    def __init__(
        self,
        runtime: DockerRuntime,
        poll_interval: float = 0.25,
        stop_timeout: int = 10,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            runtime: Container runtime used for all Docker calls
            poll_interval: Seconds between readiness checks
            stop_timeout: Grace period in seconds given to containers on stop
            logger: Logger to report lifecycle events to
        """
        self.runtime = runtime
        self.poll_interval = poll_interval
        self.stop_timeout = stop_timeout
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._handles: Dict[str, ContainerHandle] = {}

    @property
    def handles(self) -> List[ContainerHandle]:
        """Handles started by this orchestrator that are not terminated yet."""
        return list(self._handles.values())

    async def start(self, spec: ContainerSpec) -> ContainerHandle:
        """
        Start a container and wait until it is ready.

        Args:
            spec: Launch specification including the readiness predicate

        Returns:
            Handle in the READY state with host, ports and internal IP resolved

        Raises:
            TransientInfraError: If the runtime failed to start the container
            StartupTimeout: If the readiness predicate did not hold in time
            ContainerExitedError: If the container stopped before becoming ready
        """
        handle = ContainerHandle(name=spec.name_prefix)
        handle.state = ContainerState.STARTING
        self.logger.info(f"Starting container from {spec.image}")

        future = self._submit(self.runtime.start, spec)
        try:
            handle.id, handle.name = await asyncio.shield(future)
        except TransientInfraError:
            handle.state = ContainerState.FAILED
            raise
        except asyncio.CancelledError:
            # The worker thread keeps going; remove the container it starts
            await self._discard_abandoned(handle, future)
            raise
        self._handles[handle.id] = handle

        try:
            await self._wait_until_ready(handle, spec)
            handle.host = await self._run(self.runtime.host)
            handle.ports = await self._run(self.runtime.mapped_ports, handle.id)
            missing = [port for port in spec.exposed_ports if port not in handle.ports]
            if missing:
                raise TransientInfraError(
                    f"Container {handle.name} has no published host port for {missing}"
                )
            if spec.network:
                handle.internal_ip = await self._run(
                    self.runtime.internal_address, handle.id, spec.network
                )
        except BaseException:
            # Never leave a half-started container behind, not even on cancellation
            await self._discard(handle)
            raise

        handle.state = ContainerState.READY
        self.logger.info(
            f"Container {handle.name} ({handle.short_id}) is ready"
            + (f", ports {handle.ports}" if handle.ports else "")
        )
        return handle

    async def start_with_retry(self, spec: ContainerSpec, policy: RetryPolicy) -> ContainerHandle:
        """Start a container, retrying only runtime start failures."""
        return await retry_async(
            lambda: self.start(spec),
            policy,
            description=f"Starting container from {spec.image}",
            logger=self.logger,
        )

    async def terminate(self, handle: Optional[ContainerHandle]):
        """
        Stop and remove a container.

        Terminating a handle that is already terminated, or that never got a
        container id, is a no-op.

        Raises:
            TransientInfraError: If the runtime failed; the handle is left
                FAILED and a later call retries
        """
        if handle is None or handle.id is None or handle.state == ContainerState.TERMINATED:
            return

        handle.state = ContainerState.TERMINATING
        try:
            existed = await self._run(self.runtime.stop, handle.id, self.stop_timeout)
        except TransientInfraError:
            handle.state = ContainerState.FAILED
            raise

        handle.state = ContainerState.TERMINATED
        self._handles.pop(handle.id, None)
        if existed:
            self.logger.info(f"Container {handle.name} ({handle.short_id}) terminated")
        else:
            self.logger.debug(f"Container {handle.name} ({handle.short_id}) was already gone")

    async def terminate_all(self):
        """
        Terminate every container still tracked by this orchestrator.

        Raises:
            TeardownError: If any container could not be terminated
        """
        errors: List[Tuple[str, BaseException]] = []
        for handle in self.handles:
            try:
                await self.terminate(handle)
            except Exception as e:
                errors.append((f"container {handle.name}", e))
        if errors:
            raise TeardownError(errors)

    async def logs(self, handle: ContainerHandle) -> List[str]:
        return await self._run(self.runtime.logs, handle.id)

    async def _wait_until_ready(self, handle: ContainerHandle, spec: ContainerSpec):
        predicate = spec.readiness
        loop = asyncio.get_running_loop()
        deadline = loop.time() + predicate.timeout
        started = time.monotonic()

        while True:
            handle.logs = await self._run(self.runtime.logs, handle.id)
            if predicate.is_satisfied(handle.logs):
                self.logger.debug(
                    f"Container {handle.name} matched '{predicate.pattern}' "
                    f"{predicate.occurrences}x after {time.monotonic() - started:.1f}s"
                )
                return

            status = await self._run(self.runtime.status, handle.id)
            if status in EXITED_STATUSES:
                # Output written between the two calls above still counts
                handle.logs = await self._run(self.runtime.logs, handle.id)
                if predicate.is_satisfied(handle.logs):
                    return
                exit_code = await self._run(self.runtime.exit_code, handle.id)
                raise ContainerExitedError(
                    f"Container {handle.name} exited with code {exit_code} before "
                    f"'{predicate.pattern}' was seen {predicate.occurrences} time(s)",
                    exit_code=exit_code,
                    logs=handle.logs,
                )

            if loop.time() >= deadline:
                seen = predicate.count(handle.logs)
                raise StartupTimeout(
                    f"Container {handle.name} did not become ready within {predicate.timeout}s "
                    f"('{predicate.pattern}' seen {seen}/{predicate.occurrences} time(s))",
                    logs=handle.logs,
                )

            await asyncio.sleep(self.poll_interval)

    async def _discard(self, handle: ContainerHandle):
        try:
            await self.terminate(handle)
        except TransientInfraError as e:
            self.logger.warning(
                f"Failed to remove container {handle.name} ({handle.short_id}) after startup failure: {e}"
            )
        finally:
            if handle.state != ContainerState.TERMINATED:
                handle.state = ContainerState.FAILED

    async def _discard_abandoned(self, handle: ContainerHandle, future: asyncio.Future):
        try:
            handle.id, handle.name = await future
        except TransientInfraError as e:
            handle.state = ContainerState.FAILED
            self.logger.debug(f"Cancelled start of {handle.name} failed: {e}")
            return
        self._handles[handle.id] = handle
        await self._discard(handle)

    def _submit(self, func: Callable[..., Any], *args: Any) -> asyncio.Future:
        """Run a blocking runtime call in the default thread pool executor."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, functools.partial(func, *args))

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        return await self._submit(func, *args)
