"""Container lifecycle management.

Stopping, removing and health-checking containers started by
ContainerRunner. ``ensure_stopped`` and ``cleanup`` are best effort: they
log failures and never raise, so they are safe in teardown paths.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from harbormaster.core.constants import (
    DEFAULT_PROBE_REQUEST_TIMEOUT_MS,
    DEFAULT_PROBE_RETRY_DELAY_MS,
    DEFAULT_PROBE_TIMEOUT_MS,
    STOP_LOG_GRACE_MS,
)
from harbormaster.core.errors import (
    CommandFailed,
    ConfigurationError,
    ContainerStopFailed,
    HarbormasterError,
    NoContainerId,
)
from harbormaster.core.schemas import PortMapping
from harbormaster.monitoring.log_stream import LogStreamMonitor
from harbormaster.monitoring.readiness import ReadinessProber
from harbormaster.runners.executor import CommandExecutor

logger = logging.getLogger(__name__)


class ContainerLifecycle:
    """Stops, removes and checks containers.

    Example:
        ```python
        lifecycle = ContainerLifecycle(executor)
        await lifecycle.ensure_stopped("my-app-dev")
        ...
        await lifecycle.cleanup(container_id)
        ```
    """

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        prober: ReadinessProber | None = None,
        stop_log_grace_ms: int = STOP_LOG_GRACE_MS,
    ) -> None:
        """Initialize the lifecycle manager.

        Args:
            executor: Engine command executor
            prober: HTTP prober used by ``is_running``
            stop_log_grace_ms: How long log collection may keep flushing
                after a stop attempt
        """
        self.executor = executor
        self.prober = prober or ReadinessProber()
        self.stop_log_grace_ms = stop_log_grace_ms

    async def ensure_stopped(self, name: str | None) -> None:
        """Force-remove any container, running or not, named exactly ``name``."""
        if not name:
            return

        try:
            output = await self.executor.execute(
                ["ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}\t{{.Names}}"]
            )
        except HarbormasterError as e:
            logger.warning(f"Could not list containers named {name}: {e}")
            return

        # The name filter matches substrings; only remove exact matches
        for line in output.splitlines():
            parts = line.strip().split("\t")
            if len(parts) < 2:
                continue
            container_id, container_name = parts[0], parts[1]
            if container_name not in (name, f"/{name}"):
                continue
            try:
                await self.remove(container_id, force=True)
            except HarbormasterError as e:
                logger.warning(f"Could not remove container {name} ({container_id[:12]}): {e}")
            else:
                logger.info(f"Removed existing container {name} ({container_id[:12]})")

    async def stop(self, container_id: str | None, timeout: int | None = None) -> str:
        """Stop a container, capturing its output in case stopping fails.

        Args:
            container_id: Container to stop
            timeout: Seconds the engine waits before killing the container

        Returns:
            Engine output of ``stop``

        Raises:
            NoContainerId: If ``container_id`` is empty
            ContainerStopFailed: If ``stop`` fails; carries the captured logs
        """
        if not container_id:
            raise NoContainerId()

        monitor = LogStreamMonitor(
            container_id=container_id,
            echo=self.executor.verbose,
            capture=True,
            echo_prefix="stop",
        )
        logs_proc = await self.executor.spawn(["logs", "-f", container_id])
        collection = asyncio.ensure_future(monitor.consume_all(logs_proc))

        args = ["stop"]
        if timeout is not None:
            args.extend(["-t", str(timeout)])
        args.append(container_id)

        try:
            output = await self.executor.execute(args)
            logger.info(f"Stopped container {container_id[:12]}")
            return output
        except CommandFailed as e:
            await self._finish_collection(logs_proc, collection)
            raise ContainerStopFailed(
                container_id, e, [event.render() for event in monitor.captured]
            ) from e
        finally:
            await self._finish_collection(logs_proc, collection)

    async def _finish_collection(
        self, logs_proc: asyncio.subprocess.Process, collection: asyncio.Future
    ) -> None:
        """Kill the log process and give collection a bounded time to drain."""
        await self.executor.terminate(logs_proc)
        if collection.done():
            return
        done, _ = await asyncio.wait({collection}, timeout=self.stop_log_grace_ms / 1000)
        if not done:
            collection.cancel()
        await asyncio.gather(collection, return_exceptions=True)

    async def remove(
        self, container_id: str | None, force: bool = False, remove_volumes: bool = False
    ) -> str:
        """Remove a container.

        Raises:
            NoContainerId: If ``container_id`` is empty
        """
        if not container_id:
            raise NoContainerId()
        args = ["rm"]
        if force:
            args.append("-f")
        if remove_volumes:
            args.append("-v")
        args.append(container_id)
        return await self.executor.execute(args)

    async def cleanup(self, container_id: str | None, force: bool = True) -> None:
        """Stop and remove a container, logging rather than raising failures."""
        if not container_id:
            return

        try:
            await self.stop(container_id)
        except HarbormasterError as e:
            logger.warning(f"Error stopping container {container_id[:12]}: {e}")

        try:
            await self.remove(container_id, force=force)
        except HarbormasterError as e:
            logger.warning(f"Error removing container {container_id[:12]}: {e}")
        else:
            logger.info(f"Cleaned up container {container_id[:12]}")

    async def is_running(
        self,
        container_id: str | None,
        ports: Sequence[PortMapping],
        *,
        retry_delay_ms: int = DEFAULT_PROBE_RETRY_DELAY_MS,
        request_timeout_ms: int = DEFAULT_PROBE_REQUEST_TIMEOUT_MS,
        timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS,
    ) -> bool:
        """Check that the container answers HTTP on its first published port.

        Raises:
            ConfigurationError: If the container publishes no ports
        """
        if not container_id:
            return False
        if not ports:
            raise ConfigurationError("Cannot verify container health: no ports")

        url = f"http://localhost:{ports[0].external}"
        return bool(
            await self.prober.wait_for_fetch(
                url,
                status=True,
                retry_delay_ms=retry_delay_ms,
                request_timeout_ms=request_timeout_ms,
                timeout_ms=timeout_ms,
            )
        )
