"""Container run orchestration.

ContainerRunner launches a container through the engine CLI and, when a
readiness pattern is configured, follows its logs until the pattern shows
up, the logs end, the wait times out, or the user interrupts the run.

A run moves through Launching, AwaitingId and (with a pattern)
AwaitingPattern before it is Ready. Any state can end Cancelled or Failed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex

from harbormaster.core.constants import DEFAULT_WAIT_TIMEOUT_MS, LOGS_TAIL_LINES
from harbormaster.core.errors import (
    CommandFailed,
    ConfigurationError,
    HarbormasterError,
    ReadinessTimeout,
    StreamEndedWithoutMatch,
)
from harbormaster.core.schemas import ContainerInfo, ReadinessOutcome, RunSpec
from harbormaster.monitoring.log_stream import LogStreamMonitor, SignalMonitor
from harbormaster.runners.executor import CommandExecutor
from harbormaster.utils.signals import CancellationToken, interrupt_scope

logger = logging.getLogger(__name__)

PS_ROW_FORMAT = "{{.ID}}\t{{.Names}}\t{{.Image}}\t{{.Status}}\t{{.Ports}}"
PS_COLUMNS = ("id", "name", "image", "status", "ports")


def tokenize_command(command: str) -> list[str]:
    """Split a shell-style command string into argv tokens.

    Whitespace separates tokens; single and double quotes group, and a
    backslash escapes the next character outside single quotes.

    Raises:
        ConfigurationError: On an unterminated quote or trailing escape
    """
    try:
        return shlex.split(command)
    except ValueError as e:
        raise ConfigurationError(f"Cannot parse command {command!r}: {e}") from e


def build_run_args(spec: RunSpec, *, detach: bool | None = None) -> list[str]:
    """Build the ``run`` argument vector for ``spec``.

    Args:
        spec: Launch request
        detach: Override ``spec.detach`` (readiness waits always detach)

    Returns:
        Arguments to pass after the engine binary
    """
    args = ["run"]
    if spec.detach if detach is None else detach:
        args.append("-d")
    if spec.remove_on_exit:
        args.append("--rm")
    if spec.interactive:
        args.append("-i")
    if spec.tty:
        args.append("-t")
    if spec.name:
        args.extend(["--name", spec.name])
    if spec.workdir:
        args.extend(["-w", spec.workdir])
    if spec.network:
        args.extend(["--network", spec.network])
    if spec.platform:
        args.extend(["--platform", spec.platform])

    for port in spec.ports:
        args.extend(["-p", port.render()])
    for volume in spec.volumes:
        args.extend(["-v", volume])

    env = dict(spec.env)
    if spec.force_color and "FORCE_COLOR" not in env:
        env["FORCE_COLOR"] = "1"
    for key, value in env.items():
        args.extend(["-e", f"{key}={value}"])

    args.append(spec.image)
    if spec.command:
        args.extend(tokenize_command(spec.command))
    return args


async def _cancel_and_wait(*tasks: asyncio.Future) -> None:
    """Cancel unfinished ``tasks`` and wait for all of them to settle."""
    for task in tasks:
        if not task.done():
            task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


class ContainerRunner:
    """Starts containers and waits for them to become ready.

    Example:
        ```python
        runner = ContainerRunner(CommandExecutor())
        spec = RunSpec(image="nginx:alpine", ports=["8080:80"], wait_for="start worker")
        container_id = await runner.run(spec)
        ```
    """

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        handle_signals: bool = True,
    ) -> None:
        """Initialize the runner.

        Args:
            executor: Engine command executor
            handle_signals: Bind SIGINT/SIGTERM to cancellation while a run
                is in flight
        """
        self.executor = executor
        self.handle_signals = handle_signals
        self.container_id: str | None = None

        self._waiting: set[str] = set()
        # Log followers kept alive after readiness to echo later output
        self._followers: dict[asyncio.Task, asyncio.subprocess.Process] = {}

    async def run(self, spec: RunSpec, *, cancel: CancellationToken | None = None) -> str | None:
        """Launch ``spec`` and wait for readiness if ``spec.wait_for`` is set.

        Args:
            spec: Launch request
            cancel: Token that aborts the run; a fresh one is used otherwise.
                SIGINT/SIGTERM cancel it while the run is in flight.

        Returns:
            The container id, or ``None`` if the run was interrupted before
            the engine reported one.

        Raises:
            ConfigurationError: If the command string cannot be tokenized
            CommandFailed: If the launch command fails
            ReadinessTimeout: If ``wait_for`` did not match in time
            StreamEndedWithoutMatch: If the logs ended without a match
        """
        token = cancel or CancellationToken()
        with interrupt_scope(token, enabled=self.handle_signals):
            if not spec.wait_for:
                container_id = await self._launch(build_run_args(spec), token)
            else:
                container_id = await self._launch_and_wait(spec, token)

        if container_id is not None:
            self.container_id = container_id
        if token.cancelled:
            logger.warning(f"Run interrupted ({token.reason}); container: {container_id or 'none'}")
        return container_id

    async def _launch(self, args: list[str], token: CancellationToken) -> str | None:
        """Run the launch command to completion unless cancelled first."""
        launch = asyncio.ensure_future(self.executor.execute(args))
        cancelled = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({launch, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            if launch.done():
                container_id = launch.result()
                logger.info(f"Started container {container_id[:12]}")
                return container_id
            return None
        finally:
            await _cancel_and_wait(launch, cancelled)

    async def _launch_and_wait(self, spec: RunSpec, token: CancellationToken) -> str | None:
        args = build_run_args(spec, detach=True)
        proc = await self.executor.spawn(args)
        communicate = asyncio.ensure_future(proc.communicate())
        cancelled = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({communicate, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            if not communicate.done():
                return None
            stdout, stderr = communicate.result()
        finally:
            await _cancel_and_wait(communicate, cancelled)
            await self.executor.terminate(proc)

        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip()
            raise CommandFailed(
                args, proc.returncode, err, message=f"Failed to start container: {err}"
            )
        container_id = stdout.decode("utf-8", errors="replace").strip()
        logger.info(f"Started container {container_id[:12]}, waiting for /{spec.wait_for}/")

        if token.cancelled:
            return container_id

        follow = spec.show_output or spec.verbose
        monitor = LogStreamMonitor(
            spec.wait_for,
            container_id=container_id,
            echo=follow,
            continue_after_match=follow,
        )
        outcome = await self._await_logs(
            container_id,
            ["logs", "--tail", LOGS_TAIL_LINES, "-f", container_id],
            monitor,
            spec.wait_timeout_ms,
            token,
            keep_following=follow,
        )

        if outcome is ReadinessOutcome.STREAM_ENDED_WITHOUT_MATCH:
            raise StreamEndedWithoutMatch(
                f"Container {container_id[:12]} exited without matching pattern: {spec.wait_for}"
            )
        if outcome is ReadinessOutcome.TIMED_OUT:
            raise ReadinessTimeout(
                f"Timeout waiting for pattern {spec.wait_for!r} after {spec.wait_timeout_ms}ms"
            )
        if outcome is ReadinessOutcome.MATCHED:
            logger.info(f"Container {container_id[:12]} is ready")
        return container_id

    async def wait_for_signal_in_logs(
        self,
        container_id: str,
        signal: str,
        *,
        timeout_ms: int = DEFAULT_WAIT_TIMEOUT_MS,
        last_instance_end_signal: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> ReadinessOutcome:
        """Wait until ``signal`` appears in the full log history of a container.

        Args:
            container_id: Container to follow
            signal: Literal text to look for
            timeout_ms: Overall wait
            last_instance_end_signal: Text a container instance prints on
                exit; a signal line followed by it does not count
            cancel: Optional token that aborts the wait

        Returns:
            ``MATCHED``, or ``CANCELLED`` if ``cancel`` fired first

        Raises:
            ReadinessTimeout: If the signal did not appear in time
            StreamEndedWithoutMatch: If the logs ended first
        """
        token = cancel or CancellationToken()
        monitor = SignalMonitor(
            signal, end_signal=last_instance_end_signal, container_id=container_id
        )
        outcome = await self._await_logs(
            container_id,
            ["logs", "--tail", "all", "-f", container_id],
            monitor,
            timeout_ms,
            token,
        )
        if outcome is ReadinessOutcome.TIMED_OUT:
            raise ReadinessTimeout(f"Timeout waiting for signal {signal!r} after {timeout_ms}ms")
        if outcome is ReadinessOutcome.STREAM_ENDED_WITHOUT_MATCH:
            raise StreamEndedWithoutMatch(
                f"Container logs ended without finding signal: {signal!r}"
            )
        return outcome

    async def _await_logs(
        self,
        container_id: str,
        logs_args: list[str],
        monitor: LogStreamMonitor,
        timeout_ms: int,
        token: CancellationToken,
        *,
        keep_following: bool = False,
    ) -> ReadinessOutcome:
        """Race a log match against stream end, timeout and cancellation.

        The log process is killed before returning, unless the pattern
        matched and ``keep_following`` hands it over to the runner.
        """
        if container_id in self._waiting:
            raise HarbormasterError(f"Already waiting for readiness of {container_id[:12]}")
        self._waiting.add(container_id)

        logs_proc = None
        streams = matched = cancelled = None
        handed_off = False
        try:
            logs_proc = await self.executor.spawn(logs_args)
            streams = asyncio.ensure_future(monitor.consume_all(logs_proc))
            matched = asyncio.ensure_future(monitor.matched.wait())
            cancelled = asyncio.ensure_future(token.wait())

            await asyncio.wait(
                {streams, matched, cancelled},
                timeout=timeout_ms / 1000,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if monitor.matched.is_set():
                if keep_following and not streams.done():
                    self._follow(streams, logs_proc)
                    handed_off = True
                return ReadinessOutcome.MATCHED
            if token.cancelled:
                return ReadinessOutcome.CANCELLED
            if streams.done():
                # Surface read errors rather than reporting a plain stream end
                streams.result()
                return ReadinessOutcome.STREAM_ENDED_WITHOUT_MATCH
            return ReadinessOutcome.TIMED_OUT
        finally:
            self._waiting.discard(container_id)
            pending = [t for t in (matched, cancelled) if t is not None]
            if streams is not None and not handed_off:
                pending.append(streams)
            await _cancel_and_wait(*pending)
            if not handed_off:
                await self.executor.terminate(logs_proc)

    def _follow(self, streams: asyncio.Task, proc: asyncio.subprocess.Process) -> None:
        self._followers[streams] = proc
        streams.add_done_callback(self._follower_done)

    def _follower_done(self, streams: asyncio.Task) -> None:
        self._followers.pop(streams, None)
        if streams.cancelled():
            return
        error = streams.exception()
        if error is not None:
            logger.warning(f"Log follower failed after readiness: {error}")

    async def aclose(self) -> None:
        """Stop echoing output of containers started with ``show_output``."""
        followers = list(self._followers.items())
        self._followers.clear()
        for streams, proc in followers:
            await self.executor.terminate(proc)
            await _cancel_and_wait(streams)

    async def start(self, container_id: str) -> str:
        """Start an existing, stopped container."""
        return await self.executor.execute(["start", container_id])

    async def list_containers(
        self,
        *,
        all_containers: bool = False,
        filter: str | None = None,
        format: str | None = None,
        as_json: bool = False,
    ) -> str | list[dict]:
        """Run ``ps`` and return its raw output, or parsed rows with ``as_json``."""
        args = ["ps"]
        if all_containers:
            args.append("-a")
        if filter:
            args.extend(["--filter", filter])
        if as_json:
            args.extend(["--format", "{{json .}}"])
        elif format:
            args.extend(["--format", format])

        output = await self.executor.execute(args)
        if not as_json:
            return output
        return [json.loads(line) for line in output.splitlines() if line.strip()]

    async def list(self, image: str) -> list[ContainerInfo]:
        """List all containers created from ``image``, running or not."""
        output = await self.list_containers(
            all_containers=True, filter=f"ancestor={image}", format=PS_ROW_FORMAT
        )
        return parse_container_rows(output)


def parse_container_rows(output: str) -> list[ContainerInfo]:
    """Parse tab-separated ``ps`` rows (see PS_ROW_FORMAT) into ContainerInfo objects."""
    containers = []
    for line in output.splitlines():
        values = line.strip().split("\t")
        if len(values) < 2:
            continue
        containers.append(ContainerInfo(**dict(zip(PS_COLUMNS, values))))
    return containers
