"""Command executor for the container engine CLI.

Every engine invocation goes through CommandExecutor, either as a one-shot
``execute`` (captured, trimmed, optionally retried) or as a ``spawn`` for
long-running commands such as ``logs -f`` whose pipes the caller consumes.
"""

from __future__ import annotations

import asyncio
import logging
import platform
from collections.abc import Sequence

from harbormaster.core.constants import DEFAULT_ENGINE_BINARY, DEFAULT_RETRY_DELAY_MS
from harbormaster.core.errors import CommandFailed
from harbormaster.core.schemas import EngineConfig, RetryPolicy

logger = logging.getLogger(__name__)


def get_current_platform() -> str:
    """Engine architecture name of this host: ``arm64`` or ``amd64``."""
    machine = platform.machine().lower()
    if machine in ("arm64", "aarch64"):
        return "arm64"
    return "amd64"


def get_current_platform_arch() -> str:
    """DOCKER_ARCHS key matching this host."""
    return "linux-arm64" if get_current_platform() == "arm64" else "linux-x64"


class CommandExecutor:
    """Runs the engine binary with an argument vector.

    Example:
        ```python
        executor = CommandExecutor(binary="docker", verbose=True)
        version = await executor.execute(["version", "--format", "{{.Server.Version}}"])
        ```
    """

    def __init__(
        self,
        binary: str = DEFAULT_ENGINE_BINARY,
        verbose: bool = False,
        default_retry: bool | int = 1,
        default_retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
    ) -> None:
        """Initialize the executor.

        Args:
            binary: Engine executable (``docker``, ``podman``, or a full path)
            verbose: Log every invoked argument vector at INFO instead of DEBUG
            default_retry: Attempts used when a call passes no ``retry``
            default_retry_delay_ms: Delay between attempts when a call sets none
        """
        self.binary = binary
        self.verbose = verbose
        self.default_retry = default_retry
        self.default_retry_delay_ms = default_retry_delay_ms

    @classmethod
    def from_config(cls, config: EngineConfig) -> CommandExecutor:
        return cls(
            binary=config.binary,
            verbose=config.verbose,
            default_retry=config.retry,
            default_retry_delay_ms=config.retry_delay_ms,
        )

    def _trace(self, args: Sequence[str]) -> None:
        level = logging.INFO if self.verbose else logging.DEBUG
        logger.log(level, f"Executing: {self.binary} {' '.join(args)}")

    async def execute(
        self,
        args: Sequence[str],
        *,
        retry: bool | int | None = None,
        retry_delay_ms: int | None = None,
        stdin: str | None = None,
    ) -> str:
        """Run one engine command and return its trimmed stdout.

        Args:
            args: Arguments after the engine binary
            retry: ``True`` for three attempts, or an explicit attempt count
                (default from the executor)
            retry_delay_ms: Delay between attempts (default from the executor)
            stdin: Text piped to the process

        Returns:
            Stdout with surrounding whitespace removed

        Raises:
            CommandFailed: If the last attempt exits non-zero
        """
        policy = RetryPolicy.from_option(
            self.default_retry if retry is None else retry,
            self.default_retry_delay_ms if retry_delay_ms is None else retry_delay_ms,
        )

        for attempt in range(1, policy.attempts + 1):
            try:
                return await self._run_once(args, stdin)
            except CommandFailed as e:
                if attempt >= policy.attempts:
                    raise
                logger.warning(
                    f"Command failed (attempt {attempt}/{policy.attempts}), "
                    f"retrying in {policy.delay_ms}ms: {self.binary} {' '.join(args)}: "
                    f"{e.stderr.strip() or e.returncode}"
                )
                await asyncio.sleep(policy.delay_ms / 1000)

        raise AssertionError("unreachable")  # pragma: no cover

    async def _run_once(self, args: Sequence[str], stdin: str | None) -> str:
        self._trace(args)
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CommandFailed(
                args, None, str(e), message=f"Failed to start {self.binary}: {e}"
            ) from e

        try:
            stdout, stderr = await proc.communicate(
                stdin.encode("utf-8") if stdin is not None else None
            )
        finally:
            # Only reached with a live process when the caller was cancelled
            await self.terminate(proc)

        out = stdout.decode("utf-8", errors="replace").strip()
        err = stderr.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            raise CommandFailed(args, proc.returncode, err)
        return out

    async def spawn(self, args: Sequence[str]) -> asyncio.subprocess.Process:
        """Start a long-running engine command with piped stdout/stderr.

        The caller owns the returned process and must ``terminate`` it.
        """
        self._trace(args)
        try:
            return await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CommandFailed(
                args, None, str(e), message=f"Failed to start {self.binary}: {e}"
            ) from e

    async def terminate(self, proc: asyncio.subprocess.Process | None) -> None:
        """Kill ``proc`` if it is still running and reap it."""
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()

    async def tag_image(self, source_image: str, target_image: str) -> str:
        logger.debug(f"Tagging image: {source_image} -> {target_image}")
        return await self.execute(["tag", source_image, target_image])
