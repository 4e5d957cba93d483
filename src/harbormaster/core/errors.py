"""Exception hierarchy for harbormaster.

Every error raised on purpose derives from HarbormasterError so callers
(and the CLI) can catch the whole family in one place.
"""

from __future__ import annotations

from collections.abc import Sequence


class HarbormasterError(Exception):
    """Base class for all harbormaster errors."""


class CommandFailed(HarbormasterError):
    """An engine command exited non-zero after exhausting its retries."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int | None,
        stderr: str = "",
        message: str | None = None,
    ) -> None:
        self.command_args = list(args)
        self.returncode = returncode
        self.stderr = stderr
        if message is None:
            message = f"Command failed ({returncode}): {' '.join(self.command_args)}"
            if stderr:
                message = f"{message}\n{stderr}"
        super().__init__(message)


class ContainerStopFailed(CommandFailed):
    """`stop` failed; the message embeds whatever logs were captured meanwhile."""

    def __init__(self, container_id: str, cause: CommandFailed, captured_logs: list[str]) -> None:
        self.container_id = container_id
        self.captured_logs = captured_logs
        if captured_logs:
            logs_context = "\n\nCaptured logs:\n" + "\n".join(captured_logs)
        else:
            logs_context = "\n\nNo logs captured"
        super().__init__(
            cause.command_args,
            cause.returncode,
            cause.stderr,
            message=f"Failed to stop container {container_id}: {cause}{logs_context}",
        )


class NoContainerId(HarbormasterError):
    """An operation needing a live container was called without one."""

    def __init__(self, message: str = "No containerId: container has not been started") -> None:
        super().__init__(message)


class ReadinessTimeout(HarbormasterError):
    """A log pattern or HTTP condition was not met within its window."""


class StreamEndedWithoutMatch(HarbormasterError):
    """The container's log streams ended before the readiness pattern appeared."""


class ConfigurationError(HarbormasterError):
    """Required configuration is missing or malformed."""


class RegistryError(HarbormasterError):
    """The registry API answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)
