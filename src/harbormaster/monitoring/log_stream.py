"""Line-oriented monitoring of container log streams.

A LogStreamMonitor consumes the stdout and stderr pipes of an engine
``logs -f`` process concurrently, turns the bytes into complete lines, and
reports the first line matching a readiness pattern. Optionally it echoes
lines to the terminal and keeps a copy of them for diagnostics.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from rich.console import Console
from rich.markup import escape

from harbormaster.core.constants import LOG_READ_CHUNK_SIZE, SIGNAL_SETTLE_MS

logger = logging.getLogger(__name__)

# Echoed container output is part of the program's stdout, not its logs
echo_console = Console(highlight=False, soft_wrap=True)


@dataclass(frozen=True)
class LogEvent:
    """A single decoded line from one of a container's streams."""

    container_id: str | None
    stream: str  # "stdout" or "stderr"
    line: str

    def render(self) -> str:
        return f"[{self.stream}] {self.line}"


class LogStreamMonitor:
    """Watches log lines for a pattern.

    Example:
        ```python
        proc = await executor.spawn(["logs", "-f", container_id])
        monitor = LogStreamMonitor("READY", container_id=container_id, echo=True)
        streams = asyncio.create_task(monitor.consume_all(proc))
        await monitor.matched.wait()
        ```
    """

    def __init__(
        self,
        pattern: str | re.Pattern[str] | None = None,
        *,
        container_id: str | None = None,
        echo: bool = False,
        continue_after_match: bool = False,
        capture: bool = False,
        echo_prefix: str = "container",
    ) -> None:
        """Initialize the monitor.

        Args:
            pattern: Regex searched in every line; ``None`` only echoes/captures
            container_id: Container the streams belong to (tags LogEvents)
            echo: Print each line as ``[<echo_prefix>:<stream>] line``
            continue_after_match: Keep reading after the first match
            capture: Keep every LogEvent in ``captured``
            echo_prefix: Tag shown in front of echoed lines
        """
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        self.pattern = pattern
        self.container_id = container_id
        self.echo = echo
        self.continue_after_match = continue_after_match
        self.capture = capture
        self.echo_prefix = echo_prefix

        self.matched = asyncio.Event()
        self.match: LogEvent | None = None
        self.captured: list[LogEvent] = []

    async def consume_all(self, proc: asyncio.subprocess.Process) -> None:
        """Consume both pipes of ``proc`` until they end (or match, see ``consume``)."""
        await asyncio.gather(
            self.consume(proc.stdout, "stdout"),
            self.consume(proc.stderr, "stderr"),
        )

    async def consume(self, reader: asyncio.StreamReader | None, stream_name: str) -> None:
        """Read ``reader`` line by line.

        Returns when the stream ends, or right after the first pattern match
        unless ``continue_after_match`` is set.
        """
        if reader is None:
            return

        async with contextlib.aclosing(self._lines(reader, stream_name)) as lines:
            async for line in lines:
                event = LogEvent(self.container_id, stream_name, line)
                if self.echo:
                    echo_console.print(
                        f"[dim]\\[{self.echo_prefix}:{stream_name}][/] {escape(line)}"
                    )
                if self.capture:
                    self.captured.append(event)
                if self._test(event) and not self.continue_after_match:
                    return

    def _test(self, event: LogEvent) -> bool:
        """Record the first match; later matches are ignored."""
        if self.pattern is None or self.matched.is_set():
            return False
        if self.pattern.search(event.line) is None:
            return False
        self.match = event
        self.matched.set()
        logger.debug(
            f"Readiness pattern matched on {event.stream}: {event.line}",
            extra={"container_id": self.container_id, "stream": event.stream},
        )
        return True

    async def _lines(self, reader: asyncio.StreamReader, stream_name: str) -> AsyncIterator[str]:
        """Yield complete lines; a trailing fragment is yielded at end of stream."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        try:
            while True:
                chunk = await reader.read(LOG_READ_CHUNK_SIZE)
                if not chunk:
                    break
                buffer += decoder.decode(chunk)
                *lines, buffer = buffer.split("\n")
                for line in lines:
                    yield line.removesuffix("\r")
            buffer += decoder.decode(b"", final=True)
            if buffer:
                yield buffer.removesuffix("\r")
        finally:
            logger.debug(
                f"Stopped reading {stream_name}",
                extra={"container_id": self.container_id, "stream": stream_name},
            )


class SignalMonitor(LogStreamMonitor):
    """Watches for a literal signal string, optionally tied to an end marker.

    Without ``end_signal`` the first line containing ``signal`` matches. With
    it, a signal line is confirmed only after ``settle_ms`` without an
    ``end_signal`` line; an end marker cancels any pending confirmation. This
    skips signals from earlier container instances replayed by ``--tail all``.
    """

    def __init__(
        self,
        signal: str,
        *,
        end_signal: str | None = None,
        settle_ms: int = SIGNAL_SETTLE_MS,
        **kwargs: Any,
    ) -> None:
        super().__init__(None, continue_after_match=False, **kwargs)
        self.signal = signal
        self.end_signal = end_signal
        self.settle_ms = settle_ms
        self._pending: asyncio.TimerHandle | None = None

    async def consume_all(self, proc: asyncio.subprocess.Process) -> None:
        try:
            await super().consume_all(proc)
            # A confirmation scheduled just before the streams ended still counts
            if self._pending is not None:
                await self.matched.wait()
        finally:
            self._cancel_pending()

    def _test(self, event: LogEvent) -> bool:
        if self.matched.is_set():
            return False
        if self.end_signal and self.end_signal in event.line:
            self._cancel_pending()
            return False
        if self.signal not in event.line:
            return False
        if self.end_signal is None:
            self._resolve(event)
            return True
        self._cancel_pending()
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(self.settle_ms / 1000, self._resolve, event)
        return False

    def _resolve(self, event: LogEvent) -> None:
        self._pending = None
        if self.matched.is_set():
            return
        self.match = event
        self.matched.set()

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
