"""Scoped interrupt handling for run/await windows.

Signal handlers are bound to a CancellationToken only while an operation
is in flight. When it finishes, the previous handler is reinstated, so
repeated calls never accumulate handlers.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Iterator, Sequence
from typing import Any

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation flag that can be awaited.

    The first ``cancel()`` wins; later calls keep the original reason.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> str | None:
        await self._event.wait()
        return self.reason


INTERRUPT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)

# Tokens of the scopes currently holding each signal, innermost last, and the
# handler that was in place before the outermost scope took the signal over
_scopes: dict[signal.Signals, list[CancellationToken]] = {}
_original_handlers: dict[signal.Signals, Any] = {}


@contextlib.contextmanager
def interrupt_scope(
    token: CancellationToken,
    signals: Sequence[signal.Signals] = INTERRUPT_SIGNALS,
    enabled: bool = True,
) -> Iterator[CancellationToken]:
    """Route ``signals`` to ``token`` for the duration of the ``with`` block.

    The innermost scope owns the signal. On exit the enclosing scope gets it
    back, and when the outermost scope exits the handler that was installed
    before it (for example the one set by ``asyncio.run``) is restored.

    Must be entered from a running event loop. Where signal handlers cannot
    be installed (non-main thread, Windows) the scope degrades to the token
    alone and cancellation is only available programmatically.
    """
    if not enabled:
        yield token
        return

    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in signals:
        previous = signal.getsignal(sig)
        try:
            loop.add_signal_handler(sig, token.cancel, sig.name)
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.debug(f"Cannot install handler for {sig.name}: {e}")
            continue
        if not _scopes.get(sig):
            _original_handlers[sig] = previous
        _scopes.setdefault(sig, []).append(token)
        installed.append(sig)

    try:
        yield token
    finally:
        for sig in reversed(installed):
            _release(loop, sig, token)


def _release(
    loop: asyncio.AbstractEventLoop, sig: signal.Signals, token: CancellationToken
) -> None:
    stack = _scopes[sig]
    # Scopes in concurrent tasks may exit out of order
    del stack[len(stack) - 1 - stack[::-1].index(token)]
    loop.remove_signal_handler(sig)
    if stack:
        loop.add_signal_handler(sig, stack[-1].cancel, sig.name)
        return
    del _scopes[sig]
    original = _original_handlers.pop(sig, None)
    if original is not None:
        signal.signal(sig, original)
