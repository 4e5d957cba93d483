"""Utils module - Shared utilities."""

from __future__ import annotations

from harbormaster.utils.logging import setup_logging
from harbormaster.utils.signals import CancellationToken, interrupt_scope

__all__ = ["CancellationToken", "interrupt_scope", "setup_logging"]
