"""Monitoring module - readiness signals from running containers.

Provides:
- LogStreamMonitor: pattern detection over a container's log streams
- SignalMonitor: literal signal detection with an optional end-of-instance marker
- ReadinessProber: HTTP polling until an endpoint reports ready
"""

from __future__ import annotations

from harbormaster.monitoring.log_stream import LogEvent, LogStreamMonitor, SignalMonitor
from harbormaster.monitoring.readiness import ReadinessProber

__all__ = ["LogEvent", "LogStreamMonitor", "ReadinessProber", "SignalMonitor"]
