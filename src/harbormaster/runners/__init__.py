"""Runners module - driving the container engine CLI.

Provides:
- CommandExecutor: one-shot and long-running engine commands, with retry
- ContainerRunner: launch a container and wait for its readiness pattern
- ContainerLifecycle: stop, remove, clean up and health-check containers
"""

from __future__ import annotations

from harbormaster.runners.container_runner import ContainerRunner, build_run_args
from harbormaster.runners.executor import (
    CommandExecutor,
    get_current_platform,
    get_current_platform_arch,
)
from harbormaster.runners.lifecycle import ContainerLifecycle

__all__ = [
    "CommandExecutor",
    "ContainerLifecycle",
    "ContainerRunner",
    "build_run_args",
    "get_current_platform",
    "get_current_platform_arch",
]
