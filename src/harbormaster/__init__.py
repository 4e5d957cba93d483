"""harbormaster - run containers through the engine CLI and wait until they are ready."""

from __future__ import annotations

from harbormaster.core.schemas import (
    ContainerOptions,
    EngineConfig,
    HubConfig,
    ImageSpec,
    PortMapping,
    ProjectConfig,
    ReadinessOutcome,
    RunSpec,
)
from harbormaster.project import ContainerProject
from harbormaster.runners import CommandExecutor, ContainerLifecycle, ContainerRunner

__version__ = "0.1.0"

__all__ = [
    "CommandExecutor",
    "ContainerLifecycle",
    "ContainerOptions",
    "ContainerProject",
    "ContainerRunner",
    "EngineConfig",
    "HubConfig",
    "ImageSpec",
    "PortMapping",
    "ProjectConfig",
    "ReadinessOutcome",
    "RunSpec",
    "__version__",
]
