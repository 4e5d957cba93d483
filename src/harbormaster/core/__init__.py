"""Core module - configuration, schemas and errors."""

from __future__ import annotations

from harbormaster.core.config import load_config
from harbormaster.core.constants import DOCKER_ARCHS, DOCKERFILE_VARIANTS
from harbormaster.core.errors import (
    CommandFailed,
    ConfigurationError,
    ContainerStopFailed,
    HarbormasterError,
    NoContainerId,
    ReadinessTimeout,
    RegistryError,
    StreamEndedWithoutMatch,
)
from harbormaster.core.schemas import (
    Attestations,
    ContainerInfo,
    ContainerOptions,
    EngineConfig,
    HubConfig,
    ImageSpec,
    ImageTagInfo,
    PortMapping,
    ProjectConfig,
    ReadinessOutcome,
    RepositoryStats,
    RetryPolicy,
    RunSpec,
)

__all__ = [
    "DOCKER_ARCHS",
    "DOCKERFILE_VARIANTS",
    "Attestations",
    "CommandFailed",
    "ConfigurationError",
    "ContainerInfo",
    "ContainerOptions",
    "ContainerStopFailed",
    "EngineConfig",
    "HarbormasterError",
    "HubConfig",
    "ImageSpec",
    "ImageTagInfo",
    "load_config",
    "NoContainerId",
    "PortMapping",
    "ProjectConfig",
    "ReadinessOutcome",
    "ReadinessTimeout",
    "RegistryError",
    "RepositoryStats",
    "RetryPolicy",
    "RunSpec",
    "StreamEndedWithoutMatch",
]
