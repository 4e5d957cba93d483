"""Pydantic schemas for harbormaster.

This module defines the data contracts used throughout the package:
container launch requests, image coordinates, engine/registry settings and
the parsed rows returned by engine listing commands.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    field_serializer,
    field_validator,
    model_validator,
)

from harbormaster.core.constants import (
    DEFAULT_ENGINE_BINARY,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_WAIT_TIMEOUT_MS,
    DOCKER_ARCHS,
    DOCKER_HUB_URL,
    DOCKERFILE_VARIANTS,
    RETRY_TRUE_ATTEMPTS,
)
from harbormaster.core.errors import ConfigurationError


class ReadinessOutcome(str, Enum):
    """Terminal state of a single wait-for-readiness operation."""

    MATCHED = "matched"
    TIMED_OUT = "timed_out"
    STREAM_ENDED_WITHOUT_MATCH = "stream_ended_without_match"
    CANCELLED = "cancelled"


class RetryPolicy(BaseModel):
    """Attempts and inter-attempt delay for a single engine command."""

    attempts: int = Field(default=1, ge=1)
    delay_ms: int = Field(default=DEFAULT_RETRY_DELAY_MS, ge=0)

    model_config = {"frozen": True}

    @classmethod
    def from_option(cls, retry: bool | int | None, delay_ms: int | None = None) -> RetryPolicy:
        """Build a policy from the `retry` option accepted by the executor.

        ``True`` means three attempts, ``False``/``None`` a single one, and an
        integer is taken as the attempt count.
        """
        if retry is True:
            attempts = RETRY_TRUE_ATTEMPTS
        elif retry is False or retry is None:
            attempts = 1
        else:
            attempts = retry
        if delay_ms is None:
            return cls(attempts=attempts)
        return cls(attempts=attempts, delay_ms=delay_ms)


class PortMapping(BaseModel):
    """A container port published on the host."""

    internal: int = Field(..., ge=1, le=65535, description="Port inside the container")
    external: int = Field(..., ge=1, le=65535, description="Port on the host")

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def parse_short_form(cls, data: Any) -> Any:
        """Accept the engine's ``external:internal`` short form."""
        if isinstance(data, str):
            external, sep, internal = data.partition(":")
            if not sep:
                return {"internal": external, "external": external}
            return {"internal": internal, "external": external}
        return data

    def render(self) -> str:
        return f"{self.external}:{self.internal}"


class ContainerOptions(BaseModel):
    """Run options shared by a launch request and project-level defaults.

    Attributes:
        image: Image reference (optional here, required on RunSpec)
        name: Container name
        ports: Published ports, rendered in order
        volumes: Volume mounts in engine syntax (``host:container[:mode]``)
        env: Environment variables passed with ``-e``
        wait_for: Regular expression marking the container as ready
        wait_timeout_ms: How long to wait for ``wait_for``
        show_output: Echo container output while waiting
        force_color: Inject ``FORCE_COLOR=1`` unless already set
    """

    image: str | None = Field(default=None)
    name: str | None = Field(default=None)
    ports: tuple[PortMapping, ...] = Field(default=())
    volumes: tuple[str, ...] = Field(default=())
    env: Mapping[str, str] = Field(default_factory=dict, validate_default=True)
    detach: bool = Field(default=True)
    remove_on_exit: bool = Field(default=False)
    interactive: bool = Field(default=False)
    tty: bool = Field(default=False)
    workdir: str | None = Field(default=None)
    network: str | None = Field(default=None)
    platform: str | None = Field(default=None)
    command: str | None = Field(default=None, description="Shell-style command string")
    wait_for: str | None = Field(default=None, description="Readiness regex")
    wait_timeout_ms: int = Field(default=DEFAULT_WAIT_TIMEOUT_MS, gt=0)
    show_output: bool = Field(default=False)
    force_color: bool = Field(default=True)
    verbose: bool = Field(default=False)

    model_config = {"frozen": True}

    @field_validator("env", mode="before")
    @classmethod
    def stringify_env(cls, v: Any) -> Any:
        """YAML happily produces ints and bools; the engine only takes strings."""
        if isinstance(v, Mapping):
            return {str(k): "" if val is None else str(val) for k, val in v.items()}
        return v

    @field_validator("env")
    @classmethod
    def freeze_env(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(v))

    @field_serializer("env")
    def dump_env(self, v: Mapping[str, str]) -> dict[str, str]:
        return dict(v)

    @field_validator("wait_for")
    @classmethod
    def validate_wait_for(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid readiness pattern {v!r}: {e}") from e
        return v

    def derive(self, **overrides: Any) -> ContainerOptions:
        """Return a validated copy with ``overrides`` applied.

        The receiver is never modified.
        """
        return type(self).model_validate({**self.model_dump(), **overrides})

    def to_run_spec(self, **overrides: Any) -> RunSpec:
        """Promote these options to a full launch request."""
        return RunSpec.model_validate({**self.model_dump(), **overrides})


class RunSpec(ContainerOptions):
    """Immutable description of a single container launch request."""

    image: str = Field(..., min_length=1, description="Image reference")

    def derive(self, **overrides: Any) -> RunSpec:
        return RunSpec.model_validate({**self.model_dump(), **overrides})


class Attestations(BaseModel):
    """Build attestations requested from buildx."""

    sbom: bool = Field(default=False)
    provenance: bool = Field(default=False)


class ImageSpec(BaseModel):
    """Coordinates of an image built from a prepared context.

    Attributes:
        organization: Registry namespace
        repository: Repository name
        variant: Dockerfile variant (alpine or distroless)
        arch: Architecture key from DOCKER_ARCHS
        tag_latest: Also tag ``<tag>-latest`` after building
        app_base_dir: Application directory the build context was prepared from
        build_context_base_dir: Where prepared per-variant contexts live
    """

    organization: str = Field(default="")
    repository: str = Field(default="")
    variant: str | None = Field(default=None)
    arch: str | None = Field(default=None)
    tag_latest: bool = Field(default=False)
    build_args: dict[str, str] = Field(default_factory=dict)
    attestations: Attestations = Field(default_factory=Attestations)
    app_base_dir: Path | None = Field(default=None)
    build_context_base_dir: Path | None = Field(default=None)
    verbose: bool = Field(default=False)

    @field_validator("variant")
    @classmethod
    def validate_variant(cls, v: str | None) -> str | None:
        if v is not None and v not in DOCKERFILE_VARIANTS:
            raise ValueError(f"Unknown variant {v!r}; expected one of {sorted(DOCKERFILE_VARIANTS)}")
        return v

    @field_validator("arch")
    @classmethod
    def validate_arch(cls, v: str | None) -> str | None:
        if v is not None and v not in DOCKER_ARCHS:
            raise ValueError(f"Unknown arch {v!r}; expected one of {sorted(DOCKER_ARCHS)}")
        return v

    def image_tag(self, variant: str | None = None, arch: str | None = None) -> str:
        """Compute ``{organization}/{repository}:{variant}-{arch}``."""
        variant = variant or self.variant
        arch = arch or self.arch
        if not variant or not arch:
            raise ConfigurationError("variant and arch must be set to get image tag")
        if variant not in DOCKERFILE_VARIANTS:
            raise ConfigurationError(f"Unknown variant: {variant}")
        if arch not in DOCKER_ARCHS:
            raise ConfigurationError(f"Unknown arch: {arch}")
        suffix = DOCKERFILE_VARIANTS[variant]["tag_suffix"]
        return f"{self.organization}/{self.repository}:{suffix}-{DOCKER_ARCHS[arch]['arch']}"

    def latest_image_tag(self, variant: str | None = None, arch: str | None = None) -> str:
        return f"{self.image_tag(variant, arch)}-latest"

    def build_context_dir(self, variant: str | None = None) -> Path:
        """Directory holding the prepared build context for ``variant``."""
        variant = variant or self.variant
        if not variant:
            raise ConfigurationError("variant must be set to get build context directory")
        base = self.build_context_base_dir
        if base is None:
            if self.app_base_dir is None:
                raise ConfigurationError("app_base_dir or build_context_base_dir must be set")
            base = self.app_base_dir / ".~o" / "harbormaster"
        return base / DOCKERFILE_VARIANTS[variant]["variant_dir"]


class EngineConfig(BaseModel):
    """How the container engine CLI is invoked."""

    binary: str = Field(default=DEFAULT_ENGINE_BINARY, min_length=1)
    verbose: bool = Field(default=False)
    retry: int = Field(default=1, ge=1, description="Attempts for retried commands")
    retry_delay_ms: int = Field(default=DEFAULT_RETRY_DELAY_MS, ge=0)


class HubConfig(BaseModel):
    """Docker Hub credentials and endpoint."""

    username: str = Field(..., min_length=1)
    password: SecretStr = Field(..., description="Password or personal access token")
    organization: str | None = Field(default=None)
    base_url: str = Field(default=DOCKER_HUB_URL)

    @property
    def namespace(self) -> str:
        """Organization when set, otherwise the user's own namespace."""
        return self.organization or self.username


class ProjectConfig(BaseModel):
    """Top-level project configuration.

    This is the main configuration loaded from YAML/JSON files.
    """

    name: str = Field(default="harbormaster project")
    engine: EngineConfig = Field(default_factory=EngineConfig)
    image: ImageSpec = Field(default_factory=ImageSpec)
    container: ContainerOptions = Field(default_factory=ContainerOptions)
    hub: HubConfig | None = Field(default=None)
    dispose: bool = Field(default=False, description="Clean up the dev container on close")


class ContainerInfo(BaseModel):
    """One row of ``ps`` output."""

    id: str
    name: str
    image: str = ""
    status: str = ""
    ports: str = ""


class ImageTagInfo(BaseModel):
    """One row of ``images`` output, with variant/arch recognized from the tag."""

    tag: str
    image_id: str
    size: str = ""
    created: str = ""
    variant: str | None = None
    arch: str | None = None


class RepositoryStats(BaseModel):
    """Repository statistics reported by Docker Hub."""

    name: str | None = None
    namespace: str | None = None
    pull_count: int = 0
    star_count: int = 0
    description: str = ""
    is_private: bool = False
    last_updated: str | None = None
