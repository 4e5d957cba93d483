"""Project workflow: build, run and tear down a development container.

ContainerProject ties the runners and the image manager to one
ProjectConfig, which is what the CLI and most scripts work with.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from harbormaster.core.constants import DOCKER_ARCHS, DOCKERFILE_VARIANTS
from harbormaster.core.errors import ConfigurationError, ReadinessTimeout
from harbormaster.core.schemas import ImageSpec, ProjectConfig, RunSpec
from harbormaster.images.manager import ImageManager
from harbormaster.runners.container_runner import ContainerRunner
from harbormaster.runners.executor import CommandExecutor, get_current_platform_arch
from harbormaster.runners.lifecycle import ContainerLifecycle
from harbormaster.utils.signals import CancellationToken

logger = logging.getLogger(__name__)

DEV_VARIANT = "alpine"
DEV_WAIT_FOR = "READY"

# Health check used once the dev container reported readiness
DEV_PROBE_RETRY_DELAY_MS = 2000
DEV_PROBE_REQUEST_TIMEOUT_MS = 5000
DEV_PROBE_TIMEOUT_MS = 60000


@dataclass
class DevContainer:
    """Handle on a running development container."""

    container_id: str
    project: ContainerProject

    async def stop(self) -> None:
        await self.project.stop_dev()

    async def ensure_running(self) -> bool:
        return await self.project.ensure_dev_running()


class ContainerProject:
    """Development and distribution workflow for one project.

    Example:
        ```python
        project = ContainerProject(load_config("harbormaster.yaml"))
        await project.build_dev()
        dev = await project.run_dev()
        await dev.ensure_running()
        await dev.stop()
        ```
    """

    def __init__(self, config: ProjectConfig, executor: CommandExecutor | None = None) -> None:
        self.config = config
        self.executor = executor or CommandExecutor.from_config(config.engine)
        self.runner = ContainerRunner(self.executor)
        self.lifecycle = ContainerLifecycle(self.executor)
        self.images = ImageManager(self.executor)
        self.dev_container_id: str | None = None

    def _dev_image_spec(self) -> ImageSpec:
        image = self.config.image
        return image.model_copy(
            update={
                "variant": image.variant or DEV_VARIANT,
                "arch": image.arch or get_current_platform_arch(),
            }
        )

    def development_run_spec(self) -> RunSpec:
        """Derive the dev container's RunSpec from the project configuration."""
        image_tag = self._dev_image_spec().image_tag()
        container = self.config.container
        verbose = container.verbose or self.config.image.verbose
        return container.to_run_spec(
            image=image_tag,
            name=re.sub(r"[^a-zA-Z0-9_.-]", "-", image_tag) + "-dev",
            detach=True,
            wait_for=container.wait_for or DEV_WAIT_FOR,
            verbose=verbose,
            show_output=container.show_output or verbose,
        )

    async def build_dev(self, context_dir: str | Path | None = None) -> str:
        """Build the dev image (current platform, default variant)."""
        return await self.images.build_variant(self._dev_image_spec(), context_dir)

    async def build_distribution(self, context_dir: str | Path | None = None) -> list[str]:
        """Build every configured variant for every configured architecture.

        With ``context_dir`` all builds share that context; otherwise each
        variant uses its own prepared context directory.
        """
        image = self.config.image
        variants = [image.variant] if image.variant else list(DOCKERFILE_VARIANTS)
        archs = [image.arch] if image.arch else list(DOCKER_ARCHS)

        tags = []
        for variant in variants:
            for arch in archs:
                spec = image.model_copy(update={"variant": variant, "arch": arch})
                tags.append(await self.images.build_variant(spec, context_dir))
        return tags

    async def run_dev(
        self,
        show_output: bool | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> DevContainer | None:
        """Replace any previous dev container and start a new one.

        Returns:
            The running container, or ``None`` if startup was interrupted
            (whatever was started is cleaned up first)
        """
        spec = self.development_run_spec()
        if show_output is not None:
            spec = spec.derive(show_output=show_output)

        token = cancel or CancellationToken()
        await self.lifecycle.ensure_stopped(spec.name)
        logger.info(f"Running container from image: {spec.image}")
        container_id = await self.runner.run(spec, cancel=token)

        if token.cancelled:
            logger.warning(f"Interrupted during startup ({token.reason}), stopping container")
            await self.lifecycle.cleanup(container_id)
            await self.runner.aclose()
            return None

        self.dev_container_id = container_id
        logger.info(f"Container started: {container_id}")
        return DevContainer(container_id=container_id, project=self)

    async def ensure_dev_running(self) -> bool:
        """Check that the dev container answers HTTP on its first port.

        Raises:
            ConfigurationError: If no dev container was started
            ReadinessTimeout: If it does not respond in time
        """
        if not self.dev_container_id:
            raise ConfigurationError("Container must be started first using run_dev()")
        spec = self.development_run_spec()
        running = await self.lifecycle.is_running(
            self.dev_container_id,
            spec.ports,
            retry_delay_ms=DEV_PROBE_RETRY_DELAY_MS,
            request_timeout_ms=DEV_PROBE_REQUEST_TIMEOUT_MS,
            timeout_ms=DEV_PROBE_TIMEOUT_MS,
        )
        if not running:
            raise ReadinessTimeout(
                f"Container {self.dev_container_id} failed to respond after "
                f"{DEV_PROBE_TIMEOUT_MS // 1000} seconds"
            )
        return True

    async def stop_dev(self) -> None:
        if not self.dev_container_id:
            raise ConfigurationError("Container must be started first using run_dev()")
        await self.runner.aclose()
        await self.lifecycle.cleanup(self.dev_container_id)
        self.dev_container_id = None

    async def retag_images(self, organization: str, repository: str) -> list[str]:
        """Tag every local ``organization/repository`` image into this project's repository."""
        image = self.config.image
        tags = await self.images.get_tags(organization, repository)
        logger.info(
            f"Retagging {len(tags)} images from {organization}/{repository} "
            f"to {image.organization}/{image.repository}"
        )

        retagged = []
        for info in tags:
            _, _, suffix = info.tag.partition(":")
            if not suffix:
                continue
            target = f"{image.organization}/{image.repository}:{suffix}"
            await self.executor.tag_image(f"{organization}/{repository}:{suffix}", target)
            retagged.append(target)
        return retagged

    async def aclose(self) -> None:
        """Release log followers; also remove the dev container when ``dispose`` is set."""
        await self.runner.aclose()
        if self.config.dispose and self.dev_container_id:
            await self.lifecycle.cleanup(self.dev_container_id)
            self.dev_container_id = None

    async def __aenter__(self) -> ContainerProject:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
