"""Image building, listing and tagging through the engine CLI."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path

from harbormaster.core.constants import DOCKER_ARCHS, DOCKERFILE_VARIANTS
from harbormaster.core.schemas import Attestations, ImageSpec, ImageTagInfo
from harbormaster.runners.executor import CommandExecutor

logger = logging.getLogger(__name__)

TAG_ROW_FORMAT = "{{.Repository}}:{{.Tag}}\t{{.ID}}\t{{.Size}}\t{{.CreatedAt}}"


def recognize_tag(tag: str) -> tuple[str | None, str | None]:
    """Recognize ``(variant, arch)`` from an ``org/repo:<variant>-<arch>`` tag."""
    _, sep, suffix = tag.partition(":")
    if not sep or not suffix:
        return None, None
    for variant, variant_info in DOCKERFILE_VARIANTS.items():
        if not suffix.startswith(variant_info["tag_suffix"]):
            continue
        for arch, arch_info in DOCKER_ARCHS.items():
            if arch_info["arch"] in suffix:
                return variant, arch
        return variant, None
    return None, None


class ImageManager:
    """Builds and inspects images.

    Example:
        ```python
        images = ImageManager(executor)
        tag = await images.build_variant(spec)
        print(await images.get_image_size(tag))
        ```
    """

    def __init__(self, executor: CommandExecutor) -> None:
        self.executor = executor

    async def build_image(
        self,
        context: str | Path,
        tag: str,
        dockerfile: str | Path | None = "Dockerfile",
        build_args: Mapping[str, str] | None = None,
        no_cache: bool = False,
        attestations: Attestations | None = None,
        platform: str | None = None,
    ) -> str:
        """Build ``context`` into ``tag``.

        Args:
            context: Build context directory
            tag: Image tag to apply
            dockerfile: Dockerfile path, relative to ``context`` unless absolute
            build_args: ``--build-arg`` values
            no_cache: Pass ``--no-cache``
            attestations: SBOM / provenance attestations to request
            platform: Target platform (``linux/arm64``)

        Returns:
            Engine build output
        """
        context = Path(context)
        args = ["build"]
        if dockerfile:
            dockerfile = Path(dockerfile)
            args.extend(["-f", str(dockerfile if dockerfile.is_absolute() else context / dockerfile)])
        args.extend(["-t", tag])
        if no_cache:
            args.append("--no-cache")
        if platform:
            args.extend(["--platform", platform])
        for key, value in (build_args or {}).items():
            args.extend(["--build-arg", f"{key}={value}"])
        if attestations is not None and attestations.sbom:
            args.extend(["--attest", "type=sbom"])
        if attestations is not None and attestations.provenance:
            args.extend(["--attest", "type=provenance,mode=max"])
        args.append(str(context))

        logger.info(f"Building image {tag} from {context}")
        return await self.executor.execute(args)

    async def build_variant(self, spec: ImageSpec, context_dir: str | Path | None = None) -> str:
        """Build the image described by ``spec`` from its prepared context.

        Returns:
            The image tag that was built
        """
        image_tag = spec.image_tag()
        context = Path(context_dir) if context_dir is not None else spec.build_context_dir()
        arch = DOCKER_ARCHS[spec.arch]

        await self.build_image(
            context,
            image_tag,
            dockerfile=context / "Dockerfile",
            build_args=spec.build_args,
            attestations=spec.attestations,
            platform=f"{arch['os']}/{arch['arch']}",
        )
        logger.info(f"Built {image_tag}")

        if spec.tag_latest:
            await self.executor.tag_image(image_tag, spec.latest_image_tag())
        return image_tag

    async def inspect_image(self, image: str) -> list[dict]:
        """Return the engine's ``image inspect`` document."""
        return json.loads(await self.executor.execute(["image", "inspect", image]))

    async def list_images(
        self,
        *,
        all_images: bool = False,
        filter: str | None = None,
        format: str | None = None,
        as_json: bool = False,
    ) -> str | list[dict]:
        """Run ``images``; ``as_json`` parses one JSON object per line."""
        args = ["images"]
        if all_images:
            args.append("-a")
        if filter:
            args.extend(["--filter", filter])
        if as_json and not format:
            args.extend(["--format", "json"])
        elif format:
            args.extend(["--format", format])

        output = await self.executor.execute(args)
        if as_json and not format:
            return [json.loads(line) for line in output.splitlines() if line.strip()]
        return output

    async def image_tag_exists(self, tag: str) -> bool:
        if ":" not in tag:
            tag = f"{tag}:latest"
        images = await self.list_images(filter=f"reference={tag}", as_json=True)
        return len(images) > 0

    async def get_image_size(self, image: str) -> str:
        return await self.executor.execute(["images", image, "--format", "{{.Size}}"])

    async def remove_image(self, image: str, force: bool = False) -> str:
        args = ["rmi"]
        if force:
            args.append("-f")
        args.append(image)
        return await self.executor.execute(args)

    async def push_image(self, image: str) -> str:
        logger.info(f"Pushing {image}")
        return await self.executor.execute(["push", image])

    async def get_tags(self, organization: str, repository: str) -> list[ImageTagInfo]:
        """List local tags of ``organization/repository``."""
        output = await self.list_images(
            filter=f"reference={organization}/{repository}", format=TAG_ROW_FORMAT
        )
        tags = []
        for line in output.splitlines():
            parts = line.strip().split("\t")
            if len(parts) < 2 or not parts[0] or not parts[1]:
                continue
            tag, image_id = parts[0], parts[1]
            size = parts[2] if len(parts) > 2 else ""
            created = parts[3] if len(parts) > 3 else ""
            variant, arch = recognize_tag(tag)
            tags.append(
                ImageTagInfo(
                    tag=tag, image_id=image_id, size=size, created=created, variant=variant, arch=arch
                )
            )
        return tags
