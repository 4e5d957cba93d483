"""Tests for the project development workflow."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from harbormaster.core.errors import ConfigurationError, ReadinessTimeout
from harbormaster.core.schemas import ImageTagInfo, ProjectConfig
from harbormaster.project import ContainerProject


def make_project(**config) -> ContainerProject:
    data = {
        "image": {"organization": "acme", "repository": "web", "arch": "linux-x64"},
        "container": {"ports": ["8080:8080"]},
    }
    data.update(config)
    executor = MagicMock()
    executor.tag_image = AsyncMock()
    project = ContainerProject(ProjectConfig.model_validate(data), executor)
    project.runner = MagicMock()
    project.runner.run = AsyncMock(return_value="abc123")
    project.runner.aclose = AsyncMock()
    project.lifecycle = MagicMock()
    project.lifecycle.ensure_stopped = AsyncMock()
    project.lifecycle.cleanup = AsyncMock()
    project.lifecycle.is_running = AsyncMock(return_value=True)
    project.images = MagicMock()
    project.images.build_variant = AsyncMock(side_effect=lambda spec, ctx=None: spec.image_tag())
    return project


class TestDevelopmentRunSpec:
    """Tests for deriving the dev container launch request."""

    def test_defaults(self):
        spec = make_project().development_run_spec()

        assert spec.image == "acme/web:alpine-amd64"
        assert spec.name == "acme-web-alpine-amd64-dev"
        assert spec.detach is True
        assert spec.wait_for == "READY"
        assert spec.wait_timeout_ms == 30000
        assert spec.ports[0].external == 8080

    def test_configured_pattern_kept(self):
        project = make_project(container={"wait_for": "listening", "wait_timeout_ms": 5000})
        spec = project.development_run_spec()
        assert spec.wait_for == "listening"
        assert spec.wait_timeout_ms == 5000

    def test_arch_defaults_to_host(self):
        project = make_project(image={"organization": "acme", "repository": "web"})
        with patch("harbormaster.project.get_current_platform_arch", return_value="linux-arm64"):
            assert project.development_run_spec().image == "acme/web:alpine-arm64"

    def test_verbose_image_shows_output(self):
        project = make_project(
            image={"organization": "acme", "repository": "web", "arch": "linux-x64", "verbose": True}
        )
        spec = project.development_run_spec()
        assert spec.verbose is True
        assert spec.show_output is True


class TestRunDev:
    """Tests for the dev container loop."""

    @pytest.mark.asyncio
    async def test_replaces_and_runs(self):
        project = make_project()

        dev = await project.run_dev(show_output=True)

        project.lifecycle.ensure_stopped.assert_awaited_once_with("acme-web-alpine-amd64-dev")
        spec = project.runner.run.await_args.args[0]
        assert spec.show_output is True
        assert dev.container_id == "abc123"
        assert project.dev_container_id == "abc123"

    @pytest.mark.asyncio
    async def test_interrupted_startup_cleans_up(self):
        project = make_project()

        async def interrupted_run(spec, *, cancel):
            cancel.cancel("SIGINT")
            return "abc123"

        project.runner.run = AsyncMock(side_effect=interrupted_run)

        assert await project.run_dev() is None
        project.lifecycle.cleanup.assert_awaited_once_with("abc123")
        assert project.dev_container_id is None

    @pytest.mark.asyncio
    async def test_ensure_running(self):
        project = make_project()
        dev = await project.run_dev()

        assert await dev.ensure_running() is True
        kwargs = project.lifecycle.is_running.await_args.kwargs
        assert kwargs == {"retry_delay_ms": 2000, "request_timeout_ms": 5000, "timeout_ms": 60000}

    @pytest.mark.asyncio
    async def test_ensure_running_fails(self):
        project = make_project()
        await project.run_dev()
        project.lifecycle.is_running.return_value = False

        with pytest.raises(ReadinessTimeout, match="failed to respond"):
            await project.ensure_dev_running()

    @pytest.mark.asyncio
    async def test_requires_started_container(self):
        project = make_project()
        with pytest.raises(ConfigurationError, match="run_dev"):
            await project.ensure_dev_running()
        with pytest.raises(ConfigurationError):
            await project.stop_dev()

    @pytest.mark.asyncio
    async def test_stop(self):
        project = make_project()
        dev = await project.run_dev()

        await dev.stop()

        project.lifecycle.cleanup.assert_awaited_once_with("abc123")
        assert project.dev_container_id is None


class TestBuild:
    """Tests for dev and distribution builds."""

    @pytest.mark.asyncio
    async def test_build_dev(self):
        assert await make_project().build_dev("/ctx") == "acme/web:alpine-amd64"

    @pytest.mark.asyncio
    async def test_build_distribution_all_combinations(self):
        project = make_project(image={"organization": "acme", "repository": "web"})
        tags = await project.build_distribution()
        assert tags == [
            "acme/web:alpine-arm64",
            "acme/web:alpine-amd64",
            "acme/web:distroless-arm64",
            "acme/web:distroless-amd64",
        ]


class TestRetagAndDispose:
    @pytest.mark.asyncio
    async def test_retag_images(self):
        project = make_project()
        project.images.get_tags = AsyncMock(
            return_value=[
                ImageTagInfo(tag="upstream/app:alpine-amd64", image_id="1"),
                ImageTagInfo(tag="upstream/app", image_id="2"),
            ]
        )

        retagged = await project.retag_images("upstream", "app")

        assert retagged == ["acme/web:alpine-amd64"]
        project.executor.tag_image.assert_awaited_once_with(
            "upstream/app:alpine-amd64", "acme/web:alpine-amd64"
        )

    @pytest.mark.asyncio
    async def test_dispose_cleans_up(self):
        project = make_project(dispose=True)
        await project.run_dev()

        async with project:
            pass

        project.lifecycle.cleanup.assert_awaited_once_with("abc123")

    @pytest.mark.asyncio
    async def test_no_dispose_keeps_container(self):
        project = make_project()
        await project.run_dev()
        await project.aclose()
        project.lifecycle.cleanup.assert_not_awaited()
        project.runner.aclose.assert_awaited()
