"""CLI for harbormaster.

Provides a rich command-line interface using Typer for:
- Running containers and waiting for them to become ready
- Stopping, removing and cleaning up containers
- Building, listing and tagging images
- The project development container loop
- Docker Hub tag and repository management
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from harbormaster.core.config import load_config
from harbormaster.core.errors import HarbormasterError
from harbormaster.core.schemas import (
    Attestations,
    ContainerInfo,
    HubConfig,
    ImageTagInfo,
    ProjectConfig,
    ReadinessOutcome,
    RepositoryStats,
)
from harbormaster.images.manager import ImageManager
from harbormaster.monitoring.readiness import ReadinessProber
from harbormaster.project import ContainerProject
from harbormaster.registry.hub import HubClient
from harbormaster.runners.container_runner import ContainerRunner
from harbormaster.runners.executor import CommandExecutor
from harbormaster.runners.lifecycle import ContainerLifecycle
from harbormaster.utils.logging import setup_logging
from harbormaster.utils.signals import CancellationToken, interrupt_scope

app = typer.Typer(
    name="harbormaster",
    help="Run containers and wait until they are ready",
    add_completion=False,
)

console = Console()
logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CliState:
    config: ProjectConfig

    def executor(self) -> CommandExecutor:
        return CommandExecutor.from_config(self.config.engine)


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to project configuration file (YAML/JSON)"
    ),
    engine: str | None = typer.Option(
        None, "--engine", help="Container engine binary (overrides config)"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Trace engine commands and echo container output"
    ),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
    log_file: Path | None = typer.Option(
        None, "--log-file", help="Write logs to file in addition to console"
    ),
    json_logs: bool = typer.Option(
        False, "--json-logs", help="Output logs in JSON format (for programmatic parsing)"
    ),
) -> None:
    """Run containers and wait until they are ready."""
    setup_logging(
        level=log_level,
        log_file=log_file,
        json_format=json_logs,
        rich_console=not json_logs,
        verbose=verbose,
    )

    if config is not None:
        try:
            project_config = load_config(config)
        except Exception as e:
            console.print(f"[bold red]Error loading config: {escape(str(e))}[/]")
            raise typer.Exit(1) from e
    else:
        project_config = ProjectConfig()

    engine_updates: dict[str, Any] = {}
    if engine:
        engine_updates["binary"] = engine
    if verbose:
        engine_updates["verbose"] = True
    if engine_updates:
        project_config = project_config.model_copy(
            update={"engine": project_config.engine.model_copy(update=engine_updates)}
        )

    ctx.obj = CliState(config=project_config)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run ``coro``, reporting harbormaster errors the way config errors are reported."""
    try:
        return asyncio.run(coro)
    except HarbormasterError as e:
        logger.debug(f"{type(e).__name__}: {e}", exc_info=True)
        console.print(f"[bold red]Error:[/] {escape(str(e))}")
        raise typer.Exit(1) from e


def _parse_pairs(values: list[str] | None, option: str) -> dict[str, str]:
    pairs = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint=option)
        pairs[key] = value
    return pairs


@app.command()
def run(
    ctx: typer.Context,
    image: str = typer.Argument(..., help="Image to run"),
    name: str | None = typer.Option(None, "--name", "-n", help="Container name"),
    ports: list[str] | None = typer.Option(
        None, "--port", "-p", help="Published port as EXTERNAL:INTERNAL (repeatable)"
    ),
    volumes: list[str] | None = typer.Option(
        None, "--volume", help="Volume mount (repeatable)"
    ),
    env: list[str] | None = typer.Option(
        None, "--env", "-e", help="Environment variable as KEY=VALUE (repeatable)"
    ),
    command: str | None = typer.Option(
        None, "--cmd", help="Command to run in the container (shell-style quoting)"
    ),
    wait_for: str | None = typer.Option(
        None, "--wait-for", "-w", help="Regex marking the container as ready"
    ),
    wait_timeout: int | None = typer.Option(
        None, "--wait-timeout", help="Readiness timeout in milliseconds"
    ),
    show_output: bool = typer.Option(
        False, "--show-output", help="Echo container output while waiting"
    ),
    remove_on_exit: bool = typer.Option(False, "--rm", help="Remove the container on exit"),
    replace: bool = typer.Option(
        False, "--replace", help="Remove an existing container with the same name first"
    ),
) -> None:
    """Run a container, optionally waiting for a readiness pattern in its logs."""
    state: CliState = ctx.obj
    overrides: dict[str, Any] = {"image": image}
    if name:
        overrides["name"] = name
    if ports:
        overrides["ports"] = ports
    if volumes:
        overrides["volumes"] = volumes
    if env:
        overrides["env"] = {**state.config.container.env, **_parse_pairs(env, "--env")}
    if command:
        overrides["command"] = command
    if wait_for:
        overrides["wait_for"] = wait_for
    if wait_timeout is not None:
        overrides["wait_timeout_ms"] = wait_timeout
    if show_output:
        overrides["show_output"] = True
    if remove_on_exit:
        overrides["remove_on_exit"] = True

    try:
        spec = state.config.container.to_run_spec(**overrides)
    except ValueError as e:
        console.print(f"[bold red]Invalid run options: {escape(str(e))}[/]")
        raise typer.Exit(1) from e

    async def _main() -> str | None:
        executor = state.executor()
        if replace:
            await ContainerLifecycle(executor).ensure_stopped(spec.name)
        runner = ContainerRunner(executor)
        try:
            return await runner.run(spec)
        finally:
            await runner.aclose()

    container_id = _run(_main())
    if container_id is None:
        console.print("[bold yellow]Interrupted before the container started[/]")
        raise typer.Exit(130)
    console.print(container_id)


@app.command()
def stop(
    ctx: typer.Context,
    container_id: str = typer.Argument(..., help="Container to stop"),
    timeout: int | None = typer.Option(
        None, "--time", "-t", help="Seconds to wait before killing the container"
    ),
) -> None:
    """Stop a container; its logs are shown if stopping fails."""
    state: CliState = ctx.obj
    _run(ContainerLifecycle(state.executor()).stop(container_id, timeout))
    console.print(f"[bold green]Stopped {container_id}[/]")


@app.command("rm")
def remove(
    ctx: typer.Context,
    container_id: str = typer.Argument(..., help="Container to remove"),
    force: bool = typer.Option(False, "--force", "-f", help="Remove even if running"),
    remove_volumes: bool = typer.Option(False, "--volumes", help="Also remove anonymous volumes"),
) -> None:
    """Remove a container."""
    state: CliState = ctx.obj
    _run(ContainerLifecycle(state.executor()).remove(container_id, force, remove_volumes))
    console.print(f"[bold green]Removed {container_id}[/]")


@app.command()
def cleanup(
    ctx: typer.Context,
    container_id: str = typer.Argument(..., help="Container to stop and remove"),
) -> None:
    """Stop and remove a container, ignoring errors."""
    state: CliState = ctx.obj
    _run(ContainerLifecycle(state.executor()).cleanup(container_id))


@app.command("ensure-stopped")
def ensure_stopped(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Exact container name"),
) -> None:
    """Force-remove any container with exactly this name."""
    state: CliState = ctx.obj
    _run(ContainerLifecycle(state.executor()).ensure_stopped(name))


@app.command()
def ps(
    ctx: typer.Context,
    image: str | None = typer.Option(None, "--image", "-i", help="Only containers of this image"),
    all_containers: bool = typer.Option(False, "--all", "-a", help="Include stopped containers"),
) -> None:
    """List containers."""
    state: CliState = ctx.obj
    runner = ContainerRunner(state.executor(), handle_signals=False)
    if image:
        _show_containers_table(_run(runner.list(image)))
    else:
        console.print(_run(runner.list_containers(all_containers=all_containers)))


@app.command("wait-for-log")
def wait_for_log(
    ctx: typer.Context,
    container_id: str = typer.Argument(..., help="Container to follow"),
    signal: str = typer.Argument(..., help="Text to wait for"),
    timeout: int = typer.Option(30000, "--timeout", help="Timeout in milliseconds"),
    end_signal: str | None = typer.Option(
        None, "--end-signal", help="Text a previous instance prints when it exits"
    ),
) -> None:
    """Wait until a container's logs contain a signal."""
    state: CliState = ctx.obj

    async def _main() -> ReadinessOutcome:
        token = CancellationToken()
        with interrupt_scope(token):
            return await ContainerRunner(state.executor()).wait_for_signal_in_logs(
                container_id,
                signal,
                timeout_ms=timeout,
                last_instance_end_signal=end_signal,
                cancel=token,
            )

    outcome = _run(_main())
    if outcome is ReadinessOutcome.CANCELLED:
        console.print("[bold yellow]Interrupted[/]")
        raise typer.Exit(130)
    console.print(f"[bold green]Found {signal!r}[/]")


@app.command()
def probe(
    url: str = typer.Argument(..., help="URL to poll"),
    status: int | None = typer.Option(None, "--status", "-s", help="Required status code"),
    gone: bool = typer.Option(
        False, "--gone", help="Wait until the endpoint stops responding instead"
    ),
    timeout: int = typer.Option(30000, "--timeout", help="Overall timeout in milliseconds"),
    interval: int = typer.Option(1000, "--interval", help="Delay between attempts in milliseconds"),
) -> None:
    """Poll a URL until it is ready (or gone)."""
    expected: bool | int = False if gone else (status if status is not None else True)
    ready = _run(
        ReadinessProber().wait_for_fetch(
            url, status=expected, retry_delay_ms=interval, timeout_ms=timeout
        )
    )
    if not ready:
        console.print(f"[bold red]{url} did not become ready within {timeout}ms[/]")
        raise typer.Exit(1)
    console.print(f"[bold green]{url} is {'gone' if gone else 'ready'}[/]")


@app.command()
def build(
    ctx: typer.Context,
    context: Path | None = typer.Argument(None, help="Build context directory"),
    tag: str | None = typer.Option(
        None, "--tag", "-t", help="Image tag (default: derived from the project config)"
    ),
    dockerfile: str = typer.Option("Dockerfile", "--file", "-f", help="Dockerfile path"),
    build_args: list[str] | None = typer.Option(
        None, "--build-arg", help="Build argument as KEY=VALUE (repeatable)"
    ),
    no_cache: bool = typer.Option(False, "--no-cache", help="Build without cache"),
    sbom: bool = typer.Option(False, "--sbom", help="Attach an SBOM attestation"),
    provenance: bool = typer.Option(False, "--provenance", help="Attach a provenance attestation"),
    distribution: bool = typer.Option(
        False, "--all", help="Build every variant and architecture from the project config"
    ),
) -> None:
    """Build an image."""
    state: CliState = ctx.obj

    if tag:
        if context is None:
            console.print("[bold red]Error:[/] A build context is required with --tag.")
            raise typer.Exit(1)
        console.print(f"[bold blue]Building image {tag}...[/]")
        _run(
            ImageManager(state.executor()).build_image(
                context,
                tag,
                dockerfile=dockerfile,
                build_args=_parse_pairs(build_args, "--build-arg"),
                no_cache=no_cache,
                attestations=Attestations(sbom=sbom, provenance=provenance),
            )
        )
        built = [tag]
    else:
        project = ContainerProject(state.config, state.executor())
        if distribution:
            built = _run(project.build_distribution(context))
        else:
            built = [_run(project.build_dev(context))]

    for image_tag in built:
        console.print(f"[bold green]Successfully built {image_tag}[/]")


@app.command()
def tag(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Existing image"),
    target: str = typer.Argument(..., help="New tag"),
) -> None:
    """Tag an image."""
    state: CliState = ctx.obj
    _run(state.executor().tag_image(source, target))
    console.print(f"[bold green]Tagged {source} -> {target}[/]")


@app.command()
def images(
    ctx: typer.Context,
    repository: str | None = typer.Option(
        None, "--repo", "-r", help="ORG/REPO to list tags of (default: project image)"
    ),
) -> None:
    """List local tags of a repository with their variant and architecture."""
    state: CliState = ctx.obj
    if repository:
        organization, _, repo = repository.partition("/")
    else:
        organization = state.config.image.organization
        repo = state.config.image.repository
    if not organization or not repo:
        console.print("[bold red]Error:[/] Pass --repo ORG/REPO or configure image.organization/repository.")
        raise typer.Exit(1)

    _show_tags_table(_run(ImageManager(state.executor()).get_tags(organization, repo)))


@app.command()
def dev(
    ctx: typer.Context,
    show_output: bool | None = typer.Option(
        None, "--show-output/--quiet", help="Echo container output (default: verbose setting)"
    ),
    detach: bool = typer.Option(
        False, "--detach", "-d", help="Leave the container running and exit once it is ready"
    ),
) -> None:
    """Run the project's development container until interrupted."""
    state: CliState = ctx.obj

    async def _main() -> None:
        async with ContainerProject(state.config, state.executor()) as project:
            container = await project.run_dev(show_output)
            if container is None:
                console.print("[bold yellow]Interrupted during startup[/]")
                return
            console.print(f"[bold green]Container started: {container.container_id}[/]")
            if detach:
                return

            token = CancellationToken()
            with interrupt_scope(token):
                console.print("[dim]Press Ctrl+C to stop[/]")
                await token.wait()
            console.print("[bold blue]Stopping container...[/]")
            await container.stop()

    _run(_main())


def _hub_config(
    state: CliState, username: str | None, password: str | None, organization: str | None
) -> HubConfig:
    base = state.config.hub
    username = username or (base.username if base else None)
    secret = password or (base.password.get_secret_value() if base else None)
    if not username or not secret:
        console.print(
            "[bold red]Error:[/] Docker Hub credentials missing. "
            "Set HARBORMASTER_HUB_USERNAME and HARBORMASTER_HUB_PASSWORD or configure hub."
        )
        raise typer.Exit(1)
    data: dict[str, Any] = base.model_dump() if base else {}
    data.update(
        username=username,
        password=secret,
        organization=organization or (base.organization if base else None),
    )
    return HubConfig.model_validate(data)


HubUsername = typer.Option(
    None, "--username", "-u", envvar="HARBORMASTER_HUB_USERNAME", help="Docker Hub username"
)
HubPassword = typer.Option(
    None,
    "--password",
    envvar="HARBORMASTER_HUB_PASSWORD",
    help="Docker Hub password or access token",
)
HubOrganization = typer.Option(
    None,
    "--organization",
    "-o",
    envvar="HARBORMASTER_HUB_ORGANIZATION",
    help="Namespace to use instead of the username",
)


@app.command("hub-tags")
def hub_tags(
    ctx: typer.Context,
    repository: str = typer.Argument(..., help="Repository name"),
    username: str | None = HubUsername,
    password: str | None = HubPassword,
    organization: str | None = HubOrganization,
) -> None:
    """List tags published on Docker Hub."""
    config = _hub_config(ctx.obj, username, password, organization)

    async def _main() -> list[str]:
        async with HubClient(config) as hub:
            return await hub.get_tags(repository)

    for name in _run(_main()):
        console.print(name)


@app.command("hub-stats")
def hub_stats(
    ctx: typer.Context,
    repository: str = typer.Argument(..., help="Repository name"),
    username: str | None = HubUsername,
    password: str | None = HubPassword,
    organization: str | None = HubOrganization,
) -> None:
    """Show Docker Hub statistics of a repository."""
    config = _hub_config(ctx.obj, username, password, organization)

    async def _main() -> RepositoryStats:
        async with HubClient(config) as hub:
            return await hub.get_stats(repository)

    stats = _run(_main())
    table = Table(title=f"{stats.namespace}/{stats.name}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Pulls", f"{stats.pull_count:,}")
    table.add_row("Stars", str(stats.star_count))
    table.add_row("Private", "yes" if stats.is_private else "no")
    table.add_row("Last updated", stats.last_updated or "N/A")
    table.add_row("Description", stats.description or "")
    console.print(table)


@app.command("hub-delete-tag")
def hub_delete_tag(
    ctx: typer.Context,
    repository: str = typer.Argument(..., help="Repository name"),
    tag_name: str = typer.Argument(..., metavar="TAG", help="Tag to delete"),
    username: str | None = HubUsername,
    password: str | None = HubPassword,
    organization: str | None = HubOrganization,
) -> None:
    """Delete a tag from Docker Hub and wait until it is gone."""
    config = _hub_config(ctx.obj, username, password, organization)

    async def _main() -> None:
        async with HubClient(config) as hub:
            await hub.delete_tag(repository, tag_name)

    _run(_main())
    console.print(f"[bold green]Deleted {config.namespace}/{repository}:{tag_name}[/]")


@app.command()
def login(
    ctx: typer.Context,
    username: str | None = HubUsername,
    password: str | None = HubPassword,
) -> None:
    """Log the container engine in to Docker Hub."""
    state: CliState = ctx.obj
    config = _hub_config(state, username, password, None)

    async def _main() -> str:
        async with HubClient(config) as hub:
            return await hub.login_cli(state.executor())

    console.print(_run(_main()))


@app.command()
def init_config(
    output: Path = typer.Option(
        Path("harbormaster.yaml"), "--output", "-o", help="Output configuration file"
    ),
) -> None:
    """Generate a sample configuration file."""
    sample_config = """\
# harbormaster project configuration
name: "my-app"

# How the container engine is invoked
engine:
  binary: docker
  verbose: false
  retry: 1
  retry_delay_ms: 5000

# Image coordinates: tags are <organization>/<repository>:<variant>-<arch>
image:
  organization: my-org
  repository: my-app
  variant: alpine          # alpine | distroless (default: alpine for dev)
  # arch: linux-x64        # linux-arm64 | linux-x64 (default: this host)
  tag_latest: false
  build_args: {}
  attestations:
    sbom: false
    provenance: false
  app_base_dir: "."

# Defaults for the development container
container:
  ports:
    - "8080:8080"
  env:
    LOG_LEVEL: info
  wait_for: "READY"
  wait_timeout_ms: 30000
  show_output: false

# Docker Hub credentials (or HARBORMASTER_HUB_* environment variables)
# hub:
#   username: my-user
#   password: my-access-token
#   organization: my-org

# Remove the dev container when the project is closed
dispose: false
"""
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(sample_config)
    console.print(f"[bold green]Sample configuration written to {output}[/]")


def _show_containers_table(containers: list[ContainerInfo]) -> None:
    table = Table(title="Containers")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Image", style="white")
    table.add_column("Status", style="green")
    table.add_column("Ports", style="dim")
    for c in containers:
        table.add_row(c.id[:12], c.name, c.image, c.status, c.ports)
    console.print(table)


def _show_tags_table(tags: list[ImageTagInfo]) -> None:
    table = Table(title="Image Tags")
    table.add_column("Tag", style="cyan")
    table.add_column("ID", style="white")
    table.add_column("Size", style="white")
    table.add_column("Variant", style="green")
    table.add_column("Arch", style="green")
    table.add_column("Created", style="dim")
    for t in tags:
        table.add_row(t.tag, t.image_id, t.size, t.variant or "-", t.arch or "-", t.created)
    console.print(table)


if __name__ == "__main__":
    app()
