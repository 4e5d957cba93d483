"""Tests for ContainerLifecycle."""

import httpx
import pytest

from harbormaster.core.errors import ConfigurationError, ContainerStopFailed, NoContainerId
from harbormaster.core.schemas import PortMapping
from harbormaster.monitoring.readiness import ReadinessProber
from harbormaster.runners.lifecycle import ContainerLifecycle


def lifecycle_for(fake_engine, **kwargs) -> ContainerLifecycle:
    return ContainerLifecycle(fake_engine.executor(), **kwargs)


class TestStop:
    """Tests for stopping with log capture."""

    @pytest.mark.asyncio
    async def test_success(self, fake_engine):
        """Test that logs are followed during stop and the follower is reaped."""
        fake_engine.script(
            """\
case "$1" in
  logs) exec sleep 30 ;;
  stop) echo "$2" ;;
esac
"""
        )
        output = await lifecycle_for(fake_engine).stop("abc")

        assert output == "abc"
        assert sorted(fake_engine.calls()) == ["logs -f abc", "stop abc"]

    @pytest.mark.asyncio
    async def test_timeout_flag(self, fake_engine):
        fake_engine.script('case "$1" in logs) exit 0 ;; esac\n')
        await lifecycle_for(fake_engine).stop("abc", timeout=5)
        assert "stop -t 5 abc" in fake_engine.calls()

    @pytest.mark.asyncio
    async def test_failure_includes_captured_logs(self, fake_engine):
        """Test that a failed stop reports what the container printed meanwhile."""
        fake_engine.script(
            """\
case "$1" in
  logs)
    echo "shutting down"
    echo "worker still busy" >&2
    exec sleep 30
    ;;
  stop)
    sleep 0.3
    echo "Error response from daemon: cannot stop" >&2
    exit 1
    ;;
esac
"""
        )
        with pytest.raises(ContainerStopFailed) as exc_info:
            await lifecycle_for(fake_engine).stop("abc")

        message = str(exc_info.value)
        assert message.startswith("Failed to stop container abc:")
        assert "cannot stop" in message
        assert "Captured logs:" in message
        assert "[stdout] shutting down" in message
        assert "[stderr] worker still busy" in message
        assert exc_info.value.returncode == 1

    @pytest.mark.asyncio
    async def test_failure_without_logs(self, fake_engine):
        fake_engine.script(
            """\
case "$1" in
  logs) exec sleep 30 ;;
  stop) exit 1 ;;
esac
"""
        )
        with pytest.raises(ContainerStopFailed, match="No logs captured"):
            await lifecycle_for(fake_engine, stop_log_grace_ms=50).stop("abc")

    @pytest.mark.asyncio
    async def test_requires_id(self, fake_engine):
        fake_engine.script("")
        with pytest.raises(NoContainerId):
            await lifecycle_for(fake_engine).stop(None)
        assert fake_engine.calls() == []


class TestRemove:
    """Tests for container removal."""

    @pytest.mark.asyncio
    async def test_flags(self, fake_engine):
        fake_engine.script("")
        lifecycle = lifecycle_for(fake_engine)
        await lifecycle.remove("abc")
        await lifecycle.remove("abc", force=True, remove_volumes=True)
        assert fake_engine.calls() == ["rm abc", "rm -f -v abc"]

    @pytest.mark.asyncio
    async def test_requires_id(self, fake_engine):
        with pytest.raises(NoContainerId):
            await lifecycle_for(fake_engine).remove("")


class TestEnsureStopped:
    """Tests for replacing containers by name."""

    @pytest.mark.asyncio
    async def test_removes_exact_matches_only(self, fake_engine):
        """Test that substring matches from the name filter are left alone."""
        fake_engine.script(
            """\
case "$1" in
  ps) printf 'id1\\tweb\\nid2\\tweb-old\\nid3\\t/web\\n' ;;
esac
"""
        )
        await lifecycle_for(fake_engine).ensure_stopped("web")

        calls = fake_engine.calls()
        assert calls[0] == "ps -a --filter name=web --format {{.ID}}\t{{.Names}}"
        assert calls[1:] == ["rm -f id1", "rm -f id3"]

    @pytest.mark.asyncio
    async def test_idempotent_when_nothing_matches(self, fake_engine):
        """Test that repeated calls for an absent name only list containers."""
        fake_engine.script("")
        lifecycle = lifecycle_for(fake_engine)

        assert await lifecycle.ensure_stopped("web") is None
        assert await lifecycle.ensure_stopped("web") is None

        listing = "ps -a --filter name=web --format {{.ID}}\t{{.Names}}"
        assert fake_engine.calls() == [listing, listing]

    @pytest.mark.asyncio
    async def test_swallows_listing_failure(self, fake_engine):
        fake_engine.script('echo "daemon not running" >&2; exit 1\n')
        assert await lifecycle_for(fake_engine).ensure_stopped("web") is None

    @pytest.mark.asyncio
    async def test_swallows_removal_failure(self, fake_engine):
        fake_engine.script(
            """\
case "$1" in
  ps) printf 'id1\\tweb\\n' ;;
  rm) exit 1 ;;
esac
"""
        )
        assert await lifecycle_for(fake_engine).ensure_stopped("web") is None
        assert fake_engine.calls()[-1] == "rm -f id1"

    @pytest.mark.asyncio
    async def test_no_name(self, fake_engine):
        fake_engine.script("")
        await lifecycle_for(fake_engine).ensure_stopped(None)
        assert fake_engine.calls() == []


class TestCleanup:
    """Tests for best-effort cleanup."""

    @pytest.mark.asyncio
    async def test_stop_then_remove(self, fake_engine):
        fake_engine.script('case "$1" in logs) exit 0 ;; esac\n')
        await lifecycle_for(fake_engine).cleanup("abc")
        assert [c for c in fake_engine.calls() if not c.startswith("logs")] == [
            "stop abc",
            "rm -f abc",
        ]

    @pytest.mark.asyncio
    async def test_never_raises(self, fake_engine):
        """Test that both failures are logged, not raised."""
        fake_engine.script('case "$1" in logs) exit 0 ;; *) exit 1 ;; esac\n')
        assert await lifecycle_for(fake_engine, stop_log_grace_ms=50).cleanup("abc") is None
        assert "rm -f abc" in fake_engine.calls()

    @pytest.mark.asyncio
    async def test_without_id(self, fake_engine):
        fake_engine.script("")
        await lifecycle_for(fake_engine).cleanup(None)
        assert fake_engine.calls() == []


class TestIsRunning:
    """Tests for the HTTP health check."""

    @pytest.mark.asyncio
    async def test_without_id(self, fake_engine):
        assert await lifecycle_for(fake_engine).is_running(None, []) is False

    @pytest.mark.asyncio
    async def test_without_ports(self, fake_engine):
        with pytest.raises(ConfigurationError, match="no ports"):
            await lifecycle_for(fake_engine).is_running("abc", [])

    @pytest.mark.asyncio
    async def test_probes_first_external_port(self, fake_engine):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url)
            return httpx.Response(404)

        prober = ReadinessProber(transport=httpx.MockTransport(handler))
        lifecycle = lifecycle_for(fake_engine, prober=prober)
        ports = [PortMapping(internal=80, external=8080), PortMapping(internal=443, external=8443)]

        assert await lifecycle.is_running("abc", ports) is True
        assert seen[0].host == "localhost"
        assert seen[0].port == 8080

    @pytest.mark.asyncio
    async def test_not_responding(self, fake_engine):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        prober = ReadinessProber(transport=httpx.MockTransport(handler))
        running = await lifecycle_for(fake_engine, prober=prober).is_running(
            "abc", [PortMapping(internal=80, external=8080)], retry_delay_ms=10, timeout_ms=50
        )
        assert running is False
