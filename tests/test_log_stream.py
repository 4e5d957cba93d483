"""Tests for log stream monitoring."""

import asyncio
from types import SimpleNamespace

import pytest

from harbormaster.monitoring.log_stream import LogEvent, LogStreamMonitor, SignalMonitor


def make_reader(*chunks: bytes, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    for chunk in chunks:
        reader.feed_data(chunk)
    if eof:
        reader.feed_eof()
    return reader


class TestLineSplitting:
    """Tests for turning byte chunks into lines."""

    @pytest.mark.asyncio
    async def test_lines_across_chunks(self):
        """Test that fragments are joined and a trailing fragment is kept."""
        monitor = LogStreamMonitor(capture=True)
        await monitor.consume(make_reader(b"hel", b"lo\nwor", b"ld\nlast"), "stdout")

        assert [e.line for e in monitor.captured] == ["hello", "world", "last"]
        assert all(e.stream == "stdout" for e in monitor.captured)

    @pytest.mark.asyncio
    async def test_crlf(self):
        monitor = LogStreamMonitor(capture=True)
        await monitor.consume(make_reader(b"one\r\ntwo\r\n"), "stderr")
        assert [e.line for e in monitor.captured] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_multibyte_split_across_chunks(self):
        """Test that a UTF-8 sequence split between chunks decodes intact."""
        data = "café ready\n".encode()
        split = data.index(b"\xa9")
        monitor = LogStreamMonitor(capture=True)
        await monitor.consume(make_reader(data[:split], data[split:]), "stdout")
        assert monitor.captured[0].line == "café ready"

    @pytest.mark.asyncio
    async def test_missing_reader(self):
        monitor = LogStreamMonitor("x")
        await monitor.consume(None, "stdout")
        assert not monitor.matched.is_set()


class TestPatternMatching:
    """Tests for readiness pattern detection."""

    @pytest.mark.asyncio
    async def test_returns_after_first_match(self):
        """Test early termination: the stream stays open but consume returns."""
        reader = make_reader(b"booting\nserver READY on 8080\nmore\n", eof=False)
        monitor = LogStreamMonitor("READY", container_id="abc", capture=True)

        await asyncio.wait_for(monitor.consume(reader, "stdout"), timeout=5)

        assert monitor.matched.is_set()
        assert monitor.match == LogEvent("abc", "stdout", "server READY on 8080")
        assert [e.line for e in monitor.captured] == ["booting", "server READY on 8080"]

    @pytest.mark.asyncio
    async def test_regex(self):
        monitor = LogStreamMonitor(r"listening on :\d+")
        await monitor.consume(make_reader(b"listening on :abc\nlistening on :80\n"), "stdout")
        assert monitor.match.line == "listening on :80"

    @pytest.mark.asyncio
    async def test_continue_after_match_keeps_first_match(self):
        """Test that later matches never replace the first one."""
        monitor = LogStreamMonitor("READY", continue_after_match=True, capture=True)
        await monitor.consume(make_reader(b"READY 1\nREADY 2\ntail\n"), "stdout")

        assert monitor.match.line == "READY 1"
        assert len(monitor.captured) == 3

    @pytest.mark.asyncio
    async def test_no_match(self):
        monitor = LogStreamMonitor("READY")
        await monitor.consume(make_reader(b"starting\nstill starting\n"), "stdout")
        assert not monitor.matched.is_set()
        assert monitor.match is None

    @pytest.mark.asyncio
    async def test_both_streams(self):
        """Test that a match on stderr counts too."""
        proc = SimpleNamespace(
            stdout=make_reader(b"stdout line\n"),
            stderr=make_reader(b"warn: READY\n"),
        )
        monitor = LogStreamMonitor("READY")
        await monitor.consume_all(proc)
        assert monitor.match.stream == "stderr"

    @pytest.mark.asyncio
    async def test_echo(self, capsys):
        monitor = LogStreamMonitor(echo=True, echo_prefix="web")
        await monitor.consume(make_reader(b"[info] hello\n"), "stdout")
        assert "[info] hello" in capsys.readouterr().out


class TestSignalMonitor:
    """Tests for literal signals with an end-of-instance marker."""

    @pytest.mark.asyncio
    async def test_plain_signal(self):
        monitor = SignalMonitor("READY")
        await monitor.consume_all(SimpleNamespace(stdout=make_reader(b"x READY y\n"), stderr=None))
        assert monitor.match.line == "x READY y"

    @pytest.mark.asyncio
    async def test_skips_signal_of_ended_instance(self):
        """Test that only the signal of the last instance is confirmed."""
        reader = make_reader(b"READY v1\nSHUTDOWN\nREADY v2\n")
        monitor = SignalMonitor("READY", end_signal="SHUTDOWN", settle_ms=20)

        await asyncio.wait_for(
            monitor.consume_all(SimpleNamespace(stdout=reader, stderr=None)), timeout=5
        )

        assert monitor.match.line == "READY v2"

    @pytest.mark.asyncio
    async def test_end_marker_cancels_confirmation(self):
        reader = make_reader(b"READY v1\nSHUTDOWN\n")
        monitor = SignalMonitor("READY", end_signal="SHUTDOWN", settle_ms=20)

        await monitor.consume_all(SimpleNamespace(stdout=reader, stderr=None))
        await asyncio.sleep(0.05)

        assert not monitor.matched.is_set()
