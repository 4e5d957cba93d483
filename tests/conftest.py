"""Shared fixtures: a scriptable fake container engine."""

from __future__ import annotations

import stat
import textwrap
from pathlib import Path

import pytest

from harbormaster.runners.executor import CommandExecutor


class FakeEngine:
    """An executable shell script standing in for the engine binary.

    Every invocation appends its arguments to ``calls.log`` before running
    the script body, which typically dispatches on ``$1``.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.binary = directory / "engine"
        self.calls_file = directory / "calls.log"

    def script(self, body: str) -> FakeEngine:
        self.binary.write_text(
            "#!/bin/sh\n"
            f'cd "{self.directory}"\n'
            f'echo "$*" >> "{self.calls_file}"\n'
            + textwrap.dedent(body)
        )
        self.binary.chmod(self.binary.stat().st_mode | stat.S_IEXEC)
        return self

    def calls(self) -> list[str]:
        if not self.calls_file.exists():
            return []
        return self.calls_file.read_text().splitlines()

    def executor(self, **kwargs) -> CommandExecutor:
        return CommandExecutor(binary=str(self.binary), **kwargs)


@pytest.fixture
def fake_engine(tmp_path: Path) -> FakeEngine:
    """A fake engine living in a per-test temporary directory."""
    return FakeEngine(tmp_path)
