"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from calderactl.config import AppConfig, load_config
from calderactl.runner import CommandError, CommandRunner, describe_failure


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


def completed(
    args: Sequence[str] = (),
    returncode: int = 0,
    stdout: str = "",
    stderr: str = "",
) -> subprocess.CompletedProcess[str]:
    """Build a ``CompletedProcess`` for scripted command results."""
    return subprocess.CompletedProcess(list(args), returncode, stdout=stdout, stderr=stderr)


class FakeRunner(CommandRunner):
    """Command runner that records argv and returns scripted results.

    ``results`` maps a substring of the joined command line to either an exit
    code or a full ``CompletedProcess``. The first matching entry wins;
    unmatched commands succeed. File writes go straight to disk.
    """

    def __init__(self, results: Mapping[str, object] | None = None) -> None:
        """Initialise without elevation so writes land under ``tmp_path``."""
        super().__init__(elevate=False)
        self.calls: list[dict[str, object]] = []
        self.results: dict[str, object] = dict(results or {})

    def run(  # type: ignore[override]
        self,
        args: Sequence[str],
        *,
        elevated: bool = False,
        check: bool = False,
        input: str | None = None,  # noqa: A002
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        error_prefix: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        command = list(args)
        self.calls.append(
            {"args": command, "elevated": elevated, "env": dict(env or {}), "cwd": cwd}
        )
        joined = " ".join(command)
        result = completed(command)
        for needle, outcome in self.results.items():
            if needle not in joined:
                continue
            if isinstance(outcome, subprocess.CompletedProcess):
                result = outcome
            else:
                result = completed(command, int(outcome), stderr=f"{needle}: simulated failure")
            break
        if check and result.returncode != 0:
            raise CommandError(
                f"{error_prefix or joined} failed: {describe_failure(result)}",
                returncode=result.returncode,
            )
        return result

    def commands(self) -> list[str]:
        """Return every recorded command line."""
        return [" ".join(call["args"]) for call in self.calls]  # type: ignore[arg-type]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Return a runner that records commands instead of executing them."""
    return FakeRunner()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Return a configuration rooted entirely under ``tmp_path``."""
    return load_config(
        tmp_path / "missing-config.yml",
        env={},
        overrides={
            "logs_dir": str(tmp_path / "logs"),
            "paths": {
                "caldera_home": str(tmp_path / "caldera"),
                "venv": str(tmp_path / "venv"),
            },
            "runtime": {"nvm_dirs": [str(tmp_path / ".nvm"), str(tmp_path / ".config/nvm")]},
            "service": {"user": "caldera", "unit_dir": str(tmp_path / "systemd")},
            "sanitizer": {"roots": [str(tmp_path / "apt")]},
            "elevation": {"enabled": False},
        },
    )


class HostRunner(FakeRunner):
    """Recording runner that leaves behind what clone and venv would create."""

    def run(  # type: ignore[override]
        self,
        args: Sequence[str],
        **kwargs: Any,
    ) -> subprocess.CompletedProcess[str]:
        result = super().run(args, **kwargs)
        command = list(args)
        if result.returncode != 0:
            return result
        if command[:2] == ["git", "clone"]:
            dest = Path(command[-1])
            dest.mkdir(parents=True, exist_ok=True)
            (dest / "requirements.txt").write_text("aiohttp\n", encoding="utf-8")
        elif command[1:3] == ["-m", "venv"]:
            python = Path(command[3]) / "bin" / "python"
            python.parent.mkdir(parents=True, exist_ok=True)
            python.write_text("#!/bin/sh\n", encoding="utf-8")
        return result
