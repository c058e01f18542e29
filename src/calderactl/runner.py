"""Subprocess execution and privilege elevation."""
from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from .errors import ProvisionError

LOGGER = logging.getLogger(__name__)

MISSING_BINARY_RC = 127


class CommandError(ProvisionError):
    """Raised when a checked command exits non-zero or cannot be launched."""

    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        """Record the failing *returncode* alongside the message."""
        super().__init__(message)
        self.returncode = returncode


def describe_failure(result: subprocess.CompletedProcess[str]) -> str:
    """Return the most useful single line from a failed command's output."""
    stdout = getattr(result, "stdout", "") or ""
    stderr = getattr(result, "stderr", "") or ""
    message = stderr.strip() or stdout.strip() or "no output"
    return message.splitlines()[-1]


def write_atomic(destination: Path, content: str, *, mode: int = 0o644) -> None:
    """Write *content* via a sibling temp file and ``os.replace``."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        prefix=f".{destination.name}.",
        suffix=".tmp",
        dir=str(destination.parent),
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        temp_path.chmod(mode)
        os.replace(temp_path, destination)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


@dataclass(slots=True)
class CommandRunner:
    """Run external commands, prefixing ``sudo`` for elevated calls.

    Elevation is skipped when the process already runs as root or when
    *elevate* is disabled. In dry-run mode nothing is executed or written and
    every command reports success.
    """

    elevate: bool = True
    sudo_bin: str = "sudo"
    dry_run: bool = False

    @property
    def needs_sudo(self) -> bool:
        """Return ``True`` when elevated calls must go through sudo."""
        return self.elevate and os.geteuid() != 0

    def command_for(self, args: Sequence[str], *, elevated: bool = False) -> list[str]:
        """Return the argv actually executed for *args*."""
        if elevated and self.needs_sudo:
            return [self.sudo_bin, *args]
        return list(args)

    def run(
        self,
        args: Sequence[str],
        *,
        elevated: bool = False,
        check: bool = False,
        input: str | None = None,  # noqa: A002 - mirrors subprocess.run
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        error_prefix: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *args* and return the completed process.

        A missing binary is reported as exit code 127 rather than raised,
        unless *check* is set.
        """
        command = self.command_for(args, elevated=elevated)
        prefix = error_prefix or " ".join(args[:2])
        LOGGER.debug("exec%s: %s", " (dry-run)" if self.dry_run else "", shlex.join(command))
        if self.dry_run:
            return subprocess.CompletedProcess(command, returncode=0, stdout="", stderr="")
        run_env: dict[str, str] | None = None
        if env is not None:
            run_env = os.environ.copy()
            run_env.update(env)
        try:
            result = subprocess.run(  # noqa: S603
                command,
                capture_output=True,
                text=True,
                check=False,
                input=input,
                env=run_env,
                cwd=str(cwd) if cwd is not None else None,
            )
        except FileNotFoundError as exc:
            if check:
                raise CommandError(
                    f"{command[0]} not found: {exc}", returncode=MISSING_BINARY_RC
                ) from exc
            return subprocess.CompletedProcess(
                command,
                returncode=MISSING_BINARY_RC,
                stdout="",
                stderr=f"{command[0]} not found",
            )
        if check and result.returncode != 0:
            raise CommandError(
                f"{prefix} failed (exit {result.returncode}): {describe_failure(result)}",
                returncode=result.returncode,
            )
        return result

    def write_file(
        self,
        path: Path,
        content: str,
        *,
        mode: int = 0o644,
        elevated: bool = False,
    ) -> None:
        """Replace *path* with *content*, creating parent directories."""
        if self.dry_run:
            LOGGER.debug("write (dry-run): %s", path)
            return
        if not (elevated and self.needs_sudo):
            write_atomic(path, content, mode=mode)
            return
        fd, temp_name = tempfile.mkstemp(prefix="calderactl-", suffix=".tmp")
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(content)
            self.run(
                ["install", "-D", "-m", f"{mode:04o}", str(temp_path), str(path)],
                elevated=True,
                check=True,
                error_prefix=f"install {path}",
            )
        finally:
            temp_path.unlink(missing_ok=True)

    def copy_preserving(self, source: Path, destination: Path, *, elevated: bool = False) -> None:
        """Copy *source* to *destination* keeping mode and timestamps."""
        if self.dry_run:
            LOGGER.debug("copy (dry-run): %s -> %s", source, destination)
            return
        if elevated and self.needs_sudo:
            self.run(
                ["cp", "-p", str(source), str(destination)],
                elevated=True,
                check=True,
                error_prefix=f"cp -p {source}",
            )
            return
        shutil.copy2(source, destination)


__all__ = [
    "CommandError",
    "CommandRunner",
    "MISSING_BINARY_RC",
    "describe_failure",
    "write_atomic",
]
