"""Read-only host-state queries used to gate provisioning stages.

Every function reflects the state of the machine at call time. Nothing is
cached: earlier stages routinely change what later probes observe.
"""
from __future__ import annotations

import os
import re
import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

_VERSION_PATTERN = re.compile(r"(\d+(?:\.\d+)*)")


def command_exists(name: str, path: str | None = None) -> bool:
    """Return ``True`` when *name* resolves to an executable.

    *path* overrides ``$PATH`` for the lookup, which is how binaries installed
    earlier in the run (e.g. by nvm) become visible without mutating the
    process environment.
    """
    candidate = Path(name)
    if candidate.is_absolute() or str(candidate.parent) not in {"", "."}:
        return candidate.is_file() and os.access(candidate, os.X_OK)
    return shutil.which(name, path=path) is not None


def directory_exists(path: Path) -> bool:
    """Return ``True`` when *path* is an existing directory."""
    return path.is_dir()


def file_non_empty(path: Path) -> bool:
    """Return ``True`` when *path* is a regular file with content."""
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def packages_installed(names: Sequence[str], *, dpkg_query_bin: str = "dpkg-query") -> bool:
    """Return ``True`` when every package in *names* is fully installed."""
    if not names:
        return True
    try:
        result = subprocess.run(  # noqa: S603
            [dpkg_query_bin, "-W", "-f=${Package} ${Status}\n", *names],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        return False
    installed: set[str] = set()
    for line in (result.stdout or "").splitlines():
        package, _, status = line.partition(" ")
        if status.strip() == "install ok installed":
            installed.add(package.split(":", 1)[0])
    return all(name.split(":", 1)[0] in installed for name in names)


def command_version(binary: str, *, path: str | None = None) -> str | None:
    """Return the trimmed ``--version`` output of *binary*, if it runs."""
    resolved = shutil.which(binary, path=path) if path is not None else binary
    if resolved is None:
        return None
    try:
        result = subprocess.run(  # noqa: S603
            [resolved, "--version"],
            capture_output=True,
            text=True,
            check=False,
        )
    except (FileNotFoundError, PermissionError):
        return None
    output = (result.stdout or result.stderr or "").strip()
    if result.returncode != 0 or not output:
        return None
    return output.splitlines()[0]


def python_version(binary: str = "python3", *, path: str | None = None) -> str | None:
    """Return the dotted version reported by a Python interpreter, if any."""
    match = _VERSION_PATTERN.search(command_version(binary, path=path) or "")
    return match.group(1) if match else None


__all__ = [
    "command_exists",
    "command_version",
    "directory_exists",
    "file_non_empty",
    "packages_installed",
    "python_version",
]
