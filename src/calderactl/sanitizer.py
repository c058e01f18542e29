"""Pre-flight repair of known-bad apt source entries.

Third-party repositories with broken signatures make ``apt-get update`` fail
for every later stage. Lines mentioning a denylisted marker are disabled by
prefixing a comment marker; nothing is ever deleted and the original file is
kept next to it as ``<name>.bak``.
"""
from __future__ import annotations

import logging
import stat
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from .errors import ProvisionError
from .runner import CommandRunner

LOGGER = logging.getLogger(__name__)

COMMENT_MARKER = "#"
COMMENT_PREFIX = f"{COMMENT_MARKER} "
BACKUP_SUFFIX = ".bak"
REPAIR_STEP_ID = "sanitize.comment-out"


@dataclass(slots=True, frozen=True)
class RepairAction:
    """A file whose matching lines were commented out."""

    path: Path
    backup: Path
    backup_created: bool
    lines: tuple[int, ...]

    @property
    def description(self) -> str:
        """Return a human-readable summary."""
        joined = ", ".join(str(number) for number in self.lines)
        return f"Commented out line(s) {joined} in {self.path}"


def matching_lines(lines: Sequence[str], patterns: Iterable[str]) -> list[int]:
    """Return 0-based indices of active lines containing any of *patterns*."""
    needles = [pattern.lower() for pattern in patterns if pattern]
    if not needles:
        return []
    indices: list[int] = []
    for index, line in enumerate(lines):
        stripped = line.strip()
        if not stripped or stripped.startswith(COMMENT_MARKER):
            continue
        lowered = line.lower()
        if any(needle in lowered for needle in needles):
            indices.append(index)
    return indices


def iter_candidate_files(roots: Iterable[Path]) -> Iterator[Path]:
    """Yield regular files under *roots*, skipping backups and duplicates."""
    seen: set[Path] = set()
    for root in sorted(roots):
        if root.is_file():
            candidates: Iterable[Path] = [root]
        elif root.is_dir():
            try:
                candidates = sorted(path for path in root.rglob("*") if path.is_file())
            except OSError as exc:
                LOGGER.warning("Cannot scan %s: %s", root, exc)
                continue
        else:
            LOGGER.debug("Sanitizer root %s does not exist; skipping.", root)
            continue
        for path in candidates:
            if path.name.endswith(BACKUP_SUFFIX) or path in seen:
                continue
            seen.add(path)
            yield path


def sanitize_file(
    path: Path,
    patterns: Sequence[str],
    runner: CommandRunner,
) -> RepairAction | None:
    """Comment out matching lines in *path*; return ``None`` when it is clean."""
    content = path.read_bytes().decode("utf-8")
    lines = content.splitlines(keepends=True)
    indices = matching_lines(lines, patterns)
    if not indices:
        return None

    backup = path.with_name(f"{path.name}{BACKUP_SUFFIX}")
    backup_created = False
    if not backup.exists():
        runner.copy_preserving(path, backup, elevated=True)
        backup_created = True

    for index in indices:
        lines[index] = f"{COMMENT_PREFIX}{lines[index]}"
    mode = stat.S_IMODE(path.stat().st_mode)
    runner.write_file(path, "".join(lines), mode=mode, elevated=True)

    return RepairAction(
        path=path,
        backup=backup,
        backup_created=backup_created,
        lines=tuple(index + 1 for index in indices),
    )


def sanitize(
    roots: Iterable[Path],
    *,
    patterns: Sequence[str],
    runner: CommandRunner,
) -> list[RepairAction]:
    """Disable denylisted entries under *roots*.

    Per-file failures are logged and skipped; one unreadable file never stops
    the scan.
    """
    actions: list[RepairAction] = []
    for path in iter_candidate_files(roots):
        try:
            action = sanitize_file(path, patterns, runner)
        except (OSError, UnicodeDecodeError, ProvisionError) as exc:
            LOGGER.warning("Sanitizer skipped %s: %s", path, exc)
            continue
        if action is not None:
            LOGGER.info(action.description)
            actions.append(action)
    return actions


__all__ = [
    "BACKUP_SUFFIX",
    "COMMENT_PREFIX",
    "REPAIR_STEP_ID",
    "RepairAction",
    "iter_candidate_files",
    "matching_lines",
    "sanitize",
    "sanitize_file",
]
