"""snap wrapper for optional tooling."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass

from ..runner import CommandRunner


@dataclass(slots=True)
class SnapProvider:
    """Install snaps; failures are reported through the exit code only."""

    runner: CommandRunner
    snap_bin: str = "snap"

    def install(self, name: str, *, classic: bool = False) -> subprocess.CompletedProcess[str]:
        """Run ``snap install`` for *name*."""
        args = [self.snap_bin, "install", name]
        if classic:
            args.append("--classic")
        return self.runner.run(args, elevated=True)


__all__ = ["SnapProvider"]
