"""git wrapper for cloning and refreshing checkouts."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import ProvisionError
from ..runner import CommandRunner


class GitError(ProvisionError):
    """Raised when a required checkout cannot be obtained."""


@dataclass(slots=True)
class GitProvider:
    """Clone and pull repositories as the invoking user."""

    runner: CommandRunner
    git_bin: str = "git"

    def clone(
        self,
        url: str,
        dest: Path,
        *,
        recursive: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Clone *url* into *dest*."""
        args = [self.git_bin, "clone"]
        if recursive:
            args.append("--recursive")
        args.extend([url, str(dest)])
        return self.runner.run(args)

    def pull(self, dest: Path, *, recursive: bool = True) -> subprocess.CompletedProcess[str]:
        """Fast-forward the checkout at *dest*."""
        args = [self.git_bin, "-C", str(dest), "pull"]
        if recursive:
            args.append("--recurse-submodules")
        return self.runner.run(args)


__all__ = ["GitError", "GitProvider"]
