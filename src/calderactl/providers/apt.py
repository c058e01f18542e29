"""apt-get wrapper for system package installation."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

from ..errors import ProvisionError
from ..runner import CommandRunner, describe_failure


class PackageManagerError(ProvisionError):
    """Raised when the package install step fails."""


@dataclass(slots=True)
class AptProvider:
    """Refresh the apt cache and install packages with elevation."""

    runner: CommandRunner
    apt_get_bin: str = "apt-get"

    def refresh_cache(self) -> subprocess.CompletedProcess[str]:
        """Run ``apt-get update``; the exit code is left for the caller to judge."""
        return self.runner.run([self.apt_get_bin, "update"], elevated=True)

    def install(self, names: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Install *names* in a single transaction."""
        if not names:
            raise PackageManagerError("No packages requested for installation.")
        result = self.runner.run(
            [self.apt_get_bin, "install", "-y", *names],
            elevated=True,
        )
        if result.returncode != 0:
            raise PackageManagerError(
                f"{self.apt_get_bin} install failed (exit {result.returncode}): "
                f"{describe_failure(result)}"
            )
        return result


__all__ = ["AptProvider", "PackageManagerError"]
