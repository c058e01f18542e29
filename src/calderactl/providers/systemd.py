"""Systemd provider for the CALDERA service unit."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from ..errors import ProvisionError
from ..runner import CommandRunner, describe_failure
from ..templates import TemplateEngine

UNIT_TEMPLATE = "systemd/service.j2"


class SystemdError(ProvisionError):
    """Raised when a systemd operation fails.

    ``step`` names the sub-step (``write``, ``daemon-reload``, ``enable`` or
    ``start``) that failed.
    """

    def __init__(self, message: str, *, step: str) -> None:
        """Record the failing sub-step."""
        super().__init__(message)
        self.step = step


@dataclass(slots=True)
class SystemdProvider:
    """Render and manage the systemd service unit."""

    templates: TemplateEngine
    runner: CommandRunner
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"

    def unit_name(self, service: str) -> str:
        """Return the systemd unit name for *service*."""
        safe = service.replace("/", "-")
        return safe if safe.endswith(".service") else f"{safe}.service"

    def unit_path(self, service: str) -> Path:
        """Return the full path for the unit file."""
        return self.systemd_dir / self.unit_name(service)

    def render_unit(self, context: Mapping[str, object]) -> str:
        """Render the unit file text for *context*."""
        return self.templates.render_to_string(UNIT_TEMPLATE, context)

    def write_unit(self, service: str, content: str) -> Path:
        """Write the unit file for *service* with elevation."""
        path = self.unit_path(service)
        try:
            self.runner.write_file(path, content, mode=0o644, elevated=True)
        except (OSError, ProvisionError) as exc:
            raise SystemdError(f"Writing {path} failed: {exc}", step="write") from exc
        return path

    def reload(self) -> subprocess.CompletedProcess[str]:
        """Reload the systemd manager configuration."""
        return self._systemctl("daemon-reload")

    def enable(self, service: str) -> subprocess.CompletedProcess[str]:
        """Enable the unit for automatic start."""
        return self._systemctl("enable", self.unit_name(service))

    def start(self, service: str) -> subprocess.CompletedProcess[str]:
        """Start the unit."""
        return self._systemctl("start", self.unit_name(service))

    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        result = self.runner.run(args, elevated=True)
        if result.returncode != 0:
            raise SystemdError(
                f"{self.systemctl_bin} {command} failed (exit {result.returncode}): "
                f"{describe_failure(result)}",
                step=command,
            )
        return result


__all__ = ["SystemdError", "SystemdProvider", "UNIT_TEMPLATE"]
