"""Python virtual environment and pip management."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from packaging.version import InvalidVersion, Version

from ..errors import ProvisionError
from ..probe import python_version
from ..runner import CommandRunner, describe_failure


class PythonEnvError(ProvisionError):
    """Raised when the virtual environment or its dependencies cannot be installed."""


def parse_python_version(value: str | None) -> Version | None:
    """Return *value* as a :class:`Version`, or ``None`` when it is not one."""
    if not value:
        return None
    try:
        return Version(value)
    except InvalidVersion:
        return None


@dataclass(slots=True)
class PythonEnvProvider:
    """Create a venv with the system interpreter and install into it with pip."""

    runner: CommandRunner
    interpreter: str = "python3"

    def interpreter_version(self) -> Version | None:
        """Return the system interpreter version, or ``None`` if it is missing."""
        return parse_python_version(python_version(self.interpreter))

    @staticmethod
    def venv_python(venv: Path) -> Path:
        """Return the interpreter path inside *venv*."""
        return venv / "bin" / "python"

    def create(self, venv: Path) -> None:
        """Create *venv*; an existing environment is upgraded in place by ``venv``."""
        self._run([self.interpreter, "-m", "venv", str(venv)], f"{self.interpreter} -m venv")

    def upgrade_tooling(self, venv: Path) -> None:
        """Upgrade pip, setuptools and wheel inside *venv*."""
        self._run(
            [
                str(self.venv_python(venv)),
                "-m",
                "pip",
                "install",
                "--upgrade",
                "pip",
                "setuptools",
                "wheel",
            ],
            "pip install --upgrade",
        )

    def install_requirements(self, venv: Path, requirements: Path) -> None:
        """Install *requirements* into *venv*."""
        self._run(
            [str(self.venv_python(venv)), "-m", "pip", "install", "-r", str(requirements)],
            f"pip install -r {requirements.name}",
            cwd=requirements.parent,
        )

    def _run(self, args: list[str], label: str, *, cwd: Path | None = None) -> None:
        result = self.runner.run(args, cwd=cwd)
        if result.returncode != 0:
            raise PythonEnvError(
                f"{label} failed (exit {result.returncode}): {describe_failure(result)}"
            )


__all__ = ["PythonEnvError", "PythonEnvProvider", "parse_python_version"]
