"""Helpers for installing nvm and managing the Node.js runtime through it."""
from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import ProvisionError
from ..probe import file_non_empty
from ..runner import CommandRunner, describe_failure

LOGGER = logging.getLogger(__name__)

INIT_SCRIPT = "nvm.sh"
FALLBACK_SCRIPT = "bash_completion"


class NvmError(ProvisionError):
    """Raised when nvm or the runtime it manages cannot be used."""


@dataclass(slots=True, frozen=True)
class VersionManagerEnvironment:
    """Capability handed to later stages so they can call ``nvm``.

    ``init_script`` is ``None`` when neither ``nvm.sh`` nor the fallback
    script could be found; the environment is then *degraded* and every
    command built from it fails with :class:`NvmError`.
    """

    nvm_dir: Path
    init_script: Path | None
    bash_bin: str = "bash"

    @property
    def degraded(self) -> bool:
        """Return ``True`` when nvm cannot be sourced."""
        return self.init_script is None

    @property
    def env(self) -> Mapping[str, str]:
        """Environment variables nvm expects."""
        return {"NVM_DIR": str(self.nvm_dir)}

    def shell_command(self, script: str) -> list[str]:
        """Return argv that sources nvm and then runs *script*."""
        if self.init_script is None:
            raise NvmError(f"nvm is not available under {self.nvm_dir}; cannot run '{script}'.")
        return [self.bash_bin, "-c", f". {shlex.quote(str(self.init_script))} && {script}"]


def channel_argument(channel: str) -> str:
    """Translate a runtime channel into the ``nvm install``/``nvm use`` argument."""
    normalized = channel.strip()
    if normalized.lower() == "lts":
        return "--lts"
    return shlex.quote(normalized)


def alias_target(channel: str) -> str:
    """Translate a runtime channel into an ``nvm alias`` target."""
    normalized = channel.strip()
    if normalized.lower() == "lts":
        return shlex.quote("lts/*")
    return shlex.quote(normalized)


@dataclass(slots=True)
class NvmProvider:
    """Wrapper around the nvm install script and the ``nvm`` shell function."""

    runner: CommandRunner
    install_url: str
    bash_bin: str = "bash"
    curl_bin: str = "curl"

    def existing_dir(self, candidates: Sequence[Path]) -> Path | None:
        """Return the first candidate directory that exists."""
        for candidate in candidates:
            if candidate.is_dir():
                return candidate
        return None

    def install_script(self) -> None:
        """Download and run the upstream nvm install script."""
        script = (
            "set -o pipefail; "
            f"{shlex.quote(self.curl_bin)} -fsSL -o- {shlex.quote(self.install_url)} | bash"
        )
        result = self.runner.run([self.bash_bin, "-c", script])
        if result.returncode != 0:
            raise NvmError(
                f"nvm install script failed (exit {result.returncode}): {describe_failure(result)}"
            )

    def locate(self, candidates: Sequence[Path]) -> VersionManagerEnvironment:
        """Resolve the nvm directory and its init script from *candidates*."""
        if not candidates:
            raise NvmError("No nvm directory candidates configured.")
        nvm_dir = self.existing_dir(candidates) or candidates[0]
        init_script: Path | None = None
        for name in (INIT_SCRIPT, FALLBACK_SCRIPT):
            path = nvm_dir / name
            if file_non_empty(path):
                init_script = path
                break
        return VersionManagerEnvironment(
            nvm_dir=nvm_dir,
            init_script=init_script,
            bash_bin=self.bash_bin,
        )

    def install_runtime(self, env: VersionManagerEnvironment, channel: str) -> None:
        """Run ``nvm install`` for *channel*."""
        self._run_nvm(env, f"nvm install {channel_argument(channel)}")

    def select_runtime(self, env: VersionManagerEnvironment, channel: str) -> None:
        """Run ``nvm use`` for *channel* and make it the default for new shells."""
        self._run_nvm(
            env,
            f"nvm use {channel_argument(channel)} && nvm alias default {alias_target(channel)}",
        )

    def which_runtime(self, env: VersionManagerEnvironment, channel: str) -> Path | None:
        """Return the bin directory of the node selected by *channel*."""
        script = f"nvm use {channel_argument(channel)} >/dev/null && nvm which current"
        node_path = _node_path(self._run_nvm(env, script, check=False))
        return node_path.parent if node_path is not None else None

    def default_runtime(self, env: VersionManagerEnvironment) -> Path | None:
        """Return the bin directory of the installed ``default`` alias, if any.

        New shells that source nvm put this directory on ``PATH``; a runtime
        installed by an earlier run is found here.
        """
        node_path = _node_path(self._run_nvm(env, "nvm which default", check=False))
        if node_path is None or not node_path.is_file():
            return None
        return node_path.parent

    def _run_nvm(
        self,
        env: VersionManagerEnvironment,
        script: str,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("nvm: %s (NVM_DIR=%s)", script, env.nvm_dir)
        result = self.runner.run(env.shell_command(script), env=env.env)
        if check and result.returncode != 0:
            raise NvmError(
                f"'{script}' failed (exit {result.returncode}): {describe_failure(result)}"
            )
        return result


def _node_path(result: subprocess.CompletedProcess[str]) -> Path | None:
    if result.returncode != 0:
        return None
    lines = (result.stdout or "").strip().splitlines()
    if not lines:
        return None
    node_path = Path(lines[-1].strip())
    return node_path if node_path.name else None


__all__ = [
    "NvmError",
    "NvmProvider",
    "VersionManagerEnvironment",
    "alias_target",
    "channel_argument",
]
