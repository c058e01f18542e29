"""Idempotent mutation primitives.

Each primitive can be re-run with the same inputs and converges on the same
end state. Fatal conditions are raised as :class:`~calderactl.errors.ProvisionError`
subclasses; degraded conditions are returned as warnings on the
:class:`~calderactl.stages.ActionOutcome`.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from packaging.version import InvalidVersion, Version

from .errors import MissingInputError
from .probe import command_exists, command_version, directory_exists, file_non_empty
from .providers import (
    AptProvider,
    GitError,
    GitProvider,
    NvmError,
    NvmProvider,
    PythonEnvError,
    PythonEnvProvider,
    SnapProvider,
    SystemdError,
    SystemdProvider,
    VersionManagerEnvironment,
)
from .providers.nvm import INIT_SCRIPT
from .runner import CommandRunner, describe_failure
from .stages import ActionOutcome
from .templates import TemplateEngine, TemplateError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RepositorySpec:
    """A git checkout to acquire."""

    name: str
    url: str
    path: Path
    recursive: bool = True


@dataclass(slots=True, frozen=True)
class RenderedConfig:
    """A fully materialised configuration artifact."""

    path: Path
    content: str
    changed: bool


@dataclass(slots=True, frozen=True)
class ServiceUnit:
    """Identity and restart policy of the generated service unit."""

    name: str
    description: str
    user: str
    working_directory: Path
    path_env: str
    exec_start: str
    restart: str = "on-failure"
    restart_sec: int = 10

    def context(self) -> dict[str, object]:
        """Return the template context for the unit file."""
        return {
            "description": self.description,
            "user": self.user,
            "working_directory": str(self.working_directory),
            "path": self.path_env,
            "exec_start": self.exec_start,
            "restart": self.restart,
            "restart_sec": self.restart_sec,
        }


@dataclass(slots=True)
class ProvisionSession:
    """Capabilities produced by earlier stages and consumed by later ones."""

    version_manager: VersionManagerEnvironment | None = None
    runtime_bin: Path | None = None
    base_path: str = field(default_factory=lambda: os.environ.get("PATH", os.defpath))

    @property
    def search_path(self) -> str:
        """Return ``$PATH`` extended with binaries installed during this run."""
        if self.runtime_bin is None:
            return self.base_path
        return os.pathsep.join([str(self.runtime_bin), self.base_path])


class MutationPrimitives:
    """Effectful provisioning operations built on the collaborator providers."""

    def __init__(
        self,
        *,
        runner: CommandRunner,
        templates: TemplateEngine,
        apt: AptProvider,
        nvm: NvmProvider,
        snap: SnapProvider,
        git: GitProvider,
        python_env: PythonEnvProvider,
        systemd: SystemdProvider,
    ) -> None:
        """Store collaborators."""
        self.runner = runner
        self.templates = templates
        self.apt = apt
        self.nvm = nvm
        self.snap = snap
        self.git = git
        self.python_env = python_env
        self.systemd = systemd

    # ------------------------------------------------------------------
    # Dependencies and runtimes
    # ------------------------------------------------------------------

    def install_packages(self, names: Sequence[str]) -> ActionOutcome:
        """Refresh the package cache and install *names* in one transaction."""
        warnings: list[str] = []
        refresh = self.apt.refresh_cache()
        if refresh.returncode != 0:
            warnings.append(
                f"Package cache refresh exited {refresh.returncode} "
                f"({describe_failure(refresh)}); continuing with cached lists."
            )
        self.apt.install(names)
        return ActionOutcome(
            detail=f"Installed {len(names)} package(s): {' '.join(names)}",
            warnings=tuple(warnings),
        )

    def ensure_version_manager(self, candidates: Sequence[Path]) -> ActionOutcome:
        """Make nvm available and return its environment as the outcome value."""
        warnings: list[str] = []
        existing = self.nvm.existing_dir(candidates)
        installed = False
        if existing is None:
            try:
                self.nvm.install_script()
                installed = True
            except NvmError as exc:
                warnings.append(str(exc))
        environment = self.nvm.locate(candidates)
        if environment.degraded:
            warnings.append(
                f"nvm {INIT_SCRIPT} not found at {environment.nvm_dir}; "
                "continuing without nvm."
            )
        if installed:
            detail = f"Installed nvm into {environment.nvm_dir}"
        else:
            detail = f"nvm present at {environment.nvm_dir}"
        return ActionOutcome(
            detail=detail,
            changed=installed,
            warnings=tuple(warnings),
            value=environment,
            data={
                "nvm_dir": str(environment.nvm_dir),
                "init_script": str(environment.init_script) if environment.init_script else None,
            },
        )

    def default_runtime(self, environment: VersionManagerEnvironment | None) -> Path | None:
        """Return the bin directory nvm puts on ``PATH`` for new shells."""
        if environment is None or environment.degraded:
            return None
        bin_dir = self.nvm.default_runtime(environment)
        if bin_dir is not None:
            LOGGER.debug("nvm default runtime resolved to %s", bin_dir)
        return bin_dir

    def ensure_runtime_version(
        self,
        channel: str,
        environment: VersionManagerEnvironment | None,
        *,
        node_bin: str = "node",
        search_path: str | None = None,
    ) -> ActionOutcome:
        """Install and select *channel* through nvm unless node already resolves.

        The outcome value is the bin directory of the selected runtime, or
        ``None`` when an existing node was used.
        """
        if command_exists(node_bin, path=search_path):
            version = command_version(node_bin, path=search_path) or "unknown version"
            LOGGER.info("Node.js already installed: %s", version)
            return ActionOutcome(detail=f"Node.js already installed: {version}", changed=False)
        if environment is None or environment.degraded:
            raise NvmError(
                "Node.js is not installed and nvm is unavailable; "
                "cannot install the runtime."
            )
        self.nvm.install_runtime(environment, channel)
        self.nvm.select_runtime(environment, channel)
        bin_dir = self.nvm.which_runtime(environment, channel)
        if bin_dir is None:
            raise NvmError(
                f"nvm installed Node.js ({channel}) but the binary could not be located."
            )
        return ActionOutcome(
            detail=f"Installed Node.js ({channel}) into {bin_dir}",
            value=bin_dir,
            data={"bin_dir": str(bin_dir)},
        )

    def install_via_snap(
        self,
        name: str,
        *,
        classic: bool = False,
        search_path: str | None = None,
    ) -> ActionOutcome:
        """Install an optional tool; failure never propagates."""
        if command_exists(name, path=search_path):
            return ActionOutcome(detail=f"{name} already installed", changed=False)
        result = self.snap.install(name, classic=classic)
        if result.returncode != 0:
            return ActionOutcome(
                detail=f"snap install {name} failed",
                changed=False,
                warnings=(
                    f"snap install {name} exited {result.returncode}: "
                    f"{describe_failure(result)}",
                ),
            )
        return ActionOutcome(detail=f"Installed {name} via snap")

    def ensure_virtualenv(self, venv: Path, *, min_version: str) -> ActionOutcome:
        """Create *venv* with an interpreter no older than *min_version*."""
        version = self.python_env.interpreter_version()
        if version is None:
            raise PythonEnvError(f"Python interpreter '{self.python_env.interpreter}' not found.")
        try:
            minimum = Version(min_version)
        except InvalidVersion as exc:
            raise PythonEnvError(f"Invalid minimum Python version '{min_version}'.") from exc
        if version < minimum:
            raise PythonEnvError(
                f"Python {version} is older than the required {minimum}."
            )
        if file_non_empty(self.python_env.venv_python(venv)):
            return ActionOutcome(detail=f"Virtual environment present at {venv}", changed=False)
        self.python_env.create(venv)
        return ActionOutcome(detail=f"Created virtual environment at {venv} (Python {version})")

    # ------------------------------------------------------------------
    # Source acquisition
    # ------------------------------------------------------------------

    def clone_or_update(self, spec: RepositorySpec, *, required: bool) -> ActionOutcome:
        """Clone *spec* or fast-forward an existing checkout.

        Update failures are always warnings. Clone failures are fatal only
        when *required*.
        """
        if directory_exists(spec.path):
            result = self.git.pull(spec.path, recursive=spec.recursive)
            if result.returncode != 0:
                return ActionOutcome(
                    detail=f"{spec.name}: update failed; using existing checkout",
                    changed=False,
                    warnings=(
                        f"git pull in {spec.path} exited {result.returncode}: "
                        f"{describe_failure(result)}",
                    ),
                )
            return ActionOutcome(detail=f"{spec.name}: updated {spec.path}")

        result = self.git.clone(spec.url, spec.path, recursive=spec.recursive)
        if result.returncode != 0:
            message = (
                f"git clone {spec.url} exited {result.returncode}: {describe_failure(result)}"
            )
            if required:
                raise GitError(message)
            return ActionOutcome(
                detail=f"{spec.name}: clone failed",
                changed=False,
                warnings=(message,),
            )
        return ActionOutcome(detail=f"{spec.name}: cloned into {spec.path}")

    def clone_plugins(
        self,
        specs: Sequence[RepositorySpec],
        *,
        refresh_existing: bool = False,
    ) -> ActionOutcome:
        """Acquire each plugin independently; one failure never blocks the rest."""
        counts = {"cloned": 0, "updated": 0, "skipped": 0, "failed": 0}
        warnings: list[str] = []
        for spec in specs:
            exists = directory_exists(spec.path)
            if exists and not refresh_existing:
                counts["skipped"] += 1
                continue
            spec.path.parent.mkdir(parents=True, exist_ok=True)
            outcome = self.clone_or_update(spec, required=False)
            warnings.extend(f"{spec.name}: {warning}" for warning in outcome.warnings)
            if outcome.warnings and not exists:
                counts["failed"] += 1
            elif exists:
                counts["updated"] += 1
            else:
                counts["cloned"] += 1
        summary = ", ".join(f"{count} {label}" for label, count in counts.items())
        return ActionOutcome(
            detail=f"Plugins: {summary}",
            changed=bool(counts["cloned"] or counts["updated"]),
            warnings=tuple(warnings),
            data=dict(counts),
        )

    def install_requirements(self, venv: Path, requirements: Path) -> ActionOutcome:
        """Install the application's Python requirements into *venv*."""
        if not requirements.is_file():
            raise MissingInputError(f"{requirements} not found; cannot install dependencies.")
        self.python_env.upgrade_tooling(venv)
        self.python_env.install_requirements(venv, requirements)
        return ActionOutcome(detail=f"Installed {requirements.name} into {venv}")

    # ------------------------------------------------------------------
    # Configuration and service
    # ------------------------------------------------------------------

    def render_config(
        self,
        template: str,
        data: Mapping[str, object],
        destination: Path,
        *,
        mode: int = 0o600,
    ) -> RenderedConfig:
        """Render *template* and overwrite *destination* in full."""
        content = self.templates.render_to_string(template, data)
        try:
            changed = destination.read_text(encoding="utf-8") != content
        except FileNotFoundError:
            changed = True
        self.runner.write_file(destination, content, mode=mode)
        return RenderedConfig(path=destination, content=content, changed=changed)

    def write_service_unit(self, unit: ServiceUnit) -> ActionOutcome:
        """Write, reload, enable and start *unit*; every sub-step is fatal."""
        try:
            content = self.systemd.render_unit(unit.context())
        except TemplateError as exc:
            raise SystemdError(str(exc), step="render") from exc
        path = self.systemd.write_unit(unit.name, content)
        self.systemd.reload()
        self.systemd.enable(unit.name)
        self.systemd.start(unit.name)
        return ActionOutcome(
            detail=f"{self.systemd.unit_name(unit.name)} written to {path}, enabled and started",
            value=path,
            data={"unit_path": str(path)},
        )


__all__ = [
    "MutationPrimitives",
    "ProvisionSession",
    "RenderedConfig",
    "RepositorySpec",
    "ServiceUnit",
]
