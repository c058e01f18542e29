"""Build the provisioning plan from configuration.

The plan is a literal, ordered list of stages. Capabilities produced by one
stage (the nvm environment, the runtime's bin directory) are written to the
shared :class:`~calderactl.primitives.ProvisionSession` and read lazily by the
stages that follow, so probes always see the state left by earlier work.
"""
from __future__ import annotations

import os
import shlex
from collections.abc import Callable

from .config import AppConfig
from .primitives import MutationPrimitives, ProvisionSession, RepositorySpec, ServiceUnit
from .probe import (
    command_exists,
    command_version,
    directory_exists,
    file_non_empty,
    packages_installed,
)
from .providers import (
    AptProvider,
    GitProvider,
    NvmProvider,
    PythonEnvProvider,
    SnapProvider,
    SystemdProvider,
)
from .runner import CommandRunner
from .sanitizer import sanitize
from .stages import ActionOutcome, FailurePolicy, ProvisioningPlan, ProvisionState, Stage
from .templates import TemplateEngine

APP_CONFIG_TEMPLATE = "caldera/local.yml.j2"
SERVER_SCRIPT = "server.py"


def build_primitives(
    config: AppConfig,
    runner: CommandRunner,
    templates: TemplateEngine,
) -> MutationPrimitives:
    """Wire every collaborator provider from *config*."""
    return MutationPrimitives(
        runner=runner,
        templates=templates,
        apt=AptProvider(runner=runner, apt_get_bin=config.packages.apt_get_bin),
        nvm=NvmProvider(
            runner=runner,
            install_url=config.runtime.nvm_install_url,
            bash_bin=config.runtime.bash_bin,
            curl_bin=config.runtime.curl_bin,
        ),
        snap=SnapProvider(runner=runner, snap_bin=config.snaps.snap_bin),
        git=GitProvider(runner=runner, git_bin=config.source.git_bin),
        python_env=PythonEnvProvider(runner=runner, interpreter=config.python.interpreter),
        systemd=SystemdProvider(
            templates=templates,
            runner=runner,
            systemd_dir=config.service.unit_dir,
            systemctl_bin=config.systemd.systemctl_bin,
        ),
    )


def primary_repository(config: AppConfig) -> RepositorySpec:
    """Return the checkout spec for the application itself."""
    return RepositorySpec(
        name="caldera",
        url=config.source.url,
        path=config.paths.caldera_home,
        recursive=config.source.recursive,
    )


def plugin_repositories(config: AppConfig) -> list[RepositorySpec]:
    """Return one checkout spec per configured plugin."""
    return [
        RepositorySpec(
            name=name,
            url=config.source.plugin_url_template.format(name=name),
            path=config.plugins_root / name,
            recursive=config.source.recursive,
        )
        for name in config.source.plugins
    ]


def application_context(config: AppConfig) -> dict[str, object]:
    """Return the template context for the application configuration."""
    application = config.application
    return {
        "host": application.host,
        "port": application.port,
        "users": [
            {"username": user.username, "password": user.password, "access": user.access}
            for user in application.users
        ],
        "plugins": list(application.plugins),
        "log_level": application.log_level,
    }


def service_unit(config: AppConfig, session: ProvisionSession) -> ServiceUnit:
    """Describe the service unit, including the runtime resolved this run."""
    venv_bin = config.paths.venv / "bin"
    path_entries = [str(venv_bin)]
    if session.runtime_bin is not None:
        path_entries.append(str(session.runtime_bin))
    path_entries.extend(config.service.path_extra)
    exec_start = shlex.join(
        [
            str(PythonEnvProvider.venv_python(config.paths.venv)),
            str(config.paths.caldera_home / SERVER_SCRIPT),
            *config.service.exec_args,
        ]
    )
    return ServiceUnit(
        name=config.service.name,
        description=config.service.description,
        user=config.service.user,
        working_directory=config.paths.caldera_home,
        path_env=os.pathsep.join(path_entries),
        exec_start=exec_start,
        restart=config.service.restart,
        restart_sec=config.service.restart_sec,
    )


def build_plan(
    config: AppConfig,
    primitives: MutationPrimitives,
    session: ProvisionSession,
) -> ProvisioningPlan:
    """Return the ordered stage list for a full provisioning run."""
    stages: list[Stage] = []

    if config.sanitizer.enabled:
        stages.append(
            Stage(
                name="sanitize.apt-sources",
                phase=ProvisionState.SANITIZING,
                action=_sanitize_action(config, primitives),
                policy=FailurePolicy.WARN,
                description="Comment out denylisted apt source entries",
            )
        )

    stages.append(
        Stage(
            name="packages.system",
            phase=ProvisionState.DEPENDENCY_INSTALL,
            action=lambda: primitives.install_packages(config.packages.names),
            precondition=lambda: packages_installed(
                config.packages.names, dpkg_query_bin=config.packages.dpkg_query_bin
            ),
            description="Install system packages",
        )
    )

    stages.extend(_runtime_stages(config, primitives, session))
    stages.extend(_source_stages(config, primitives))

    stages.append(
        Stage(
            name="config.local",
            phase=ProvisionState.CONFIG_GENERATION,
            action=_render_config_action(config, primitives),
            description=f"Render {config.application.config_path}",
        )
    )
    stages.append(
        Stage(
            name="service.unit",
            phase=ProvisionState.SERVICE_ACTIVATION,
            action=lambda: primitives.write_service_unit(service_unit(config, session)),
            description=f"Install and start {config.service.name}.service",
        )
    )

    plan = ProvisioningPlan(stages=tuple(stages))
    plan.validate()
    return plan


def _sanitize_action(
    config: AppConfig,
    primitives: MutationPrimitives,
) -> Callable[[], ActionOutcome]:
    def action() -> ActionOutcome:
        repairs = sanitize(
            config.sanitizer.roots,
            patterns=config.sanitizer.patterns,
            runner=primitives.runner,
        )
        if not repairs:
            return ActionOutcome(detail="No denylisted entries found", changed=False)
        return ActionOutcome(
            detail=f"Repaired {len(repairs)} file(s)",
            data={
                "files": [str(repair.path) for repair in repairs],
                "backups": [str(repair.backup) for repair in repairs if repair.backup_created],
            },
        )

    return action


def _runtime_stages(
    config: AppConfig,
    primitives: MutationPrimitives,
    session: ProvisionSession,
) -> list[Stage]:
    runtime = config.runtime

    def ensure_version_manager() -> ActionOutcome:
        outcome = primitives.ensure_version_manager(runtime.nvm_dirs)
        session.version_manager = outcome.value
        if session.runtime_bin is None:
            session.runtime_bin = primitives.default_runtime(outcome.value)
        return outcome

    def ensure_node() -> ActionOutcome:
        outcome = primitives.ensure_runtime_version(
            runtime.node_channel,
            session.version_manager,
            node_bin=runtime.node_bin,
            search_path=session.search_path,
        )
        if outcome.value is not None:
            session.runtime_bin = outcome.value
        return outcome

    def node_version() -> str:
        version = command_version(runtime.node_bin, path=session.search_path)
        return f"Node.js already installed: {version or 'unknown version'}"

    stages = [
        Stage(
            name="runtime.version-manager",
            phase=ProvisionState.RUNTIME_ACQUISITION,
            action=ensure_version_manager,
            policy=FailurePolicy.WARN,
            description="Install or locate nvm",
        ),
        Stage(
            name="runtime.node",
            phase=ProvisionState.RUNTIME_ACQUISITION,
            action=ensure_node,
            precondition=lambda: command_exists(runtime.node_bin, path=session.search_path),
            describe_skip=node_version,
            description=f"Install Node.js ({runtime.node_channel}) through nvm",
        ),
    ]

    for tool in config.snaps.tools:
        stages.append(
            Stage(
                name=f"tools.snap.{tool.name}",
                phase=ProvisionState.RUNTIME_ACQUISITION,
                action=_snap_action(primitives, session, tool.name, tool.classic),
                policy=FailurePolicy.WARN,
                precondition=_binary_probe(session, tool.name),
                description=f"Install {tool.name} via snap",
            )
        )

    venv_python = PythonEnvProvider.venv_python(config.paths.venv)
    stages.append(
        Stage(
            name="python.virtualenv",
            phase=ProvisionState.RUNTIME_ACQUISITION,
            action=lambda: primitives.ensure_virtualenv(
                config.paths.venv, min_version=config.python.min_version
            ),
            precondition=lambda: file_non_empty(venv_python),
            description=f"Create virtual environment at {config.paths.venv}",
        )
    )
    return stages


def _snap_action(
    primitives: MutationPrimitives,
    session: ProvisionSession,
    name: str,
    classic: bool,
) -> Callable[[], ActionOutcome]:
    return lambda: primitives.install_via_snap(
        name, classic=classic, search_path=session.search_path
    )


def _binary_probe(session: ProvisionSession, name: str) -> Callable[[], bool]:
    return lambda: command_exists(name, path=session.search_path)


def _source_stages(config: AppConfig, primitives: MutationPrimitives) -> list[Stage]:
    refresh = config.source.refresh_existing
    primary = primary_repository(config)
    plugins = plugin_repositories(config)

    stages = [
        Stage(
            name="source.primary",
            phase=ProvisionState.SOURCE_ACQUISITION,
            action=lambda: primitives.clone_or_update(primary, required=True),
            precondition=None if refresh else (lambda: directory_exists(primary.path)),
            description=f"Clone {primary.url}",
        )
    ]
    if plugins:
        stages.append(
            Stage(
                name="source.plugins",
                phase=ProvisionState.SOURCE_ACQUISITION,
                action=lambda: primitives.clone_plugins(plugins, refresh_existing=refresh),
                policy=FailurePolicy.WARN,
                precondition=(
                    None
                    if refresh
                    else (lambda: all(directory_exists(spec.path) for spec in plugins))
                ),
                description=f"Clone {len(plugins)} plugin(s)",
            )
        )
    requirements = config.paths.caldera_home / config.python.requirements
    stages.append(
        Stage(
            name="python.requirements",
            phase=ProvisionState.SOURCE_ACQUISITION,
            action=lambda: primitives.install_requirements(config.paths.venv, requirements),
            description=f"Install {config.python.requirements}",
        )
    )
    return stages


def _render_config_action(
    config: AppConfig,
    primitives: MutationPrimitives,
) -> Callable[[], ActionOutcome]:
    def action() -> ActionOutcome:
        rendered = primitives.render_config(
            APP_CONFIG_TEMPLATE,
            application_context(config),
            config.app_config_path,
        )
        verb = "Updated" if rendered.changed else "Rewrote unchanged"
        return ActionOutcome(
            detail=f"{verb} {rendered.path}",
            changed=rendered.changed,
            data={"path": str(rendered.path), "changed": rendered.changed},
        )

    return action


__all__ = [
    "APP_CONFIG_TEMPLATE",
    "application_context",
    "build_plan",
    "build_primitives",
    "plugin_repositories",
    "primary_repository",
    "service_unit",
]
