"""Configuration loader for calderactl.

Configuration values are merged from several sources, lowest precedence
first:

1. Built-in defaults (the stock CALDERA 5.x layout).
2. ``~/.config/calderactl/config.yml`` (or an override path).
3. Environment variables prefixed with ``CALDERACTL_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export CALDERACTL_APPLICATION__PORT=9999
    export CALDERACTL_SOURCE__REFRESH_EXISTING=true
    export CALDERACTL_PACKAGES__NAMES='[git, curl]'

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
flow-style lists are parsed naturally. The resulting configuration is exposed
as immutable ``dataclasses``.
"""
from __future__ import annotations

import os
import pwd
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "CALDERACTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

DEFAULT_PASSWORDS = frozenset({"changeme", "apipass", "admin", "password"})


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PathsConfig:
    """Filesystem layout for the deployment."""

    caldera_home: Path
    venv: Path

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"caldera_home": str(self.caldera_home), "venv": str(self.venv)}


@dataclass(frozen=True)
class PackagesConfig:
    """System packages installed through apt."""

    names: tuple[str, ...]
    apt_get_bin: str = "apt-get"
    dpkg_query_bin: str = "dpkg-query"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "names": list(self.names),
            "apt_get_bin": self.apt_get_bin,
            "dpkg_query_bin": self.dpkg_query_bin,
        }


@dataclass(frozen=True)
class RuntimeConfig:
    """Node.js runtime management through nvm."""

    nvm_dirs: tuple[Path, ...]
    nvm_install_url: str
    node_channel: str = "lts"
    node_bin: str = "node"
    bash_bin: str = "bash"
    curl_bin: str = "curl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "nvm_dirs": [str(path) for path in self.nvm_dirs],
            "nvm_install_url": self.nvm_install_url,
            "node_channel": self.node_channel,
            "node_bin": self.node_bin,
            "bash_bin": self.bash_bin,
            "curl_bin": self.curl_bin,
        }


@dataclass(frozen=True)
class SnapTool:
    """Optional tool installed through snap."""

    name: str
    classic: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "classic": self.classic}


@dataclass(frozen=True)
class SnapConfig:
    """Optional enhancement tools delivered as snaps."""

    tools: tuple[SnapTool, ...]
    snap_bin: str = "snap"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"tools": [tool.to_dict() for tool in self.tools], "snap_bin": self.snap_bin}


@dataclass(frozen=True)
class SourceConfig:
    """Primary repository and plugin checkouts."""

    url: str
    plugins: tuple[str, ...]
    plugin_url_template: str
    plugins_dir: str = "plugins"
    recursive: bool = True
    refresh_existing: bool = False
    git_bin: str = "git"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "url": self.url,
            "plugins": list(self.plugins),
            "plugin_url_template": self.plugin_url_template,
            "plugins_dir": self.plugins_dir,
            "recursive": self.recursive,
            "refresh_existing": self.refresh_existing,
            "git_bin": self.git_bin,
        }


@dataclass(frozen=True)
class PythonConfig:
    """Python interpreter and dependency installation settings."""

    interpreter: str = "python3"
    min_version: str = "3.10"
    requirements: str = "requirements.txt"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "interpreter": self.interpreter,
            "min_version": self.min_version,
            "requirements": self.requirements,
        }


@dataclass(frozen=True)
class Account:
    """Login account written into the application configuration."""

    username: str
    password: str
    access: str

    @property
    def uses_default_password(self) -> bool:
        """Return ``True`` when the password is a well-known default."""
        return self.password in DEFAULT_PASSWORDS

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation (password redacted)."""
        return {"username": self.username, "password": "***", "access": self.access}


@dataclass(frozen=True)
class ApplicationConfig:
    """Values rendered into CALDERA's ``conf/local.yml``."""

    host: str
    port: int
    users: tuple[Account, ...]
    plugins: tuple[str, ...]
    log_level: str = "INFO"
    config_path: str = "conf/local.yml"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "host": self.host,
            "port": self.port,
            "users": [account.to_dict() for account in self.users],
            "plugins": list(self.plugins),
            "log_level": self.log_level,
            "config_path": self.config_path,
        }


@dataclass(frozen=True)
class ServiceConfig:
    """systemd unit identity and restart policy."""

    name: str
    description: str
    user: str
    unit_dir: Path
    exec_args: tuple[str, ...]
    path_extra: tuple[str, ...]
    restart: str = "on-failure"
    restart_sec: int = 10

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "description": self.description,
            "user": self.user,
            "unit_dir": str(self.unit_dir),
            "exec_args": list(self.exec_args),
            "path_extra": list(self.path_extra),
            "restart": self.restart,
            "restart_sec": self.restart_sec,
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class SanitizerConfig:
    """Pre-flight repair of known-bad apt source entries."""

    enabled: bool
    roots: tuple[Path, ...]
    patterns: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "enabled": self.enabled,
            "roots": [str(root) for root in self.roots],
            "patterns": list(self.patterns),
        }


@dataclass(frozen=True)
class ElevationConfig:
    """Privilege elevation for mutations of system-owned paths."""

    enabled: bool = True
    sudo_bin: str = "sudo"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"enabled": self.enabled, "sudo_bin": self.sudo_bin}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for calderactl."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path | None
    paths: PathsConfig
    packages: PackagesConfig
    runtime: RuntimeConfig
    snaps: SnapConfig
    source: SourceConfig
    python: PythonConfig
    application: ApplicationConfig
    service: ServiceConfig
    systemd: SystemdConfig
    sanitizer: SanitizerConfig
    elevation: ElevationConfig

    @property
    def plugins_root(self) -> Path:
        """Return the directory holding plugin checkouts."""
        return self.paths.caldera_home / self.source.plugins_dir

    @property
    def app_config_path(self) -> Path:
        """Return the rendered application configuration path."""
        return self.paths.caldera_home / self.application.config_path

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir) if self.templates_dir else None,
            "paths": self.paths.to_dict(),
            "packages": self.packages.to_dict(),
            "runtime": self.runtime.to_dict(),
            "snaps": self.snaps.to_dict(),
            "source": self.source.to_dict(),
            "python": self.python.to_dict(),
            "application": self.application.to_dict(),
            "service": self.service.to_dict(),
            "systemd": self.systemd.to_dict(),
            "sanitizer": self.sanitizer.to_dict(),
            "elevation": self.elevation.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/calderactl/config.yml",
    "logs_dir": "~/.local/state/calderactl",
    "templates_dir": None,
    "paths": {
        "caldera_home": "~/caldera5",
        "venv": "~/caldera_venv",
    },
    "packages": {
        "names": [
            "python3-dev",
            "python3-venv",
            "git",
            "curl",
            "npm",
            "snapd",
            "build-essential",
        ],
        "apt_get_bin": "apt-get",
        "dpkg_query_bin": "dpkg-query",
    },
    "runtime": {
        "nvm_dirs": ["~/.nvm", "~/.config/nvm"],
        "nvm_install_url": "https://raw.githubusercontent.com/nvm-sh/nvm/v0.39.5/install.sh",
        "node_channel": "lts",
        "node_bin": "node",
        "bash_bin": "bash",
        "curl_bin": "curl",
    },
    "snaps": {
        "tools": [
            {"name": "go", "classic": True},
            {"name": "upx", "classic": False},
        ],
        "snap_bin": "snap",
    },
    "source": {
        "url": "https://github.com/mitre/caldera.git",
        "plugins": [
            "access",
            "atomic",
            "compass",
            "debrief",
            "manx",
            "mock",
            "response",
            "sandcat",
            "stockpile",
            "training",
        ],
        "plugin_url_template": "https://github.com/mitre/{name}.git",
        "plugins_dir": "plugins",
        "recursive": True,
        "refresh_existing": False,
        "git_bin": "git",
    },
    "python": {
        "interpreter": "python3",
        "min_version": "3.10",
        "requirements": "requirements.txt",
    },
    "application": {
        "host": "0.0.0.0",
        "port": 8888,
        "users": [
            {"username": "admin", "password": "changeme", "access": "blue"},
            {"username": "red", "password": "changeme", "access": "red"},
            {"username": "api", "password": "apipass", "access": "api"},
        ],
        "plugins": [
            "stockpile",
            "sandcat",
            "response",
            "access",
            "manx",
            "compass",
            "atomic",
            "training",
            "debrief",
        ],
        "log_level": "INFO",
        "config_path": "conf/local.yml",
    },
    "service": {
        "name": "caldera",
        "description": "MITRE CALDERA Adversary Emulation Platform",
        "user": None,  # derived from the invoking user when absent
        "unit_dir": "/etc/systemd/system",
        "exec_args": ["--insecure", "--build"],
        "path_extra": ["/usr/local/sbin", "/usr/local/bin", "/usr/sbin", "/usr/bin"],
        "restart": "on-failure",
        "restart_sec": 10,
    },
    "systemd": {
        "systemctl_bin": "systemctl",
    },
    "sanitizer": {
        "enabled": True,
        "roots": ["/etc/apt/sources.list", "/etc/apt/sources.list.d"],
        "patterns": ["vulns"],
    },
    "elevation": {
        "enabled": True,
        "sudo_bin": "sudo",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    key: set(cast(Mapping[str, object], value).keys())
    for key, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}
ALLOWED_ACCESS_LEVELS = {"red", "blue", "api"}
ALLOWED_RESTART_POLICIES = {"no", "on-success", "on-failure", "on-abnormal", "always"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, _deep_copy(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    templates_value = raw.get("templates_dir")
    templates_dir = _to_path(templates_value) if templates_value else None

    paths_map = _as_dict(raw.get("paths"), "paths")
    paths = PathsConfig(
        caldera_home=_to_path(paths_map.get("caldera_home")),
        venv=_to_path(paths_map.get("venv")),
    )

    packages_map = _as_dict(raw.get("packages"), "packages")
    package_names = _expect_str_tuple(packages_map.get("names"), "packages.names")
    if not package_names:
        raise ConfigError("packages.names must list at least one package.")
    packages = PackagesConfig(
        names=package_names,
        apt_get_bin=str(packages_map.get("apt_get_bin", "apt-get")),
        dpkg_query_bin=str(packages_map.get("dpkg_query_bin", "dpkg-query")),
    )

    runtime_map = _as_dict(raw.get("runtime"), "runtime")
    nvm_dirs = tuple(
        _to_path(entry)
        for entry in _expect_str_tuple(runtime_map.get("nvm_dirs"), "runtime.nvm_dirs")
    )
    if not nvm_dirs:
        raise ConfigError("runtime.nvm_dirs must list at least one candidate directory.")
    node_channel = str(runtime_map.get("node_channel", "lts")).strip()
    if not node_channel:
        raise ConfigError("runtime.node_channel cannot be blank.")
    runtime = RuntimeConfig(
        nvm_dirs=nvm_dirs,
        nvm_install_url=_expect_str(runtime_map.get("nvm_install_url"), "runtime.nvm_install_url"),
        node_channel=node_channel,
        node_bin=str(runtime_map.get("node_bin", "node")),
        bash_bin=str(runtime_map.get("bash_bin", "bash")),
        curl_bin=str(runtime_map.get("curl_bin", "curl")),
    )

    snaps_map = _as_dict(raw.get("snaps"), "snaps")
    tools: list[SnapTool] = []
    for index, entry in enumerate(_as_sequence(snaps_map.get("tools") or [], "snaps.tools")):
        if isinstance(entry, str):
            tools.append(SnapTool(name=entry))
            continue
        tool_map = _as_dict(entry, f"snaps.tools[{index}]")
        tools.append(
            SnapTool(
                name=_expect_str(tool_map.get("name"), f"snaps.tools[{index}].name"),
                classic=bool(tool_map.get("classic", False)),
            )
        )
    snaps = SnapConfig(tools=tuple(tools), snap_bin=str(snaps_map.get("snap_bin", "snap")))

    source_map = _as_dict(raw.get("source"), "source")
    plugin_url_template = _expect_str(
        source_map.get("plugin_url_template"), "source.plugin_url_template"
    )
    if "{name}" not in plugin_url_template:
        raise ConfigError("source.plugin_url_template must contain a '{name}' placeholder.")
    source = SourceConfig(
        url=_expect_str(source_map.get("url"), "source.url"),
        plugins=_expect_str_tuple(source_map.get("plugins") or [], "source.plugins"),
        plugin_url_template=plugin_url_template,
        plugins_dir=str(source_map.get("plugins_dir", "plugins")),
        recursive=bool(source_map.get("recursive", True)),
        refresh_existing=bool(source_map.get("refresh_existing", False)),
        git_bin=str(source_map.get("git_bin", "git")),
    )

    python_map = _as_dict(raw.get("python"), "python")
    python = PythonConfig(
        interpreter=str(python_map.get("interpreter", "python3")),
        min_version=str(python_map.get("min_version", "3.10")),
        requirements=str(python_map.get("requirements", "requirements.txt")),
    )

    application = _build_application(_as_dict(raw.get("application"), "application"))

    service_map = _as_dict(raw.get("service"), "service")
    restart = str(service_map.get("restart", "on-failure"))
    if restart not in ALLOWED_RESTART_POLICIES:
        allowed = ", ".join(sorted(ALLOWED_RESTART_POLICIES))
        raise ConfigError(f"Unsupported service.restart '{restart}'. Allowed: {allowed}.")
    restart_sec = _expect_int(service_map.get("restart_sec"), "service.restart_sec", default=10)
    if restart_sec < 0:
        raise ConfigError("service.restart_sec must be non-negative.")
    user_value = service_map.get("user")
    service_user = str(user_value) if user_value else _current_user()
    service = ServiceConfig(
        name=_expect_str(service_map.get("name"), "service.name"),
        description=str(service_map.get("description", "")),
        user=service_user,
        unit_dir=_to_path(service_map.get("unit_dir")),
        exec_args=_expect_str_tuple(service_map.get("exec_args") or [], "service.exec_args"),
        path_extra=_expect_str_tuple(service_map.get("path_extra") or [], "service.path_extra"),
        restart=restart,
        restart_sec=restart_sec,
    )

    systemd_map = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(systemctl_bin=str(systemd_map.get("systemctl_bin", "systemctl")))

    sanitizer_map = _as_dict(raw.get("sanitizer"), "sanitizer")
    patterns = _expect_str_tuple(sanitizer_map.get("patterns") or [], "sanitizer.patterns")
    if any(not pattern.strip() for pattern in patterns):
        raise ConfigError("sanitizer.patterns cannot contain blank entries.")
    sanitizer = SanitizerConfig(
        enabled=bool(sanitizer_map.get("enabled", True)),
        roots=tuple(
            _to_path(entry)
            for entry in _expect_str_tuple(sanitizer_map.get("roots") or [], "sanitizer.roots")
        ),
        patterns=patterns,
    )

    elevation_map = _as_dict(raw.get("elevation"), "elevation")
    elevation = ElevationConfig(
        enabled=bool(elevation_map.get("enabled", True)),
        sudo_bin=str(elevation_map.get("sudo_bin", "sudo")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=templates_dir,
        paths=paths,
        packages=packages,
        runtime=runtime,
        snaps=snaps,
        source=source,
        python=python,
        application=application,
        service=service,
        systemd=systemd,
        sanitizer=sanitizer,
        elevation=elevation,
    )


def _build_application(mapping: Mapping[str, object]) -> ApplicationConfig:
    port = _expect_int(mapping.get("port"), "application.port", default=8888)
    if not 1 <= port <= 65535:
        raise ConfigError(f"application.port must be between 1 and 65535. Got {port}.")

    users_raw = _as_sequence(mapping.get("users") or [], "application.users")
    if not users_raw:
        raise ConfigError("application.users must define at least one account.")
    accounts: list[Account] = []
    seen: set[str] = set()
    for index, entry in enumerate(users_raw):
        label = f"application.users[{index}]"
        account_map = _as_dict(entry, label)
        unknown = set(account_map.keys()) - {"username", "password", "access"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown keys for {label}: {joined}.")
        username = _expect_str(account_map.get("username"), f"{label}.username").strip()
        if not username:
            raise ConfigError(f"{label}.username cannot be blank.")
        if username in seen:
            raise ConfigError(f"Duplicate account username '{username}'.")
        seen.add(username)
        password = account_map.get("password")
        if password is None or isinstance(password, (Mapping, list)):
            raise ConfigError(f"{label}.password must be a scalar value.")
        access = _expect_str(account_map.get("access"), f"{label}.access")
        if access not in ALLOWED_ACCESS_LEVELS:
            allowed = ", ".join(sorted(ALLOWED_ACCESS_LEVELS))
            raise ConfigError(f"Unsupported {label}.access '{access}'. Allowed: {allowed}.")
        accounts.append(Account(username=username, password=str(password), access=access))

    return ApplicationConfig(
        host=_expect_str(mapping.get("host"), "application.host"),
        port=port,
        users=tuple(accounts),
        plugins=_expect_str_tuple(mapping.get("plugins") or [], "application.plugins"),
        log_level=str(mapping.get("log_level", "INFO")).upper(),
        config_path=str(mapping.get("config_path", "conf/local.yml")),
    )


def _current_user() -> str:
    try:
        return pwd.getpwuid(os.geteuid()).pw_name
    except KeyError as exc:
        raise ConfigError(
            "Unable to determine the invoking user; set service.user explicitly."
        ) from exc


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _expect_str_tuple(value: object, label: str) -> tuple[str, ...]:
    items: list[str] = []
    for index, entry in enumerate(_as_sequence(value, label)):
        if not isinstance(entry, (str, int, float)) or isinstance(entry, bool):
            raise ConfigError(f"{label}[{index}] must be a string.")
        items.append(str(entry))
    return tuple(items)


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "Account",
    "AppConfig",
    "ApplicationConfig",
    "ConfigError",
    "DEFAULT_PASSWORDS",
    "ElevationConfig",
    "PackagesConfig",
    "PathsConfig",
    "PythonConfig",
    "RuntimeConfig",
    "SanitizerConfig",
    "ServiceConfig",
    "SnapConfig",
    "SnapTool",
    "SourceConfig",
    "SystemdConfig",
    "load_config",
]
