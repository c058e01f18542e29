"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from calderactl.config import AppConfig, ConfigError, load_config


def _load(tmp_path: Path, **kwargs: object) -> AppConfig:
    overrides = dict(kwargs.pop("overrides", {}) or {})  # type: ignore[call-overload]
    overrides.setdefault("service", {"user": "caldera"})
    return load_config(
        kwargs.pop("config_file", tmp_path / "absent.yml"),  # type: ignore[arg-type]
        env=kwargs.pop("env", {}),  # type: ignore[arg-type]
        overrides=overrides,
    )


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults describe a stock CALDERA 5.x install."""
    config = _load(tmp_path)

    assert isinstance(config, AppConfig)
    assert config.paths.caldera_home == Path("~/caldera5").expanduser()
    assert config.paths.venv == Path("~/caldera_venv").expanduser()
    assert "build-essential" in config.packages.names
    assert config.runtime.nvm_dirs[0] == Path("~/.nvm").expanduser()
    assert config.runtime.node_channel == "lts"
    assert [tool.name for tool in config.snaps.tools] == ["go", "upx"]
    assert config.snaps.tools[0].classic is True
    assert len(config.source.plugins) == 10
    assert config.source.refresh_existing is False
    assert config.application.port == 8888
    assert [user.username for user in config.application.users] == ["admin", "red", "api"]
    assert config.service.exec_args == ("--insecure", "--build")
    assert config.sanitizer.patterns == ("vulns",)
    assert config.app_config_path == config.paths.caldera_home / "conf" / "local.yml"
    assert config.plugins_root == config.paths.caldera_home / "plugins"


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "calderactl.yml"
    cfg.write_text(
        "paths:\n"
        f"  caldera_home: {tmp_path / 'caldera'}\n"
        "application:\n"
        "  port: 9999\n"
        "  users:\n"
        "    - {username: admin, password: s3cret, access: blue}\n"
        "snaps:\n"
        "  tools: [upx]\n",
        encoding="utf-8",
    )

    config = _load(tmp_path, config_file=cfg)

    assert config.config_file == cfg
    assert config.paths.caldera_home == tmp_path / "caldera"
    assert config.application.port == 9999
    assert config.application.users[0].password == "s3cret"
    assert config.application.users[0].uses_default_password is False
    assert config.snaps.tools[0].name == "upx"
    assert config.snaps.tools[0].classic is False


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "calderactl.yml"
    cfg.write_text("application:\n  port: 7000\n", encoding="utf-8")
    env = {
        "CALDERACTL_APPLICATION__PORT": "7443",
        "CALDERACTL_SOURCE__REFRESH_EXISTING": "true",
        "CALDERACTL_PACKAGES__NAMES": "[git, curl]",
        "CALDERACTL_LOGS_DIR": str(tmp_path / "logs"),
    }

    config = _load(tmp_path, config_file=cfg, env=env)

    assert config.application.port == 7443
    assert config.source.refresh_existing is True
    assert config.packages.names == ("git", "curl")
    assert config.logs_dir == tmp_path / "logs"


def test_config_file_env_var_selects_file(tmp_path: Path) -> None:
    """CALDERACTL_CONFIG_FILE points the loader at an alternate file."""
    cfg = tmp_path / "alt.yml"
    cfg.write_text("service:\n  name: red-team\n", encoding="utf-8")

    config = load_config(
        env={"CALDERACTL_CONFIG_FILE": str(cfg)},
        overrides={"service": {"user": "caldera"}},
    )

    assert config.config_file == cfg
    assert config.service.name == "red-team"


def test_passwords_are_redacted_in_to_dict(tmp_path: Path) -> None:
    """Serialised configuration never exposes account passwords."""
    payload = _load(tmp_path).to_dict()

    users = payload["application"]["users"]  # type: ignore[index]
    assert all(user["password"] == "***" for user in users)


def test_default_password_detection(tmp_path: Path) -> None:
    """Stock credentials are flagged so the CLI can warn about them."""
    config = _load(tmp_path)

    flagged = [user.username for user in config.application.users if user.uses_default_password]
    assert flagged == ["admin", "red", "api"]


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"unknown": 1}, "Unknown configuration keys"),
        ({"paths": {"bogus": "x"}}, "Unknown paths configuration keys"),
        ({"application": {"port": 70000}}, "between 1 and 65535"),
        ({"application": {"port": "nope"}}, "Invalid integer"),
        ({"application": {"users": []}}, "at least one account"),
        (
            {
                "application": {
                    "users": [
                        {"username": "a", "password": "x", "access": "red"},
                        {"username": "a", "password": "y", "access": "blue"},
                    ]
                }
            },
            "Duplicate account username",
        ),
        (
            {"application": {"users": [{"username": "a", "password": "x", "access": "root"}]}},
            "Unsupported application.users[0].access",
        ),
        (
            {"application": {"users": [{"username": "a", "access": "red"}]}},
            "password must be a scalar",
        ),
        ({"packages": {"names": []}}, "at least one package"),
        ({"runtime": {"nvm_dirs": []}}, "at least one candidate"),
        ({"source": {"plugin_url_template": "https://example.com/x.git"}}, "{name}"),
        ({"service": {"user": "caldera", "restart": "sometimes"}}, "Unsupported service.restart"),
        ({"sanitizer": {"patterns": ["  "]}}, "blank entries"),
    ],
)
def test_invalid_configuration_rejected(
    tmp_path: Path,
    overrides: dict[str, object],
    message: str,
) -> None:
    """Malformed configuration raises ConfigError with a pointed message."""
    with pytest.raises(ConfigError) as excinfo:
        _load(tmp_path, overrides=overrides)

    assert message in str(excinfo.value)


def test_non_mapping_config_file_rejected(tmp_path: Path) -> None:
    """A YAML list at the top level is not a valid config file."""
    cfg = tmp_path / "list.yml"
    cfg.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        _load(tmp_path, config_file=cfg)


def test_service_user_defaults_to_invoking_user(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Without an explicit service.user the invoking account is used."""

    class Entry:
        pw_name = "operator"

    monkeypatch.setattr("calderactl.config.pwd.getpwuid", lambda uid: Entry())

    config = load_config(tmp_path / "absent.yml", env={})

    assert config.service.user == "operator"
