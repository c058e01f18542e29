"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from calderactl.templates import TemplateEngine, TemplateError


def _app_context() -> dict[str, object]:
    return {
        "host": "0.0.0.0",
        "port": 8888,
        "users": [
            {"username": "admin", "password": "changeme", "access": "blue"},
            {"username": "red", "password": 'p"w: #1', "access": "red"},
        ],
        "plugins": ["stockpile", "sandcat"],
        "log_level": "INFO",
    }


def _unit_context() -> dict[str, object]:
    return {
        "description": "MITRE CALDERA",
        "user": "caldera",
        "working_directory": "/opt/caldera",
        "path": "/opt/venv/bin:/usr/bin",
        "exec_start": "/opt/venv/bin/python /opt/caldera/server.py --insecure --build",
        "restart": "on-failure",
        "restart_sec": 10,
    }


def test_app_config_renders_valid_yaml() -> None:
    """The bundled local.yml template produces parseable YAML with every account."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("caldera/local.yml.j2", _app_context())
    document = yaml.safe_load(output)

    assert document["app"]["host"] == "0.0.0.0"
    assert document["app"]["port"] == 8888
    assert document["app"]["users"][1] == {
        "username": "red",
        "password": 'p"w: #1',
        "access": "red",
    }
    assert document["plugins"] == ["stockpile", "sandcat"]
    assert document["logging"]["root"]["level"] == "INFO"


@pytest.mark.parametrize("host", ["::", "0.0.0.0", "caldera.example.com: 1", "[::1]"])
def test_app_config_host_survives_yaml_parsing(host: str) -> None:
    """Wildcard IPv6 and other YAML-significant host strings stay plain strings."""
    engine = TemplateEngine.with_overrides(None)
    context = _app_context()
    context["host"] = host
    context["plugins"] = ["access", "yes", "#debrief"]
    context["log_level"] = "off"

    document = yaml.safe_load(engine.render_to_string("caldera/local.yml.j2", context))

    assert document["app"]["host"] == host
    assert document["plugins"] == ["access", "yes", "#debrief"]
    assert document["logging"]["root"]["level"] == "off"


def test_app_config_rendering_is_deterministic() -> None:
    """Identical inputs render byte-identical output."""
    engine = TemplateEngine.with_overrides(None)

    first = engine.render_to_string("caldera/local.yml.j2", _app_context())
    second = engine.render_to_string("caldera/local.yml.j2", _app_context())

    assert first == second
    assert first.endswith("\n")


def test_unit_template_renders_service_sections() -> None:
    """The systemd template carries the PATH override and restart policy."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("systemd/service.j2", _unit_context())

    assert "User=caldera" in output
    assert "WorkingDirectory=/opt/caldera" in output
    assert 'Environment="PATH=/opt/venv/bin:/usr/bin"' in output
    assert "ExecStart=/opt/venv/bin/python /opt/caldera/server.py --insecure --build" in output
    assert "Restart=on-failure" in output
    assert "WantedBy=multi-user.target" in output


def test_unit_template_quotes_path_with_spaces() -> None:
    """Directories containing spaces stay within one PATH assignment."""
    engine = TemplateEngine.with_overrides(None)
    context = _unit_context()
    context["path"] = "/srv/red team/venv/bin:/usr/bin"

    output = engine.render_to_string("systemd/service.j2", context)

    assert 'Environment="PATH=/srv/red team/venv/bin:/usr/bin"\n' in output


def test_missing_variable_raises_template_error() -> None:
    """StrictUndefined turns a missing context key into a TemplateError."""
    engine = TemplateEngine.with_overrides(None)
    context = _unit_context()
    del context["exec_start"]

    with pytest.raises(TemplateError):
        engine.render_to_string("systemd/service.j2", context)


def test_override_directory_takes_precedence(tmp_path: Path) -> None:
    """Templates in the override directory shadow the bundled ones."""
    override = tmp_path / "templates" / "systemd"
    override.mkdir(parents=True)
    (override / "service.j2").write_text("custom {{ user }}\n", encoding="utf-8")
    engine = TemplateEngine.with_overrides(tmp_path / "templates")

    output = engine.render_to_string("systemd/service.j2", _unit_context())

    assert output == "custom caldera\n"


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "conf" / "local.yml"

    changed = engine.render_to_path(
        "caldera/local.yml.j2", destination, _app_context(), mode=0o600
    )

    assert changed is True
    assert destination.exists()
    assert oct(destination.stat().st_mode & 0o777) == "0o600"

    # Second render with same content should be a no-op.
    changed_again = engine.render_to_path("caldera/local.yml.j2", destination, _app_context())
    assert changed_again is False
