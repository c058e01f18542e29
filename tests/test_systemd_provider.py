"""Tests for the systemd provider."""
from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeRunner

from calderactl.providers.systemd import SystemdError, SystemdProvider
from calderactl.templates import TemplateEngine


@pytest.fixture
def provider(tmp_path: Path, fake_runner: FakeRunner) -> SystemdProvider:
    """Return a provider writing units under the temporary path."""
    return SystemdProvider(
        templates=TemplateEngine.with_overrides(None),
        runner=fake_runner,
        systemd_dir=tmp_path / "systemd",
        systemctl_bin="systemctl",
    )


def _context() -> dict[str, object]:
    return {
        "description": "MITRE CALDERA",
        "user": "caldera",
        "working_directory": "/opt/caldera",
        "path": "/opt/venv/bin:/usr/bin",
        "exec_start": "/opt/venv/bin/python /opt/caldera/server.py --insecure",
        "restart": "always",
        "restart_sec": 5,
    }


def test_unit_name_normalisation(provider: SystemdProvider, tmp_path: Path) -> None:
    """Service names gain a ``.service`` suffix exactly once."""
    assert provider.unit_name("caldera") == "caldera.service"
    assert provider.unit_name("caldera.service") == "caldera.service"
    assert provider.unit_path("caldera") == tmp_path / "systemd" / "caldera.service"


def test_write_unit_creates_file(provider: SystemdProvider, fake_runner: FakeRunner) -> None:
    """The rendered unit is written in full with world-readable permissions."""
    content = provider.render_unit(_context())

    path = provider.write_unit("caldera", content)

    assert path.read_text(encoding="utf-8") == content
    assert oct(path.stat().st_mode & 0o777) == "0o644"
    assert "RestartSec=5" in content


def test_write_failure_names_step(
    provider: SystemdProvider,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A write error is raised as SystemdError for the ``write`` step."""

    def fail(*args: object, **kwargs: object) -> None:
        raise PermissionError("read-only")

    monkeypatch.setattr(FakeRunner, "write_file", fail)

    with pytest.raises(SystemdError) as excinfo:
        provider.write_unit("caldera", "[Unit]\n")

    assert excinfo.value.step == "write"


@pytest.mark.parametrize(
    ("method", "expected"),
    [
        ("enable", "systemctl enable caldera.service"),
        ("start", "systemctl start caldera.service"),
    ],
)
def test_unit_management_calls_systemctl(
    provider: SystemdProvider,
    fake_runner: FakeRunner,
    method: str,
    expected: str,
) -> None:
    """enable/start delegate to an elevated systemctl with the unit name."""
    getattr(provider, method)("caldera")

    assert fake_runner.commands() == [expected]
    assert fake_runner.calls[0]["elevated"] is True


def test_reload_failure_names_step(provider: SystemdProvider, fake_runner: FakeRunner) -> None:
    """A failed daemon-reload reports the sub-step."""
    fake_runner.results["daemon-reload"] = 1

    with pytest.raises(SystemdError) as excinfo:
        provider.reload()

    assert excinfo.value.step == "daemon-reload"
