"""Tests for the nvm provider and its environment capability."""
from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeRunner, completed

from calderactl.providers.nvm import (
    NvmError,
    NvmProvider,
    VersionManagerEnvironment,
    alias_target,
    channel_argument,
)

INSTALL_URL = "https://raw.githubusercontent.com/nvm-sh/nvm/v0.39.5/install.sh"


@pytest.fixture
def provider(fake_runner: FakeRunner) -> NvmProvider:
    """Return a provider wired to the recording runner."""
    return NvmProvider(runner=fake_runner, install_url=INSTALL_URL)


def _seed(nvm_dir: Path, script: str = "nvm.sh") -> Path:
    nvm_dir.mkdir(parents=True, exist_ok=True)
    path = nvm_dir / script
    path.write_text("nvm() { :; }\n", encoding="utf-8")
    return path


def test_channel_translation() -> None:
    """``lts`` maps to nvm's flag; anything else is passed as an exact version."""
    assert channel_argument("lts") == "--lts"
    assert channel_argument("LTS") == "--lts"
    assert channel_argument("20.11.1") == "20.11.1"
    assert alias_target("lts") == "'lts/*'"
    assert alias_target("v18") == "v18"


def test_locate_prefers_first_existing_candidate(provider: NvmProvider, tmp_path: Path) -> None:
    """The first existing candidate wins and nvm.sh is preferred."""
    first = tmp_path / ".nvm"
    second = tmp_path / ".config" / "nvm"
    _seed(second)
    _seed(second, "bash_completion")

    env = provider.locate([first, second])

    assert env.nvm_dir == second
    assert env.init_script == second / "nvm.sh"
    assert env.degraded is False


def test_locate_falls_back_to_bash_completion(provider: NvmProvider, tmp_path: Path) -> None:
    """Without nvm.sh the bash_completion script is used."""
    nvm_dir = tmp_path / ".nvm"
    _seed(nvm_dir, "bash_completion")
    (nvm_dir / "nvm.sh").touch()  # empty file does not count

    env = provider.locate([nvm_dir])

    assert env.init_script == nvm_dir / "bash_completion"


def test_locate_degrades_without_init_script(provider: NvmProvider, tmp_path: Path) -> None:
    """A missing init script yields a degraded environment that refuses commands."""
    env = provider.locate([tmp_path / ".nvm", tmp_path / ".config" / "nvm"])

    assert env.nvm_dir == tmp_path / ".nvm"
    assert env.degraded is True
    with pytest.raises(NvmError):
        env.shell_command("nvm --version")


def test_install_script_uses_pipefail(provider: NvmProvider, fake_runner: FakeRunner) -> None:
    """The download is piped into bash and a curl failure is not masked."""
    provider.install_script()

    args = fake_runner.calls[0]["args"]
    assert args[:2] == ["bash", "-c"]
    assert args[2].startswith("set -o pipefail; ")
    assert INSTALL_URL in args[2]


def test_install_script_failure_raises(provider: NvmProvider, fake_runner: FakeRunner) -> None:
    """A failed install script is reported as NvmError."""
    fake_runner.results["pipefail"] = 22

    with pytest.raises(NvmError):
        provider.install_script()


def test_runtime_commands_source_init_script(
    provider: NvmProvider,
    fake_runner: FakeRunner,
    tmp_path: Path,
) -> None:
    """install/use commands source nvm and export NVM_DIR."""
    init = _seed(tmp_path / ".nvm")
    env = VersionManagerEnvironment(nvm_dir=tmp_path / ".nvm", init_script=init)

    provider.install_runtime(env, "lts")
    provider.select_runtime(env, "lts")

    install, select = fake_runner.calls
    assert install["args"][2] == f". {init} && nvm install --lts"
    assert select["args"][2] == f". {init} && nvm use --lts && nvm alias default 'lts/*'"
    assert install["env"] == {"NVM_DIR": str(tmp_path / ".nvm")}


def test_install_runtime_failure_raises(
    provider: NvmProvider,
    fake_runner: FakeRunner,
    tmp_path: Path,
) -> None:
    """A failing ``nvm install`` raises NvmError."""
    init = _seed(tmp_path / ".nvm")
    env = VersionManagerEnvironment(nvm_dir=tmp_path / ".nvm", init_script=init)
    fake_runner.results["nvm install"] = 3

    with pytest.raises(NvmError):
        provider.install_runtime(env, "20")


def test_which_runtime_returns_bin_dir(
    provider: NvmProvider,
    fake_runner: FakeRunner,
    tmp_path: Path,
) -> None:
    """The selected node binary's directory is returned for the search path."""
    init = _seed(tmp_path / ".nvm")
    env = VersionManagerEnvironment(nvm_dir=tmp_path / ".nvm", init_script=init)
    node = tmp_path / ".nvm" / "versions" / "node" / "v20.11.1" / "bin" / "node"
    fake_runner.results["nvm which"] = completed(stdout=f"{node}\n")

    assert provider.which_runtime(env, "lts") == node.parent

    fake_runner.results["nvm which"] = 1
    assert provider.which_runtime(env, "lts") is None


def test_default_runtime_requires_installed_binary(
    provider: NvmProvider,
    fake_runner: FakeRunner,
    tmp_path: Path,
) -> None:
    """The default alias counts only when its node binary exists on disk."""
    init = _seed(tmp_path / ".nvm")
    env = VersionManagerEnvironment(nvm_dir=tmp_path / ".nvm", init_script=init)
    node = tmp_path / ".nvm" / "versions" / "node" / "v20.11.1" / "bin" / "node"
    fake_runner.results["nvm which default"] = completed(stdout=f"{node}\n")

    assert provider.default_runtime(env) is None

    node.parent.mkdir(parents=True)
    node.write_text("#!/bin/sh\n", encoding="utf-8")
    assert provider.default_runtime(env) == node.parent

    fake_runner.results["nvm which default"] = completed(returncode=3, stdout="N/A\n")
    assert provider.default_runtime(env) is None
