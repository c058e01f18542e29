"""Collaborator wrappers around the host tooling calderactl drives."""
from __future__ import annotations

from .apt import AptProvider, PackageManagerError
from .git import GitError, GitProvider
from .nvm import NvmError, NvmProvider, VersionManagerEnvironment
from .python_env import PythonEnvError, PythonEnvProvider
from .snap import SnapProvider
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "AptProvider",
    "GitError",
    "GitProvider",
    "NvmError",
    "NvmProvider",
    "PackageManagerError",
    "PythonEnvError",
    "PythonEnvProvider",
    "SnapProvider",
    "SystemdError",
    "SystemdProvider",
    "VersionManagerEnvironment",
]
