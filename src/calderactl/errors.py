"""Base exception hierarchy shared by collaborators and primitives."""
from __future__ import annotations


class ProvisionError(RuntimeError):
    """Raised by a collaborator or primitive when its step cannot complete."""


class MissingInputError(ProvisionError):
    """Raised when an input the deployment requires is absent on disk."""


__all__ = ["MissingInputError", "ProvisionError"]
