"""Process exit codes returned by ``calderactl`` commands."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes shared by every command.

    A provisioning run that completes with warnings still exits ``OK``.
    """

    OK = 0
    # Configuration could not be loaded or failed validation.
    VALIDATION = 2
    # A fatal stage failed before service activation (packages, runtime, sources).
    ENVIRONMENT = 3
    # The service unit could not be written, enabled or started.
    PROVIDER = 4
