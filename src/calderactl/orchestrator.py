"""Phase-by-phase provisioning state machine."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .exit_codes import ExitCode
from .stages import (
    PHASE_ORDER,
    ProvisioningPlan,
    ProvisionState,
    StageExecutor,
    StageResult,
    StageStatus,
)

LOGGER = logging.getLogger(__name__)


class ProvisionOutcome(str, Enum):
    """Final classification of a provisioning run."""

    CLEAN = "clean"
    WARNINGS = "warnings"
    ABORTED = "aborted"


@dataclass(slots=True)
class ProvisionReport:
    """Results accumulated while the orchestrator walks the plan."""

    state: ProvisionState = ProvisionState.INIT
    results: list[StageResult] = field(default_factory=list)
    halted_stage: str | None = None
    halted_phase: ProvisionState | None = None
    transitions: list[ProvisionState] = field(default_factory=lambda: [ProvisionState.INIT])

    @property
    def outcome(self) -> ProvisionOutcome:
        """Return clean, warnings or aborted."""
        if self.state is ProvisionState.ABORTED:
            return ProvisionOutcome.ABORTED
        if self.warnings:
            return ProvisionOutcome.WARNINGS
        return ProvisionOutcome.CLEAN

    @property
    def warnings(self) -> list[str]:
        """Return every warning prefixed with the stage that raised it."""
        return [
            f"{result.stage}: {warning}"
            for result in self.results
            for warning in result.warnings
        ]

    @property
    def failure(self) -> StageResult | None:
        """Return the result that halted the run, if any."""
        for result in self.results:
            if result.is_failure:
                return result
        return None

    @property
    def exit_code(self) -> ExitCode:
        """Map the final state to a CLI exit code."""
        if self.state is ProvisionState.DONE:
            return ExitCode.OK
        if self.halted_phase is ProvisionState.SERVICE_ACTIVATION:
            return ExitCode.PROVIDER
        return ExitCode.ENVIRONMENT

    def count(self, status: StageStatus) -> int:
        """Return how many stages finished with *status*."""
        return sum(1 for result in self.results if result.status is status)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "state": self.state.value,
            "outcome": self.outcome.value,
            "exit_code": int(self.exit_code),
            "halted_stage": self.halted_stage,
            "halted_phase": self.halted_phase.value if self.halted_phase else None,
            "transitions": [state.value for state in self.transitions],
            "results": [result.to_dict() for result in self.results],
            "warnings": self.warnings,
        }


class Orchestrator:
    """Run a plan phase by phase, halting on the first failed stage.

    There is no rollback: stages already performed stay performed, and a
    re-run converges because every stage is idempotent.
    """

    def __init__(
        self,
        executor: StageExecutor,
        *,
        on_result: Callable[[StageResult], None] | None = None,
    ) -> None:
        """Store the executor and an optional per-stage callback."""
        self._executor = executor
        self._on_result = on_result

    def run(self, plan: ProvisioningPlan) -> ProvisionReport:
        """Execute *plan* and return the report."""
        plan.validate()
        report = ProvisionReport()
        for phase in PHASE_ORDER:
            self._transition(report, phase)
            for stage in plan.for_phase(phase):
                result = self._executor.run(stage)
                report.results.append(result)
                if self._on_result is not None:
                    self._on_result(result)
                if result.is_failure:
                    report.halted_stage = stage.name
                    report.halted_phase = phase
                    self._transition(report, ProvisionState.ABORTED)
                    LOGGER.error(
                        "Provisioning aborted at %s (%s): %s",
                        stage.name,
                        phase.value,
                        result.reason,
                    )
                    return report
        self._transition(report, ProvisionState.DONE)
        return report

    @staticmethod
    def _transition(report: ProvisionReport, state: ProvisionState) -> None:
        LOGGER.debug("state: %s -> %s", report.state.value, state.value)
        report.state = state
        report.transitions.append(state)


__all__ = ["Orchestrator", "ProvisionOutcome", "ProvisionReport"]
