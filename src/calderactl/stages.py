"""Stage models and the executor that runs a single provisioning stage."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import ProvisionError
from .templates import TemplateError

if TYPE_CHECKING:
    from .logging import OperationScope

LOGGER = logging.getLogger(__name__)

# Errors a primitive may raise to signal that its step did not complete.
# Anything else is a programming error and propagates.
STAGE_ERRORS: tuple[type[BaseException], ...] = (ProvisionError, TemplateError, OSError)


class ProvisionState(str, Enum):
    """Orchestrator states; every stage belongs to one phase state."""

    INIT = "init"
    SANITIZING = "sanitizing"
    DEPENDENCY_INSTALL = "dependency-install"
    RUNTIME_ACQUISITION = "runtime-acquisition"
    SOURCE_ACQUISITION = "source-acquisition"
    CONFIG_GENERATION = "config-generation"
    SERVICE_ACTIVATION = "service-activation"
    DONE = "done"
    ABORTED = "aborted"


PHASE_ORDER: tuple[ProvisionState, ...] = (
    ProvisionState.SANITIZING,
    ProvisionState.DEPENDENCY_INSTALL,
    ProvisionState.RUNTIME_ACQUISITION,
    ProvisionState.SOURCE_ACQUISITION,
    ProvisionState.CONFIG_GENERATION,
    ProvisionState.SERVICE_ACTIVATION,
)


class FailurePolicy(str, Enum):
    """How a stage error is classified."""

    FATAL = "fatal"
    WARN = "warn"


class StageStatus(str, Enum):
    """Outcome of running a stage."""

    SKIPPED = "skipped"
    PERFORMED = "performed"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class ActionOutcome:
    """What a primitive reports back after doing its work.

    ``warnings`` carries degraded, non-fatal conditions detected by the
    primitive itself. ``value`` is an optional capability (e.g. a located
    version manager) that later stages consume.
    """

    detail: str | None = None
    changed: bool = True
    warnings: tuple[str, ...] = ()
    value: Any = None
    data: Mapping[str, object] | None = None


@dataclass(slots=True, frozen=True)
class Stage:
    """One named unit of provisioning work."""

    name: str
    phase: ProvisionState
    action: Callable[[], ActionOutcome | None]
    policy: FailurePolicy = FailurePolicy.FATAL
    precondition: Callable[[], bool] | None = None
    describe_skip: Callable[[], str] | None = None
    description: str = ""

    @property
    def gated(self) -> bool:
        """Return ``True`` when a probe can make this stage a no-op."""
        return self.precondition is not None


@dataclass(slots=True, frozen=True)
class StageResult:
    """Recorded result of a single stage execution."""

    stage: str
    phase: ProvisionState
    status: StageStatus
    policy: FailurePolicy
    detail: str | None = None
    reason: str | None = None
    warnings: tuple[str, ...] = ()
    duration_ms: int | None = None
    data: Mapping[str, object] | None = None

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the stage halted the run."""
        return self.status is StageStatus.FAILED

    @property
    def is_degraded(self) -> bool:
        """Return ``True`` for a performed stage that reported warnings."""
        return self.status is StageStatus.PERFORMED and bool(self.warnings)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        payload: dict[str, object] = {
            "stage": self.stage,
            "phase": self.phase.value,
            "status": self.status.value,
            "policy": self.policy.value,
        }
        if self.detail:
            payload["detail"] = self.detail
        if self.reason:
            payload["reason"] = self.reason
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        if self.duration_ms is not None:
            payload["duration_ms"] = self.duration_ms
        if self.data:
            payload["data"] = dict(self.data)
        return payload


@dataclass(slots=True, frozen=True)
class ProvisioningPlan:
    """Ordered, immutable list of stages."""

    stages: tuple[Stage, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[Stage]:
        return iter(self.stages)

    def __len__(self) -> int:
        return len(self.stages)

    def names(self) -> list[str]:
        """Return stage names in execution order."""
        return [stage.name for stage in self.stages]

    def for_phase(self, phase: ProvisionState) -> Sequence[Stage]:
        """Return the stages belonging to *phase*, in declared order."""
        return tuple(stage for stage in self.stages if stage.phase is phase)

    def validate(self) -> None:
        """Raise ``ValueError`` unless phases appear in orchestrator order."""
        seen_names: set[str] = set()
        last_index = -1
        for stage in self.stages:
            if stage.name in seen_names:
                raise ValueError(f"Duplicate stage name '{stage.name}'.")
            seen_names.add(stage.name)
            if stage.phase not in PHASE_ORDER:
                raise ValueError(f"Stage '{stage.name}' has non-phase state {stage.phase.value}.")
            index = PHASE_ORDER.index(stage.phase)
            if index < last_index:
                raise ValueError(
                    f"Stage '{stage.name}' ({stage.phase.value}) is declared after a later phase."
                )
            last_index = index


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class StageExecutor:
    """Run stages one at a time, gating on their precondition."""

    def __init__(
        self,
        scope: OperationScope | None = None,
        *,
        dry_run: bool = False,
    ) -> None:
        """Attach an optional structured-log scope that receives one step per stage.

        With *dry_run* set, preconditions are still probed but actions are
        reported instead of invoked.
        """
        self._scope = scope
        self._dry_run = dry_run

    def run(self, stage: Stage) -> StageResult:
        """Execute *stage* and classify its outcome according to its policy."""
        start = time.perf_counter()
        if self._precondition_satisfied(stage):
            detail = stage.describe_skip() if stage.describe_skip else "already satisfied"
            LOGGER.info("%s: skipped (%s)", stage.name, detail)
            return self._record(
                StageResult(
                    stage=stage.name,
                    phase=stage.phase,
                    status=StageStatus.SKIPPED,
                    policy=stage.policy,
                    detail=detail,
                    duration_ms=_duration_ms(start),
                )
            )

        if self._dry_run:
            return self._record(
                StageResult(
                    stage=stage.name,
                    phase=stage.phase,
                    status=StageStatus.PERFORMED,
                    policy=stage.policy,
                    detail=f"would run: {stage.description or stage.name}",
                    duration_ms=_duration_ms(start),
                )
            )

        LOGGER.info("%s: running", stage.name)
        try:
            outcome = stage.action() or ActionOutcome()
        except STAGE_ERRORS as exc:
            return self._record(self._classify_error(stage, exc, _duration_ms(start)))

        for warning in outcome.warnings:
            LOGGER.warning("%s: %s", stage.name, warning)
        return self._record(
            StageResult(
                stage=stage.name,
                phase=stage.phase,
                status=StageStatus.PERFORMED,
                policy=stage.policy,
                detail=outcome.detail,
                warnings=tuple(outcome.warnings),
                duration_ms=_duration_ms(start),
                data=outcome.data,
            )
        )

    def _precondition_satisfied(self, stage: Stage) -> bool:
        if stage.precondition is None:
            return False
        try:
            return bool(stage.precondition())
        except OSError as exc:
            LOGGER.debug("%s: precondition probe failed (%s); running stage.", stage.name, exc)
            return False

    def _classify_error(
        self,
        stage: Stage,
        exc: BaseException,
        duration_ms: int,
    ) -> StageResult:
        message = str(exc) or exc.__class__.__name__
        data: dict[str, object] = {"error": exc.__class__.__name__}
        step = getattr(exc, "step", None)
        if step:
            data["step"] = step
        if stage.policy is FailurePolicy.FATAL:
            LOGGER.error("%s: failed: %s", stage.name, message)
            return StageResult(
                stage=stage.name,
                phase=stage.phase,
                status=StageStatus.FAILED,
                policy=stage.policy,
                reason=message,
                duration_ms=duration_ms,
                data=data,
            )
        LOGGER.warning("%s: %s (continuing)", stage.name, message)
        return StageResult(
            stage=stage.name,
            phase=stage.phase,
            status=StageStatus.PERFORMED,
            policy=stage.policy,
            detail="completed with errors",
            warnings=(message,),
            duration_ms=duration_ms,
            data=data,
        )

    def _record(self, result: StageResult) -> StageResult:
        if self._scope is not None:
            self._scope.add_step(
                result.stage,
                status=result.status.value,
                detail=result.reason or result.detail,
                warnings=result.warnings,
                duration_ms=result.duration_ms,
            )
        return result


__all__ = [
    "ActionOutcome",
    "FailurePolicy",
    "PHASE_ORDER",
    "ProvisionState",
    "ProvisioningPlan",
    "STAGE_ERRORS",
    "Stage",
    "StageExecutor",
    "StageResult",
    "StageStatus",
]
