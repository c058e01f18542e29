"""Structured operation logging for calderactl.

Every CLI invocation opens an *operation* and records one JSON object per
operation in ``<logs_dir>/operations.jsonl``. Provisioning stages are appended
to the operation as steps. The logger never raises: if the log directory
cannot be created or a write fails it disables itself and the run continues.
"""
from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG_NAME = "operations.jsonl"


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationScope:
    """Mutable record for a single logged operation."""

    name: str
    args: Mapping[str, object]
    target: Mapping[str, object]
    started_at: str = field(default_factory=_timestamp)
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None
    _start: float = field(default_factory=time.perf_counter)

    def add_step(
        self,
        step_id: str,
        *,
        status: str,
        detail: str | None = None,
        warnings: Iterable[str] | None = None,
        duration_ms: int | None = None,
    ) -> None:
        """Append a step entry to the operation."""
        entry: dict[str, object] = {"id": step_id, "status": status}
        if detail:
            entry["detail"] = detail
        if warnings:
            entry["warnings"] = list(warnings)
        if duration_ms is not None:
            entry["duration_ms"] = duration_ms
        self.steps.append(entry)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result("success", message, changed=changed, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int | None = None,
        backups: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        warnings: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors else [message],
            warnings=warnings,
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int | None = None,
        backups: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if changed is not None:
            result["changed"] = changed
        if warnings:
            result["warnings"] = list(warnings)
        if errors:
            result["errors"] = list(errors)
        if backups:
            result["backups"] = list(backups)
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitize(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON-safe record for this operation."""
        return {
            "operation": self.name,
            "started_at": self.started_at,
            "finished_at": _timestamp(),
            "duration_ms": int((time.perf_counter() - self._start) * 1000),
            "pid": os.getpid(),
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": self.steps,
            "result": self.result or {"status": "unknown", "message": "No result recorded."},
        }


class StructuredLogger:
    """Append-only JSON-lines logger for CLI operations."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare *log_dir*, disabling the logger when it is unusable."""
        self._log_dir = log_dir
        self._operations_log_path = log_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("Structured logging disabled; cannot create %s: %s", log_dir, exc)
            self._enabled = False

    @property
    def path(self) -> Path:
        """Return the operations log path."""
        return self._operations_log_path

    @property
    def enabled(self) -> bool:
        """Return ``True`` while the logger is still writing records."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Open an operation scope and persist it on exit."""
        scope = OperationScope(name=name, args=dict(args or {}), target=dict(target or {}))
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"Operation aborted: {exc!r}")
            raise
        finally:
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, Any]) -> None:
        if not self._enabled:
            return
        line = json.dumps(record, sort_keys=True)
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            LOGGER.warning("Structured logging disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
