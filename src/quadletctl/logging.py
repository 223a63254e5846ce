"""Structured operation logging for quadletctl.

Every CLI invocation is wrapped in an :class:`OperationScope`. When the scope
closes a single JSON object is appended to ``operations.jsonl`` under the
configured logs directory. Logging is strictly best-effort: if the directory
cannot be prepared or a write fails the logger disables itself and the
command carries on.
"""
from __future__ import annotations

import json
import secrets
import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

OPERATIONS_LOG_NAME = "operations.jsonl"


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


def _as_list(values: Iterable[object] | None) -> list[str]:
    if values is None:
        return []
    return [str(item) for item in values]


@dataclass(slots=True)
class OperationScope:
    """Collects steps and the final result for a single CLI operation."""

    command: str
    args: Mapping[str, object]
    target: Mapping[str, object]
    op_id: str
    started: float = field(default_factory=time.monotonic)
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None

    def add_step(self, name: str, *, status: str, detail: str | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[object] | None = None,
        backups: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            warnings=_as_list(warnings),
            errors=[],
            backups=_as_list(backups),
            context=context,
            rc=0,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[object] | None = None,
        errors: Iterable[object] | None = None,
        changed: int = 0,
        backups: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=_as_list(warnings) or [message],
            errors=_as_list(errors),
            backups=_as_list(backups),
            context=context,
            rc=0,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[object] | None = None,
        warnings: Iterable[object] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            changed=0,
            warnings=_as_list(warnings),
            errors=_as_list(errors) or [message],
            backups=[],
            context=context,
            rc=rc,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        warnings: list[str],
        errors: list[str],
        backups: list[str],
        context: Mapping[str, object] | None,
        rc: int,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": warnings,
            "errors": errors,
            "backups": backups,
            "rc": rc,
            "context": _sanitize(dict(context or {})),
        }

    def to_record(self) -> dict[str, object]:
        """Return the JSON-safe record for this operation."""
        duration_ms = int((time.monotonic() - self.started) * 1000)
        return {
            "ts": datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "op_id": self.op_id,
            "command": self.command,
            "args": _sanitize(dict(self.args)),
            "target": _sanitize(dict(self.target)),
            "steps": list(self.steps),
            "duration_ms": duration_ms,
            "result": self.result,
        }


class StructuredLogger:
    """Append JSON operation records to ``<logs_dir>/operations.jsonl``."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the log directory, disabling the logger on failure."""
        self._logs_dir = Path(logs_dir).expanduser()
        self._operations_log_path = self._logs_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(
            command=command,
            args=dict(args or {}),
            target=dict(target or {}),
            op_id=f"{datetime.now(tz=UTC):%Y%m%dT%H%M%SZ}-{secrets.token_hex(4)}",
        )
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"Unhandled {type(exc).__name__}: {exc}", rc=1)
            raise
        finally:
            if scope.result is None:
                scope.success("Operation completed.")
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False))
                handle.write("\n")
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
