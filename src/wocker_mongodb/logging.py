"""Structured operation logging for wocker-mongodb.

Every CLI command runs inside :meth:`StructuredLogger.operation`, which
appends one JSON record per invocation to ``operations.jsonl``. Free-form
progress messages go to ``wocker-mongodb.log`` through the standard library
``logging`` module. A log directory that cannot be created or written
disables logging for the rest of the process instead of failing commands.
"""
from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

OPERATIONS_LOG = "operations.jsonl"
HUMAN_LOG = "wocker-mongodb.log"
SENSITIVE_KEYS = frozenset({"password", "password_confirm"})
REDACTED = "***"


def _sanitize(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


def _redact(args: Mapping[str, object] | None) -> dict[str, object]:
    if not args:
        return {}
    return {
        key: (REDACTED if key in SENSITIVE_KEYS and value else _sanitize(value))
        for key, value in args.items()
    }


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class OperationScope:
    """Collects steps and the final result for a single command invocation."""

    def __init__(
        self,
        command: str,
        args: Mapping[str, object] | None,
        target: Mapping[str, object] | None,
    ) -> None:
        """Initialise an empty scope for *command*."""
        self.command = command
        self.args = _redact(args)
        self.target = _sanitize(dict(target or {}))
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self.started_at = _now_iso()
        self._started = time.monotonic()

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail not in (None, ""):
            step["detail"] = _sanitize(detail)
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result("success", message, changed=changed, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=list(warnings or [message]),
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 2,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors or [message]),
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: list[str] | None = None,
        errors: list[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message, "changed": changed}
        if warnings:
            result["warnings"] = warnings
        if errors:
            result["errors"] = errors
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitize(dict(context))
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON record written to the operations log."""
        return {
            "timestamp": self.started_at,
            "command": self.command,
            "args": self.args,
            "target": self.target,
            "steps": self.steps,
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "result": self.result or {"status": "unknown", "message": "", "changed": 0},
        }


class StructuredLogger:
    """Write structured operation records and human-readable progress logs."""

    def __init__(self, logs_dir: Path, *, name: str = "wocker_mongodb") -> None:
        """Prepare the log directory and attach the human-readable handler."""
        self.logs_dir = Path(logs_dir).expanduser()
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG
        self._human_log_path = self.logs_dir / HUMAN_LOG
        self._logger = logging.getLogger(name)
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        # One human-log handler per process; a new logger replaces the old one.
        for existing in list(self._logger.handlers):
            self._logger.removeHandler(existing)
            existing.close()
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(self._human_log_path, encoding="utf-8", delay=True)
        except OSError:
            self._enabled = False
            self._logger.addHandler(logging.NullHandler())
            return
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(message)s")
        )
        self._logger.addHandler(handler)

    @property
    def enabled(self) -> bool:
        """Return True while log writes are still being attempted."""
        return self._enabled

    def info(self, message: str, **context: object) -> None:
        """Write an informational line to the human-readable log."""
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context: object) -> None:
        """Write a warning line to the human-readable log."""
        self._log(logging.WARNING, message, context)

    def _log(self, level: int, message: str, context: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        if context:
            rendered = json.dumps(_sanitize(dict(context)), sort_keys=True)
            message = f"{message} {rendered}"
        self._logger.log(level, message)

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Record *command* as a single structured operation."""
        scope = OperationScope(command, args, target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__, rc=1)
            raise
        finally:
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        record = scope.to_record()
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False))
                handle.write("\n")
        except OSError:
            self._enabled = False
            return
        status = record["result"]["status"] if isinstance(record["result"], dict) else "unknown"
        self._log(logging.INFO, f"{scope.command}: {status}", {})


__all__ = ["OperationScope", "StructuredLogger"]
