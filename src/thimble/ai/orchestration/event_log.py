"""Trace hooks, and a JSONL sink that records one agent run per file.

The parser, the emitter and the agent loop accept a :class:`TraceHook` at
construction time and report structured events to it. Nothing is traced
unless a hook is passed in.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import IO, Any, Mapping, Protocol, Sequence, runtime_checkable

from ...utils import logging as logging_utils

__all__ = [
    "TraceHook",
    "NullTraceHook",
    "NULL_TRACE_HOOK",
    "AgentEventLogger",
    "AgentEventLogRun",
]

LOGGER = logging.getLogger(__name__)

_MAX_DEPTH = 6


@runtime_checkable
class TraceHook(Protocol):
    """Receiver for structured trace events."""

    def trace(self, event: str, payload: Mapping[str, Any]) -> None:
        ...


class NullTraceHook:
    """Discards everything. Also stands in for a disabled event log run."""

    path: Path | None = None
    finalized = False

    def trace(self, event: str, payload: Mapping[str, Any]) -> None:
        return None

    def log_completion(self, **_: Any) -> None:
        return None

    def log_failure(self, **_: Any) -> None:
        return None

    def __enter__(self) -> NullTraceHook:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


NULL_TRACE_HOOK = NullTraceHook()


def _jsonable(value: Any, depth: int = 0) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if depth >= _MAX_DEPTH:
        return repr(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item, depth + 1) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item, depth + 1) for item in value]
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return _jsonable(to_dict(), depth + 1)
    return repr(value)


class AgentEventLogRun:
    """One run's event file; usable as a :class:`TraceHook`.

    The file opens with a ``start`` entry and ends with exactly one
    ``completion`` or ``failure`` entry, after which further events are
    ignored. Leaving the ``with`` block without either records a failure.
    """

    def __init__(self, path: Path, *, context: Mapping[str, Any]) -> None:
        self.path = path
        self._stream: IO[str] | None = path.open("w", encoding="utf-8")
        self._append("start", context)

    @property
    def finalized(self) -> bool:
        return self._stream is None

    def __enter__(self) -> AgentEventLogRun:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.log_failure(message=str(exc) if exc is not None else "run ended without a result")
        return False

    def trace(self, event: str, payload: Mapping[str, Any]) -> None:
        self._append(event, payload)

    def log_completion(self, *, result: str, rounds: int, metadata: Mapping[str, Any] | None = None) -> None:
        self._finish("completion", {"status": "success", "result": result, "rounds": rounds, "metadata": metadata or {}})

    def log_failure(self, *, message: str, details: Mapping[str, Any] | None = None) -> None:
        payload: dict[str, Any] = {"status": "failure", "message": message}
        if details:
            payload["details"] = details
        self._finish("failure", payload)

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def _finish(self, event: str, payload: Mapping[str, Any]) -> None:
        if self._stream is None:
            return
        self._append(event, payload)
        self.close()

    def _append(self, event: str, payload: Mapping[str, Any]) -> None:
        if self._stream is None:
            return
        entry = {"event": event, "timestamp": time.time()}
        entry.update((str(key), _jsonable(value)) for key, value in payload.items())
        self._stream.write(json.dumps(entry, ensure_ascii=False) + "\n")
        self._stream.flush()


class AgentEventLogger:
    """Opens an :class:`AgentEventLogRun` per request when enabled.

    Files land in ``<log dir>/events`` next to the application log, named
    ``agent-<utc timestamp>-<run id>.jsonl``.
    """

    def __init__(self, *, enabled: bool, base_dir: Path | str | None = None) -> None:
        self.enabled = bool(enabled)
        self.base_dir = Path(base_dir) if base_dir else self._default_dir()

    def start_run(
        self,
        *,
        run_id: str,
        prompt: str,
        response_format: str,
        history: Sequence[Mapping[str, Any]] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AgentEventLogRun | NullTraceHook:
        if not self.enabled:
            return NullTraceHook()
        stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        slug = "".join(ch for ch in run_id if ch.isalnum())[:12] or "run"
        path = self.base_dir / f"agent-{stamp}-{slug}.jsonl"
        context = {
            "run_id": run_id,
            "prompt": prompt,
            "response_format": response_format,
            "metadata": metadata or {},
            "history": list(history or ()),
        }
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            run = AgentEventLogRun(path, context=context)
        except OSError as exc:
            LOGGER.warning("Event log disabled for run %s: %s", run_id, exc)
            return NullTraceHook()
        LOGGER.debug("Event log for run %s: %s", run_id, path)
        return run

    @staticmethod
    def _default_dir() -> Path:
        log_path = logging_utils.get_log_path()
        root = log_path.parent if log_path is not None else Path.home() / ".thimble" / "logs"
        return root / "events"
