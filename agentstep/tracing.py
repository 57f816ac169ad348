"""
Trace event emission.

A Tracer stamps events with run id, sequence number and timestamps and hands
them to a TraceSink. Emission is fire-and-forget: a failing sink is logged and
never interrupts the control loop.

Usage:
    from agentstep.tracing import JsonlTraceSink, Tracer

    tracer = Tracer(run_id="run-1", sink=JsonlTraceSink("traces/run-1.jsonl"))
    tracer.emit_run_start("RuntimeAgent", llm_model="gpt-4o")
    ...
    tracer.close()
"""

from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import Snapshot

logger = logging.getLogger(__name__)

_FINAL_STATUSES = ("success", "failure", "partial", "unknown")


class TraceSink(ABC):
    """Destination for trace events (local file, in-memory, cloud upload, ...)."""

    @abstractmethod
    def emit(self, event: dict[str, Any]) -> None:
        """Accept one event. Must not block the caller meaningfully."""

    @abstractmethod
    def close(self) -> None:
        """Flush and release resources."""

    def get_sink_type(self) -> str:
        return self.__class__.__name__


class JsonlTraceSink(TraceSink):
    """Writes trace events to a JSON Lines file (one event per line, append mode)."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._closed = False
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "a", encoding="utf-8")  # noqa: SIM115

    def emit(self, event: dict[str, Any]) -> None:
        if self._closed:
            logger.warning("JsonlTraceSink(%s): emit after close()", self.path)
            return
        line = json.dumps(event, ensure_ascii=False, default=str)
        with self._lock:
            self._fh.write(line + "\n")
            self._fh.flush()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._lock:
            self._fh.close()

    def get_sink_type(self) -> str:
        return f"JsonlTraceSink({self.path})"


class InMemoryTraceSink(TraceSink):
    """Keeps events in a list; handy for tests and notebooks."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def emit(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    def close(self) -> None:
        return None


class Tracer:
    """
    High-level API for recording agent execution traces.

    Attributes:
        run_id: Unique run identifier
        sink: TraceSink receiving the events
        seq: Sequence number of the last emitted event (monotonic)
    """

    def __init__(self, run_id: str, sink: TraceSink) -> None:
        self.run_id = run_id
        self.sink = sink
        self.seq = 0

        self.total_steps = 0
        self.total_events = 0
        self.started_at: datetime | None = None
        self.ended_at: datetime | None = None
        self.final_status = "unknown"
        self._step_successes = 0
        self._step_failures = 0
        self._has_errors = False

    def emit(self, event_type: str, data: dict[str, Any], step_id: str | None = None) -> None:
        """
        Emit a trace event.

        Args:
            event_type: Type of event ('step_start', 'verification', 'step_end', ...)
            data: Event-specific payload
            step_id: Optional step identifier
        """
        self.seq += 1
        self.total_events += 1

        ts_ms = int(time.time() * 1000)
        event: dict[str, Any] = {
            "v": 1,
            "type": event_type,
            "ts": datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat(),
            "ts_ms": ts_ms,
            "run_id": self.run_id,
            "seq": self.seq,
            "data": data,
        }
        if step_id:
            event["step_id"] = step_id

        try:
            self.sink.emit(event)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("trace sink %s failed on %s: %s", self.sink.get_sink_type(), event_type, e)

        if event_type == "step_end":
            exec_data = data.get("exec") if isinstance(data, dict) else None
            success = bool((exec_data or {}).get("success", data.get("success", False)))
            if success:
                self._step_successes += 1
            else:
                self._step_failures += 1
        elif event_type == "error":
            self._has_errors = True

    def emit_run_start(
        self,
        agent: str,
        llm_model: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> None:
        self.started_at = datetime.now(timezone.utc)
        data: dict[str, Any] = {"agent": agent}
        if llm_model:
            data["llm_model"] = llm_model
        if config:
            data["config"] = config
        self.emit("run_start", data)

    def emit_step_start(
        self,
        step_id: str,
        step_index: int,
        goal: str,
        attempt: int = 0,
        pre_url: str | None = None,
    ) -> None:
        if attempt == 0:
            self.total_steps = max(self.total_steps, step_index + 1)
        data: dict[str, Any] = {
            "step_id": step_id,
            "step_index": step_index,
            "goal": goal,
            "attempt": attempt,
        }
        if pre_url:
            data["url"] = pre_url
        self.emit("step_start", data, step_id=step_id)

    def emit_snapshot(
        self,
        snapshot: Snapshot,
        step_id: str | None = None,
        step_index: int | None = None,
        screenshot_format: str = "jpeg",
    ) -> None:
        data: dict[str, Any] = {
            "url": snapshot.url,
            "element_count": len(snapshot.elements),
            "timestamp": snapshot.timestamp,
        }
        if step_index is not None:
            data["step_index"] = step_index
        if snapshot.diagnostics is not None:
            data["diagnostics"] = snapshot.diagnostics.model_dump(exclude_none=True)
        if snapshot.screenshot:
            data["screenshot_base64"] = snapshot.screenshot
            data["screenshot_format"] = snapshot.screenshot_format or screenshot_format
        self.emit("snapshot", data, step_id=step_id)

    def emit_run_end(self, steps: int, status: str | None = None) -> None:
        self.ended_at = datetime.now(timezone.utc)
        if status is None and self.final_status == "unknown":
            self._infer_final_status()
        final = status or self.final_status
        if final not in _FINAL_STATUSES:
            final = "unknown"
        self.total_steps = max(self.total_steps, steps)
        self.emit("run_end", {"steps": steps, "status": final})

    def _infer_final_status(self) -> None:
        if self._has_errors or (self._step_failures and not self._step_successes):
            self.final_status = "failure"
        elif self._step_failures:
            self.final_status = "partial"
        elif self._step_successes:
            self.final_status = "success"

    def get_stats(self) -> dict[str, Any]:
        duration_ms = None
        if self.started_at and self.ended_at:
            duration_ms = int((self.ended_at - self.started_at).total_seconds() * 1000)
        return {
            "total_steps": self.total_steps,
            "total_events": self.total_events,
            "duration_ms": duration_ms,
            "final_status": self.final_status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }

    def close(self) -> None:
        if self.final_status == "unknown":
            self._infer_final_status()
        self.sink.close()
