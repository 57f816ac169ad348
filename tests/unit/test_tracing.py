from __future__ import annotations

import json

from agentstep.models import Snapshot, SnapshotDiagnostics
from agentstep.trace_event_builder import TraceEventBuilder
from agentstep.llm_provider import LLMResponse
from agentstep.tracing import InMemoryTraceSink, JsonlTraceSink, Tracer, TraceSink


def test_tracer_stamps_monotonic_sequence_and_step_id() -> None:
    sink = InMemoryTraceSink()
    tracer = Tracer(run_id="run-1", sink=sink)

    tracer.emit_run_start("RuntimeAgent", llm_model="stub")
    tracer.emit_step_start(step_id="step-0", step_index=0, goal="open", pre_url="https://a")
    tracer.emit("verification", {"label": "x", "passed": True}, step_id="step-0")

    assert [e["seq"] for e in sink.events] == [1, 2, 3]
    assert all(e["run_id"] == "run-1" for e in sink.events)
    assert sink.events[1]["step_id"] == "step-0"
    assert sink.events[1]["data"]["url"] == "https://a"


def test_emit_snapshot_includes_diagnostics() -> None:
    sink = InMemoryTraceSink()
    tracer = Tracer(run_id="r", sink=sink)
    snap = Snapshot(
        status="success",
        url="https://example.com",
        elements=[],
        diagnostics=SnapshotDiagnostics(confidence=0.4, reasons=["still loading"]),
    )
    tracer.emit_snapshot(snap, step_id="step-0", step_index=0)

    data = sink.events[0]["data"]
    assert data["element_count"] == 0
    assert data["diagnostics"]["confidence"] == 0.4


def test_failing_sink_never_raises() -> None:
    class BrokenSink(TraceSink):
        def emit(self, event):
            raise OSError("disk full")

        def close(self) -> None:
            return None

    tracer = Tracer(run_id="r", sink=BrokenSink())
    tracer.emit("step_end", {"exec": {"success": True}})
    assert tracer.seq == 1


def test_final_status_inferred_from_step_end_events() -> None:
    tracer = Tracer(run_id="r", sink=InMemoryTraceSink())
    tracer.emit("step_end", {"exec": {"success": True}})
    tracer.emit("step_end", {"exec": {"success": False}})
    tracer.emit_run_end(steps=2)
    assert tracer.final_status == "partial"
    assert tracer.get_stats()["total_events"] == 3


def test_jsonl_sink_appends_lines(tmp_path) -> None:
    path = tmp_path / "traces" / "run.jsonl"
    tracer = Tracer(run_id="r", sink=JsonlTraceSink(path))
    tracer.emit("run_start", {"agent": "a"})
    tracer.emit("run_end", {"steps": 0, "status": "success"})
    tracer.close()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["type"] for line in lines] == ["run_start", "run_end"]


def test_step_end_event_shape() -> None:
    llm = TraceEventBuilder.build_llm_data(
        LLMResponse(content="CLICK(1)", prompt_tokens=5, completion_tokens=2, total_tokens=7, model_name="m")
    )
    data = TraceEventBuilder.build_step_end_event(
        step_id="step-3",
        step_index=3,
        goal="g",
        attempt=0,
        pre_url="https://a",
        post_url="https://b",
        snapshot_digest=None,
        llm_data=llm,
        exec_data={"success": True, "action": "CLICK(1)", "outcome": "ok"},
        verify_data={"passed": True, "signals": {"url_changed": True}},
        assertions=[{"label": "x", "passed": True}],
    )
    assert set(data) >= {"pre", "llm", "exec", "post", "verify"}
    assert data["llm"]["usage"]["total_tokens"] == 7
    assert data["verify"]["signals"]["url_changed"] is True
    assert data["verify"]["signals"]["assertions"] == [{"label": "x", "passed": True}]
    assert TraceEventBuilder.build_llm_data(None) == {}
