from __future__ import annotations

import pytest

from agentstep.executor_selection import (
    CANVAS_PROBE_JS,
    ExecutorChoice,
    canvas_probe_relevant,
    count_actionables,
    probe_canvas,
    select_executor,
)
from agentstep.models import BBox, Element, Snapshot, VisualCues
from agentstep.runtime_agent import RuntimeStep


def element(element_id: int, clickable: bool) -> Element:
    return Element(
        id=element_id,
        role="button" if clickable else "text",
        importance=1,
        bbox=BBox(x=0, y=0, width=10, height=10),
        visual_cues=VisualCues(is_primary=False, is_clickable=clickable),
    )


def snapshot(*elements: Element) -> Snapshot:
    return Snapshot(status="success", url="https://example.com", elements=list(elements))


def test_count_actionables() -> None:
    assert count_actionables(None) == 0
    assert count_actionables(snapshot(element(1, True), element(2, False), element(3, True))) == 2


def test_structured_when_vision_unavailable_or_disabled() -> None:
    step = RuntimeStep(goal="g", min_actionables=5)
    snap = snapshot()
    assert (
        select_executor(step, snap, vision_available=False, short_circuit_canvas=True, canvas_count=3)
        is ExecutorChoice.STRUCTURED
    )
    disabled = RuntimeStep(goal="g", min_actionables=5, vision_executor_enabled=False)
    assert (
        select_executor(disabled, snap, vision_available=True, short_circuit_canvas=True, canvas_count=3)
        is ExecutorChoice.STRUCTURED
    )
    no_budget = RuntimeStep(goal="g", min_actionables=5, max_vision_executor_attempts=0)
    assert (
        select_executor(no_budget, snap, vision_available=True, short_circuit_canvas=True, canvas_count=3)
        is ExecutorChoice.STRUCTURED
    )


def test_vision_when_no_snapshot() -> None:
    step = RuntimeStep(goal="g")
    assert (
        select_executor(step, None, vision_available=True, short_circuit_canvas=True)
        is ExecutorChoice.VISION
    )


def test_canvas_short_circuit_requires_canvas_and_low_actionables() -> None:
    step = RuntimeStep(goal="g", min_actionables=2)
    low = snapshot(element(1, True))
    enough = snapshot(element(1, True), element(2, True))

    assert (
        select_executor(step, low, vision_available=True, short_circuit_canvas=True, canvas_count=1)
        is ExecutorChoice.VISION
    )
    assert (
        select_executor(step, low, vision_available=True, short_circuit_canvas=True, canvas_count=0)
        is ExecutorChoice.STRUCTURED
    )
    assert (
        select_executor(step, enough, vision_available=True, short_circuit_canvas=True, canvas_count=1)
        is ExecutorChoice.STRUCTURED
    )
    assert (
        select_executor(step, low, vision_available=True, short_circuit_canvas=False, canvas_count=1)
        is ExecutorChoice.STRUCTURED
    )


def test_canvas_probe_only_relevant_when_it_can_change_the_answer() -> None:
    step = RuntimeStep(goal="g", min_actionables=2)
    low = snapshot(element(1, True))
    assert canvas_probe_relevant(step, low, vision_available=True, short_circuit_canvas=True) is True
    assert canvas_probe_relevant(step, low, vision_available=False, short_circuit_canvas=True) is False
    assert canvas_probe_relevant(step, None, vision_available=True, short_circuit_canvas=True) is False
    assert (
        canvas_probe_relevant(RuntimeStep(goal="g"), low, vision_available=True, short_circuit_canvas=True)
        is False
    )


class _EvalBackend:
    def __init__(self, result=None, exc: Exception | None = None) -> None:
        self.result = result
        self.exc = exc
        self.expressions: list[str] = []

    async def eval(self, expression: str):
        self.expressions.append(expression)
        if self.exc is not None:
            raise self.exc
        return self.result


@pytest.mark.asyncio
async def test_probe_canvas() -> None:
    backend = _EvalBackend(result=2)
    assert await probe_canvas(backend) == 2
    assert backend.expressions == [CANVAS_PROBE_JS]

    assert await probe_canvas(_EvalBackend(exc=RuntimeError("detached"))) == 0
    assert await probe_canvas(_EvalBackend(result=None)) == 0
    assert await probe_canvas(_EvalBackend(result=True)) == 0
