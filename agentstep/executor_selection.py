"""
Executor selection: structured (DOM text) vs vision (screenshot).

The decision itself is a pure function of the step configuration, the current
snapshot and an explicit canvas probe result; the only page interaction is the
single `probe_canvas()` evaluation, which the runner performs and passes in.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from .models import Snapshot

if TYPE_CHECKING:
    from .runtime_agent import RuntimeStep

logger = logging.getLogger(__name__)

CANVAS_PROBE_JS = "document.querySelectorAll('canvas').length"


class ExecutorChoice(str, Enum):
    STRUCTURED = "structured"
    VISION = "vision"


def count_actionables(snap: Snapshot | None) -> int:
    if snap is None:
        return 0
    return sum(1 for el in (snap.elements or []) if el.visual_cues.is_clickable)


async def probe_canvas(backend: Any) -> int:
    """Number of <canvas> elements on the page; 0 if the probe fails."""
    try:
        n = await backend.eval(CANVAS_PROBE_JS)
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.debug("canvas probe failed: %s", e)
        return 0
    if isinstance(n, bool) or not isinstance(n, (int, float)):
        return 0
    return int(n)


def canvas_probe_relevant(
    step: RuntimeStep,
    snap: Snapshot | None,
    *,
    vision_available: bool,
    short_circuit_canvas: bool,
) -> bool:
    """True if a canvas count could change select_executor()'s answer."""
    if not (short_circuit_canvas and vision_available and step.vision_executor_enabled):
        return False
    if snap is None or step.min_actionables is None:
        return False
    return count_actionables(snap) < step.min_actionables


def select_executor(
    step: RuntimeStep,
    snap: Snapshot | None,
    *,
    vision_available: bool,
    short_circuit_canvas: bool,
    canvas_count: int = 0,
) -> ExecutorChoice:
    """
    Decide which executor proposes the next action.

    VISION is chosen up front only when vision is enabled for the step and a
    vision provider is available, and either there is no snapshot to reason
    over, or the page is canvas-rendered with fewer than `min_actionables`
    actionable elements. Everything else starts with STRUCTURED.
    """
    if not step.vision_executor_enabled or not vision_available:
        return ExecutorChoice.STRUCTURED
    if step.max_vision_executor_attempts <= 0:
        return ExecutorChoice.STRUCTURED
    if snap is None:
        return ExecutorChoice.VISION
    if (
        short_circuit_canvas
        and step.min_actionables is not None
        and canvas_count > 0
        and count_actionables(snap) < step.min_actionables
    ):
        logger.debug(
            "canvas short-circuit: canvases=%d actionables=%d < %d",
            canvas_count,
            count_actionables(snap),
            step.min_actionables,
        )
        return ExecutorChoice.VISION
    return ExecutorChoice.STRUCTURED
