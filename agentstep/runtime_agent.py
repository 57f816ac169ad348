"""
AgentRuntime-backed step runner with optional vision executor fallback.

This keeps the control plane verification-first:
- Actions may be proposed by either a structured executor (DOM snapshot prompt)
  or a vision executor (screenshot prompt).
- Verification is always executed via AgentRuntime predicates.

A step moves through explicit phases:

    RAMPING -> EXECUTING -> VERIFYING -> (FALLING_BACK -> EXECUTING -> VERIFYING)* -> DONE
"""

from __future__ import annotations

import base64
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .actions import (
    ActionParseError,
    ClickId,
    ClickRect,
    ClickXY,
    Finish,
    Press,
    TypeId,
    extract_action,
    parse_action,
)
from .executor_selection import (
    ExecutorChoice,
    canvas_probe_relevant,
    count_actionables,
    probe_canvas,
    select_executor,
)
from .llm_interaction_handler import LLMInteractionHandler
from .llm_provider import LLMProvider, LLMResponse
from .models import Element, Snapshot, StepHookContext
from .snapshot_ramp import SnapshotRampConfig, needs_more, next_limit
from .trace_event_builder import TraceEventBuilder
from .verification import AssertOutcome, Predicate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepVerification:
    predicate: Predicate
    label: str
    required: bool = True
    eventually: bool = True
    timeout_s: float = 10.0
    poll_s: float = 0.25
    max_snapshot_attempts: int = 3
    min_confidence: float | None = None


@dataclass(frozen=True)
class RuntimeStep:
    goal: str
    intent: str | None = None
    verifications: list[StepVerification] = field(default_factory=list)

    # Snapshot quality policy (handled at agent layer; SDK core unchanged).
    snapshot_limit_base: int = 60
    snapshot_limit_step: int = 40
    snapshot_limit_max: int = 220
    max_snapshot_attempts: int = 3
    min_confidence: float | None = None
    min_actionables: int | None = None

    # Vision executor fallback (bounded).
    vision_executor_enabled: bool = True
    max_vision_executor_attempts: int = 1
    # None inherits RuntimeAgent.short_circuit_canvas
    short_circuit_canvas: bool | None = None


class StepPhase(str, Enum):
    RAMPING = "ramping"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    FALLING_BACK = "falling_back"
    DONE = "done"


class ActionExecutionError(RuntimeError):
    """An executor's action could not be carried out on the page."""

    def __init__(self, message: str, *, reason_code: str, action: str | None = None) -> None:
        super().__init__(message)
        self.reason_code = reason_code
        self.action = action


StepHook = Callable[[StepHookContext], Any]

VISION_SYSTEM_PROMPT = """You are a vision-capable web automation executor.

TASK GOAL:
{task_goal}

STEP GOAL:
{step_goal}

CURRENT URL (text):
{url}

VERIFICATION TARGETS (text):
{verify_targets}{snapshot_summary}

RESPONSE FORMAT:
Return ONLY ONE of:
- CLICK(id)
- TYPE(id, "text")
- CLICK_XY(x, y)
- CLICK_RECT(x, y, w, h)
- PRESS("key")
- FINISH()

No explanations, no markdown.
"""

VISION_USER_PROMPT = "From the screenshot, return the single best next action:"


class RuntimeAgent:
    """
    Run one step at a time against an AgentRuntime.

    Args:
        runtime: AgentRuntime (or anything with the same snapshot/assert surface)
        executor: Text LLM used as the structured executor
        vision_executor: Optional vision LLM used for fallback / canvas pages
        vision_verifier: Optional vision LLM handed to eventually() as a last resort
        short_circuit_canvas: Go straight to vision on canvas pages with too few actionables
    """

    def __init__(
        self,
        *,
        runtime: Any,
        executor: LLMProvider,
        vision_executor: LLMProvider | None = None,
        vision_verifier: LLMProvider | None = None,
        short_circuit_canvas: bool = True,
    ) -> None:
        self.runtime = runtime
        self.executor = executor
        self.vision_executor = vision_executor
        self.vision_verifier = vision_verifier
        self.short_circuit_canvas = short_circuit_canvas

        self._structured_llm = LLMInteractionHandler(executor)
        self._last_llm_response: LLMResponse | None = None
        self._last_step_used_vision = False

    @property
    def last_step_used_vision(self) -> bool:
        """Whether the vision executor ran during the most recent step."""
        return self._last_step_used_vision

    def _vision_available(self) -> bool:
        provider = self.vision_executor
        return provider is not None and bool(provider.supports_vision())

    def _short_circuit_for(self, step: RuntimeStep) -> bool:
        if step.short_circuit_canvas is not None:
            return step.short_circuit_canvas
        return self.short_circuit_canvas

    async def run_step(
        self,
        *,
        task_goal: str,
        step: RuntimeStep,
        on_step_start: StepHook | None = None,
        on_step_end: StepHook | None = None,
    ) -> bool:
        """
        Run one step: snapshot, act once, verify, and fall back to vision if allowed.

        Returns True iff every required verification passed. Snapshot and action
        failures are recorded as failed assertions; executor (LLM provider)
        exceptions propagate after the step_end event is emitted.
        """
        step_id = self.runtime.begin_step(step.goal)
        self._last_step_used_vision = False
        self._last_llm_response = None

        await self._run_hook(
            on_step_start,
            StepHookContext(
                step_id=step_id,
                step_index=int(self.runtime.step_index),
                goal=step.goal,
                attempt=0,
                url=getattr(self.runtime.last_snapshot, "url", None),
            ),
        )

        ok = False
        emitted = False
        error: str | None = None
        try:
            ok = await self._run_phases(task_goal=task_goal, step=step)
            return ok
        except Exception as e:
            error = str(e)
            await self.runtime.emit_step_end(
                success=False,
                verify_passed=False,
                error=error,
                outcome="exception",
                llm_data=TraceEventBuilder.build_llm_data(self._last_llm_response),
            )
            emitted = True
            raise
        finally:
            if not emitted:
                await self.runtime.emit_step_end(
                    success=ok,
                    verify_passed=ok,
                    outcome="ok" if ok else "verification_failed",
                    llm_data=TraceEventBuilder.build_llm_data(self._last_llm_response),
                )
            if error is not None:
                outcome = "exception"
            else:
                outcome = "ok" if ok else "verification_failed"
            await self._run_hook(
                on_step_end,
                StepHookContext(
                    step_id=step_id,
                    step_index=int(self.runtime.step_index),
                    goal=step.goal,
                    attempt=0,
                    url=getattr(self.runtime.last_snapshot, "url", None),
                    success=ok,
                    outcome=outcome,
                    error=error,
                ),
            )

    async def _run_hook(self, hook: StepHook | None, ctx: StepHookContext) -> None:
        if hook is None:
            return
        try:
            result = hook(ctx)
            if inspect.isawaitable(result):
                await result
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("step hook failed for %s: %s", ctx.step_id, e)

    async def _run_phases(self, *, task_goal: str, step: RuntimeStep) -> bool:
        phase = StepPhase.RAMPING
        snap: Snapshot | None = None
        choice = ExecutorChoice.STRUCTURED
        vision_attempts = 0
        ramp_last: Snapshot | None = None
        ok = False

        while phase is not StepPhase.DONE:
            logger.debug("step %s phase=%s", self.runtime.step_id, phase.value)

            if phase is StepPhase.RAMPING:
                snap = await self._snapshot_with_ramp(step)
                ramp_last = self.runtime.last_snapshot
                choice = await self._select_executor(step, snap)
                if snap is None and choice is ExecutorChoice.STRUCTURED:
                    self._record_failure(
                        "snapshot_unavailable",
                        AssertOutcome(
                            passed=False,
                            reason="No usable snapshot after ramping and no vision executor",
                            details={
                                "reason_code": "snapshot_unavailable",
                                "max_snapshot_attempts": step.max_snapshot_attempts,
                            },
                        ),
                    )
                    ok = False
                    phase = StepPhase.DONE
                else:
                    phase = StepPhase.EXECUTING

            elif phase is StepPhase.EXECUTING:
                if choice is ExecutorChoice.VISION:
                    vision_attempts += 1
                    self._last_step_used_vision = True
                    current = self._usable_snapshot(snap, since=ramp_last)
                    executed = await self._vision_attempt(
                        task_goal=task_goal, step=step, snap=current
                    )
                else:
                    assert snap is not None
                    executed = await self._structured_attempt(
                        task_goal=task_goal, step=step, snap=snap
                    )
                phase = StepPhase.VERIFYING if executed else StepPhase.FALLING_BACK

            elif phase is StepPhase.VERIFYING:
                ok = await self._apply_verifications(step)
                phase = StepPhase.DONE if ok else StepPhase.FALLING_BACK

            elif phase is StepPhase.FALLING_BACK:
                if (
                    step.vision_executor_enabled
                    and self._vision_available()
                    and vision_attempts < step.max_vision_executor_attempts
                ):
                    # This is a retry of the same step; clear prior step assertions.
                    self.runtime.flush_assertions()
                    choice = ExecutorChoice.VISION
                    phase = StepPhase.EXECUTING
                else:
                    ok = False
                    phase = StepPhase.DONE

        return ok

    def _usable_snapshot(
        self, ramp_snap: Snapshot | None, *, since: Snapshot | None
    ) -> Snapshot | None:
        """Freshest snapshot taken after ramping if it succeeded, else the ramp snapshot."""
        latest = self.runtime.last_snapshot
        if latest is None or latest is since:
            return ramp_snap
        if getattr(latest, "status", "success") == "error":
            return ramp_snap
        return latest

    async def _snapshot_with_ramp(self, step: RuntimeStep) -> Snapshot | None:
        """
        Take up to `max_snapshot_attempts` snapshots, widening the element limit
        while confidence (or the actionable count) stays below the step's floor.

        Returns the last usable snapshot, or None if every attempt failed.
        """
        config = SnapshotRampConfig(
            base=step.snapshot_limit_base,
            step=step.snapshot_limit_step,
            max=step.snapshot_limit_max,
            min_confidence=step.min_confidence,
            min_actionables=step.min_actionables,
        )
        attempts = max(1, int(step.max_snapshot_attempts))

        limit: int | None = None
        confidence: float | None = None
        actionables: int | None = None
        best: Snapshot | None = None

        for attempt in range(1, attempts + 1):
            limit = next_limit(limit, confidence, config, actionables=actionables)
            confidence = None
            actionables = None
            try:
                snap = await self.runtime.snapshot(limit=limit, goal=step.goal)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.warning("snapshot attempt %d/%d failed: %s", attempt, attempts, e)
                continue
            if snap is None or getattr(snap, "status", "success") == "error":
                logger.warning(
                    "snapshot attempt %d/%d returned an error: %s",
                    attempt,
                    attempts,
                    getattr(snap, "error", None),
                )
                continue

            best = snap
            diagnostics = getattr(snap, "diagnostics", None)
            confidence = getattr(diagnostics, "confidence", None)
            actionables = count_actionables(snap)
            if not needs_more(confidence, config, actionables=actionables):
                return snap
            logger.debug(
                "snapshot limit=%d too weak (confidence=%s actionables=%d)",
                limit,
                confidence,
                actionables,
            )

        return best

    async def _select_executor(self, step: RuntimeStep, snap: Snapshot | None) -> ExecutorChoice:
        vision_available = self._vision_available()
        short_circuit = self._short_circuit_for(step)
        canvas_count = 0
        if canvas_probe_relevant(
            step, snap, vision_available=vision_available, short_circuit_canvas=short_circuit
        ):
            canvas_count = await probe_canvas(self.runtime.backend)
        return select_executor(
            step,
            snap,
            vision_available=vision_available,
            short_circuit_canvas=short_circuit,
            canvas_count=canvas_count,
        )

    async def _structured_attempt(
        self, *, task_goal: str, step: RuntimeStep, snap: Snapshot
    ) -> bool:
        action = self._propose_structured_action(task_goal=task_goal, step=step, snap=snap)
        return await self._execute_and_record(action, snap)

    async def _vision_attempt(
        self, *, task_goal: str, step: RuntimeStep, snap: Snapshot | None
    ) -> bool:
        try:
            action = await self._propose_vision_action(task_goal=task_goal, step=step, snap=snap)
        except ActionExecutionError as e:
            self._record_action_failure(e)
            return False
        return await self._execute_and_record(action, snap)

    async def _execute_and_record(self, action: str, snap: Snapshot | None) -> bool:
        """Execute once; an action failure becomes a failed required assertion."""
        try:
            await self._execute_action(action, snap)
        except ActionExecutionError as e:
            self._record_action_failure(e)
            return False
        self._note_action_result(success=True, outcome="executed")
        return True

    def _record_action_failure(self, e: ActionExecutionError) -> None:
        logger.info("action %r failed (%s): %s", e.action, e.reason_code, e)
        self._note_action_result(success=False, outcome=e.reason_code, error=str(e))
        self._record_failure(
            "action_executed",
            AssertOutcome(
                passed=False,
                reason=str(e),
                details={"reason_code": e.reason_code, "action": e.action},
            ),
        )

    def _record_failure(self, label: str, outcome: AssertOutcome) -> None:
        self.runtime.assert_(lambda _ctx: outcome, label=label, required=True)

    def _note_action_result(self, **kwargs: Any) -> None:
        record = getattr(self.runtime, "record_action_result", None)
        if record is not None:
            record(**kwargs)

    def _propose_structured_action(
        self, *, task_goal: str, step: RuntimeStep, snap: Snapshot
    ) -> str:
        dom_context = self._structured_llm.build_context(snap, step.goal)
        combined_goal = f"{task_goal}\n\nSTEP: {step.goal}"
        resp = self._structured_llm.query_llm(dom_context, combined_goal)
        self._last_llm_response = resp
        return self._structured_llm.extract_action(resp.content)

    async def _propose_vision_action(
        self, *, task_goal: str, step: RuntimeStep, snap: Snapshot | None
    ) -> str:
        provider = self.vision_executor
        if provider is None or not provider.supports_vision():
            raise ActionExecutionError(
                "No vision-capable executor configured", reason_code="backend_error"
            )

        backend = self.runtime.backend
        try:
            url = await backend.get_url()
        except Exception:  # pylint: disable=broad-exception-caught
            url = snap.url if snap is not None else None
        try:
            png = await backend.screenshot_png()
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise ActionExecutionError(
                f"Screenshot failed: {e}", reason_code="backend_error"
            ) from e
        image_b64 = base64.b64encode(png).decode("utf-8")

        system_prompt, user_prompt = self._vision_executor_prompts(
            task_goal=task_goal, step=step, url=url, snap=snap
        )
        resp = provider.generate_with_image(
            system_prompt, user_prompt, image_base64=image_b64, temperature=0.0
        )
        self._last_llm_response = resp
        return extract_action(resp.content)

    def _vision_executor_prompts(
        self, *, task_goal: str, step: RuntimeStep, url: str | None, snap: Snapshot | None
    ) -> tuple[str, str]:
        verify_targets = "\n".join(
            f"- {v.label} ({'required' if v.required else 'optional'})"
            for v in step.verifications
        )
        snapshot_summary = ""
        if snap is not None:
            snapshot_summary = (
                "\n\nStructured snapshot summary:\n"
                f"- url: {snap.url}\n"
                f"- elements: {len(snap.elements or [])}\n"
            )
        step_goal = step.goal if not step.intent else f"{step.goal}\n(intent: {step.intent})"
        system_prompt = VISION_SYSTEM_PROMPT.format(
            task_goal=task_goal,
            step_goal=step_goal,
            url=url or "(unknown)",
            verify_targets=verify_targets or "(none provided)",
            snapshot_summary=snapshot_summary,
        )
        return system_prompt, VISION_USER_PROMPT

    async def _apply_verifications(self, step: RuntimeStep) -> bool:
        for v in step.verifications:
            if v.eventually:
                await self.runtime.check(v.predicate, label=v.label, required=v.required).eventually(
                    timeout_s=v.timeout_s,
                    poll_s=v.poll_s,
                    min_confidence=v.min_confidence,
                    max_snapshot_attempts=v.max_snapshot_attempts,
                    vision_provider=self.vision_verifier,
                )
            else:
                self.runtime.assert_(v.predicate, label=v.label, required=v.required)

        # Optional verifications are reported but never gate the step.
        return bool(self.runtime.required_assertions_passed())

    async def _execute_action(self, action: str, snap: Snapshot | None) -> None:
        url = snap.url if snap is not None else None
        await self.runtime.record_action(action, url=url)

        try:
            parsed = parse_action(action)
        except ActionParseError as e:
            raise ActionExecutionError(
                str(e), reason_code="action_parse_failed", action=action
            ) from e

        if isinstance(parsed, Finish):
            return

        backend = self.runtime.backend
        try:
            if isinstance(parsed, Press):
                await backend.press_key(parsed.key)
            elif isinstance(parsed, ClickXY):
                await backend.mouse_click(parsed.x, parsed.y)
            elif isinstance(parsed, ClickRect):
                x, y = parsed.center()
                await backend.mouse_click(x, y)
            elif isinstance(parsed, (ClickId, TypeId)):
                if snap is None:
                    raise ActionExecutionError(
                        "Cannot execute CLICK(id)/TYPE(id, ...) without a snapshot",
                        reason_code="missing_snapshot",
                        action=action,
                    )
                el = self._find_element(snap, parsed.id)
                if el is None:
                    raise ActionExecutionError(
                        f"Element id {parsed.id} not found in snapshot",
                        reason_code="element_not_found",
                        action=action,
                    )
                x, y = el.bbox.center()
                await backend.mouse_click(x, y)
                if isinstance(parsed, TypeId):
                    await backend.type_text(parsed.text)
        except ActionExecutionError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise ActionExecutionError(
                f"{type(e).__name__}: {e}", reason_code="backend_error", action=action
            ) from e

        await self._stabilize_best_effort()

    async def _stabilize_best_effort(self) -> None:
        try:
            await self.runtime.backend.wait_ready_state(state="interactive", timeout_ms=2000)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.debug("post-action stabilization skipped: %s", e)

    def _find_element(self, snap: Snapshot, element_id: int) -> Element | None:
        for el in snap.elements or []:
            if el.id == element_id:
                return el
        return None

    async def act_once_with_snapshot(
        self,
        *,
        task_goal: str,
        step: RuntimeStep,
        allow_vision_fallback: bool = True,
    ) -> tuple[str, Snapshot | None]:
        """
        Snapshot (with ramp), pick an executor, and execute exactly one action.

        No step lifecycle, trace step events or verification: intended for callers
        that drive their own loop. Action failures raise ActionExecutionError.

        Returns:
            (action, snapshot used to ground it)
        """
        snap = await self._snapshot_with_ramp(step)

        choice = ExecutorChoice.STRUCTURED
        if allow_vision_fallback:
            choice = await self._select_executor(step, snap)

        if choice is ExecutorChoice.VISION:
            self._last_step_used_vision = True
            action = await self._propose_vision_action(task_goal=task_goal, step=step, snap=snap)
        else:
            if snap is None:
                raise ActionExecutionError(
                    "No usable snapshot to ground a structured action",
                    reason_code="missing_snapshot",
                )
            self._last_step_used_vision = False
            action = self._propose_structured_action(task_goal=task_goal, step=step, snap=snap)

        await self._execute_action(action, snap)
        return action, snap
