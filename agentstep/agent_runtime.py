"""
Agent runtime for verification loop support.

This module provides a thin runtime wrapper that combines:
1. Browser access (via the BrowserBackend protocol)
2. A snapshot source (the default one calls the injected extension API)
3. A tracer for event emission
4. Assertion/verification methods, including the `eventually()` polling engine

The AgentRuntime is designed to be used in agent verification loops where
you need to repeatedly take snapshots, execute actions, and verify results.

Example usage:
    from playwright.async_api import async_playwright
    from agentstep.agent_runtime import AgentRuntime
    from agentstep.tracing import JsonlTraceSink, Tracer
    from agentstep.verification import url_contains

    tracer = Tracer(run_id="run-1", sink=JsonlTraceSink("trace.jsonl"))
    runtime = AgentRuntime.from_playwright_page(page, tracer=tracer)

    runtime.begin_step("Open checkout")
    await runtime.snapshot()
    runtime.assert_(url_contains("/checkout"), label="on_checkout", required=True)

    ok = await runtime.check(url_contains("/done"), label="done", required=True).eventually(
        timeout_s=5.0, poll_s=0.25, min_confidence=0.7, max_snapshot_attempts=3
    )
    await runtime.emit_step_end()
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .models import LLMStepData, Snapshot, SnapshotOptions
from .snapshot_ramp import clamp_limit, limit_for_attempt
from .trace_event_builder import TraceEventBuilder
from .verification import AssertContext, AssertOutcome, Predicate

if TYPE_CHECKING:
    from playwright.async_api import Page

    from .backends.protocol import BrowserBackend
    from .llm_provider import LLMProvider
    from .tracing import Tracer

logger = logging.getLogger(__name__)

SnapshotSource = Callable[["BrowserBackend", SnapshotOptions], Awaitable[Snapshot]]


class AgentRuntime:
    """
    Runtime wrapper for agent verification loops.

    Provides ergonomic methods for:
    - snapshot(): Take page snapshot
    - assert_(): Evaluate assertion predicates once
    - check(...).eventually(): Poll a predicate against fresh snapshots
    - assert_done(): Assert task completion (required assertion)

    The runtime manages assertion state per step and emits verification events
    to the tracer.

    Attributes:
        backend: BrowserBackend instance for browser operations
        tracer: Tracer for event emission
        step_id: Current step identifier
        step_index: Current step index (0-based)
        last_snapshot: Most recent snapshot (for assertion context)
    """

    def __init__(
        self,
        backend: BrowserBackend,
        tracer: Tracer | None,
        snapshot_options: SnapshotOptions | None = None,
        snapshot_source: SnapshotSource | None = None,
    ):
        """
        Initialize agent runtime with any BrowserBackend-compatible browser.

        Args:
            backend: Any browser implementing the BrowserBackend protocol
            tracer: Tracer for emitting verification events
            snapshot_options: Default options for snapshots
            snapshot_source: Async callable (backend, options) -> Snapshot.
                             Defaults to the injected extension API.
        """
        self.backend = backend
        self.tracer = tracer
        self._snapshot_options = snapshot_options or SnapshotOptions()
        self._snapshot_source = snapshot_source

        # Step tracking
        self.step_id: str | None = None
        # 0-based step indexing (first auto-generated step_id is "step-0")
        self.step_index: int = -1

        # Snapshot state
        self.last_snapshot: Snapshot | None = None
        self._step_pre_snapshot: Snapshot | None = None
        self._step_pre_url: str | None = None

        # Cached URL (updated on snapshot or explicit get_url call)
        self._cached_url: str | None = None

        # Assertions accumulated during current step
        self._assertions_this_step: list[dict[str, Any]] = []
        self._step_goal: str | None = None
        self._last_action: str | None = None
        self._last_action_error: str | None = None
        self._last_action_outcome: str | None = None
        self._last_action_duration_ms: int | None = None
        self._last_action_success: bool | None = None

        # Task completion tracking
        self._task_done: bool = False
        self._task_done_label: str | None = None

    @classmethod
    def from_playwright_page(
        cls,
        page: Page,
        tracer: Tracer | None,
        snapshot_options: SnapshotOptions | None = None,
        snapshot_source: SnapshotSource | None = None,
    ) -> AgentRuntime:
        """
        Create AgentRuntime from a raw Playwright Page (sidecar mode).
        """
        from .backends.playwright_backend import PlaywrightBackend

        return cls(
            backend=PlaywrightBackend(page),
            tracer=tracer,
            snapshot_options=snapshot_options,
            snapshot_source=snapshot_source,
        )

    @classmethod
    def attach(
        cls,
        page: Page,
        tracer: Tracer | None,
        snapshot_options: SnapshotOptions | None = None,
        snapshot_source: SnapshotSource | None = None,
    ) -> AgentRuntime:
        """
        Sidecar alias for from_playwright_page().
        """
        return cls.from_playwright_page(
            page=page,
            tracer=tracer,
            snapshot_options=snapshot_options,
            snapshot_source=snapshot_source,
        )

    def _ctx(self) -> AssertContext:
        """
        Build assertion context from current state.
        """
        url = None
        if self.last_snapshot is not None:
            url = self.last_snapshot.url
        elif self._cached_url:
            url = self._cached_url

        return AssertContext(snapshot=self.last_snapshot, url=url, step_id=self.step_id)

    def _emit(self, event_type: str, data: dict[str, Any]) -> None:
        """Best-effort trace emission; tracing must never break the control loop."""
        if self.tracer is None:
            return
        try:
            self.tracer.emit(event_type, data=data, step_id=self.step_id)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("trace emit failed for %s: %s", event_type, e)

    async def get_url(self) -> str:
        """
        Get current page URL.
        """
        url = await self.backend.get_url()
        self._cached_url = url
        return url

    async def snapshot(self, emit_trace: bool = True, **kwargs: Any) -> Snapshot:
        """
        Take a snapshot of the current page state.

        This updates last_snapshot which is used as context for assertions.

        Args:
            emit_trace: If True (default), emit a 'snapshot' trace event.
            **kwargs: Override default snapshot options for this call.
                     Common options:
                     - limit: Maximum elements to return
                     - goal: Task goal used for ranking
                     - screenshot: Include screenshot

        Returns:
            Snapshot of current page state

        Raises:
            Whatever the snapshot source raises; eventually() turns these into
            failed attempts.
        """
        options_dict = self._snapshot_options.model_dump(exclude_none=True)
        options_dict.update({k: v for k, v in kwargs.items() if v is not None})
        options = SnapshotOptions(**options_dict)

        source = self._snapshot_source
        if source is None:
            from .backends.snapshot import snapshot as backend_snapshot

            source = backend_snapshot

        self.last_snapshot = await source(self.backend, options)
        if self.last_snapshot is not None:
            self._cached_url = self.last_snapshot.url
            if self._step_pre_snapshot is None:
                self._step_pre_snapshot = self.last_snapshot
                self._step_pre_url = self.last_snapshot.url

        if emit_trace and self.last_snapshot is not None:
            self._emit_snapshot_trace(self.last_snapshot)

        return self.last_snapshot

    def _emit_snapshot_trace(self, snapshot: Snapshot) -> None:
        if self.tracer is None:
            return

        try:
            self.tracer.emit_snapshot(
                snapshot=snapshot,
                step_id=self.step_id,
                step_index=self.step_index,
                screenshot_format="jpeg",
            )
        except Exception:  # pylint: disable=broad-exception-caught
            # Tracers without emit_snapshot (or failing sinks) must not break snapshots.
            pass

    async def record_action(
        self,
        action: str,
        *,
        url: str | None = None,
    ) -> None:
        """
        Record the action about to be executed in this step.
        """
        self._last_action = action
        logger.debug("step %s action %s (url=%s)", self.step_id, action, url)

    def record_action_result(
        self,
        *,
        success: bool,
        outcome: str | None = None,
        error: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        """Remember how the last action went, for the step_end exec block."""
        self._last_action_success = success
        self._last_action_outcome = outcome
        self._last_action_error = error
        self._last_action_duration_ms = duration_ms

    async def emit_step_end(
        self,
        *,
        action: str | None = None,
        success: bool | None = None,
        error: str | None = None,
        outcome: str | None = None,
        duration_ms: int | None = None,
        attempt: int = 0,
        verify_passed: bool | None = None,
        verify_signals: dict[str, Any] | None = None,
        post_url: str | None = None,
        post_snapshot_digest: str | None = None,
        llm_data: dict[str, Any] | LLMStepData | None = None,
    ) -> dict[str, Any]:
        """
        Emit a step_end event using TraceEventBuilder.

        Args:
            action: Action executed in this step
            success: Whether the step succeeded
            error: Error message if the step failed with an exception
            outcome: Outcome description ("ok", "verification_failed", "exception")
            duration_ms: Duration of action execution in milliseconds
            attempt: Attempt number (0-based)
            verify_passed: Whether verification passed (defaults to required assertions)
            verify_signals: Additional verification signals
            post_url: URL after action execution
            post_snapshot_digest: Digest of post-action snapshot
            llm_data: LLM interaction data for this step
        """
        goal = self._step_goal or ""
        pre_snap = self._step_pre_snapshot or self.last_snapshot
        pre_url = (
            self._step_pre_url or (pre_snap.url if pre_snap else None) or self._cached_url or ""
        )

        if post_url is None:
            try:
                post_url = await self.get_url()
            except Exception:  # pylint: disable=broad-exception-caught
                post_url = (
                    self.last_snapshot.url if self.last_snapshot else None
                ) or self._cached_url
        post_url = post_url or pre_url

        pre_digest = TraceEventBuilder.build_snapshot_digest(pre_snap)
        post_digest = post_snapshot_digest or TraceEventBuilder.build_snapshot_digest(
            self.last_snapshot
        )
        url_changed = bool(pre_url and post_url and str(pre_url) != str(post_url))

        assertions_data = self.get_assertions_for_step_end()
        assertions = assertions_data.get("assertions") or []

        signals = dict(verify_signals or {})
        signals.setdefault("url_changed", url_changed)
        if error and "error" not in signals:
            signals["error"] = error
        if assertions_data.get("task_done"):
            signals["task_done"] = True
            signals["task_done_label"] = assertions_data.get("task_done_label")

        passed = (
            bool(verify_passed) if verify_passed is not None else self.required_assertions_passed()
        )

        exec_success = (
            bool(success)
            if success is not None
            else bool(
                self._last_action_success if self._last_action_success is not None else passed
            )
        )

        exec_data: dict[str, Any] = {
            "success": exec_success,
            "action": action or self._last_action or "unknown",
            "outcome": outcome or self._last_action_outcome or "",
        }
        if duration_ms is None:
            duration_ms = self._last_action_duration_ms
        if duration_ms is not None:
            exec_data["duration_ms"] = int(duration_ms)
        error = error or self._last_action_error
        if error:
            exec_data["error"] = error

        verify_data = {
            "passed": bool(passed),
            "signals": signals,
        }

        llm_data_dict: dict[str, Any]
        if llm_data is None:
            llm_data_dict = {}
        elif isinstance(llm_data, LLMStepData):
            llm_data_dict = llm_data.to_trace_dict()
        else:
            llm_data_dict = llm_data

        step_end_data = TraceEventBuilder.build_step_end_event(
            step_id=self.step_id or "",
            step_index=int(self.step_index),
            goal=goal,
            attempt=int(attempt),
            pre_url=str(pre_url or ""),
            post_url=str(post_url or ""),
            snapshot_digest=pre_digest,
            llm_data=llm_data_dict,
            exec_data=exec_data,
            verify_data=verify_data,
            assertions=assertions,
            post_snapshot_digest=post_digest,
        )
        self._emit("step_end", step_end_data)
        return step_end_data

    async def end_step(self, **kwargs: Any) -> dict[str, Any]:
        """
        User-friendly alias for emit_step_end().
        """
        return await self.emit_step_end(**kwargs)

    def begin_step(
        self,
        goal: str,
        step_index: int | None = None,
        emit_trace: bool = True,
        pre_url: str | None = None,
    ) -> str:
        """
        Begin a new step in the verification loop.

        This:
        - Generates a new step_id
        - Clears assertions from previous step
        - Increments step_index (or uses provided value)
        - Emits step_start trace event (optional)

        Returns:
            Generated step_id in format 'step-N' where N is the step index
        """
        self._assertions_this_step = []
        self._step_pre_snapshot = None
        self._step_pre_url = None
        self._step_goal = goal
        self._last_action = None
        self._last_action_error = None
        self._last_action_outcome = None
        self._last_action_duration_ms = None
        self._last_action_success = None

        if step_index is not None:
            self.step_index = step_index
        else:
            self.step_index += 1

        self.step_id = f"step-{self.step_index}"

        if emit_trace and self.tracer:
            try:
                url = pre_url or self._cached_url or ""
                self.tracer.emit_step_start(
                    step_id=self.step_id,
                    step_index=self.step_index,
                    goal=goal,
                    attempt=0,
                    pre_url=url,
                )
            except Exception:  # pylint: disable=broad-exception-caught
                pass  # Tracing must be non-fatal

        return self.step_id

    def assert_(
        self,
        predicate: Predicate,
        label: str,
        required: bool = False,
    ) -> bool:
        """
        Evaluate an assertion against current snapshot state.

        The assertion result is:
        1. Accumulated for inclusion in step_end.data.verify.signals.assertions
        2. Emitted as a dedicated 'verification' event

        Args:
            predicate: Predicate function to evaluate
            label: Human-readable label for this assertion
            required: If True, this assertion gates step success (default: False)

        Returns:
            True if assertion passed, False otherwise
        """
        outcome = predicate(self._ctx())
        self._record_outcome(
            outcome=outcome,
            label=label,
            required=required,
            kind="assert",
            record_in_step=True,
            extra={"final": True},
        )
        return outcome.passed

    def check(self, predicate: Predicate, label: str, required: bool = False) -> AssertionHandle:
        """
        Create an AssertionHandle for fluent `.once()` / `.eventually()` usage.

        This does NOT evaluate the predicate immediately.
        """
        return AssertionHandle(runtime=self, predicate=predicate, label=label, required=required)

    def assert_done(
        self,
        predicate: Predicate,
        label: str,
    ) -> bool:
        """
        Assert task completion (required assertion).

        When the assertion passes, it marks the task as done.
        """
        ok = self.assert_(predicate, label=label, required=True)
        if ok:
            self._task_done = True
            self._task_done_label = label
            self._emit(
                "verification",
                {
                    "kind": "task_done",
                    "passed": True,
                    "label": label,
                },
            )
        return ok

    def _record_outcome(
        self,
        *,
        outcome: Any,
        label: str,
        required: bool,
        kind: str,
        record_in_step: bool,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """
        Internal helper: emit verification event and optionally accumulate for step_end.

        A label has at most one record per step: recording it again replaces the
        earlier record in place.
        """
        details = dict(outcome.details or {})

        record = {
            "label": label,
            "passed": bool(outcome.passed),
            "required": required,
            "reason": str(outcome.reason or ""),
            "details": details,
        }
        if extra:
            record.update(extra)

        if record_in_step:
            for i, existing in enumerate(self._assertions_this_step):
                if existing.get("label") == label:
                    self._assertions_this_step[i] = record
                    break
            else:
                self._assertions_this_step.append(record)

        self._emit(
            "verification",
            {
                "kind": kind,
                "final": bool(record_in_step),
                **record,
            },
        )

    def get_assertions_for_step_end(self) -> dict[str, Any]:
        """
        Get assertions data for inclusion in step_end.data.verify.signals.

        Returns:
            Dictionary with 'assertions', 'task_done', 'task_done_label' keys
        """
        result: dict[str, Any] = {
            "assertions": self._assertions_this_step.copy(),
        }

        if self._task_done:
            result["task_done"] = True
            result["task_done_label"] = self._task_done_label

        return result

    def flush_assertions(self) -> list[dict[str, Any]]:
        """
        Get and clear assertions for current step.
        """
        assertions = self._assertions_this_step.copy()
        self._assertions_this_step = []
        return assertions

    @property
    def is_task_done(self) -> bool:
        """Check if task has been marked as done via assert_done()."""
        return self._task_done

    def reset_task_done(self) -> None:
        """Reset task_done state (for multi-task runs)."""
        self._task_done = False
        self._task_done_label = None

    def all_assertions_passed(self) -> bool:
        """Return True if all assertions in current step passed (or none)."""
        return all(a["passed"] for a in self._assertions_this_step)

    def required_assertions_passed(self) -> bool:
        """Return True if all required assertions in current step passed (or none)."""
        required = [a for a in self._assertions_this_step if a.get("required")]
        return all(a["passed"] for a in required)


@dataclass
class AssertionHandle:
    runtime: AgentRuntime
    predicate: Predicate
    label: str
    required: bool = False
    _last_vision_error: str | None = None

    def once(self) -> bool:
        """Evaluate once (same behavior as runtime.assert_)."""
        return self.runtime.assert_(self.predicate, label=self.label, required=self.required)

    def _attempt(self, outcome: AssertOutcome, **extra: Any) -> None:
        # Attempt events go to the trace only, never to the step_end assertions.
        self.runtime._record_outcome(
            outcome=outcome,
            label=self.label,
            required=self.required,
            kind="assert",
            record_in_step=False,
            extra={"eventually": True, **extra},
        )

    def _final(self, outcome: AssertOutcome, **extra: Any) -> bool:
        self.runtime._record_outcome(
            outcome=outcome,
            label=self.label,
            required=self.required,
            kind="assert",
            record_in_step=True,
            extra={"eventually": True, "final": True, **extra},
        )
        return bool(outcome.passed)

    async def eventually(
        self,
        *,
        timeout_s: float = 10.0,
        poll_s: float = 0.25,
        min_confidence: float | None = None,
        max_snapshot_attempts: int = 3,
        snapshot_kwargs: dict[str, Any] | None = None,
        snapshot_limit_growth: dict[str, Any] | None = None,
        vision_provider: LLMProvider | None = None,
        vision_system_prompt: str | None = None,
        vision_user_prompt: str | None = None,
    ) -> bool:
        """
        Retry until the predicate passes, the timeout elapses, or snapshots are exhausted.

        Each attempt takes a fresh snapshot and evaluates the predicate against it.
        Intermediate attempts emit verification events but do NOT accumulate in
        step_end assertions; the terminal result is accumulated exactly once.

        Termination (first reached wins):
        1. predicate passes -> True
        2. timeout_s elapsed -> False, last reason, `timeout=True`
        3. `max_snapshot_attempts` unusable snapshots (confidence below
           `min_confidence`, or the snapshot source failed) -> False,
           `details.reason_code == "snapshot_exhausted"`

        Args:
            timeout_s: Wall-clock bound for this call
            poll_s: Delay between attempts (0 retries immediately)
            min_confidence: Gate predicate evaluation on snapshot confidence
            max_snapshot_attempts: Budget of unusable snapshots
            snapshot_kwargs: Extra options for every snapshot (limit, goal, ...)
            snapshot_limit_growth: {"start_limit", "step", "max_limit", "apply_on"}
                to widen the snapshot limit across failed attempts
            vision_provider: Optional vision LLM asked a YES/NO question once
                snapshots are exhausted
        """
        deadline = time.monotonic() + timeout_s
        attempt = 0
        snapshot_attempt = 0
        unusable_attempts = 0
        max_snapshot_attempts = max(1, int(max_snapshot_attempts))
        last_outcome: AssertOutcome | None = None

        # Optional additive limit growth:
        #   limit(attempt) = min(max_limit, start_limit + step*(attempt-1))
        growth = snapshot_limit_growth or None
        growth_apply_on = "only_on_fail"
        growth_start: int | None = None
        growth_step: int | None = None
        growth_max: int | None = None
        if isinstance(growth, dict) and growth:
            growth_apply_on = str(growth.get("apply_on") or "only_on_fail")
            if growth.get("start_limit") is not None:
                growth_start = int(growth["start_limit"])
            if growth.get("step") is not None:
                growth_step = int(growth["step"])
            if growth.get("max_limit") is not None:
                growth_max = int(growth["max_limit"])
            if growth_start is None and snapshot_kwargs and snapshot_kwargs.get("limit") is not None:
                growth_start = int(snapshot_kwargs["limit"])
            if growth_start is None:
                growth_start = int(self.runtime._snapshot_options.limit)
            if growth_step is None:
                growth_step = max(1, growth_start)
            if growth_max is None:
                growth_max = 500

        while True:
            attempt += 1

            per_attempt_kwargs = dict(snapshot_kwargs or {})
            snapshot_limit: int | None = None
            if growth:
                assert growth_start is not None and growth_step is not None and growth_max is not None
                apply = growth_apply_on == "all"
                if growth_apply_on == "only_on_fail":
                    # attempt 1 uses start_limit; later attempts only happen after a failure.
                    apply = attempt == 1 or (last_outcome is not None and not last_outcome.passed)
                if apply:
                    snapshot_limit = limit_for_attempt(
                        attempt, start=growth_start, step=growth_step, max_limit=growth_max
                    )
                else:
                    snapshot_limit = clamp_limit(growth_start)
                per_attempt_kwargs["limit"] = snapshot_limit
            elif per_attempt_kwargs.get("limit") is not None:
                snapshot_limit = int(per_attempt_kwargs["limit"])

            snapshot_error: str | None = None
            try:
                snap = await self.runtime.snapshot(**per_attempt_kwargs)
            except Exception as e:  # pylint: disable=broad-exception-caught
                snap = None
                snapshot_error = f"{type(e).__name__}: {e}"
            snapshot_attempt += 1

            if snapshot_error is None:
                if snap is None:
                    snapshot_error = "snapshot source returned None"
                elif getattr(snap, "status", "success") == "error":
                    snapshot_error = getattr(snap, "error", None) or "snapshot status=error"

            confidence = None
            diagnostics = None
            if snapshot_error is None and self.runtime.last_snapshot is not None:
                diagnostics = getattr(self.runtime.last_snapshot, "diagnostics", None)
                if diagnostics is not None:
                    confidence = getattr(diagnostics, "confidence", None)

            low_confidence = (
                min_confidence is not None
                and confidence is not None
                and isinstance(confidence, (int, float))
                and confidence < min_confidence
            )

            if snapshot_error is not None or low_confidence:
                unusable_attempts += 1
                if snapshot_error is not None:
                    logger.debug("eventually(%s): snapshot failed: %s", self.label, snapshot_error)
                    last_outcome = AssertOutcome(
                        passed=False,
                        reason=f"Snapshot failed: {snapshot_error}",
                        details={
                            "reason_code": "snapshot_error",
                            "error": snapshot_error,
                            "snapshot_attempt": snapshot_attempt,
                        },
                    )
                else:
                    last_outcome = AssertOutcome(
                        passed=False,
                        reason=f"Snapshot confidence {confidence:.3f} < min_confidence {min_confidence:.3f}",
                        details={
                            "reason_code": "snapshot_low_confidence",
                            "confidence": confidence,
                            "min_confidence": min_confidence,
                            "snapshot_attempt": snapshot_attempt,
                            "diagnostics": (
                                diagnostics.model_dump()
                                if hasattr(diagnostics, "model_dump")
                                else diagnostics
                            ),
                        },
                    )

                self._attempt(
                    last_outcome,
                    attempt=attempt,
                    snapshot_attempt=snapshot_attempt,
                    snapshot_limit=snapshot_limit,
                )

                if unusable_attempts >= max_snapshot_attempts:
                    if (
                        vision_provider is not None
                        and getattr(vision_provider, "supports_vision", lambda: False)()
                    ):
                        verdict = await self._vision_verdict(
                            vision_provider,
                            system_prompt=vision_system_prompt,
                            user_prompt=vision_user_prompt,
                            min_confidence=min_confidence,
                            snapshot_attempts=snapshot_attempt,
                        )
                        if verdict is not None:
                            return self._final(
                                verdict,
                                attempt=attempt,
                                snapshot_attempt=snapshot_attempt,
                                vision_fallback=True,
                            )
                        last_outcome.details["vision_error"] = self._last_vision_error

                    final_outcome = AssertOutcome(
                        passed=False,
                        reason=(
                            f"Snapshot exhausted after {unusable_attempts} unusable attempt(s): "
                            f"{last_outcome.reason}"
                        ),
                        details={
                            "reason_code": "snapshot_exhausted",
                            "confidence": confidence,
                            "min_confidence": min_confidence,
                            "snapshot_attempts": snapshot_attempt,
                            "last_reason_code": last_outcome.details.get("reason_code"),
                            "diagnostics": last_outcome.details.get("diagnostics"),
                        },
                    )
                    return self._final(
                        final_outcome,
                        attempt=attempt,
                        snapshot_attempt=snapshot_attempt,
                        exhausted=True,
                    )

                if time.monotonic() >= deadline:
                    return self._final(
                        last_outcome,
                        attempt=attempt,
                        snapshot_attempt=snapshot_attempt,
                        snapshot_limit=snapshot_limit,
                        timeout=True,
                    )

                await asyncio.sleep(poll_s)
                continue

            last_outcome = self.predicate(self.runtime._ctx())

            self._attempt(
                last_outcome,
                attempt=attempt,
                snapshot_attempt=snapshot_attempt,
                snapshot_limit=snapshot_limit,
            )

            if last_outcome.passed:
                return self._final(last_outcome, attempt=attempt)

            if time.monotonic() >= deadline:
                return self._final(last_outcome, attempt=attempt, timeout=True)

            await asyncio.sleep(poll_s)

    async def _vision_verdict(
        self,
        provider: LLMProvider,
        *,
        system_prompt: str | None,
        user_prompt: str | None,
        min_confidence: float | None,
        snapshot_attempts: int,
    ) -> AssertOutcome | None:
        """
        Last-resort YES/NO check from a screenshot. Returns None if the vision call fails.
        """
        try:
            png_bytes = await self.runtime.backend.screenshot_png()
            image_b64 = base64.b64encode(png_bytes).decode("utf-8")

            sys_prompt = system_prompt or "You are a strict visual verifier. Answer only YES or NO."
            usr_prompt = user_prompt or (
                f"Given the screenshot, is the following condition satisfied?\n\n{self.label}\n\nAnswer YES or NO."
            )

            resp = provider.generate_with_image(
                sys_prompt,
                usr_prompt,
                image_base64=image_b64,
                temperature=0.0,
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("eventually(%s): vision verifier failed: %s", self.label, e)
            self._last_vision_error = str(e)
            return None

        text = (resp.content or "").strip().lower()
        passed = text.startswith("yes")
        return AssertOutcome(
            passed=passed,
            reason="vision_fallback_yes" if passed else "vision_fallback_no",
            details={
                "reason_code": "vision_fallback_pass" if passed else "vision_fallback_fail",
                "vision_response": resp.content,
                "min_confidence": min_confidence,
                "snapshot_attempts": snapshot_attempts,
            },
        )
