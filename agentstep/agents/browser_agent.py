from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from ..agent_runtime import AgentRuntime
from ..llm_provider import LLMProvider
from ..models import Snapshot, StepHookContext
from ..runtime_agent import RuntimeAgent, RuntimeStep

logger = logging.getLogger(__name__)

# Signature: builder(task_goal, step_goal, dom_context, snapshot, history_summary) -> (system, user)
CompactPromptBuilder = Callable[[str, str, str, Snapshot, str], tuple[str, str]]


@dataclass(frozen=True)
class VisionFallbackConfig:
    """
    Controls if/when the agent may use a vision executor.

    `max_vision_calls` caps vision-executed steps across one agent's lifetime;
    0 means unlimited. Once the budget is spent, later steps run structured-only.
    """

    enabled: bool = True
    max_vision_calls: int = 0


@dataclass(frozen=True)
class BrowserAgentConfig:
    """
    High-level agent configuration.

    Kept small:
    - operational knobs (vision budget)
    - token controls (history_last_n)
    - prompt customization hooks (compact_prompt_builder)
    """

    vision: VisionFallbackConfig = field(default_factory=VisionFallbackConfig)

    # Prompt / token controls
    history_last_n: int = 0  # 0 disables LLM-facing step history (lowest token usage)

    compact_prompt_builder: CompactPromptBuilder | None = None

    # Optional last-mile truncation of dom_context to control tokens
    compact_prompt_postprocessor: Callable[[str], str] | None = None


def _history_summary(items: list[str]) -> str:
    if not items:
        return ""
    return "\n".join(f"- {s}" for s in items if s)


class _RuntimeAgentWithPromptOverrides(RuntimeAgent):
    def __init__(
        self,
        *,
        runtime: AgentRuntime,
        executor: LLMProvider,
        vision_executor: LLMProvider | None,
        vision_verifier: LLMProvider | None,
        compact_prompt_builder: CompactPromptBuilder | None,
        compact_prompt_postprocessor: Callable[[str], str] | None,
        history_summary_provider: Callable[[], str],
    ) -> None:
        super().__init__(
            runtime=runtime,
            executor=executor,
            vision_executor=vision_executor,
            vision_verifier=vision_verifier,
        )
        self._compact_prompt_builder = compact_prompt_builder
        self._compact_prompt_postprocessor = compact_prompt_postprocessor
        self._history_summary_provider = history_summary_provider

    def _propose_structured_action(
        self, *, task_goal: str, step: RuntimeStep, snap: Snapshot
    ) -> str:
        dom_context = self._structured_llm.build_context(snap, step.goal)
        if self._compact_prompt_postprocessor is not None:
            dom_context = self._compact_prompt_postprocessor(dom_context)

        history_summary = self._history_summary_provider() or ""

        if self._compact_prompt_builder is not None:
            system_prompt, user_prompt = self._compact_prompt_builder(
                task_goal,
                step.goal,
                dom_context,
                snap,
                history_summary,
            )
            resp = self.executor.generate(system_prompt, user_prompt, temperature=0.0)
            self._last_llm_response = resp
            return self._structured_llm.extract_action(resp.content)

        # Default prompt template, with a small history block inside the goal string.
        combined_goal = task_goal
        if history_summary:
            combined_goal = f"{task_goal}\n\nRECENT STEPS:\n{history_summary}"
        combined_goal = f"{combined_goal}\n\nSTEP: {step.goal}"
        resp = self._structured_llm.query_llm(dom_context, combined_goal)
        self._last_llm_response = resp
        return self._structured_llm.extract_action(resp.content)


@dataclass
class StepOutcome:
    step_goal: str
    ok: bool
    used_vision: bool = False


class BrowserAgent:
    """
    Snapshot-first, verification-first browser agent.

    This is a thin user-facing wrapper over `RuntimeAgent` with:
    - a `run()` loop over `step()`
    - bounded prompt-history injection (history_last_n)
    - bounded vision budgeting (max_vision_calls)
    """

    def __init__(
        self,
        *,
        runtime: AgentRuntime,
        executor: LLMProvider,
        vision_executor: LLMProvider | None = None,
        vision_verifier: LLMProvider | None = None,
        config: BrowserAgentConfig | None = None,
    ) -> None:
        self.runtime = runtime
        self.executor = executor
        self.vision_executor = vision_executor
        self.vision_verifier = vision_verifier
        self.config = config or BrowserAgentConfig()

        # LLM-facing step history summaries (bounded)
        self._history: deque[str] = deque(maxlen=max(0, int(self.config.history_last_n)))

        self._vision_calls_used = 0

        self._runner = _RuntimeAgentWithPromptOverrides(
            runtime=self.runtime,
            executor=self.executor,
            vision_executor=self.vision_executor,
            vision_verifier=self.vision_verifier,
            compact_prompt_builder=self.config.compact_prompt_builder,
            compact_prompt_postprocessor=self.config.compact_prompt_postprocessor,
            history_summary_provider=self._get_history_summary,
        )

    @property
    def vision_calls_used(self) -> int:
        return self._vision_calls_used

    def _get_history_summary(self) -> str:
        if int(self.config.history_last_n) <= 0:
            return ""
        return _history_summary(list(self._history))

    def _record_step_history(self, *, step_goal: str, ok: bool) -> None:
        if int(self.config.history_last_n) <= 0:
            return
        self._history.append(f"{step_goal} -> {'ok' if ok else 'fail'}")

    def _vision_budget_exhausted(self) -> bool:
        if not self.config.vision.enabled:
            return True
        limit = int(self.config.vision.max_vision_calls)
        return limit > 0 and self._vision_calls_used >= limit

    async def step(
        self,
        *,
        task_goal: str,
        step: RuntimeStep,
        on_step_start: Callable[[StepHookContext], Any] | None = None,
        on_step_end: Callable[[StepHookContext], Any] | None = None,
    ) -> StepOutcome:
        if self._vision_budget_exhausted() and step.vision_executor_enabled:
            logger.debug("vision disabled for step %r (budget or config)", step.goal)
            step = replace(step, vision_executor_enabled=False, max_vision_executor_attempts=0)

        ok = await self._runner.run_step(
            task_goal=task_goal,
            step=step,
            on_step_start=on_step_start,
            on_step_end=on_step_end,
        )

        used_vision = self._runner.last_step_used_vision
        if used_vision:
            self._vision_calls_used += 1

        self._record_step_history(step_goal=step.goal, ok=bool(ok))
        return StepOutcome(step_goal=step.goal, ok=bool(ok), used_vision=used_vision)

    async def run(
        self,
        *,
        task_goal: str,
        steps: list[RuntimeStep],
        on_step_start: Callable[[StepHookContext], Any] | None = None,
        on_step_end: Callable[[StepHookContext], Any] | None = None,
        stop_on_failure: bool = True,
    ) -> bool:
        all_ok = True
        for step in steps:
            out = await self.step(
                task_goal=task_goal,
                step=step,
                on_step_start=on_step_start,
                on_step_end=on_step_end,
            )
            if not out.ok:
                all_ok = False
                if stop_on_failure:
                    return False
        return all_ok
