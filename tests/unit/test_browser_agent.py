from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from agentstep.agent_runtime import AgentRuntime
from agentstep.agents import BrowserAgent, BrowserAgentConfig, VisionFallbackConfig
from agentstep.llm_provider import LLMProvider, LLMResponse
from agentstep.models import BBox, Element, Snapshot, VisualCues
from agentstep.runtime_agent import RuntimeStep, StepVerification
from agentstep.verification import AssertContext, AssertOutcome


class MockTracer:
    def __init__(self) -> None:
        self.events: list[dict] = []

    def emit(self, event_type: str, data: dict, step_id: str | None = None) -> None:
        self.events.append({"type": event_type, "data": data, "step_id": step_id})


class MockBackend:
    def __init__(self) -> None:
        self.mouse_clicks: list[tuple[float, float]] = []

    async def get_url(self) -> str:
        return "https://example.com/start"

    async def eval(self, expression: str):
        return 0

    async def screenshot_png(self) -> bytes:
        return b"png"

    async def mouse_click(self, x: float, y: float, button="left", click_count=1) -> None:
        self.mouse_clicks.append((float(x), float(y)))

    async def type_text(self, text: str) -> None:
        return None

    async def wait_ready_state(self, state="interactive", timeout_ms=15000) -> None:
        return None


class ProviderStub(LLMProvider):
    def __init__(self, responses: list[str] | None = None, vision: bool = False) -> None:
        super().__init__("stub")
        self._responses = responses or []
        self._vision = vision
        self.calls: list[dict] = []

    def generate(self, system_prompt: str, user_prompt: str, **kwargs) -> LLMResponse:
        self.calls.append({"system": system_prompt, "user": user_prompt})
        content = self._responses.pop(0) if self._responses else "FINISH()"
        return LLMResponse(content=content, model_name=self.model_name)

    def supports_json_mode(self) -> bool:
        return True

    def supports_vision(self) -> bool:
        return self._vision

    def generate_with_image(self, system_prompt, user_prompt, image_base64, **kwargs):
        self.calls.append({"system": system_prompt, "user": user_prompt, "image": image_base64})
        content = self._responses.pop(0) if self._responses else "FINISH()"
        return LLMResponse(content=content, model_name=self.model_name)

    @property
    def model_name(self) -> str:
        return self._model_name


def make_snapshot(url: str) -> Snapshot:
    return Snapshot(
        status="success",
        url=url,
        elements=[
            Element(
                id=1,
                role="button",
                text="Next",
                importance=10,
                bbox=BBox(x=0, y=0, width=20, height=20),
                visual_cues=VisualCues(is_primary=True, is_clickable=True),
            )
        ],
    )


def make_runtime(urls: list[str]) -> AgentRuntime:
    runtime = AgentRuntime(backend=MockBackend(), tracer=MockTracer())

    async def fake_snapshot(**_kwargs):
        url = urls.pop(0) if len(urls) > 1 else urls[0]
        runtime.last_snapshot = make_snapshot(url)
        return runtime.last_snapshot

    runtime.snapshot = AsyncMock(side_effect=fake_snapshot)  # type: ignore[method-assign]
    return runtime


def url_done(ctx: AssertContext) -> AssertOutcome:
    ok = (ctx.url or "").endswith("/done")
    return AssertOutcome(passed=ok, reason="" if ok else "not done")


def failing_step(goal: str) -> RuntimeStep:
    return RuntimeStep(
        goal=goal,
        max_snapshot_attempts=1,
        verifications=[
            StepVerification(predicate=url_done, label="done", timeout_s=0.0, poll_s=0.0)
        ],
    )


@pytest.mark.asyncio
async def test_history_is_injected_into_structured_prompt() -> None:
    runtime = make_runtime(["https://example.com/start"])
    executor = ProviderStub(responses=["CLICK(1)", "CLICK(1)"])
    agent = BrowserAgent(
        runtime=runtime, executor=executor, config=BrowserAgentConfig(history_last_n=1)
    )

    ok = await agent.run(
        task_goal="shop",
        steps=[RuntimeStep(goal="open menu", max_snapshot_attempts=1), RuntimeStep(goal="pick item", max_snapshot_attempts=1)],
    )

    assert ok is True
    assert "RECENT STEPS" not in executor.calls[0]["system"]
    assert "- open menu -> ok" in executor.calls[1]["system"]
    assert "STEP: pick item" in executor.calls[1]["system"]


@pytest.mark.asyncio
async def test_compact_prompt_builder_replaces_default_prompt() -> None:
    runtime = make_runtime(["https://example.com/start"])
    executor = ProviderStub(responses=["CLICK(1)"])
    seen = []

    def builder(task_goal, step_goal, dom_context, snap, history):
        seen.append((task_goal, step_goal, snap.url))
        return "SYSTEM", f"USER {dom_context}"

    agent = BrowserAgent(
        runtime=runtime,
        executor=executor,
        config=BrowserAgentConfig(
            compact_prompt_builder=builder,
            compact_prompt_postprocessor=lambda ctx: ctx[:10],
        ),
    )
    out = await agent.step(task_goal="t", step=RuntimeStep(goal="s", max_snapshot_attempts=1))

    assert out.ok is True
    assert seen == [("t", "s", "https://example.com/start")]
    assert executor.calls[0]["system"] == "SYSTEM"
    assert executor.calls[0]["user"] == "USER [1] <butto"


@pytest.mark.asyncio
async def test_vision_budget_disables_vision_after_limit() -> None:
    runtime = make_runtime(["https://example.com/start"])
    executor = ProviderStub(responses=["CLICK(1)"] * 3)
    vision = ProviderStub(responses=["CLICK(1)"] * 3, vision=True)
    agent = BrowserAgent(
        runtime=runtime,
        executor=executor,
        vision_executor=vision,
        config=BrowserAgentConfig(vision=VisionFallbackConfig(max_vision_calls=1)),
    )

    first = await agent.step(task_goal="t", step=failing_step("a"))
    second = await agent.step(task_goal="t", step=failing_step("b"))

    assert first.ok is False and first.used_vision is True
    assert second.ok is False and second.used_vision is False
    assert agent.vision_calls_used == 1
    assert len(vision.calls) == 1


@pytest.mark.asyncio
async def test_run_stops_on_first_failure_by_default() -> None:
    runtime = make_runtime(["https://example.com/start"])
    executor = ProviderStub(responses=["CLICK(1)"] * 3)
    agent = BrowserAgent(runtime=runtime, executor=executor)

    ok = await agent.run(task_goal="t", steps=[failing_step("a"), failing_step("b")])
    assert ok is False
    assert len(executor.calls) == 1

    ok = await agent.run(
        task_goal="t", steps=[failing_step("c"), failing_step("d")], stop_on_failure=False
    )
    assert ok is False
    assert len(executor.calls) == 3
