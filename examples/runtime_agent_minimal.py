"""
Example: RuntimeAgent minimal demo.

This demonstrates the verification-first loop:
snapshot -> propose action (structured executor) -> execute -> verify (AgentRuntime predicates)

The default snapshot source needs the snapshot extension loaded into the
browser; point EXTENSION_PATH at its unpacked directory.

Usage:
  EXTENSION_PATH=/path/to/extension python examples/runtime_agent_minimal.py
"""

import asyncio
import logging
import os

from playwright.async_api import async_playwright

from agentstep.agent_runtime import AgentRuntime
from agentstep.llm_provider import LLMProvider, LLMResponse
from agentstep.runtime_agent import RuntimeAgent, RuntimeStep, StepVerification
from agentstep.tracing import JsonlTraceSink, Tracer
from agentstep.verification import AssertContext, AssertOutcome, by_role, exists, url_contains


class FixedActionProvider(LLMProvider):
    """A tiny in-process provider for examples/tests."""

    def __init__(self, action: str):
        super().__init__(model="fixed-action")
        self._action = action

    def generate(self, system_prompt: str, user_prompt: str, **kwargs) -> LLMResponse:
        _ = system_prompt, user_prompt, kwargs
        return LLMResponse(content=self._action, model_name=self.model_name)

    def supports_json_mode(self) -> bool:
        return False

    @property
    def model_name(self) -> str:
        return "fixed-action"


async def main() -> None:
    logging.basicConfig(level=logging.DEBUG)
    run_id = "runtime-agent-minimal"
    tracer = Tracer(run_id=run_id, sink=JsonlTraceSink(f"traces/{run_id}.jsonl"))
    extension_path = os.environ["EXTENSION_PATH"]

    async with async_playwright() as p:
        context = await p.chromium.launch_persistent_context(
            "",
            headless=False,
            args=[
                f"--disable-extensions-except={extension_path}",
                f"--load-extension={extension_path}",
            ],
        )
        page = await context.new_page()
        await page.goto("https://example.com")
        await page.wait_for_load_state("networkidle")

        runtime = AgentRuntime.from_playwright_page(page, tracer=tracer)

        # Structured executor (for demo, we just return FINISH()).
        executor = FixedActionProvider("FINISH()")

        agent = RuntimeAgent(
            runtime=runtime,
            executor=executor,
            # vision_executor=OpenAIProvider(model="gpt-4o") (optional)
            # vision_verifier=... (optional, YES/NO fallback inside eventually())
        )

        def has_example_heading(ctx: AssertContext) -> AssertOutcome:
            # Custom predicates are plain functions over the snapshot.
            ok = any(
                el.role == "heading" and (el.text or "").startswith("Example")
                for el in ctx.elements
            )
            return AssertOutcome(passed=ok, reason="" if ok else "missing heading", details={})

        step = RuntimeStep(
            goal="Confirm Example Domain page is loaded",
            verifications=[
                StepVerification(
                    predicate=url_contains("example.com"),
                    label="url_contains_example",
                    required=True,
                ),
                StepVerification(
                    predicate=exists(by_role("heading"), "headings"),
                    label="has_heading",
                    required=True,
                ),
                StepVerification(
                    predicate=has_example_heading, label="heading_text_matches", required=False
                ),
            ],
            max_snapshot_attempts=2,
            snapshot_limit_base=60,
        )

        tracer.emit_run_start("RuntimeAgent", llm_model=executor.model_name)
        ok = await agent.run_step(task_goal="Open example.com and verify", step=step)
        tracer.emit_run_end(steps=1)
        print(f"step ok: {ok}")

        await context.close()

    tracer.close()
    print(f"trace written to traces/{run_id}.jsonl")


if __name__ == "__main__":
    asyncio.run(main())
