"""
Example: BrowserAgent with compact prompt customization and a vision budget.

This shows how to override the compact prompt used for action proposal, and
how to cap vision-executor usage across a run.

Usage:
  EXTENSION_PATH=/path/to/extension OPENAI_API_KEY=... python examples/agent/browser_agent_custom_prompt.py
"""

import asyncio
import os

from playwright.async_api import async_playwright

from agentstep.agent_runtime import AgentRuntime
from agentstep.agents import BrowserAgent, BrowserAgentConfig, VisionFallbackConfig
from agentstep.llm_provider import OpenAIProvider
from agentstep.models import Snapshot
from agentstep.runtime_agent import RuntimeStep, StepVerification
from agentstep.tracing import JsonlTraceSink, Tracer
from agentstep.verification import url_contains


def compact_prompt_builder(
    task_goal: str,
    step_goal: str,
    dom_context: str,
    snap: Snapshot,
    history_summary: str,
) -> tuple[str, str]:
    _ = snap
    system = (
        "You are a web automation executor.\n"
        "Return ONLY ONE action in this format:\n"
        "- CLICK(id)\n"
        '- TYPE(id, "text")\n'
        "- PRESS('key')\n"
        "- FINISH()\n"
        "No prose."
    )
    user = (
        f"TASK GOAL:\n{task_goal}\n\n"
        + (f"RECENT STEPS:\n{history_summary}\n\n" if history_summary else "")
        + f"STEP GOAL:\n{step_goal}\n\n"
        f"DOM CONTEXT:\n{dom_context}\n"
    )
    return system, user


async def main() -> None:
    run_id = "browser-agent-custom-prompt"
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

        agent = BrowserAgent(
            runtime=runtime,
            executor=OpenAIProvider(model="gpt-4o-mini"),
            vision_executor=OpenAIProvider(model="gpt-4o"),
            config=BrowserAgentConfig(
                vision=VisionFallbackConfig(max_vision_calls=1),
                history_last_n=2,
                compact_prompt_builder=compact_prompt_builder,
                # Aggressively control token usage by truncating DOM context.
                compact_prompt_postprocessor=lambda ctx: ctx[:4000],
            ),
        )

        steps = [
            RuntimeStep(
                goal="Follow the 'More information' link",
                verifications=[
                    StepVerification(
                        predicate=url_contains("iana.org"),
                        label="on_iana",
                        timeout_s=8.0,
                    )
                ],
                min_confidence=0.6,
            )
        ]
        ok = await agent.run(task_goal="Find out who maintains example.com", steps=steps)
        print(f"run ok: {ok} (vision calls used: {agent.vision_calls_used})")
        await context.close()

    tracer.close()


if __name__ == "__main__":
    asyncio.run(main())
