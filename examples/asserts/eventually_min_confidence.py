"""
`.check(...).eventually(...)` with snapshot confidence gating + exhaustion.

This example shows:
- retry loop semantics
- `min_confidence` gating (snapshot_low_confidence -> snapshot_exhausted)
- a single final assertion record per check, ready for step_end

Usage:
  EXTENSION_PATH=/path/to/extension python examples/asserts/eventually_min_confidence.py
"""

import asyncio
import os

from playwright.async_api import async_playwright

from agentstep import AgentRuntime
from agentstep.tracing import JsonlTraceSink, Tracer
from agentstep.verification import by_role, exists


async def main() -> None:
    tracer = Tracer(run_id="asserts-eventually", sink=JsonlTraceSink("trace_asserts.jsonl"))
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
        runtime = AgentRuntime.from_playwright_page(page, tracer=tracer)

        await page.goto("https://example.com")
        runtime.begin_step("Assert eventually")

        ok = await runtime.check(
            exists(by_role("heading"), "headings"),
            label="heading_eventually_visible",
            required=True,
        ).eventually(
            timeout_s=10.0,
            poll_s=0.25,
            # If the snapshot reports diagnostics.confidence, gate on it:
            min_confidence=0.7,
            max_snapshot_attempts=3,
        )

        print("eventually() result:", ok)
        print("Final assertion:", runtime.get_assertions_for_step_end()["assertions"])
        await runtime.emit_step_end()
        await context.close()

    tracer.close()


if __name__ == "__main__":
    asyncio.run(main())
