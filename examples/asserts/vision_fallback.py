"""
Vision fallback after snapshot exhaustion.

When `min_confidence` gating keeps failing (snapshot_exhausted), you can pass a
vision-capable LLMProvider to `eventually()` and ask it for a strict YES/NO
verification using a screenshot.

Env vars:
  - OPENAI_API_KEY (OpenAIProvider)
  - EXTENSION_PATH (unpacked snapshot extension)
"""

import asyncio
import os

from playwright.async_api import async_playwright

from agentstep import AgentRuntime
from agentstep.llm_provider import OpenAIProvider
from agentstep.tracing import JsonlTraceSink, Tracer
from agentstep.verification import by_text, exists


async def main() -> None:
    tracer = Tracer(run_id="asserts-vision", sink=JsonlTraceSink("trace_asserts_vision.jsonl"))
    extension_path = os.environ["EXTENSION_PATH"]

    # Any provider implementing supports_vision() + generate_with_image() works.
    vision = OpenAIProvider(model="gpt-4o")

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
        runtime.begin_step("Assert with vision fallback")

        ok = await runtime.check(
            exists(by_text("Example Domain")), label="example_domain_text"
        ).eventually(
            timeout_s=10.0,
            poll_s=0.25,
            min_confidence=0.7,
            max_snapshot_attempts=2,
            vision_provider=vision,
            vision_system_prompt="You are a strict visual verifier. Answer only YES or NO.",
            vision_user_prompt="In the screenshot, is the phrase 'Example Domain' visible? Answer YES or NO.",
        )

        print("eventually() w/ vision result:", ok)
        await context.close()

    tracer.close()


if __name__ == "__main__":
    asyncio.run(main())
