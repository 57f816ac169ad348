"""
Playwright implementation of the BrowserBackend protocol.

Wraps an async Playwright `Page` so an AgentRuntime can be attached to a page
the caller already drives (sidecar mode).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from playwright.async_api import Page


class PlaywrightBackend:
    def __init__(self, page: Page) -> None:
        self._page = page

    @property
    def page(self) -> Page:
        return self._page

    async def get_url(self) -> str:
        return self._page.url

    async def eval(self, expression: str) -> Any:
        return await self._page.evaluate(expression)

    async def screenshot_png(self) -> bytes:
        return await self._page.screenshot(type="png")

    async def mouse_click(
        self,
        x: float,
        y: float,
        button: Literal["left", "right", "middle"] = "left",
        click_count: int = 1,
    ) -> None:
        await self._page.mouse.click(x, y, button=button, click_count=click_count)

    async def type_text(self, text: str) -> None:
        await self._page.keyboard.type(text)

    async def press_key(self, key: str) -> None:
        await self._page.keyboard.press(key)

    async def wait_ready_state(
        self,
        state: Literal["loading", "interactive", "complete"] = "interactive",
        timeout_ms: int = 15000,
    ) -> None:
        # Playwright has no "interactive" load state; domcontentloaded is the equivalent.
        load_state = "load" if state == "complete" else "domcontentloaded"
        await self._page.wait_for_load_state(load_state, timeout=timeout_ms)
