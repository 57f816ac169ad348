"""
BrowserBackend protocol: the browser control surface the runtime drives.

Anything that implements these coroutines can back an AgentRuntime; the
runtime never touches a browser automation framework directly.
"""

from __future__ import annotations

from typing import Any, Literal, Protocol, runtime_checkable

ReadyState = Literal["loading", "interactive", "complete"]


@runtime_checkable
class BrowserBackend(Protocol):
    async def get_url(self) -> str:
        """Current page URL."""
        ...

    async def eval(self, expression: str) -> Any:
        """Evaluate a JavaScript expression in the page and return its JSON value."""
        ...

    async def screenshot_png(self) -> bytes:
        ...

    async def mouse_click(
        self,
        x: float,
        y: float,
        button: Literal["left", "right", "middle"] = "left",
        click_count: int = 1,
    ) -> None:
        ...

    async def type_text(self, text: str) -> None:
        ...

    async def press_key(self, key: str) -> None:
        ...

    async def wait_ready_state(
        self,
        state: ReadyState = "interactive",
        timeout_ms: int = 15000,
    ) -> None:
        ...
