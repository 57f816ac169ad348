"""
Default snapshot source.

Takes snapshots through the BrowserBackend protocol by calling the element
extraction API that the companion browser extension injects into every page
(`window.sentience.snapshot(options)`). The extraction itself is opaque to
this package; only the resulting Snapshot payload matters.

Usage:
    from agentstep.backends import PlaywrightBackend, snapshot

    backend = PlaywrightBackend(page)
    snap = await snapshot(backend, SnapshotOptions(limit=100))
    print(f"Found {len(snap.elements)} elements")
"""

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Any

from ..models import Snapshot, SnapshotOptions
from .exceptions import ExtensionDiagnostics, ExtensionNotLoadedError, SnapshotError

if TYPE_CHECKING:
    from .protocol import BrowserBackend

logger = logging.getLogger(__name__)


def _is_execution_context_destroyed_error(e: Exception) -> bool:
    """
    Playwright (and other browser backends) can throw while a navigation is in-flight.

    Common symptoms:
    - "Execution context was destroyed, most likely because of a navigation"
    - "Cannot find context with specified id"
    """
    msg = str(e).lower()
    return (
        "execution context was destroyed" in msg
        or "most likely because of a navigation" in msg
        or "cannot find context with specified id" in msg
    )


async def _eval_with_navigation_retry(
    backend: "BrowserBackend",
    expression: str,
    *,
    retries: int = 10,
    settle_state: str = "interactive",
    settle_timeout_ms: int = 10000,
) -> Any:
    """
    Evaluate JS, retrying while the page is mid-navigation.

    This makes snapshots resilient to cases like:
    - press Enter (navigation) -> snapshot immediately -> context destroyed
    """
    last_err: Exception | None = None
    for attempt in range(retries + 1):
        try:
            return await backend.eval(expression)
        except Exception as e:
            last_err = e
            if not _is_execution_context_destroyed_error(e) or attempt >= retries:
                raise
            logger.debug("snapshot eval hit navigation (attempt %d): %s", attempt + 1, e)
            try:
                await backend.wait_ready_state(state=settle_state, timeout_ms=settle_timeout_ms)  # type: ignore[arg-type]
            except Exception:  # pylint: disable=broad-exception-caught
                # readyState polling can also fail mid-nav; retry after backoff anyway.
                pass
            await asyncio.sleep(min(0.25 * (attempt + 1), 1.5))

    raise last_err if last_err else RuntimeError("eval failed")


async def _wait_for_extension(
    backend: "BrowserBackend",
    timeout_ms: int = 5000,
) -> None:
    """
    Wait for the extension to inject window.sentience.

    Raises:
        ExtensionNotLoadedError: If the API is not injected within timeout
    """
    start = time.monotonic()
    timeout_sec = timeout_ms / 1000.0
    poll_count = 0

    logger.debug(f"Waiting for extension injection (timeout={timeout_ms}ms)...")

    while True:
        elapsed = time.monotonic() - start
        poll_count += 1

        if poll_count % 10 == 0:  # ~1 second
            logger.debug(f"Extension poll #{poll_count}, elapsed={elapsed*1000:.0f}ms")

        if elapsed >= timeout_sec:
            try:
                diag_dict = await backend.eval(
                    """
                    (() => ({
                        sentience_defined: typeof window.sentience !== 'undefined',
                        sentience_snapshot: typeof window.sentience?.snapshot === 'function',
                        url: window.location.href,
                        extension_id: document.documentElement.dataset.sentienceExtensionId || null,
                        has_content_script: !!document.documentElement.dataset.sentienceExtensionId
                    }))()
                """
                )
                diagnostics = ExtensionDiagnostics.from_dict(diag_dict)
            except Exception as e:  # pylint: disable=broad-exception-caught
                diagnostics = ExtensionDiagnostics(error=f"Could not gather diagnostics: {e}")

            raise ExtensionNotLoadedError.from_timeout(
                timeout_ms=timeout_ms,
                diagnostics=diagnostics,
            )

        try:
            ready = await backend.eval(
                "typeof window.sentience !== 'undefined' && "
                "typeof window.sentience.snapshot === 'function'"
            )
            if ready:
                return
        except Exception:  # pylint: disable=broad-exception-caught
            pass  # Keep polling

        await asyncio.sleep(0.1)


def _build_extension_options(options: SnapshotOptions) -> dict[str, Any]:
    """Build options dict for the extension API call."""
    ext_options: dict[str, Any] = {"limit": options.limit}

    if options.screenshot is not False:
        if hasattr(options.screenshot, "model_dump"):
            ext_options["screenshot"] = options.screenshot.model_dump()
        else:
            ext_options["screenshot"] = options.screenshot

    if options.filter is not None:
        ext_options["filter"] = options.filter.model_dump(exclude_none=True)

    if options.goal:
        ext_options["goal"] = options.goal

    return ext_options


async def snapshot(
    backend: "BrowserBackend",
    options: SnapshotOptions | None = None,
    *,
    extension_timeout_ms: int = 5000,
) -> Snapshot:
    """
    Take a snapshot using the backend protocol.

    Args:
        backend: BrowserBackend implementation
        options: Snapshot options (limit, goal, filter, screenshot, show_overlay)
        extension_timeout_ms: How long to wait for the injected API

    Returns:
        Snapshot with elements, viewport, diagnostics and optional screenshot

    Raises:
        ExtensionNotLoadedError: injected API missing
        SnapshotError: API returned null
    """
    if options is None:
        options = SnapshotOptions()

    await _wait_for_extension(backend, timeout_ms=extension_timeout_ms)

    ext_options = _build_extension_options(options)
    result = await _eval_with_navigation_retry(
        backend,
        f"""
        (() => {{
            const options = {json.dumps(ext_options)};
            return window.sentience.snapshot(options);
        }})()
    """,
    )

    if result is None:
        try:
            url = await backend.eval("window.location.href")
        except Exception:  # pylint: disable=broad-exception-caught
            url = None
        raise SnapshotError.from_null_result(url=url)

    if options.show_overlay:
        raw_elements = result.get("raw_elements", [])
        if raw_elements:
            await _eval_with_navigation_retry(
                backend,
                f"""
                (() => {{
                    if (window.sentience && window.sentience.showOverlay) {{
                        window.sentience.showOverlay({json.dumps(raw_elements)}, null);
                    }}
                }})()
            """,
            )

    payload = {k: v for k, v in result.items() if k != "raw_elements"}
    return Snapshot(**payload)
