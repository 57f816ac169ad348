"""
Browser backend abstractions for agentstep.

The runtime drives the browser only through the BrowserBackend protocol, so
any automation framework can be plugged in:

    from playwright.async_api import async_playwright
    from agentstep.backends import PlaywrightBackend, snapshot

    backend = PlaywrightBackend(page)
    snap = await snapshot(backend)
"""

from .exceptions import ExtensionDiagnostics, ExtensionNotLoadedError, SnapshotError
from .playwright_backend import PlaywrightBackend
from .protocol import BrowserBackend
from .snapshot import snapshot

__all__ = [
    # Protocol
    "BrowserBackend",
    # Playwright Backend
    "PlaywrightBackend",
    # Snapshot source
    "snapshot",
    # Errors
    "SnapshotError",
    "ExtensionNotLoadedError",
    "ExtensionDiagnostics",
]
