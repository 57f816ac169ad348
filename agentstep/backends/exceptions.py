"""
Errors raised by the default snapshot source.

The runtime treats every one of these as a transient extraction failure: an
`eventually()` attempt that failed, never a reason to abort the step.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class ExtensionDiagnostics:
    """What the page reported about the injected snapshot API when it timed out."""

    sentience_defined: bool | None = None
    sentience_snapshot: bool | None = None
    url: str | None = None
    extension_id: str | None = None
    has_content_script: bool | None = None
    error: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> ExtensionDiagnostics:
        if not isinstance(data, dict):
            return cls(error=f"unexpected diagnostics payload: {data!r}")
        return cls(
            sentience_defined=data.get("sentience_defined"),
            sentience_snapshot=data.get("sentience_snapshot"),
            url=data.get("url"),
            extension_id=data.get("extension_id"),
            has_content_script=data.get("has_content_script"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


class SnapshotError(RuntimeError):
    """The snapshot source returned nothing usable."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url

    @classmethod
    def from_null_result(cls, url: str | None = None) -> SnapshotError:
        where = f" on {url}" if url else ""
        return cls(f"window.sentience.snapshot() returned null{where}", url=url)


class ExtensionNotLoadedError(SnapshotError):
    """The injected snapshot API never appeared on the page."""

    def __init__(
        self,
        message: str,
        *,
        timeout_ms: int | None = None,
        diagnostics: ExtensionDiagnostics | None = None,
    ) -> None:
        super().__init__(message, url=diagnostics.url if diagnostics else None)
        self.timeout_ms = timeout_ms
        self.diagnostics = diagnostics

    @classmethod
    def from_timeout(
        cls,
        timeout_ms: int,
        diagnostics: ExtensionDiagnostics | None = None,
    ) -> ExtensionNotLoadedError:
        msg = f"Snapshot extension not injected after {timeout_ms}ms"
        if diagnostics is not None:
            msg = f"{msg} (diagnostics: {diagnostics.to_dict()})"
        return cls(msg, timeout_ms=timeout_ms, diagnostics=diagnostics)
