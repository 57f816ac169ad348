"""
Agent-level orchestration helpers (snapshot-first, verification-first).

This package provides a multi-step agent surface built on top of:
- AgentRuntime (snapshots, verification, tracing)
- RuntimeAgent (execution loop and bounded vision fallback)
"""

from .browser_agent import (
    BrowserAgent,
    BrowserAgentConfig,
    StepOutcome,
    VisionFallbackConfig,
)

__all__ = [
    "BrowserAgent",
    "BrowserAgentConfig",
    "StepOutcome",
    "VisionFallbackConfig",
]
