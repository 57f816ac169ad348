"""
Snapshot limit ramping.

Decides how many elements to request from the snapshot source on each retry.
When a snapshot reports low extraction confidence (the page is still rendering,
or the ranker cut off too early) the next request asks for more elements,
trading extraction cost for completeness. Limits never decrease within a step.
"""

from __future__ import annotations

from dataclasses import dataclass

# SnapshotOptions.limit bounds
MIN_LIMIT = 1
MAX_LIMIT = 500


@dataclass(frozen=True)
class SnapshotRampConfig:
    base: int = 60
    step: int = 40
    max: int = 220
    min_confidence: float | None = None
    min_actionables: int | None = None


def clamp_limit(n: int) -> int:
    if n < MIN_LIMIT:
        return MIN_LIMIT
    if n > MAX_LIMIT:
        return MAX_LIMIT
    return n


def needs_more(
    confidence: float | None,
    config: SnapshotRampConfig,
    *,
    actionables: int | None = None,
) -> bool:
    """True if the previous snapshot is too weak to act on."""
    if (
        config.min_confidence is not None
        and isinstance(confidence, (int, float))
        and confidence < config.min_confidence
    ):
        return True
    if (
        config.min_actionables is not None
        and actionables is not None
        and actionables < config.min_actionables
    ):
        return True
    return False


def next_limit(
    previous_limit: int | None,
    previous_confidence: float | None,
    config: SnapshotRampConfig,
    *,
    actionables: int | None = None,
) -> int:
    """
    Return the element limit for the next snapshot request.

    The first attempt (no previous limit) uses `config.base`. Later attempts grow
    by `config.step` up to `config.max` while the previous snapshot was below
    `min_confidence` (or had fewer than `min_actionables` actionable elements),
    and hold the previous limit otherwise.

    >>> cfg = SnapshotRampConfig(base=60, step=40, max=220, min_confidence=0.7)
    >>> next_limit(None, None, cfg)
    60
    >>> next_limit(60, 0.1, cfg)
    100
    >>> next_limit(100, 0.9, cfg)
    100
    >>> next_limit(220, 0.1, cfg)
    220
    """
    if previous_limit is None:
        return clamp_limit(int(config.base))
    if needs_more(previous_confidence, config, actionables=actionables):
        grown = min(int(config.max), int(previous_limit) + int(config.step))
        # A max below the current limit must not shrink the request.
        return clamp_limit(max(int(previous_limit), grown))
    return clamp_limit(int(previous_limit))


def limit_for_attempt(attempt: int, *, start: int, step: int, max_limit: int) -> int:
    """
    Additive schedule for 1-based attempt numbers:
    limit(attempt) = min(max_limit, start + step * (attempt - 1)).
    """
    base = int(start) + int(step) * max(0, int(attempt) - 1)
    return clamp_limit(min(int(max_limit), base))
