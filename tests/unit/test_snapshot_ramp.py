from __future__ import annotations

from agentstep.snapshot_ramp import (
    SnapshotRampConfig,
    clamp_limit,
    limit_for_attempt,
    needs_more,
    next_limit,
)


def test_worked_example_sequence_under_persistent_low_confidence() -> None:
    cfg = SnapshotRampConfig(base=60, step=40, max=220, min_confidence=0.7)
    limits = []
    limit = None
    for _ in range(6):
        limit = next_limit(limit, 0.1 if limit is not None else None, cfg)
        limits.append(limit)
    assert limits == [60, 100, 140, 180, 220, 220]


def test_limit_holds_when_confidence_is_sufficient() -> None:
    cfg = SnapshotRampConfig(min_confidence=0.7)
    assert next_limit(100, 0.9, cfg) == 100
    assert next_limit(100, None, cfg) == 100


def test_no_threshold_means_no_growth() -> None:
    cfg = SnapshotRampConfig()
    assert next_limit(None, None, cfg) == 60
    assert next_limit(60, 0.0, cfg) == 60


def test_low_actionables_also_grow_the_limit() -> None:
    cfg = SnapshotRampConfig(min_actionables=3)
    assert needs_more(None, cfg, actionables=1) is True
    assert next_limit(60, None, cfg, actionables=1) == 100
    assert next_limit(60, None, cfg, actionables=3) == 60


def test_limit_never_decreases_when_max_is_below_previous() -> None:
    cfg = SnapshotRampConfig(base=60, step=40, max=80, min_confidence=0.5)
    assert next_limit(100, 0.1, cfg) == 100


def test_clamp_and_additive_schedule() -> None:
    assert clamp_limit(0) == 1
    assert clamp_limit(900) == 500
    assert [limit_for_attempt(n, start=60, step=40, max_limit=150) for n in (1, 2, 3, 4)] == [
        60,
        100,
        140,
        150,
    ]
