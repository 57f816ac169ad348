"""
Verification primitives for agent assertion loops.

Assertions evaluate against the current browser state (snapshot/url) and
record results into the trace.

Key concepts:
- AssertOutcome: Result of evaluating an assertion
- AssertContext: Context handed to predicates (snapshot, url, step_id)
- Predicate: Callable that takes a context and returns an outcome

Predicates must be pure: the assertion engine may call them many times with
different contexts during one `eventually()` loop, and they must not mutate
the context they receive.

Example:
    from agentstep.verification import all_of, exists, by_role, url_contains

    done = all_of(url_contains("/checkout"), exists(by_role("button"), "any button"))
    outcome = done(AssertContext(snapshot=snap, url=snap.url))
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .models import Element, Snapshot, SnapshotDiagnostics


@dataclass
class AssertOutcome:
    """Result of evaluating an assertion predicate."""

    passed: bool
    reason: str = ""
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class AssertContext:
    """
    Read-only view of page state exposed to predicates.

    Attributes:
        snapshot: Current page snapshot (None if not taken)
        url: Current page URL
        step_id: Current step identifier (for trace correlation)
    """

    snapshot: Snapshot | None = None
    url: str | None = None
    step_id: str | None = None

    @property
    def elements(self) -> list[Element]:
        if self.snapshot is None:
            return []
        return list(self.snapshot.elements)

    @property
    def diagnostics(self) -> SnapshotDiagnostics | None:
        if self.snapshot is None:
            return None
        return self.snapshot.diagnostics


Predicate = Callable[[AssertContext], AssertOutcome]
ElementMatcher = Callable[[Element], bool]


def by_role(role: str) -> ElementMatcher:
    """Match elements whose role equals `role` (case-insensitive)."""
    wanted = role.lower()
    return lambda el: (el.role or "").lower() == wanted


def by_text(substring: str) -> ElementMatcher:
    """Match elements whose text or accessible name contains `substring` (case-insensitive)."""
    wanted = substring.lower()

    def _match(el: Element) -> bool:
        hay = f"{el.text or ''} {el.name or ''}".lower()
        return wanted in hay

    return _match


def url_matches(pattern: str | re.Pattern[str]) -> Predicate:
    """
    Create a predicate that checks if current URL matches a regex pattern.

    Args:
        pattern: Regular expression pattern (string or compiled)

    Returns:
        Predicate function that evaluates URL matching
    """
    rx = re.compile(pattern) if isinstance(pattern, str) else pattern

    def _pred(ctx: AssertContext) -> AssertOutcome:
        url = ctx.url or ""
        ok = rx.search(url) is not None
        return AssertOutcome(
            passed=ok,
            reason="" if ok else f"url did not match pattern: {rx.pattern}",
            details={"pattern": rx.pattern, "url": url[:200]},
        )

    return _pred


def url_contains(substring: str) -> Predicate:
    """Create a predicate that checks if current URL contains a substring."""

    def _pred(ctx: AssertContext) -> AssertOutcome:
        url = ctx.url or ""
        ok = substring in url
        return AssertOutcome(
            passed=ok,
            reason="" if ok else f"url does not contain: {substring}",
            details={"substring": substring, "url": url[:200]},
        )

    return _pred


def element_count(
    match: ElementMatcher,
    *,
    min_count: int = 0,
    max_count: int | None = None,
    description: str = "elements",
) -> Predicate:
    """
    Create a predicate that checks the number of elements accepted by `match`.

    Args:
        match: Element matcher (see by_role / by_text, or any callable)
        min_count: Minimum number of matches (inclusive)
        max_count: Maximum number of matches (inclusive), unbounded if None
        description: Label used in reasons/details
    """

    def _pred(ctx: AssertContext) -> AssertOutcome:
        snap = ctx.snapshot
        if snap is None:
            return AssertOutcome(
                passed=False,
                reason="no snapshot available",
                details={"matcher": description, "min_count": min_count, "max_count": max_count},
            )
        count = sum(1 for el in snap.elements if match(el))
        ok = count >= min_count and (max_count is None or count <= max_count)
        reason = ""
        if not ok:
            if max_count is not None:
                reason = f"expected {min_count}-{max_count} {description}, found {count}"
            else:
                reason = f"expected at least {min_count} {description}, found {count}"
        return AssertOutcome(
            passed=ok,
            reason=reason,
            details={
                "matcher": description,
                "matched": count,
                "min_count": min_count,
                "max_count": max_count,
            },
        )

    return _pred


def exists(match: ElementMatcher, description: str = "elements") -> Predicate:
    """Pass if at least one element is accepted by `match`."""
    return element_count(match, min_count=1, description=description)


def not_exists(match: ElementMatcher, description: str = "elements") -> Predicate:
    """Pass if no element is accepted by `match` (spinners gone, errors cleared, ...)."""
    return element_count(match, min_count=0, max_count=0, description=description)


def all_of(*predicates: Predicate) -> Predicate:
    """Create a predicate that passes only if ALL sub-predicates pass."""

    def _pred(ctx: AssertContext) -> AssertOutcome:
        failed: list[str] = []
        all_details: list[dict[str, Any]] = []
        for p in predicates:
            outcome = p(ctx)
            all_details.append(outcome.details)
            if not outcome.passed:
                failed.append(outcome.reason)
        ok = not failed
        return AssertOutcome(
            passed=ok,
            reason="; ".join(failed),
            details={"sub_predicates": all_details, "failed_count": len(failed)},
        )

    return _pred


def any_of(*predicates: Predicate) -> Predicate:
    """Create a predicate that passes if ANY sub-predicate passes."""

    def _pred(ctx: AssertContext) -> AssertOutcome:
        reasons: list[str] = []
        all_details: list[dict[str, Any]] = []
        for i, p in enumerate(predicates):
            outcome = p(ctx)
            all_details.append(outcome.details)
            if outcome.passed:
                return AssertOutcome(
                    passed=True,
                    reason="",
                    details={"sub_predicates": all_details, "matched_at_index": i},
                )
            reasons.append(outcome.reason)
        return AssertOutcome(
            passed=False,
            reason=f"none of {len(predicates)} predicates passed: {'; '.join(reasons)}",
            details={"sub_predicates": all_details},
        )

    return _pred


def custom(check: Callable[[AssertContext], bool], label: str = "custom") -> Predicate:
    """
    Wrap a boolean check into a predicate.

    Exceptions raised by `check` become a failed outcome; predicates never raise.
    """

    def _pred(ctx: AssertContext) -> AssertOutcome:
        try:
            ok = bool(check(ctx))
        except Exception as e:  # pylint: disable=broad-exception-caught
            return AssertOutcome(
                passed=False,
                reason=f"custom check '{label}' raised exception: {e}",
                details={"label": label, "error": str(e)},
            )
        return AssertOutcome(
            passed=ok,
            reason="" if ok else f"custom check '{label}' returned false",
            details={"label": label},
        )

    return _pred
