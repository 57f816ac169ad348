from __future__ import annotations

from agentstep.models import BBox, Element, Snapshot, SnapshotDiagnostics, VisualCues
from agentstep.verification import (
    AssertContext,
    all_of,
    any_of,
    by_role,
    by_text,
    custom,
    element_count,
    exists,
    not_exists,
    url_contains,
    url_matches,
)


def make_element(element_id: int, role: str, text: str | None = None, name: str | None = None) -> Element:
    return Element(
        id=element_id,
        role=role,
        text=text,
        name=name,
        importance=10,
        bbox=BBox(x=0, y=0, width=100, height=40),
        visual_cues=VisualCues(is_primary=False, is_clickable=True),
    )


def make_ctx(url: str = "https://shop.example.com/cart?step=2") -> AssertContext:
    snap = Snapshot(
        status="success",
        url=url,
        elements=[
            make_element(1, "button", text="Checkout"),
            make_element(2, "link", text="Continue shopping"),
            make_element(3, "button", name="Remove item"),
        ],
        diagnostics=SnapshotDiagnostics(confidence=0.8),
    )
    return AssertContext(snapshot=snap, url=url, step_id="step-0")


def test_url_predicates() -> None:
    ctx = make_ctx()
    assert url_contains("/cart")(ctx).passed is True
    out = url_contains("/orders")(ctx)
    assert out.passed is False
    assert "/orders" in out.reason
    assert url_matches(r"step=\d+")(ctx).passed is True
    assert url_matches(r"^http://")(ctx).passed is False


def test_element_matchers_and_counts() -> None:
    ctx = make_ctx()
    assert exists(by_role("BUTTON"))(ctx).passed is True
    assert exists(by_text("remove"))(ctx).passed is True  # matches accessible name
    assert not_exists(by_role("dialog"), "dialogs")(ctx).passed is True

    out = element_count(by_role("button"), min_count=1, max_count=1, description="buttons")(ctx)
    assert out.passed is False
    assert out.details["matched"] == 2
    assert out.reason == "expected 1-1 buttons, found 2"


def test_element_predicates_without_snapshot_fail() -> None:
    out = exists(by_role("button"))(AssertContext(url="https://example.com"))
    assert out.passed is False
    assert out.reason == "no snapshot available"


def test_combinators() -> None:
    ctx = make_ctx()
    assert all_of(url_contains("/cart"), exists(by_role("link")))(ctx).passed is True

    failed = all_of(url_contains("/cart"), url_contains("/nope"))(ctx)
    assert failed.passed is False
    assert failed.details["failed_count"] == 1

    first = any_of(url_contains("/nope"), url_contains("/cart"))(ctx)
    assert first.passed is True
    assert first.details["matched_at_index"] == 1
    assert any_of(url_contains("/a"), url_contains("/b"))(ctx).passed is False


def test_custom_wraps_exceptions() -> None:
    ctx = make_ctx()
    assert custom(lambda c: len(c.elements) == 3, "three")(ctx).passed is True

    def boom(_ctx):
        raise KeyError("x")

    out = custom(boom, "boom")(ctx)
    assert out.passed is False
    assert "raised exception" in out.reason


def test_context_exposes_diagnostics() -> None:
    ctx = make_ctx()
    assert ctx.diagnostics is not None
    assert ctx.diagnostics.confidence == 0.8
    assert AssertContext().elements == []
