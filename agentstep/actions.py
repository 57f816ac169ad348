"""
Action grammar shared by the structured and vision executors.

Executors answer with a single command:

    CLICK(id)              click the center of element `id` from the snapshot
    TYPE(id, "text")       click element `id`, then type `text`
    PRESS("key")           press a keyboard key
    CLICK_XY(x, y)         click page coordinates (vision only)
    CLICK_RECT(x, y, w, h) click the center of a rectangle (vision only)
    FINISH()               nothing left to do for this step
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

_NUM = r"-?\d+(?:\.\d+)?"

_FINISH_RE = re.compile(r"^FINISH\s*\(\s*\)\s*$", re.IGNORECASE)
_CLICK_XY_RE = re.compile(rf"^CLICK_XY\s*\(\s*({_NUM})\s*,\s*({_NUM})\s*\)\s*$", re.IGNORECASE)
_CLICK_RECT_RE = re.compile(
    rf"^CLICK_RECT\s*\(\s*({_NUM})\s*,\s*({_NUM})\s*,\s*({_NUM})\s*,\s*({_NUM})\s*\)\s*$",
    re.IGNORECASE,
)
_CLICK_RE = re.compile(r"^CLICK\s*\(\s*(\d+)\s*\)\s*$", re.IGNORECASE)
_TYPE_RE = re.compile(r"""^TYPE\s*\(\s*(\d+)\s*,\s*["']([^"']*)["']\s*\)\s*$""", re.IGNORECASE)
_PRESS_RE = re.compile(r"""^PRESS\s*\(\s*["']([^"']+)["']\s*\)\s*$""", re.IGNORECASE)

# Order matters: CLICK_XY / CLICK_RECT must win over the bare CLICK prefix.
_EXTRACT_RE = re.compile(
    rf"(CLICK_XY\s*\(\s*{_NUM}\s*,\s*{_NUM}\s*\)"
    rf"|CLICK_RECT\s*\(\s*{_NUM}\s*,\s*{_NUM}\s*,\s*{_NUM}\s*,\s*{_NUM}\s*\)"
    r"|CLICK\s*\(\s*\d+\s*\)"
    r"""|TYPE\s*\(\s*\d+\s*,\s*["'].*?["']\s*\)"""
    r"""|PRESS\s*\(\s*["'].*?["']\s*\)"""
    r"|FINISH\s*\(\s*\))",
    re.IGNORECASE,
)
_CODE_FENCE_RE = re.compile(r"```[\w]*\n?")


class ActionParseError(ValueError):
    """Raised when executor output is not one of the supported commands."""

    def __init__(self, action: str) -> None:
        super().__init__(f"Unknown action format: {action}")
        self.action = action


@dataclass(frozen=True)
class Finish:
    pass


@dataclass(frozen=True)
class Press:
    key: str


@dataclass(frozen=True)
class ClickId:
    id: int


@dataclass(frozen=True)
class TypeId:
    id: int
    text: str


@dataclass(frozen=True)
class ClickXY:
    x: float
    y: float


@dataclass(frozen=True)
class ClickRect:
    x: float
    y: float
    w: float
    h: float

    def center(self) -> tuple[float, float]:
        return (self.x + self.w / 2, self.y + self.h / 2)


ParsedAction = Union[Finish, Press, ClickId, TypeId, ClickXY, ClickRect]


def extract_action(text: str) -> str:
    """
    Pull the first action command out of free-form LLM output.

    Code fences are stripped first. If no command is found the cleaned text is
    returned unchanged so parse_action() can report it.
    """
    cleaned = _CODE_FENCE_RE.sub("", text or "").strip()
    m = _EXTRACT_RE.search(cleaned)
    return m.group(1) if m else cleaned


def parse_action(action: str) -> ParsedAction:
    s = (action or "").strip()

    if _FINISH_RE.match(s):
        return Finish()

    m = _CLICK_XY_RE.match(s)
    if m:
        return ClickXY(x=float(m.group(1)), y=float(m.group(2)))

    m = _CLICK_RECT_RE.match(s)
    if m:
        return ClickRect(
            x=float(m.group(1)),
            y=float(m.group(2)),
            w=float(m.group(3)),
            h=float(m.group(4)),
        )

    m = _CLICK_RE.match(s)
    if m:
        return ClickId(id=int(m.group(1)))

    m = _TYPE_RE.match(s)
    if m:
        return TypeId(id=int(m.group(1)), text=m.group(2))

    m = _PRESS_RE.match(s)
    if m:
        return Press(key=m.group(1))

    raise ActionParseError(action)
