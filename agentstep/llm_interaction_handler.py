"""
Structured executor prompting: serialize a snapshot for a text LLM and read
back a single action command.
"""

from __future__ import annotations

import logging

from .actions import extract_action
from .llm_provider import LLMProvider, LLMResponse
from .models import Snapshot

logger = logging.getLogger(__name__)

STRUCTURED_SYSTEM_PROMPT = """You are an AI web automation agent.

GOAL: {goal}

VISIBLE ELEMENTS (sorted by importance):
{dom_context}

VISUAL CUES EXPLAINED:
After the text, you may see visual cues in curly braces like {{CLICKABLE}} or {{PRIMARY,CLICKABLE,color:white}}:
- PRIMARY: Main call-to-action element on the page
- CLICKABLE: Element is clickable/interactive
- color:X: Background color name (e.g., color:white, color:blue)

ELEMENT FORMAT EXPLAINED:
[ID] <role> "text" {{cues}} @ (x,y) size:WxH importance:score [status]
- [ID]: use this EXACT number in CLICK/TYPE commands
- <role>: Element type (button, link, textbox, etc.)
- "text": Visible text content (truncated with "..." if long)
- @ (x,y): Element position in pixels from top-left corner
- size:WxH: Element dimensions in pixels
- importance: Relevance score (higher = more important)
- [status]: Optional flags (not_in_viewport, occluded)

CRITICAL RESPONSE FORMAT:
You MUST respond with ONLY ONE of these exact action formats:
- CLICK(id) - Click element by ID
- TYPE(id, "text") - Type text into element
- PRESS("key") - Press keyboard key (Enter, Escape, Tab, ArrowDown, etc)
- FINISH() - Task complete

DO NOT include any explanation, reasoning, or markdown.
"""

STRUCTURED_USER_PROMPT = "Return the single action command:"


class LLMInteractionHandler:
    """Builds the DOM context prompt, queries the executor, extracts the action."""

    def __init__(self, llm: LLMProvider, max_text_len: int = 50) -> None:
        self.llm = llm
        self.max_text_len = max_text_len

    def build_context(self, snap: Snapshot, goal: str | None = None) -> str:
        """
        Format snapshot elements, one per line:
        [ID] <role> "text" {cues} @ (x,y) size:WxH importance:score [status]
        """
        _ = goal
        lines: list[str] = []
        for el in snap.elements:
            cues: list[str] = []
            if el.visual_cues.is_primary:
                cues.append("PRIMARY")
            if el.visual_cues.is_clickable:
                cues.append("CLICKABLE")
            if el.visual_cues.background_color_name:
                cues.append(f"color:{el.visual_cues.background_color_name}")
            cues_str = f" {{{','.join(cues)}}}" if cues else ""

            text_preview = ""
            if el.text:
                if len(el.text) > self.max_text_len:
                    text_preview = f'"{el.text[: self.max_text_len]}..."'
                else:
                    text_preview = f'"{el.text}"'

            status: list[str] = []
            if not el.in_viewport:
                status.append("not_in_viewport")
            if el.is_occluded:
                status.append("occluded")
            status_str = f" [{','.join(status)}]" if status else ""

            importance = int(el.importance) if float(el.importance).is_integer() else el.importance
            lines.append(
                f"[{el.id}] <{el.role}> {text_preview}{cues_str} "
                f"@ ({int(el.bbox.x)},{int(el.bbox.y)}) "
                f"size:{int(el.bbox.width)}x{int(el.bbox.height)} "
                f"importance:{importance}{status_str}"
            )
        return "\n".join(lines)

    def query_llm(self, dom_context: str, goal: str) -> LLMResponse:
        """
        Ask the executor for one action. Provider errors propagate to the caller.
        """
        system_prompt = STRUCTURED_SYSTEM_PROMPT.format(goal=goal, dom_context=dom_context)
        response = self.llm.generate(system_prompt, STRUCTURED_USER_PROMPT, temperature=0.0)
        logger.debug("structured executor %s answered: %r", self.llm.model_name, response.content)
        return response

    def extract_action(self, content: str) -> str:
        return extract_action(content)
