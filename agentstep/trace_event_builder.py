"""
Shared shaping of trace event payloads.

The step_end payload is consumed by downstream timeline tooling, so its keys
are kept stable: `pre`, `llm`, `exec`, `post`, `verify`.
"""

from __future__ import annotations

import hashlib
from typing import Any

from .llm_provider import LLMResponse
from .models import Snapshot


class TraceEventBuilder:
    @staticmethod
    def compute_hash(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    @staticmethod
    def build_snapshot_digest(snapshot: Snapshot | None) -> str | None:
        if snapshot is None:
            return None
        return "sha256:" + TraceEventBuilder.compute_hash(f"{snapshot.url}{snapshot.timestamp or ''}")

    @staticmethod
    def build_llm_data(response: LLMResponse | None) -> dict[str, Any]:
        if response is None:
            return {}
        text = response.content or ""
        return {
            "model": response.model_name,
            "response_text": text,
            "response_hash": "sha256:" + TraceEventBuilder.compute_hash(text),
            "usage": {
                "prompt_tokens": response.prompt_tokens or 0,
                "completion_tokens": response.completion_tokens or 0,
                "total_tokens": response.total_tokens or 0,
            },
        }

    @staticmethod
    def build_step_end_event(
        *,
        step_id: str,
        step_index: int,
        goal: str,
        attempt: int,
        pre_url: str,
        post_url: str,
        snapshot_digest: str | None,
        llm_data: dict[str, Any],
        exec_data: dict[str, Any],
        verify_data: dict[str, Any],
        pre_elements: list[dict[str, Any]] | None = None,
        assertions: list[dict[str, Any]] | None = None,
        post_snapshot_digest: str | None = None,
    ) -> dict[str, Any]:
        """
        Build the step_end payload.

        `assertions` are the step's terminal assertion records; intermediate
        eventually() attempts are never included here.
        """
        pre: dict[str, Any] = {"url": pre_url, "snapshot_digest": snapshot_digest}
        if pre_elements is not None:
            pre["elements"] = pre_elements

        verify = dict(verify_data)
        signals = dict(verify.get("signals") or {})
        if assertions is not None:
            signals["assertions"] = list(assertions)
        verify["signals"] = signals

        return {
            "v": 1,
            "step_id": step_id,
            "step_index": step_index,
            "goal": goal,
            "attempt": attempt,
            "pre": pre,
            "llm": llm_data,
            "exec": exec_data,
            "post": {"url": post_url, "snapshot_digest": post_snapshot_digest},
            "verify": verify,
        }
