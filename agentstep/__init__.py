"""
agentstep - verification-first browser agent steps.

One step = snapshot (with limit ramp) -> one executor action -> predicate
verification, with a bounded vision-executor fallback.
"""

from .actions import ActionParseError, extract_action, parse_action
from .agent_runtime import AgentRuntime, AssertionHandle
from .backends import (
    BrowserBackend,
    ExtensionNotLoadedError,
    PlaywrightBackend,
    SnapshotError,
)
from .executor_selection import ExecutorChoice, select_executor
from .llm_provider import LLMProvider, LLMResponse, OpenAIProvider
from .models import (
    BBox,
    Element,
    Snapshot,
    SnapshotDiagnostics,
    SnapshotOptions,
    StepHookContext,
    Viewport,
    VisualCues,
)
from .runtime_agent import (
    ActionExecutionError,
    RuntimeAgent,
    RuntimeStep,
    StepPhase,
    StepVerification,
)
from .snapshot_ramp import SnapshotRampConfig, next_limit
from .tracing import InMemoryTraceSink, JsonlTraceSink, Tracer, TraceSink
from .verification import (
    AssertContext,
    AssertOutcome,
    Predicate,
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

__version__ = "0.1.0"

__all__ = [
    "ActionExecutionError",
    "ActionParseError",
    "AgentRuntime",
    "AssertContext",
    "AssertOutcome",
    "AssertionHandle",
    "BBox",
    "BrowserBackend",
    "Element",
    "ExecutorChoice",
    "ExtensionNotLoadedError",
    "InMemoryTraceSink",
    "JsonlTraceSink",
    "LLMProvider",
    "LLMResponse",
    "OpenAIProvider",
    "PlaywrightBackend",
    "Predicate",
    "RuntimeAgent",
    "RuntimeStep",
    "Snapshot",
    "SnapshotDiagnostics",
    "SnapshotError",
    "SnapshotOptions",
    "SnapshotRampConfig",
    "StepHookContext",
    "StepPhase",
    "StepVerification",
    "TraceSink",
    "Tracer",
    "Viewport",
    "VisualCues",
    "all_of",
    "any_of",
    "by_role",
    "by_text",
    "custom",
    "element_count",
    "exists",
    "extract_action",
    "next_limit",
    "not_exists",
    "parse_action",
    "select_executor",
    "url_contains",
    "url_matches",
]
