"""
Pydantic models for agentstep - snapshot, element and hook payloads.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class BBox(BaseModel):
    """Bounding box coordinates"""
    x: float
    y: float
    width: float
    height: float

    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)


class Viewport(BaseModel):
    """Viewport dimensions"""
    width: float
    height: float


class VisualCues(BaseModel):
    """Visual analysis cues"""
    is_primary: bool
    background_color_name: Optional[str] = None
    is_clickable: bool


class Element(BaseModel):
    """Element from snapshot. `id` is only meaningful inside its own snapshot."""
    id: int
    role: str
    text: Optional[str] = None
    name: Optional[str] = None
    importance: float
    bbox: BBox
    visual_cues: VisualCues
    in_viewport: bool = True
    is_occluded: bool = False
    z_index: int = 0


class SnapshotDiagnostics(BaseModel):
    """Extraction quality signals reported by the snapshot source"""
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)
    metrics: Optional[Dict[str, Any]] = None


class Snapshot(BaseModel):
    """Point-in-time extraction of a page's interactive elements"""
    status: Literal["success", "error"]
    timestamp: Optional[str] = None
    url: str
    viewport: Optional[Viewport] = None
    elements: List[Element]
    diagnostics: Optional[SnapshotDiagnostics] = None
    screenshot: Optional[str] = None
    screenshot_format: Optional[Literal["png", "jpeg"]] = None
    error: Optional[str] = None

    @property
    def confidence(self) -> Optional[float]:
        if self.diagnostics is None:
            return None
        return self.diagnostics.confidence


class ScreenshotConfig(BaseModel):
    """Screenshot format configuration"""
    format: Literal['png', 'jpeg'] = 'png'
    quality: Optional[int] = Field(None, ge=1, le=100)  # Only for JPEG (1-100)


class SnapshotFilter(BaseModel):
    """Filter options for snapshot elements"""
    min_area: Optional[int] = Field(None, ge=0)
    allowed_roles: Optional[List[str]] = None
    min_z_index: Optional[int] = None


class SnapshotOptions(BaseModel):
    """
    Configuration for snapshot calls.

    `limit` controls how many elements the snapshot source ranks and returns;
    the step runner ramps it between retries.
    """
    screenshot: Union[bool, ScreenshotConfig] = False
    limit: int = Field(50, ge=1, le=500)
    filter: Optional[SnapshotFilter] = None
    goal: Optional[str] = None
    show_overlay: bool = False


class LLMStepData(BaseModel):
    """LLM interaction summary attached to step_end events"""
    model: Optional[str] = None
    response_text: Optional[str] = None
    response_hash: Optional[str] = None
    usage: Dict[str, int] = Field(default_factory=dict)

    def to_trace_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class StepHookContext(BaseModel):
    """Payload handed to on_step_start / on_step_end hooks"""
    step_id: str
    step_index: int
    goal: str
    attempt: int = 0
    url: Optional[str] = None
    success: Optional[bool] = None
    outcome: Optional[str] = None
    error: Optional[str] = None
