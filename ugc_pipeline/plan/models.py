"""
Pydantic models for director plans.

The director (an LLM planner) emits camelCase JSON; models accept either
the alias or the field name and dump by alias for persistence.
"""
import re
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CLIP_MAX_SECONDS = 8
ALLOWED_TOTAL_DURATIONS = (16, 20, 24)

_PRODUCT_REF_RE = re.compile(r"^PRODUCT_(\d+)$", re.IGNORECASE)


class ProductInteraction(str, Enum):
    HANDHELD = "handheld"
    NON_HANDHELD = "non-handheld"


class SegmentType(str, Enum):
    TALKING_HEAD = "talking_head"
    DEMO_BROLL = "demo_broll"
    PRODUCT_BROLL = "product_broll"
    VIRTUAL_BROLL = "virtual_broll"


class SourceImageType(str, Enum):
    """Image a Veo call animates from."""
    AVATAR = "avatar"
    COMPOSITE = "composite"
    PRODUCT = "product"

    @classmethod
    def from_string(cls, value: str) -> "SourceImageType":
        """Get source type from a loosely formatted string."""
        value_lower = value.lower().strip()
        for source_type in cls:
            if source_type.value == value_lower:
                return source_type
        raise ValueError(f"Unknown source image type: {value}")

    @classmethod
    def infer_from_ref(cls, ref: Optional[str]) -> Optional["SourceImageType"]:
        """Infer the type from the AVATAR_n / composite_n / PRODUCT_n convention."""
        if not ref:
            return None
        ref_lower = ref.strip().lower()
        for source_type in cls:
            if ref_lower.startswith(source_type.value):
                return source_type
        return None


def product_image_index(ref: str) -> Optional[int]:
    """Zero-based product image index for a PRODUCT_n reference, or None."""
    match = _PRODUCT_REF_RE.match(ref.strip()) if ref else None
    if not match:
        return None
    return int(match.group(1)) - 1


class PlanModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImageGenerationTask(PlanModel):
    composite_id: str
    avatar_source: str
    product_sources: list[str]
    prompt: str = Field(..., min_length=20)
    description: str = Field(..., min_length=10)

    @property
    def product_image_indices(self) -> list[int]:
        return [idx for idx in (product_image_index(r) for r in self.product_sources) if idx is not None]


class VideoSegment(PlanModel):
    segment_index: int
    veo_call_id: Optional[str]
    start_time: float
    end_time: float
    type: SegmentType

    # talking_head
    script: Optional[str] = None
    setting: Optional[str] = None
    action: Optional[str] = None

    # demo_broll
    demo_id: Optional[str] = None
    demo_timestamp: Optional[tuple[float, float]] = None
    overlay_talking_head: Optional[bool] = None

    # product_broll / virtual_broll
    product_image_index: Optional[int] = None
    broll_prompt: Optional[str] = None
    existing_clip_id: Optional[str] = None
    broll_veo_call_id: Optional[str] = None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class VeoCall(PlanModel):
    call_id: str
    source_image_type: SourceImageType
    source_image_ref: str
    prompt: str = Field(..., min_length=50)


class VideoClip(PlanModel):
    clip_id: str
    veo_call_id: str
    start_time: float = Field(..., ge=0, le=CLIP_MAX_SECONDS)
    end_time: float = Field(..., ge=0, le=CLIP_MAX_SECONDS)
    order: int = Field(..., ge=0)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class VideoGenerationPlan(PlanModel):
    product_interaction: ProductInteraction
    interaction_reasoning: str = Field(..., min_length=10)
    image_generation: list[ImageGenerationTask]
    total_duration: Literal[16, 20, 24]
    segments: list[VideoSegment]
    veo_calls: list[VeoCall]
    clips: list[VideoClip]

    def clips_in_order(self) -> list[VideoClip]:
        return sorted(self.clips, key=lambda c: c.order)

    def get_veo_call(self, call_id: str) -> Optional[VeoCall]:
        for call in self.veo_calls:
            if call.call_id == call_id:
                return call
        return None

    def get_image_task(self, composite_id: str) -> Optional[ImageGenerationTask]:
        for task in self.image_generation:
            if task.composite_id == composite_id:
                return task
        return None

    def to_json_dict(self) -> dict:
        """
        Serialize with planner (camelCase) keys.

        Unset optionals are dropped; explicit nulls are kept because
        ``veoCallId`` is required even when it is null.
        """
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


# ---------------------------------------------------------------------------
# Director input: the catalog the planner chooses from
# ---------------------------------------------------------------------------

class DirectorModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ProductContext(DirectorModel):
    id: str
    name: str
    price: Optional[float] = None
    description: Optional[str] = None
    hooks: tuple[str, ...] = ()
    images: tuple[str, ...] = ()


class AvatarContext(DirectorModel):
    id: str
    image_url: str


class DemoContext(DirectorModel):
    id: str
    description: Optional[str] = None


class ExistingClipContext(DirectorModel):
    id: str
    description: str
    duration: float
    type: str


class Preferences(DirectorModel):
    tone: str
    target_duration: Literal[16, 20, 24] = 24


class DirectorInput(DirectorModel):
    product: ProductContext
    avatar: AvatarContext
    demos: tuple[DemoContext, ...] = ()
    existing_clips: tuple[ExistingClipContext, ...] = ()
    preferences: Preferences
