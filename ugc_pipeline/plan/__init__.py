"""
Director plans: schema, validation and the planner client.
"""
from .models import (
    CLIP_MAX_SECONDS,
    ALLOWED_TOTAL_DURATIONS,
    ProductInteraction,
    SegmentType,
    SourceImageType,
    ImageGenerationTask,
    VideoSegment,
    VeoCall,
    VideoClip,
    VideoGenerationPlan,
    ProductContext,
    AvatarContext,
    DemoContext,
    ExistingClipContext,
    Preferences,
    DirectorInput,
    product_image_index,
)
from .validation import (
    PlanValidationError,
    PlanValidationResult,
    validate_plan,
    normalize_plan,
    check_schema,
    check_semantics,
    max_veo_calls,
)

__all__ = [
    "CLIP_MAX_SECONDS",
    "ALLOWED_TOTAL_DURATIONS",
    "ProductInteraction",
    "SegmentType",
    "SourceImageType",
    "ImageGenerationTask",
    "VideoSegment",
    "VeoCall",
    "VideoClip",
    "VideoGenerationPlan",
    "ProductContext",
    "AvatarContext",
    "DemoContext",
    "ExistingClipContext",
    "Preferences",
    "DirectorInput",
    "product_image_index",
    "PlanValidationError",
    "PlanValidationResult",
    "validate_plan",
    "normalize_plan",
    "check_schema",
    "check_semantics",
    "max_veo_calls",
]
