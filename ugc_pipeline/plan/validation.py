"""
Director plan validation.

Runs in three phases so each can be exercised on its own:

1. normalize_plan  - coerce near-valid planner output in place
2. check_schema    - structural validation through the pydantic models
3. check_semantics - referential integrity plus Veo call and pacing checks

Problems are returned as data. Errors block generation, warnings are
informational only.
"""
import math
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union

from pydantic import ValidationError

from .models import (
    CLIP_MAX_SECONDS,
    DirectorInput,
    ProductInteraction,
    SegmentType,
    SourceImageType,
    VideoGenerationPlan,
    product_image_index,
)

logger = logging.getLogger(__name__)

DURATION_TOLERANCE_SECONDS = 0.5
MIN_WORDS_PER_SECOND = 1.5
MAX_WORDS_PER_SECOND = 4.0


class PlanValidationError(Exception):
    """Raised when a caller chooses to block on an invalid plan."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Director plan validation failed: {', '.join(self.errors)}")


@dataclass
class PlanValidationResult:
    """Outcome of validate_plan."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    plan: Optional[VideoGenerationPlan] = None

    def raise_for_errors(self) -> VideoGenerationPlan:
        if not self.valid or self.plan is None:
            raise PlanValidationError(self.errors)
        return self.plan

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
        }


def validate_plan(
    plan: Union[dict, VideoGenerationPlan],
    director_input: DirectorInput,
) -> PlanValidationResult:
    """
    Validate a director plan against the catalog it was planned from.

    Args:
        plan: Raw planner JSON (normalized in place) or a parsed plan
        director_input: Product/avatar/demo/clip catalog given to the director

    Returns:
        PlanValidationResult; ``plan`` is set whenever the schema passed
    """
    errors: List[str] = []
    warnings: List[str] = []

    if isinstance(plan, VideoGenerationPlan):
        parsed = plan
    else:
        errors.extend(normalize_plan(plan))

        parsed, schema_errors = check_schema(plan)
        if parsed is None:
            errors.extend(schema_errors)
            logger.info(f"[VALIDATION] Plan rejected by schema: {len(errors)} errors")
            return PlanValidationResult(valid=False, errors=errors, warnings=warnings)

    semantic_errors, semantic_warnings = check_semantics(parsed, director_input)
    errors.extend(semantic_errors)
    warnings.extend(semantic_warnings)

    valid = len(errors) == 0
    logger.info(
        f"[VALIDATION] Plan {'accepted' if valid else 'rejected'}: "
        f"{len(errors)} errors, {len(warnings)} warnings"
    )
    return PlanValidationResult(valid=valid, errors=errors, warnings=warnings, plan=parsed)


# ---------------------------------------------------------------------------
# Phase 1: normalization
# ---------------------------------------------------------------------------

def normalize_plan(raw: Any) -> List[str]:
    """
    Fix common planner inconsistencies in place.

    Only ``veoCalls[].sourceImageType`` is coerced: case and whitespace
    variants are folded, anything else is inferred from the
    ``sourceImageRef`` prefix. Unresolvable values are reported, never guessed.
    """
    errors: List[str] = []
    if not isinstance(raw, dict):
        return errors

    veo_calls = raw.get("veoCalls")
    if not isinstance(veo_calls, list):
        return errors

    for call in veo_calls:
        if not isinstance(call, dict):
            continue

        source_type = call.get("sourceImageType")
        if isinstance(source_type, str):
            try:
                call["sourceImageType"] = SourceImageType.from_string(source_type).value
                continue
            except ValueError:
                pass

        ref = call.get("sourceImageRef")
        inferred = SourceImageType.infer_from_ref(ref if isinstance(ref, str) else None)
        if inferred is not None:
            logger.debug(
                f"[VALIDATION] Inferred sourceImageType={inferred.value} "
                f"for {call.get('callId')} from {ref}"
            )
            call["sourceImageType"] = inferred.value
        else:
            errors.append(
                f'Invalid sourceImageType "{source_type}" for veoCall {call.get("callId")}. '
                f'Expected one of "avatar"|"composite"|"product". sourceImageRef: {ref}'
            )

    return errors


# ---------------------------------------------------------------------------
# Phase 2: schema
# ---------------------------------------------------------------------------

def check_schema(raw: Any) -> Tuple[Optional[VideoGenerationPlan], List[str]]:
    """Parse raw planner output. Returns (plan, []) or (None, errors)."""
    try:
        return VideoGenerationPlan.model_validate(raw), []
    except ValidationError as e:
        return None, [_format_schema_error(err) for err in e.errors()]


def _format_schema_error(err: dict) -> str:
    path = ".".join(str(part) for part in err.get("loc", ())) or "plan"
    return f"{path}: {err.get('msg', 'invalid value')}"


# ---------------------------------------------------------------------------
# Phase 3: semantics
# ---------------------------------------------------------------------------

def check_semantics(
    plan: VideoGenerationPlan,
    director_input: DirectorInput,
) -> Tuple[List[str], List[str]]:
    """Run every semantic check. Returns (errors, warnings)."""
    errors: List[str] = []
    warnings: List[str] = []

    errors.extend(_check_broll_call_refs(plan))
    errors.extend(_check_veo_call_budget(plan))
    errors.extend(_check_composite_refs(plan))
    errors.extend(_check_product_image_refs(plan, director_input))
    errors.extend(_check_demo_refs(plan, director_input))
    errors.extend(_check_existing_clip_refs(plan, director_input))
    errors.extend(_check_talking_head_scripts(plan))
    errors.extend(_check_handheld_composites(plan))
    errors.extend(_check_clip_ranges(plan))

    warnings.extend(_check_clip_coverage(plan))
    warnings.extend(_check_clip_order(plan))
    warnings.extend(_check_script_pacing(plan))

    return errors, warnings


def max_veo_calls(plan: VideoGenerationPlan) -> int:
    """One call per 8 seconds of runtime, plus one per overlaid talking head."""
    overlay_count = sum(1 for s in plan.segments if s.overlay_talking_head)
    return math.ceil(plan.total_duration / CLIP_MAX_SECONDS) + overlay_count


def _check_broll_call_refs(plan: VideoGenerationPlan) -> List[str]:
    call_ids = {c.call_id for c in plan.veo_calls}
    return [
        f"Segment {s.segment_index} references non-existent brollVeoCallId: {s.broll_veo_call_id}"
        for s in plan.segments
        if s.broll_veo_call_id and s.broll_veo_call_id not in call_ids
    ]


def _check_veo_call_budget(plan: VideoGenerationPlan) -> List[str]:
    allowed = max_veo_calls(plan)
    if len(plan.veo_calls) <= allowed:
        return []
    overlay_count = sum(1 for s in plan.segments if s.overlay_talking_head)
    return [
        f"Too many Veo calls: {len(plan.veo_calls)}. Max allowed for {plan.total_duration}s "
        f"with {overlay_count} overlay talking heads is {allowed}"
    ]


def _check_composite_refs(plan: VideoGenerationPlan) -> List[str]:
    composite_ids = {task.composite_id for task in plan.image_generation}
    return [
        f"Veo call {call.call_id} references non-existent composite: {call.source_image_ref}"
        for call in plan.veo_calls
        if call.source_image_type == SourceImageType.COMPOSITE
        and call.source_image_ref not in composite_ids
    ]


def _is_valid_product_ref(ref: str, image_count: int) -> bool:
    index = product_image_index(ref)
    return index is not None and 0 <= index < image_count


def _check_product_image_refs(plan: VideoGenerationPlan, director_input: DirectorInput) -> List[str]:
    errors = []
    image_count = len(director_input.product.images)

    for task in plan.image_generation:
        for ref in task.product_sources:
            if not _is_valid_product_ref(ref, image_count):
                errors.append(f"Invalid product image reference: {ref} in {task.composite_id}")

    for call in plan.veo_calls:
        if call.source_image_type == SourceImageType.PRODUCT and not _is_valid_product_ref(
            call.source_image_ref, image_count
        ):
            errors.append(
                f"Veo call {call.call_id} references invalid product image: {call.source_image_ref}"
            )

    return errors


def _check_demo_refs(plan: VideoGenerationPlan, director_input: DirectorInput) -> List[str]:
    demo_ids = {d.id for d in director_input.demos}
    return [
        f"Invalid demo reference: {s.demo_id} (segment {s.segment_index})"
        for s in plan.segments
        if s.type == SegmentType.DEMO_BROLL and s.demo_id and s.demo_id not in demo_ids
    ]


def _check_existing_clip_refs(plan: VideoGenerationPlan, director_input: DirectorInput) -> List[str]:
    clip_ids = {c.id for c in director_input.existing_clips}
    return [
        f"Invalid existing clip reference: {s.existing_clip_id} (segment {s.segment_index})"
        for s in plan.segments
        if s.existing_clip_id and s.existing_clip_id not in clip_ids
    ]


def _check_talking_head_scripts(plan: VideoGenerationPlan) -> List[str]:
    return [
        f"Talking head segment {s.segment_index} missing script"
        for s in plan.segments
        if s.type == SegmentType.TALKING_HEAD and not (s.script or "").strip()
    ]


def _check_handheld_composites(plan: VideoGenerationPlan) -> List[str]:
    if plan.product_interaction == ProductInteraction.HANDHELD and not plan.image_generation:
        return ["Handheld product requires at least one composite image"]
    return []


def _check_clip_ranges(plan: VideoGenerationPlan) -> List[str]:
    errors = []
    call_ids = {c.call_id for c in plan.veo_calls}

    for clip in plan.clips:
        if clip.veo_call_id not in call_ids:
            errors.append(f"Clip {clip.clip_id} references non-existent Veo call: {clip.veo_call_id}")
        if clip.start_time >= clip.end_time:
            errors.append(
                f"Clip {clip.clip_id} has invalid time range: startTime ({clip.start_time}) "
                f"must be less than endTime ({clip.end_time})"
            )
        if clip.end_time > CLIP_MAX_SECONDS:
            errors.append(
                f"Clip {clip.clip_id} has endTime ({clip.end_time}) greater than {CLIP_MAX_SECONDS} seconds"
            )

    return errors


def _check_clip_coverage(plan: VideoGenerationPlan) -> List[str]:
    total = sum(clip.duration for clip in plan.clips)
    if abs(total - plan.total_duration) > DURATION_TOLERANCE_SECONDS:
        return [
            f"Total clip duration ({total:g}s) doesn't match totalDuration ({plan.total_duration}s)"
        ]
    return []


def _check_clip_order(plan: VideoGenerationPlan) -> List[str]:
    orders = [clip.order for clip in plan.clips_in_order()]
    if orders != list(range(len(orders))):
        return [
            f"Clip order is not sequential: expected 0..{len(orders) - 1}, found {orders}"
        ]
    return []


def _check_script_pacing(plan: VideoGenerationPlan) -> List[str]:
    warnings = []

    for segment in plan.segments:
        if segment.type != SegmentType.TALKING_HEAD or not segment.script:
            continue

        duration = segment.duration
        if duration <= 0:
            warnings.append(
                f"Segment {segment.segment_index} has non-positive duration ({duration:g}s); "
                f"script pacing not checked"
            )
            continue

        wps = len(segment.script.split()) / duration
        if wps > MAX_WORDS_PER_SECOND:
            warnings.append(f"Segment {segment.segment_index} script may be too fast: {wps:.1f} words/sec")
        elif wps < MIN_WORDS_PER_SECOND:
            warnings.append(f"Segment {segment.segment_index} script may be too slow: {wps:.1f} words/sec")

    return warnings
