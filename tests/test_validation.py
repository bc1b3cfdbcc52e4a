"""
Tests for director plan validation.
"""
import copy
import pytest

from ugc_pipeline.plan import (
    PlanValidationError,
    VideoGenerationPlan,
    check_schema,
    max_veo_calls,
    normalize_plan,
    validate_plan,
)


def _talking_head(index, call_id, start, end, script="Short and sweet script that reads at a calm natural pace here"):
    return {
        "segmentIndex": index,
        "veoCallId": call_id,
        "startTime": start,
        "endTime": end,
        "type": "talking_head",
        "script": script,
    }


def _avatar_call(call_id):
    return {
        "callId": call_id,
        "sourceImageType": "avatar",
        "sourceImageRef": "AVATAR_1",
        "prompt": "Woman talking to camera in a bright kitchen with soft morning light",
    }


class TestValidScenario:
    """The reference 16 second plan."""

    def test_valid_plan_has_no_errors(self, valid_plan, director_input):
        """16s, composite_1, two full clips: valid with no duration warning."""
        result = validate_plan(valid_plan, director_input)

        assert result.valid is True
        assert result.errors == []
        assert not any("doesn't match totalDuration" in w for w in result.warnings)
        assert isinstance(result.plan, VideoGenerationPlan)

    def test_validating_twice_is_identical(self, valid_plan, director_input):
        """Validation is deterministic and normalization is idempotent."""
        valid_plan["veoCalls"][0]["sourceImageType"] = "Composite"
        valid_plan["clips"][1]["order"] = 5

        first = validate_plan(valid_plan, director_input)
        second = validate_plan(valid_plan, director_input)

        assert first.to_dict() == second.to_dict()

    def test_raise_for_errors_returns_plan(self, valid_plan, director_input):
        plan = validate_plan(valid_plan, director_input).raise_for_errors()
        assert plan.total_duration == 16


class TestReferenceErrors:
    """Referential integrity checks."""

    def test_dangling_clip_veo_call(self, valid_plan, director_input):
        """A clip pointing at an unknown Veo call is an error naming the clip."""
        valid_plan["clips"][1]["veoCallId"] = "call_9"

        result = validate_plan(valid_plan, director_input)

        assert result.valid is False
        assert any("clip_2" in e and "call_9" in e for e in result.errors)

    def test_dangling_composite_gives_exactly_one_error(self, valid_plan, director_input):
        """A Veo call on a missing composite produces one error and nothing else."""
        valid_plan["veoCalls"][0]["sourceImageRef"] = "composite_2"

        result = validate_plan(valid_plan, director_input)

        assert result.valid is False
        assert result.errors == ["Veo call call_1 references non-existent composite: composite_2"]

    def test_handheld_requires_composite(self, valid_plan, director_input):
        valid_plan["imageGeneration"] = []
        valid_plan["veoCalls"][0] = _avatar_call("call_1")

        result = validate_plan(valid_plan, director_input)

        assert result.valid is False
        assert "Handheld product requires at least one composite image" in result.errors

    def test_invalid_product_image_reference(self, valid_plan, director_input):
        """Only two product images exist, so PRODUCT_3 is out of range."""
        valid_plan["imageGeneration"][0]["productSources"] = ["PRODUCT_3"]

        result = validate_plan(valid_plan, director_input)

        assert "Invalid product image reference: PRODUCT_3 in composite_1" in result.errors

    def test_product_source_veo_call_checked(self, valid_plan, director_input):
        valid_plan["veoCalls"][1].update({"sourceImageType": "product", "sourceImageRef": "PRODUCT_0"})

        result = validate_plan(valid_plan, director_input)

        assert "Veo call call_2 references invalid product image: PRODUCT_0" in result.errors

    def test_unknown_demo(self, valid_plan, director_input):
        valid_plan["segments"][1] = {
            "segmentIndex": 1,
            "veoCallId": "call_2",
            "startTime": 8,
            "endTime": 16,
            "type": "demo_broll",
            "demoId": "demo-404",
            "demoTimestamp": [0, 8],
        }

        result = validate_plan(valid_plan, director_input)

        assert "Invalid demo reference: demo-404 (segment 1)" in result.errors

    def test_unknown_existing_clip(self, valid_plan, director_input):
        valid_plan["segments"][1].update({"type": "product_broll", "existingClipId": "clip-404"})

        result = validate_plan(valid_plan, director_input)

        assert any("clip-404" in e for e in result.errors)

    def test_dangling_broll_call(self, valid_plan, director_input):
        valid_plan["segments"][1]["brollVeoCallId"] = "call_7"

        result = validate_plan(valid_plan, director_input)

        assert "Segment 1 references non-existent brollVeoCallId: call_7" in result.errors

    def test_talking_head_without_script(self, valid_plan, director_input):
        valid_plan["segments"][0]["script"] = "   "

        result = validate_plan(valid_plan, director_input)

        assert "Talking head segment 0 missing script" in result.errors


class TestClipChecks:
    """Clip ranges, order and coverage."""

    def test_end_time_beyond_clip_length(self, valid_plan, director_input):
        """Veo clips are 8 seconds; cutting past that is an error."""
        valid_plan["clips"][0]["endTime"] = 9

        result = validate_plan(valid_plan, director_input)

        assert result.valid is False
        assert any(e.startswith("clips.0") for e in result.errors)

    def test_inverted_range(self, valid_plan, director_input):
        valid_plan["clips"][0].update({"startTime": 6, "endTime": 2})

        result = validate_plan(valid_plan, director_input)

        assert any("invalid time range" in e for e in result.errors)

    def test_non_contiguous_order_is_warning(self, valid_plan, director_input):
        """Gaps in clip order only warn."""
        valid_plan["clips"][1]["order"] = 3

        result = validate_plan(valid_plan, director_input)

        assert result.valid is True
        assert any("Clip order is not sequential" in w for w in result.warnings)

    def test_duration_mismatch_warns(self, valid_plan, director_input):
        valid_plan["clips"][1]["endTime"] = 4

        result = validate_plan(valid_plan, director_input)

        assert result.valid is True
        assert "Total clip duration (12s) doesn't match totalDuration (16s)" in result.warnings


class TestVeoCallBudget:
    """One Veo call per 8 seconds plus one per overlaid talking head."""

    def _plan_with_calls(self, valid_plan, count):
        plan = copy.deepcopy(valid_plan)
        plan.update({"productInteraction": "non-handheld", "imageGeneration": [], "totalDuration": 24})
        plan["veoCalls"] = [_avatar_call(f"call_{i}") for i in range(1, count + 1)]
        plan["segments"] = [
            _talking_head(0, "call_1", 0, 8),
            _talking_head(1, "call_2", 8, 16),
            {
                "segmentIndex": 2,
                "veoCallId": "call_3",
                "startTime": 16,
                "endTime": 24,
                "type": "demo_broll",
                "demoId": "demo-1",
                "demoTimestamp": [0, 8],
                "overlayTalkingHead": True,
            },
        ]
        plan["clips"] = [
            {"clipId": f"clip_{i}", "veoCallId": f"call_{i}", "startTime": 0, "endTime": 8, "order": i - 1}
            for i in range(1, 4)
        ]
        return plan

    def test_four_calls_allowed_for_24s_with_overlay(self, valid_plan, director_input):
        plan = self._plan_with_calls(valid_plan, 4)

        result = validate_plan(plan, director_input)

        assert max_veo_calls(result.plan) == 4
        assert not any("Too many Veo calls" in e for e in result.errors)

    def test_five_calls_rejected(self, valid_plan, director_input):
        plan = self._plan_with_calls(valid_plan, 5)

        result = validate_plan(plan, director_input)

        assert result.valid is False
        assert "Too many Veo calls: 5. Max allowed for 24s with 1 overlay talking heads is 4" in result.errors


class TestPacing:
    """Script speed heuristics for talking heads."""

    def _plan_with_script(self, valid_plan, words):
        valid_plan["segments"][0] = _talking_head(0, "call_1", 0, 4, " ".join(["word"] * words))
        valid_plan["segments"][1] = _talking_head(1, "call_2", 4, 16)
        return valid_plan

    def test_twenty_words_in_four_seconds_too_fast(self, valid_plan, director_input):
        result = validate_plan(self._plan_with_script(valid_plan, 20), director_input)

        assert "Segment 0 script may be too fast: 5.0 words/sec" in result.warnings

    def test_eight_words_in_four_seconds_ok(self, valid_plan, director_input):
        result = validate_plan(self._plan_with_script(valid_plan, 8), director_input)

        assert not any(w.startswith("Segment 0 script") for w in result.warnings)

    def test_zero_length_segment_warns_instead_of_dividing(self, valid_plan, director_input):
        valid_plan["segments"][0]["endTime"] = 0

        result = validate_plan(valid_plan, director_input)

        assert any("non-positive duration" in w for w in result.warnings)


class TestNormalization:
    """Planner output coercion before schema checks."""

    def test_case_variants_folded(self, valid_plan):
        valid_plan["veoCalls"][0]["sourceImageType"] = " COMPOSITE "

        errors = normalize_plan(valid_plan)

        assert errors == []
        assert valid_plan["veoCalls"][0]["sourceImageType"] == "composite"

    def test_type_inferred_from_ref(self, valid_plan):
        valid_plan["veoCalls"][1]["sourceImageType"] = "image"

        assert normalize_plan(valid_plan) == []
        assert valid_plan["veoCalls"][1]["sourceImageType"] == "avatar"

    def test_unresolvable_type_reported(self, valid_plan, director_input):
        valid_plan["veoCalls"][1].update({"sourceImageType": "photo", "sourceImageRef": "IMG_1"})

        result = validate_plan(valid_plan, director_input)

        assert result.valid is False
        assert any('Invalid sourceImageType "photo" for veoCall call_2' in e for e in result.errors)

    def test_schema_errors_have_paths(self, valid_plan):
        valid_plan["totalDuration"] = 30

        plan, errors = check_schema(valid_plan)

        assert plan is None
        assert any(e.startswith("totalDuration") for e in errors)

    def test_raise_for_errors(self, valid_plan, director_input):
        valid_plan["imageGeneration"] = []

        with pytest.raises(PlanValidationError) as exc_info:
            validate_plan(valid_plan, director_input).raise_for_errors()

        assert exc_info.value.errors


class TestStoredPlan:
    """Plans are persisted as JSON and reloaded by every later stage."""

    def _with_demo_segment(self, valid_plan):
        valid_plan["segments"].append({
            "segmentIndex": 2,
            "veoCallId": None,
            "startTime": 12,
            "endTime": 16,
            "type": "demo_broll",
            "demoId": "demo-1",
        })
        return valid_plan

    def test_null_veo_call_id_survives_reload(self, valid_plan, director_input):
        result = validate_plan(self._with_demo_segment(valid_plan), director_input)
        assert result.valid is True

        stored = result.plan.to_json_dict()
        reloaded = VideoGenerationPlan.model_validate(stored)

        assert stored["segments"][2]["veoCallId"] is None
        assert reloaded.segments[2].veo_call_id is None
        assert reloaded.segments[2].demo_id == "demo-1"

    def test_unset_optionals_not_written(self, valid_plan):
        stored = VideoGenerationPlan.model_validate(valid_plan).to_json_dict()

        assert "demoId" not in stored["segments"][0]
        assert stored == valid_plan
