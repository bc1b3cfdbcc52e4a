"""
Tests for the director client and plan models.
"""
import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from ugc_pipeline.plan import (
    ExistingClipContext,
    SourceImageType,
    VideoGenerationPlan,
    product_image_index,
)
from ugc_pipeline.plan.director import DirectorClient, build_prompt, extract_json
from ugc_pipeline.providers import GenerationFailure


class TestExtractJson:
    """Pulling the plan object out of model text."""

    def test_fenced_block(self):
        text = 'Here is the plan:\n```json\n{"totalDuration": 16}\n```\nEnjoy!'
        assert extract_json(text) == {"totalDuration": 16}

    def test_bare_object(self):
        assert extract_json('Sure. {"a": {"b": 1}} Done.') == {"a": {"b": 1}}

    def test_no_json(self):
        with pytest.raises(GenerationFailure, match="Could not extract JSON"):
            extract_json("I cannot help with that.")

    def test_invalid_json(self):
        with pytest.raises(GenerationFailure, match="invalid JSON"):
            extract_json("```json\n{totalDuration: 16}\n```")

    def test_array_is_rejected(self):
        with pytest.raises(GenerationFailure, match="not a JSON object"):
            extract_json("```json\n[1, 2]\n```")


class TestDirectorClient:
    """Prompting and parsing."""

    def test_prompt_lists_catalog(self, director_input):
        prompt = build_prompt(director_input)

        assert "Glow Serum" in prompt
        assert "PRODUCT_1..PRODUCT_2" in prompt
        assert "(ID: demo-1)" in prompt
        assert "No existing clips available." in prompt
        assert "Target duration: 16 seconds" in prompt

    def test_prompt_lists_existing_clips(self, director_input):
        with_clips = director_input.model_copy(update={
            "existing_clips": (ExistingClipContext(id="idx-1", description="Serum drip", duration=4.0,
                                                   type="product_broll"),),
        })

        assert "- idx-1: Serum drip (4s, product_broll)" in build_prompt(with_clips)

    def test_plan_returns_raw_dict(self, director_input, valid_plan):
        gemini = MagicMock()
        gemini.generate_text = AsyncMock(return_value=f"```json\n{json.dumps(valid_plan)}\n```")

        plan = asyncio.run(DirectorClient(gemini).plan(director_input))

        assert plan == valid_plan
        assert gemini.generate_text.await_args.kwargs["temperature"] == 0.7


class TestPlanModels:
    """Schema helpers."""

    def test_camel_case_round_trip(self, valid_plan):
        plan = VideoGenerationPlan.model_validate(valid_plan)

        assert plan.veo_calls[0].source_image_type == SourceImageType.COMPOSITE
        assert plan.to_json_dict()["veoCalls"][0]["callId"] == "call_1"

    def test_lookup_helpers(self, valid_plan):
        plan = VideoGenerationPlan.model_validate(valid_plan)

        assert plan.get_veo_call("call_2").source_image_ref == "AVATAR_1"
        assert plan.get_veo_call("call_9") is None
        assert plan.get_image_task("composite_1").product_image_indices == [0]

    @pytest.mark.parametrize("ref,expected", [
        ("PRODUCT_1", 0),
        ("product_3", 2),
        ("AVATAR_1", None),
        ("PRODUCT_x", None),
    ])
    def test_product_image_index(self, ref, expected):
        assert product_image_index(ref) == expected

    def test_infer_source_type_from_ref(self):
        assert SourceImageType.infer_from_ref("composite_2") == SourceImageType.COMPOSITE
        assert SourceImageType.infer_from_ref("IMG_1") is None
