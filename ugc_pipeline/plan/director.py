"""
Director client.

Asks the Gemini text model for a VideoGenerationPlan and extracts the
JSON object from its reply. The reply is returned raw so it can go
through the validator, which normalizes and checks it.
"""
import re
import json
import logging
from typing import Optional

from ..providers.exceptions import GenerationFailure
from ..providers.gemini import GeminiClient
from .models import DirectorInput

logger = logging.getLogger(__name__)

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

DIRECTOR_PROMPT = """You are a creative director for short UGC-style product videos.

Product: {product_name}
Price: {product_price}
Description: {product_description}
Hooks: {product_hooks}
Product images are labeled PRODUCT_1..PRODUCT_{image_count}. The avatar photo is AVATAR_1.

Demo footage:
{demos}

Reusable b-roll clips:
{existing_clips}

Tone: {tone}
Target duration: {target_duration} seconds (16, 20 or 24).

Each Veo call produces one 8 second clip. Use at most one call per 8 seconds of
runtime plus one per segment with overlayTalkingHead. Clips cut [startTime, endTime)
ranges out of those 8 second generations and play in ascending order.

Return only a JSON object with the keys productInteraction ("handheld" or
"non-handheld"), interactionReasoning, imageGeneration (compositeId, avatarSource,
productSources, prompt, description), totalDuration, segments (segmentIndex,
veoCallId, startTime, endTime, type, script, setting, action, demoId,
demoTimestamp, overlayTalkingHead, productImageIndex, brollPrompt,
existingClipId, brollVeoCallId), veoCalls (callId, sourceImageType,
sourceImageRef, prompt) and clips (clipId, veoCallId, startTime, endTime, order).
"""


def extract_json(text: str) -> dict:
    """Pull the plan object out of a fenced code block or the first {...} span."""
    match = _CODE_BLOCK_RE.search(text)
    candidate = match.group(1).strip() if match else None

    if candidate is None:
        match = _OBJECT_RE.search(text)
        candidate = match.group(0) if match else None

    if candidate is None:
        raise GenerationFailure("director", "Could not extract JSON from director response")

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise GenerationFailure("director", f"Director returned invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise GenerationFailure("director", "Director response is not a JSON object")
    return data


def build_prompt(director_input: DirectorInput) -> str:
    product = director_input.product

    if director_input.demos:
        demos = "\n".join(
            f"- Demo {i + 1}: {d.description or 'No description'} (ID: {d.id})"
            for i, d in enumerate(director_input.demos)
        )
    else:
        demos = "No demo footage available."

    if director_input.existing_clips:
        existing_clips = "\n".join(
            f"- {c.id}: {c.description} ({c.duration:g}s, {c.type})"
            for c in director_input.existing_clips
        )
    else:
        existing_clips = "No existing clips available."

    return DIRECTOR_PROMPT.format(
        product_name=product.name,
        product_price=product.price if product.price is not None else "N/A",
        product_description=product.description or "No description",
        product_hooks=json.dumps(list(product.hooks)),
        image_count=len(product.images),
        demos=demos,
        existing_clips=existing_clips,
        tone=director_input.preferences.tone,
        target_duration=director_input.preferences.target_duration,
    )


class DirectorClient:
    """Produces raw (unvalidated) plans from director input."""

    def __init__(self, gemini: Optional[GeminiClient] = None):
        self.gemini = gemini or GeminiClient()

    async def plan(self, director_input: DirectorInput) -> dict:
        prompt = build_prompt(director_input)
        logger.info(
            f"[DIRECTOR] Planning for product {director_input.product.id} "
            f"({len(director_input.demos)} demos, {len(director_input.existing_clips)} clips)"
        )
        text = await self.gemini.generate_text(prompt, temperature=0.7, max_output_tokens=4096)
        return extract_json(text)
