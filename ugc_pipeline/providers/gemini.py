"""
Google Gemini / Veo client.

- generate_image_from_reference: Gemini image model, avatar photo plus
  optional product photos as inline references
- generate_text: Gemini text model (used by the director)
- generate_video: Veo image-to-video long-running operation, polled until done

All calls go over the Generative Language REST API with httpx.
"""
import base64
import asyncio
import logging
import mimetypes
import time
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

import httpx

from ..config import config
from .exceptions import ContentPolicyError, GenerationFailure, ProviderUnavailable
from .storage import load_media

logger = logging.getLogger(__name__)

PROVIDER = "gemini"


@dataclass
class ImageOptions:
    count: int = 1
    aspect_ratio: str = "9:16"
    size: str = "1K"
    mime_type: str = "image/png"


@dataclass
class GeneratedImage:
    """Base64 image payload; index 0 of a result list is authoritative."""
    image_bytes: str
    mime_type: str = "image/png"

    def decode(self) -> bytes:
        return base64.b64decode(self.image_bytes)


@dataclass
class VideoOptions:
    duration: int = 8
    aspect_ratio: str = "9:16"
    disable_audio: bool = False
    reference_images: List[str] = field(default_factory=list)


@dataclass
class GeneratedVideo:
    video_bytes: str
    mime_type: str = "video/mp4"

    def decode(self) -> bytes:
        return base64.b64decode(self.video_bytes)


class GeminiClient:
    """Async client for Gemini image/text generation and Veo video generation."""

    API_URL = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(
        self,
        api_key: Optional[str] = None,
        image_model: Optional[str] = None,
        text_model: Optional[str] = None,
        analysis_model: Optional[str] = None,
        video_model: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_wait_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or config.ai.google_api_key or ""
        self.image_model = image_model or config.ai.image_model
        self.text_model = text_model or config.ai.director_model
        self.analysis_model = analysis_model or config.ai.analysis_model
        self.video_model = video_model or config.ai.video_model
        self.poll_interval = poll_interval if poll_interval is not None else config.pipeline.veo_poll_interval
        self.max_wait_seconds = (
            max_wait_seconds if max_wait_seconds is not None else config.pipeline.veo_max_wait_seconds
        )
        self.client = client or httpx.AsyncClient(timeout=120.0, follow_redirects=True)

        if not self.api_key:
            logger.warning("[GEMINI] No Google API key - generation disabled")

    async def close(self) -> None:
        await self.client.aclose()

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProviderUnavailable(PROVIDER, "GOOGLE_API_KEY not configured")

    async def _inline_image(self, url: str) -> Dict[str, str]:
        data = await load_media(url, client=self.client)
        mime_type = mimetypes.guess_type(url.split("?")[0])[0] or "image/png"
        return {"mimeType": mime_type, "data": base64.b64encode(data).decode("ascii")}

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.API_URL}/{path}?key={self.api_key}"
        try:
            response = await self.client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise GenerationFailure(PROVIDER, f"Request failed: {e}") from e

        if response.status_code == 400:
            error_msg = response.json().get("error", {}).get("message", "Unknown error")
            if "safety" in error_msg.lower() or "blocked" in error_msg.lower():
                raise ContentPolicyError(PROVIDER, f"Content blocked: {error_msg}")
            raise GenerationFailure(PROVIDER, f"API error 400: {error_msg}")

        if response.status_code != 200:
            raise GenerationFailure(PROVIDER, f"API error {response.status_code}: {response.text[:500]}")

        return response.json()

    async def generate_image_from_reference(
        self,
        reference_url: str,
        prompt: str,
        options: Optional[ImageOptions] = None,
        extra_reference_urls: Optional[List[str]] = None,
    ) -> List[GeneratedImage]:
        """
        Generate images conditioned on a reference photo.

        Args:
            reference_url: Primary reference (the avatar)
            prompt: Composite description
            options: Count, aspect ratio, size and output mime type
            extra_reference_urls: Additional references (product photos)

        Returns:
            Non-empty list of GeneratedImage

        Raises:
            GenerationFailure: API error or no image in the response
        """
        self._require_key()
        options = options or ImageOptions()

        parts: List[Dict[str, Any]] = [{"inlineData": await self._inline_image(reference_url)}]
        for url in extra_reference_urls or []:
            parts.append({"inlineData": await self._inline_image(url)})
        parts.append({"text": prompt})

        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["IMAGE"],
                "candidateCount": options.count,
                "imageConfig": {
                    "aspectRatio": options.aspect_ratio,
                    "imageSize": options.size,
                    "imageOutputOptions": {"mimeType": options.mime_type},
                },
            },
        }

        logger.info(f"[GEMINI] Generating image with {len(parts) - 1} references: {prompt[:80]}...")
        data = await self._post(f"models/{self.image_model}:generateContent", payload)

        images: List[GeneratedImage] = []
        for candidate in data.get("candidates", []):
            for part in candidate.get("content", {}).get("parts", []):
                inline = part.get("inlineData")
                if inline and inline.get("data"):
                    images.append(GeneratedImage(
                        image_bytes=inline["data"],
                        mime_type=inline.get("mimeType") or options.mime_type,
                    ))
                if len(images) >= options.count:
                    return images

        if not images:
            raise GenerationFailure(PROVIDER, "No images were generated")
        return images

    async def generate_text(
        self,
        prompt: str,
        temperature: float = 0.7,
        max_output_tokens: int = 8192,
    ) -> str:
        self._require_key()
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
                "topP": 0.9,
                "topK": 40,
            },
        }
        data = await self._post(f"models/{self.text_model}:generateContent", payload)

        candidates = data.get("candidates", [])
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        text = "".join(part.get("text", "") for part in parts)
        if not text:
            raise GenerationFailure(PROVIDER, "No text was generated")
        return text

    async def analyze_video(self, video_url: str, prompt: str, mime_type: str = "video/mp4") -> str:
        """
        Describe a video with the analysis model.

        The video is sent inline, so this suits short demo recordings.

        Raises:
            GenerationFailure: API error or empty answer
        """
        self._require_key()
        data = await load_media(video_url, client=self.client)
        payload = {
            "contents": [{"parts": [
                {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode("ascii")}},
                {"text": prompt},
            ]}],
            "generationConfig": {"temperature": 0.2},
        }

        logger.info(f"[GEMINI] Analyzing {len(data)} byte video with {self.analysis_model}")
        response = await self._post(f"models/{self.analysis_model}:generateContent", payload)

        candidates = response.get("candidates", [])
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        text = "".join(part.get("text", "") for part in parts).strip()
        if not text:
            raise GenerationFailure(PROVIDER, "Video analysis returned no text")
        return text

    async def generate_video(
        self,
        prompt: str,
        source_image_url: str,
        options: Optional[VideoOptions] = None,
    ) -> GeneratedVideo:
        """
        Animate a still image with Veo.

        Starts a long-running operation, polls it every ``poll_interval``
        seconds and downloads the first generated sample.

        Raises:
            GenerationFailure: API error, operation error, timeout or empty result
        """
        self._require_key()
        options = options or VideoOptions()

        instance: Dict[str, Any] = {"prompt": prompt}
        source = await self._inline_image(source_image_url)
        instance["image"] = {"bytesBase64Encoded": source["data"], "mimeType": source["mimeType"]}

        if options.reference_images:
            references = []
            for url in options.reference_images:
                ref = await self._inline_image(url)
                references.append({
                    "image": {"bytesBase64Encoded": ref["data"], "mimeType": ref["mimeType"]},
                    "referenceType": "asset",
                })
            instance["referenceImages"] = references

        parameters: Dict[str, Any] = {
            "aspectRatio": options.aspect_ratio,
            "durationSeconds": min(options.duration, 8),
        }
        if options.disable_audio:
            parameters["generateAudio"] = False

        logger.info(f"[VEO] Starting generation: {prompt[:80]}...")
        operation = await self._post(
            f"models/{self.video_model}:predictLongRunning",
            {"instances": [instance], "parameters": parameters},
        )

        operation = await self._wait_for_operation(operation)

        if "error" in operation:
            raise GenerationFailure(PROVIDER, f"Veo operation failed: {operation['error'].get('message')}")

        samples = (
            operation.get("response", {})
            .get("generateVideoResponse", {})
            .get("generatedSamples", [])
        )
        video_uri = samples[0].get("video", {}).get("uri") if samples else None
        if not video_uri:
            raise GenerationFailure(PROVIDER, "No video was generated")

        try:
            response = await self.client.get(video_uri, params={"key": self.api_key})
        except httpx.HTTPError as e:
            raise GenerationFailure(PROVIDER, f"Video download failed: {e}") from e
        if response.status_code != 200:
            raise GenerationFailure(PROVIDER, f"Video download failed ({response.status_code})")

        logger.info(f"[VEO] Video ready ({len(response.content)} bytes)")
        return GeneratedVideo(video_bytes=base64.b64encode(response.content).decode("ascii"))

    async def _wait_for_operation(self, operation: Dict[str, Any]) -> Dict[str, Any]:
        name = operation.get("name")
        started = time.monotonic()

        while not operation.get("done"):
            if not name:
                raise GenerationFailure(PROVIDER, "Veo returned no operation name")
            if time.monotonic() - started > self.max_wait_seconds:
                raise GenerationFailure(PROVIDER, f"Veo operation {name} timed out")

            await asyncio.sleep(self.poll_interval)
            try:
                response = await self.client.get(f"{self.API_URL}/{name}", params={"key": self.api_key})
            except httpx.HTTPError as e:
                raise GenerationFailure(PROVIDER, f"Polling {name} failed: {e}") from e
            if response.status_code != 200:
                raise GenerationFailure(PROVIDER, f"Polling {name} failed ({response.status_code})")
            operation = response.json()
            logger.debug(f"[VEO] {name} done={operation.get('done', False)}")

        return operation
