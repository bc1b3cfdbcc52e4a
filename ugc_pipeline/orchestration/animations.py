"""
Avatar animation generations.

A single-shot Veo job outside the video pipeline: one avatar image (plus
optional product reference images) in, one animated clip out. Tracked by
a generation row with its own pending/processing/completed/failed status.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from ..persistence import (
    CatalogRepository,
    GenerationsRepository,
    GenerationRecord,
    get_catalog_repository,
    get_generations_repository,
)
from ..providers import GeminiClient, StorageBackend, VideoOptions, upload_to_storage_async
from .enums import GenerationStatus
from .exceptions import CatalogReferenceError, IllegalStatusTransition, JobNotFoundError, PipelineError

logger = logging.getLogger(__name__)

# Veo only accepts reference images in landscape
REFERENCE_ASPECT_RATIO = "16:9"


def enqueue_animation(generation_id: str) -> str:
    """Queue the animation task; returns the Celery task id."""
    from .tasks import generate_animation_task

    return generate_animation_task.delay(generation_id).id


class AnimationService:
    """Create and run avatar animation generations."""

    def __init__(
        self,
        generations_repo: Optional[GenerationsRepository] = None,
        catalog_repo: Optional[CatalogRepository] = None,
        gemini: Optional[GeminiClient] = None,
        storage: Optional[StorageBackend] = None,
        trigger: Callable[[str], str] = enqueue_animation,
    ):
        self.generations_repo = generations_repo or get_generations_repository()
        self.catalog_repo = catalog_repo or get_catalog_repository()
        self._gemini = gemini
        self.storage = storage
        self.trigger = trigger

    @property
    def gemini(self) -> GeminiClient:
        if self._gemini is None:
            self._gemini = GeminiClient()
        return self._gemini

    async def aclose(self) -> None:
        if self._gemini is not None:
            await self._gemini.close()

    def create_animation(
        self,
        user_id: str,
        avatar_id: str,
        prompt: str,
        product_image_urls: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Record a pending animation and queue it.

        A queueing failure is logged; the generation stays pending with no
        trigger id and can be queued again later.

        Raises:
            CatalogReferenceError: avatar does not exist
        """
        avatar = self.catalog_repo.get_avatar(avatar_id)
        if avatar is None:
            raise CatalogReferenceError(f"Avatar not found: {avatar_id}")

        generation, animation = self.generations_repo.create_animation_generation(
            user_id, avatar_id, prompt, product_image_urls
        )

        trigger_job_id = None
        try:
            trigger_job_id = self.trigger(generation.id)
            self.generations_repo.set_trigger_job_id(generation.id, trigger_job_id)
        except Exception as e:
            logger.error(f"[ANIMATION] Failed to queue generation {generation.id}: {e}")

        return {
            "generation_id": generation.id,
            "animation_id": animation.id,
            "status": generation.status,
            "trigger_job_id": trigger_job_id,
        }

    def _load(self, generation_id: str) -> GenerationRecord:
        generation = self.generations_repo.get_generation(generation_id)
        if generation is None:
            raise JobNotFoundError(generation_id, kind="Generation")
        return generation

    def _set_status(
        self,
        generation: GenerationRecord,
        target: GenerationStatus,
        error: Optional[str] = None,
    ) -> None:
        current = GenerationStatus(generation.status)
        if not current.can_transition_to(target):
            raise IllegalStatusTransition(generation.id, current.value, target.value)
        if not self.generations_repo.update_status(
            generation.id, target.value, expected=[current.value], error=error
        ):
            raise IllegalStatusTransition(
                generation.id, current.value, target.value, reason="status changed concurrently"
            )
        generation.status = target.value

    async def run_generation(self, generation_id: str, avatar_image_url: Optional[str] = None) -> str:
        """
        Generate the animation video for a generation.

        An animation that already has a video is not generated again.

        Returns:
            Public URL of the animation video

        Raises:
            JobNotFoundError: unknown generation
            GenerationFailure: Veo failed; the generation is marked failed
        """
        generation = self._load(generation_id)
        self._set_status(generation, GenerationStatus.PROCESSING)

        try:
            animation = self.generations_repo.get_animation_for_generation(generation_id)
            if animation is None:
                raise PipelineError(f"Generation {generation_id} has no animation")

            if animation.video_url:
                logger.info(f"[ANIMATION] {animation.id} already has a video, skipping")
                video_url = animation.video_url
            else:
                video_url = await self._generate(generation, animation.id, animation.avatar_id, avatar_image_url)

            self._set_status(generation, GenerationStatus.COMPLETED)
        except Exception as e:
            logger.error(f"[ANIMATION] Generation {generation_id} failed: {e}")
            self.generations_repo.update_status(
                generation_id,
                GenerationStatus.FAILED.value,
                expected=[s.value for s in GenerationStatus.predecessors_of(GenerationStatus.FAILED)],
                error=str(e),
            )
            raise

        logger.info(f"[ANIMATION] Generation {generation_id} completed: {video_url}")
        return video_url

    async def _generate(
        self,
        generation: GenerationRecord,
        animation_id: str,
        avatar_id: str,
        avatar_image_url: Optional[str],
    ) -> str:
        if not avatar_image_url:
            avatar = self.catalog_repo.get_avatar(avatar_id)
            if avatar is None:
                raise CatalogReferenceError(f"Avatar not found: {avatar_id}")
            avatar_image_url = avatar.image_url

        references = generation.product_image_urls
        options = VideoOptions(reference_images=references)
        if references:
            options.aspect_ratio = REFERENCE_ASPECT_RATIO

        logger.info(f"[ANIMATION] Generating {animation_id} with {len(references)} reference images")
        video = await self.gemini.generate_video(generation.prompt_text, avatar_image_url, options)

        video_url = await upload_to_storage_async(
            video.decode(), f"animations/{animation_id}.mp4", "video/mp4", storage=self.storage
        )
        self.generations_repo.set_animation_video_url(animation_id, video_url)
        return video_url

    def get_animation_status(self, animation_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Animation plus the status of the generation driving it."""
        animation = self.generations_repo.get_animation(animation_id)
        if animation is None or (user_id is not None and animation.user_id != user_id):
            raise JobNotFoundError(animation_id, kind="Animation")

        generation = self._load(animation.generation_id)
        return {
            "animation_id": animation.id,
            "generation_id": generation.id,
            "status": generation.status,
            "video_url": animation.video_url,
            "error": generation.error,
        }
