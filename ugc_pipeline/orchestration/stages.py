"""
Pipeline stages.

Each stage walks its slice of the plan sequentially and checks the
persisted completion marker of every item before doing paid work, so a
retried stage picks up where the previous attempt stopped.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..config import config
from ..persistence import (
    CatalogRepository,
    CompositeImageRecord,
    MediaRepository,
    VideoJobsRepository,
    AvatarRecord,
    ProductRecord,
    VideoJobRecord,
)
from ..plan.models import (
    ImageGenerationTask,
    SegmentType,
    SourceImageType,
    VeoCall,
    VideoGenerationPlan,
    product_image_index,
)
from ..providers import (
    GeminiClient,
    GenerationFailure,
    ImageOptions,
    StorageBackend,
    VideoOptions,
    load_media,
    upload_to_storage_async,
)
from ..assembly import AssemblyEngine, create_thumbnail
from .exceptions import MissingStageInputError

logger = logging.getLogger(__name__)

AUDIO_MOODS = ("upbeat", "calm", "energetic", "soft", "aesthetic", "dramatic", "peaceful")


@dataclass
class StageContext:
    """Everything a stage needs about the job it is working on."""
    job: VideoJobRecord
    plan: VideoGenerationPlan
    product: ProductRecord
    avatar: AvatarRecord


def resolve_product_image(product: ProductRecord, ref: str) -> str:
    index = product_image_index(ref)
    if index is None or not 0 <= index < len(product.images):
        raise MissingStageInputError(f"Product {product.id} has no image for {ref}")
    return product.images[index]


class RequestSpacer:
    """
    Enforces a minimum gap between consecutive requests.

    One instance is shared per worker process so the gap also holds
    across jobs handled back to back on the veo queue.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep=asyncio.sleep,
    ):
        self.min_interval = min_interval
        self.clock = clock
        self.sleep = sleep
        self._last_request_at: Optional[float] = None

    async def wait(self) -> None:
        if self._last_request_at is not None:
            remaining = self.min_interval - (self.clock() - self._last_request_at)
            if remaining > 0:
                logger.info(f"[VEO] Waiting {remaining:.1f}s before next request")
                await self.sleep(remaining)
        self._last_request_at = self.clock()


_veo_spacer: Optional[RequestSpacer] = None


def get_veo_spacer() -> RequestSpacer:
    global _veo_spacer
    if _veo_spacer is None:
        _veo_spacer = RequestSpacer(config.pipeline.veo_min_request_interval)
    return _veo_spacer


class CompositeStage:
    """Generates avatar + product composites, one plan task at a time."""

    def __init__(
        self,
        gemini: GeminiClient,
        jobs_repo: VideoJobsRepository,
        media_repo: MediaRepository,
        storage: Optional[StorageBackend] = None,
    ):
        self.gemini = gemini
        self.jobs_repo = jobs_repo
        self.media_repo = media_repo
        self.storage = storage

    async def run(self, ctx: StageContext) -> List[CompositeImageRecord]:
        job, plan = ctx.job, ctx.plan
        results: List[CompositeImageRecord] = []

        if not plan.image_generation:
            logger.info(f"[COMPOSITES] Job {job.id}: no composites planned")
            return results

        for i, task in enumerate(plan.image_generation):
            logger.info(f"[COMPOSITES] Job {job.id}: {task.composite_id} ({i + 1}/{len(plan.image_generation)})")
            results.append(await self.generate(ctx, task))

        logger.info(f"[COMPOSITES] Job {job.id}: {len(results)} composites ready")
        return results

    async def generate(self, ctx: StageContext, task: ImageGenerationTask) -> CompositeImageRecord:
        """Generate one composite, or return the stored one if it already exists."""
        job = ctx.job
        existing = self.media_repo.get_composite(job.id, task.composite_id)
        if existing and existing.image_url:
            logger.info(f"[COMPOSITES] Job {job.id}: {task.composite_id} already generated, skipping")
            self.jobs_repo.record_composite(job.id, existing.id, task.composite_id)
            return existing

        product_urls = [resolve_product_image(ctx.product, ref) for ref in task.product_sources]

        logger.info(
            f"[COMPOSITES] Job {job.id}: generating {task.composite_id} "
            f"with {len(product_urls)} product images"
        )
        images = await self.gemini.generate_image_from_reference(
            ctx.avatar.image_url,
            task.prompt,
            ImageOptions(count=1, aspect_ratio="9:16", size="1K", mime_type="image/png"),
            product_urls,
        )
        if not images:
            raise GenerationFailure("gemini", f"Failed to generate composite image {task.composite_id}")

        image = images[0]
        image_url = await upload_to_storage_async(
            image.decode(),
            f"composites/{job.id}/{task.composite_id}.png",
            image.mime_type,
            storage=self.storage,
        )

        record = self.media_repo.save_composite(
            job_id=job.id,
            plan_composite_id=task.composite_id,
            user_id=job.user_id,
            avatar_id=job.avatar_id,
            product_id=job.product_id,
            prompt=task.prompt,
            image_url=image_url,
            description=task.description,
            product_image_indices=task.product_image_indices,
        )
        self.jobs_repo.record_composite(job.id, record.id, task.composite_id)
        return record


class ClipStage:
    """Generates one Veo clip per plan call, spaced to respect the Veo rate limit."""

    def __init__(
        self,
        gemini: GeminiClient,
        jobs_repo: VideoJobsRepository,
        media_repo: MediaRepository,
        storage: Optional[StorageBackend] = None,
        spacer: Optional[RequestSpacer] = None,
    ):
        self.gemini = gemini
        self.jobs_repo = jobs_repo
        self.media_repo = media_repo
        self.storage = storage
        self.spacer = spacer or get_veo_spacer()

    def resolve_source_image(self, ctx: StageContext, call: VeoCall) -> str:
        if call.source_image_type == SourceImageType.AVATAR:
            return ctx.avatar.image_url

        if call.source_image_type == SourceImageType.COMPOSITE:
            composite = self.media_repo.get_composite(ctx.job.id, call.source_image_ref)
            if composite is None or not composite.image_url:
                raise MissingStageInputError(
                    f"Composite {call.source_image_ref} not generated for call {call.call_id}",
                    job_id=ctx.job.id,
                )
            return composite.image_url

        return resolve_product_image(ctx.product, call.source_image_ref)

    async def run(self, ctx: StageContext) -> Dict[str, str]:
        job, plan = ctx.job, ctx.plan
        clip_urls: Dict[str, str] = {}

        for i, call in enumerate(plan.veo_calls):
            logger.info(f"[VEO] Job {job.id}: {call.call_id} ({i + 1}/{len(plan.veo_calls)})")
            clip_urls[call.call_id] = await self.generate(ctx, call)

        logger.info(f"[VEO] Job {job.id}: {len(clip_urls)} clips ready")
        return clip_urls

    async def generate(self, ctx: StageContext, call: VeoCall) -> str:
        """Generate one Veo clip, or return the stored one if it already exists."""
        job = ctx.job
        existing = self.media_repo.get_veo_clip(job.id, call.call_id)
        if existing and existing.video_url:
            logger.info(f"[VEO] Job {job.id}: {call.call_id} already generated, skipping")
            self.jobs_repo.record_veo_clip(job.id, call.call_id, existing.video_url)
            return existing.video_url

        source_url = self.resolve_source_image(ctx, call)

        await self.spacer.wait()
        logger.info(f"[VEO] Job {job.id}: generating {call.call_id} from {call.source_image_type.value}")
        video = await self.gemini.generate_video(
            call.prompt,
            source_url,
            VideoOptions(duration=config.pipeline.clip_length_seconds),
        )

        video_url = await upload_to_storage_async(
            video.decode(),
            f"veo-clips/{job.id}/{call.call_id}.mp4",
            "video/mp4",
            storage=self.storage,
        )
        self.media_repo.save_veo_clip(job.id, call.call_id, source_url, call.prompt, video_url)
        self.jobs_repo.record_veo_clip(job.id, call.call_id, video_url)
        return video_url


def extract_audio_mood(prompt: str) -> Optional[str]:
    prompt_lower = prompt.lower()
    for mood in AUDIO_MOODS:
        if mood in prompt_lower:
            return mood
    return None


class AssemblyStage:
    """Renders the final video and feeds reusable b-roll back into the clip library."""

    def __init__(
        self,
        media_repo: MediaRepository,
        catalog_repo: CatalogRepository,
        engine: Optional[AssemblyEngine] = None,
        storage: Optional[StorageBackend] = None,
        thumbnailer: Callable[[bytes], bytes] = create_thumbnail,
    ):
        self.media_repo = media_repo
        self.catalog_repo = catalog_repo
        self.engine = engine or AssemblyEngine(storage=storage)
        self.storage = storage
        self.thumbnailer = thumbnailer

    def veo_clip_map(self, ctx: StageContext) -> Dict[str, str]:
        clips = {c.call_id: c.video_url for c in self.media_repo.get_job_veo_clips(ctx.job.id) if c.video_url}
        missing = [call.call_id for call in ctx.plan.veo_calls if call.call_id not in clips]
        if missing:
            raise MissingStageInputError(
                f"Veo clips missing for calls: {', '.join(missing)}", job_id=ctx.job.id
            )
        return clips

    def reused_clip_map(self, ctx: StageContext) -> Dict[str, str]:
        reused_ids = [s.existing_clip_id for s in ctx.plan.segments if s.existing_clip_id]
        return {c.id: c.file_url for c in self.catalog_repo.get_indexed_clips(reused_ids)}

    async def run(self, ctx: StageContext) -> str:
        """Render and upload the final video. Returns its URL."""
        job, plan = ctx.job, ctx.plan

        veo_clip_map = self.veo_clip_map(ctx)
        demo_map = {d.id: d.url for d in self.catalog_repo.get_demos(job.demo_ids)}
        existing_clip_map = self.reused_clip_map(ctx)

        logger.info(f"[ASSEMBLY] Job {job.id}: assembling {len(plan.clips)} clips")
        video_bytes = await self.engine.assemble(plan, veo_clip_map, demo_map, existing_clip_map)

        return await upload_to_storage_async(
            video_bytes,
            f"videos/{job.user_id}/{job.id}/final.mp4",
            "video/mp4",
            storage=self.storage,
        )

    async def record_reuse(self, ctx: StageContext) -> None:
        """
        Bump usage of reused library clips and index new b-roll.

        Runs once, after the job is marked completed, so a retried
        assembly never counts the same reuse twice.
        """
        reused = list(self.reused_clip_map(ctx))
        if reused:
            touched = self.catalog_repo.increment_usage(reused)
            logger.info(f"[ASSEMBLY] Job {ctx.job.id}: bumped usage of {touched} reused clips")

        await self.index_reusable_clips(ctx, self.veo_clip_map(ctx))

    async def index_reusable_clips(self, ctx: StageContext, veo_clip_map: Dict[str, str]) -> int:
        """
        Add freshly generated product/virtual b-roll to the clip library.

        Indexing is a secondary effect: a failure is logged and the job
        still completes.
        """
        job, plan = ctx.job, ctx.plan
        indexed = 0

        for segment in plan.segments:
            if segment.type not in (SegmentType.VIRTUAL_BROLL, SegmentType.PRODUCT_BROLL):
                continue
            if segment.existing_clip_id or not segment.veo_call_id:
                continue

            clip_url = veo_clip_map.get(segment.veo_call_id)
            call = plan.get_veo_call(segment.veo_call_id)
            if not clip_url or call is None:
                continue

            try:
                if self.catalog_repo.get_clip_by_file_url(clip_url) is not None:
                    continue
                thumbnail_url = await self._thumbnail(job, segment.veo_call_id, clip_url)
                self.catalog_repo.index_clip(
                    user_id=job.user_id,
                    clip_type=segment.type.value,
                    duration=segment.duration,
                    description=segment.broll_prompt or "Product B-roll",
                    file_url=clip_url,
                    avatar_id=job.avatar_id if call.source_image_type == SourceImageType.AVATAR else None,
                    product_id=job.product_id,
                    veo_prompt=call.prompt,
                    audio_mood=extract_audio_mood(call.prompt),
                    thumbnail_url=thumbnail_url,
                )
                indexed += 1
            except Exception as e:
                logger.warning(f"[INDEX] Job {job.id}: failed to index {segment.veo_call_id}: {e}")

        return indexed

    async def _thumbnail(self, job: VideoJobRecord, call_id: str, clip_url: str) -> Optional[str]:
        try:
            video_bytes = await load_media(clip_url, storage=self.storage)
            loop = asyncio.get_running_loop()
            frame = await loop.run_in_executor(None, self.thumbnailer, video_bytes)
        except Exception as e:
            logger.warning(f"[INDEX] Thumbnail failed for {call_id}: {e}")
            return None
        return await upload_to_storage_async(
            frame, f"thumbnails/{job.id}/{call_id}.jpg", "image/jpeg", storage=self.storage
        )
