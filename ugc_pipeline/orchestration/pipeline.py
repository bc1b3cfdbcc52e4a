"""
Video job pipeline - the state machine that drives a job to completion.

Stages run in order (planning, composites, clips, assembly). Entering a
stage is a conditional status write; a failure inside a stage records
``failed`` with the stage name in ``error_step`` and re-raises so the
task runner can retry. A retry may reopen a failed job only into the
stage that failed.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import config
from ..persistence import (
    CatalogRepository,
    CompositeImageRecord,
    MediaRepository,
    VideoJobRecord,
    VideoJobsRepository,
    get_catalog_repository,
    get_media_repository,
    get_video_jobs_repository,
)
from ..plan.director import DirectorClient
from ..plan.models import (
    AvatarContext,
    DemoContext,
    DirectorInput,
    ExistingClipContext,
    Preferences,
    ProductContext,
    SourceImageType,
    VideoGenerationPlan,
)
from ..plan.validation import validate_plan
from ..providers import GeminiClient, StorageBackend
from ..assembly import AssemblyEngine
from .enums import STAGE_ORDER, JobStatus, PipelineStage
from .exceptions import (
    CatalogReferenceError,
    IllegalStatusTransition,
    JobNotFoundError,
    MissingStageInputError,
    PlanItemNotFoundError,
    PlanRejectedError,
)
from .stages import AssemblyStage, ClipStage, CompositeStage, RequestSpacer, StageContext

logger = logging.getLogger(__name__)

_NON_TERMINAL = [s.value for s in JobStatus if not s.is_terminal]


class VideoJobPipeline:
    """
    Runs the stages of a video job against the persisted job row.

    Collaborators are injectable; anything not supplied is built from
    the application config on first use.
    """

    def __init__(
        self,
        jobs_repo: Optional[VideoJobsRepository] = None,
        media_repo: Optional[MediaRepository] = None,
        catalog_repo: Optional[CatalogRepository] = None,
        gemini: Optional[GeminiClient] = None,
        director: Optional[DirectorClient] = None,
        engine: Optional[AssemblyEngine] = None,
        storage: Optional[StorageBackend] = None,
        spacer: Optional[RequestSpacer] = None,
    ):
        self.jobs_repo = jobs_repo or get_video_jobs_repository()
        self.media_repo = media_repo or get_media_repository()
        self.catalog_repo = catalog_repo or get_catalog_repository()
        self._gemini = gemini
        self._director = director
        self._engine = engine
        self.storage = storage
        self.spacer = spacer

    @property
    def gemini(self) -> GeminiClient:
        if self._gemini is None:
            self._gemini = GeminiClient()
        return self._gemini

    @property
    def director(self) -> DirectorClient:
        if self._director is None:
            self._director = DirectorClient(self.gemini)
        return self._director

    async def aclose(self) -> None:
        """Release the HTTP client; pipelines are built per task invocation."""
        if self._gemini is not None:
            await self._gemini.close()

    # -----------------------------------------------------------------
    # Loading
    # -----------------------------------------------------------------

    def load_job(self, job_id: str) -> VideoJobRecord:
        job = self.jobs_repo.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def build_director_input(self, job: VideoJobRecord) -> DirectorInput:
        """Snapshot the catalog the director may plan from."""
        return self.director_input_for(
            job.product_id, job.avatar_id, job.demo_ids, job.tone, job.target_duration, job_id=job.id
        )

    def director_input_for(
        self,
        product_id: str,
        avatar_id: str,
        demo_ids: List[str],
        tone: str,
        target_duration: int,
        job_id: Optional[str] = None,
    ) -> DirectorInput:
        """
        Build director input from current catalog state.

        Raises:
            CatalogReferenceError: unknown product, avatar or demo id
        """
        product = self.catalog_repo.get_product(product_id)
        if product is None:
            raise CatalogReferenceError(f"Product not found: {product_id}", job_id=job_id)
        avatar = self.catalog_repo.get_avatar(avatar_id)
        if avatar is None:
            raise CatalogReferenceError(f"Avatar not found: {avatar_id}", job_id=job_id)

        demos = self.catalog_repo.get_demos(demo_ids)
        unknown = sorted(set(demo_ids) - {d.id for d in demos})
        if unknown:
            raise CatalogReferenceError(f"Demos not found: {', '.join(unknown)}", job_id=job_id)

        clips = self.catalog_repo.get_top_clips_for_product(
            product_id, limit=config.pipeline.existing_clip_limit
        )

        return DirectorInput(
            product=ProductContext(
                id=product.id,
                name=product.title,
                price=product.price,
                description=product.description,
                hooks=tuple(product.hooks),
                images=tuple(product.images),
            ),
            avatar=AvatarContext(id=avatar.id, image_url=avatar.image_url),
            demos=tuple(DemoContext(id=d.id, description=d.description) for d in demos),
            existing_clips=tuple(
                ExistingClipContext(id=c.id, description=c.description, duration=c.duration, type=c.type)
                for c in clips
            ),
            preferences=Preferences(tone=tone, target_duration=target_duration),
        )

    def _stage_context(self, job: VideoJobRecord) -> StageContext:
        if job.director_plan is None:
            raise MissingStageInputError(f"Job {job.id} has no director plan", job_id=job.id)

        product = self.catalog_repo.get_product(job.product_id)
        avatar = self.catalog_repo.get_avatar(job.avatar_id)
        if product is None or avatar is None:
            raise CatalogReferenceError(
                f"Job {job.id} references a missing product or avatar", job_id=job.id
            )

        return StageContext(
            job=job,
            plan=VideoGenerationPlan.model_validate(job.director_plan),
            product=product,
            avatar=avatar,
        )

    # -----------------------------------------------------------------
    # State machine
    # -----------------------------------------------------------------

    def is_stage_done(self, job: VideoJobRecord, stage: PipelineStage) -> bool:
        if stage == PipelineStage.PLANNING:
            return job.director_plan is not None

        status = JobStatus.from_string(job.status)
        if status == JobStatus.FAILED:
            if not job.error_step:
                return False
            failed_stage = PipelineStage.from_string(job.error_step)
            return _stage_index(stage) < _stage_index(failed_stage)
        return status in stage.done_statuses

    def _enter_stage(self, job: VideoJobRecord, stage: PipelineStage) -> VideoJobRecord:
        current = JobStatus.from_string(job.status)
        target = stage.running_status

        if current == JobStatus.FAILED and job.error_step != stage.value:
            raise IllegalStatusTransition(
                job.id, current.value, target.value,
                reason=f"job failed at {job.error_step}, not {stage.value}",
            )
        if not current.can_transition_to(target):
            raise IllegalStatusTransition(job.id, current.value, target.value)

        fields: Dict[str, Any] = {}
        if current == JobStatus.FAILED:
            fields = {"error": None, "error_step": None}
            logger.info(f"[PIPELINE] Reopening job {job.id} at {stage.value}")

        if not self.jobs_repo.update_status(job.id, target.value, expected=[current.value], **fields):
            raise IllegalStatusTransition(
                job.id, current.value, target.value, reason="status changed concurrently"
            )
        return self.load_job(job.id)

    def _finish_stage(self, job: VideoJobRecord, stage: PipelineStage, **fields: Any) -> None:
        done = stage.completed_status
        if done is None:
            return
        if not self.jobs_repo.update_status(job.id, done.value, expected=[stage.running_status.value], **fields):
            raise IllegalStatusTransition(
                job.id, job.status, done.value, reason="status changed concurrently"
            )

    def mark_failed(self, job_id: str, stage: PipelineStage, error: Exception) -> None:
        logger.error(f"[PIPELINE] Job {job_id} failed at {stage.value}: {error}")
        self.jobs_repo.update_status(
            job_id,
            JobStatus.FAILED.value,
            expected=_NON_TERMINAL,
            error=str(error),
            error_step=stage.value,
        )

    async def _run_stage(
        self,
        job_id: str,
        stage: PipelineStage,
        work: Callable[[VideoJobRecord], Awaitable[Dict[str, Any]]],
        after: Optional[Callable[[VideoJobRecord], Awaitable[None]]] = None,
    ) -> VideoJobRecord:
        job = self.load_job(job_id)
        if self.is_stage_done(job, stage):
            logger.info(f"[PIPELINE] Job {job_id}: {stage.value} already done, skipping")
            return job

        job = self._enter_stage(job, stage)
        try:
            fields = await work(job)
            self._finish_stage(job, stage, **fields)
        except Exception as e:
            self.mark_failed(job_id, stage, e)
            raise

        if after is not None:
            # The stage is already recorded as done; follow-up work must not fail it
            try:
                await after(job)
            except Exception as e:
                logger.warning(f"[PIPELINE] Job {job_id}: post-{stage.value} step failed: {e}")

        return self.load_job(job_id)

    def _skip_stage(self, job: VideoJobRecord, stage: PipelineStage) -> Optional[VideoJobRecord]:
        """Write the stage's completed status directly when the table allows it."""
        current = JobStatus.from_string(job.status)
        done = stage.completed_status
        if done is None or not current.can_transition_to(done):
            return None
        if not self.jobs_repo.update_status(job.id, done.value, expected=[current.value]):
            raise IllegalStatusTransition(job.id, current.value, done.value, reason="status changed concurrently")
        logger.info(f"[PIPELINE] Job {job.id}: nothing to do for {stage.value}, now {done.value}")
        return self.load_job(job.id)

    # -----------------------------------------------------------------
    # Stages
    # -----------------------------------------------------------------

    async def run_planning(self, job_id: str) -> VideoJobRecord:
        async def work(job: VideoJobRecord) -> Dict[str, Any]:
            director_input = self.build_director_input(job)
            raw_plan = await self.director.plan(director_input)

            result = validate_plan(raw_plan, director_input)
            for warning in result.warnings:
                logger.warning(f"[PLANNING] Job {job.id}: {warning}")
            if not result.valid:
                raise PlanRejectedError(result.errors)

            plan = result.plan
            self.jobs_repo.save_plan(job.id, plan.to_json_dict(), plan.total_duration)
            logger.info(
                f"[PLANNING] Job {job.id}: {plan.product_interaction.value}, {plan.total_duration}s, "
                f"{len(plan.image_generation)} composites, {len(plan.veo_calls)} Veo calls"
            )
            return {}

        return await self._run_stage(job_id, PipelineStage.PLANNING, work)

    async def run_composites(self, job_id: str) -> VideoJobRecord:
        job = self.load_job(job_id)
        if (
            job.director_plan is not None
            and not job.director_plan.get("imageGeneration")
            and not self.is_stage_done(job, PipelineStage.COMPOSITES)
        ):
            skipped = self._skip_stage(job, PipelineStage.COMPOSITES)
            if skipped is not None:
                return skipped

        async def work(job: VideoJobRecord) -> Dict[str, Any]:
            stage = CompositeStage(self.gemini, self.jobs_repo, self.media_repo, storage=self.storage)
            await stage.run(self._stage_context(job))
            return {}

        return await self._run_stage(job_id, PipelineStage.COMPOSITES, work)

    async def run_clips(self, job_id: str) -> VideoJobRecord:
        async def work(job: VideoJobRecord) -> Dict[str, Any]:
            await self._clip_stage().run(self._stage_context(job))
            return {}

        return await self._run_stage(job_id, PipelineStage.CLIPS, work)

    async def run_assembly(self, job_id: str) -> VideoJobRecord:
        stage = AssemblyStage(self.media_repo, self.catalog_repo, engine=self._engine, storage=self.storage)

        async def work(job: VideoJobRecord) -> Dict[str, Any]:
            ctx = self._stage_context(job)
            final_url = await stage.run(ctx)
            logger.info(f"[ASSEMBLY] Job {job.id}: final video at {final_url}")
            return {"final_video_url": final_url, "final_duration": float(ctx.plan.total_duration)}

        async def after(job: VideoJobRecord) -> None:
            await stage.record_reuse(self._stage_context(job))

        return await self._run_stage(job_id, PipelineStage.ASSEMBLY, work, after=after)

    def _clip_stage(self) -> ClipStage:
        return ClipStage(self.gemini, self.jobs_repo, self.media_repo, storage=self.storage, spacer=self.spacer)

    async def run(self, job_id: str) -> VideoJobRecord:
        """Advance a job from wherever it is to completed."""
        await self.run_planning(job_id)
        await self.run_composites(job_id)
        await self.run_clips(job_id)
        return await self.run_assembly(job_id)

    async def run_stage(self, job_id: str, stage: PipelineStage) -> VideoJobRecord:
        runner = {
            PipelineStage.PLANNING: self.run_planning,
            PipelineStage.COMPOSITES: self.run_composites,
            PipelineStage.CLIPS: self.run_clips,
            PipelineStage.ASSEMBLY: self.run_assembly,
        }[stage]
        return await runner(job_id)

    # -----------------------------------------------------------------
    # Single items
    # -----------------------------------------------------------------

    def _item_context(self, job_id: str) -> StageContext:
        job = self.load_job(job_id)
        if job.status == JobStatus.COMPLETED.value:
            raise IllegalStatusTransition(
                job.id, job.status, "generate item", reason="job already completed"
            )
        return self._stage_context(job)

    async def generate_composite(self, job_id: str, composite_id: str) -> CompositeImageRecord:
        """
        Generate one planned composite outside the stage run.

        The job status is left alone; the composites stage later finds the
        item done and skips it. An existing composite is returned as is.

        Raises:
            PlanItemNotFoundError: the plan has no such composite
            MissingStageInputError: the job has no plan yet
        """
        ctx = self._item_context(job_id)
        task = ctx.plan.get_image_task(composite_id)
        if task is None:
            raise PlanItemNotFoundError(f"Composite {composite_id} is not in the plan", job_id=job_id)

        stage = CompositeStage(self.gemini, self.jobs_repo, self.media_repo, storage=self.storage)
        return await stage.generate(ctx, task)

    async def generate_veo_clip(self, job_id: str, call_id: str) -> str:
        """
        Generate one planned Veo clip outside the stage run. Returns its URL.

        Raises:
            PlanItemNotFoundError: the plan has no such call
            MissingStageInputError: no plan yet, or the source composite
                has not been generated
        """
        ctx = self._item_context(job_id)
        call = ctx.plan.get_veo_call(call_id)
        if call is None:
            raise PlanItemNotFoundError(f"Veo call {call_id} is not in the plan", job_id=job_id)

        return await self._clip_stage().generate(ctx, call)

    # -----------------------------------------------------------------
    # Progress
    # -----------------------------------------------------------------

    def get_job_progress(self, job_id: str) -> Dict[str, Any]:
        job = self.load_job(job_id)
        progress: Dict[str, Any] = {
            "job_id": job.id,
            "status": job.status,
            "planning_completed": job.director_plan is not None,
            "composites_completed": 0,
            "composites_total": 0,
            "veo_calls_completed": 0,
            "veo_calls_total": 0,
            "can_generate_clips": False,
            "can_assemble": False,
            "required_composites": [],
            "final_video_url": job.final_video_url,
            "error": job.error,
            "error_step": job.error_step,
        }
        if job.director_plan is None:
            return progress

        plan = VideoGenerationPlan.model_validate(job.director_plan)
        completed_composites = set(job.completed_composite_ids)
        completed_calls = set(job.completed_veo_call_ids)
        required = sorted({
            call.source_image_ref for call in plan.veo_calls
            if call.source_image_type == SourceImageType.COMPOSITE
        })

        progress.update({
            "composites_completed": len(completed_composites),
            "composites_total": len(plan.image_generation),
            "veo_calls_completed": len(completed_calls),
            "veo_calls_total": len(plan.veo_calls),
            "can_generate_clips": all(ref in completed_composites for ref in required),
            "can_assemble": bool(plan.veo_calls) and all(c.call_id in completed_calls for c in plan.veo_calls),
            "required_composites": required,
        })
        return progress


def _stage_index(stage: PipelineStage) -> int:
    return STAGE_ORDER.index(stage)
