"""
Video job service: the caller-facing entry points.

Creates jobs, hands them to Celery and reports on their progress. Planned
jobs can also be driven step by step: one stage, one composite or one Veo
clip at a time. The stage work itself lives in the pipeline.
"""
import uuid
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..persistence import CompositeImageRecord, VideoJobRecord
from ..plan import SourceImageType, VideoGenerationPlan, validate_plan
from .enums import JobStatus, PipelineStage
from .exceptions import (
    IllegalStatusTransition,
    JobNotFoundError,
    MissingStageInputError,
    PlanItemNotFoundError,
)
from .pipeline import VideoJobPipeline

logger = logging.getLogger(__name__)


def enqueue_video_job(job_id: str) -> str:
    """Queue the orchestrating task; returns the Celery task id."""
    from .tasks import run_video_job_task

    return run_video_job_task.delay(job_id).id


class CeleryDispatcher:
    """Queues the stage and single-item tasks. Task modules are imported lazily."""

    def stage(self, job_id: str, stage: PipelineStage) -> str:
        from . import tasks

        task = {
            PipelineStage.PLANNING: tasks.plan_video_task,
            PipelineStage.COMPOSITES: tasks.generate_composites_task,
            PipelineStage.CLIPS: tasks.generate_clips_task,
            PipelineStage.ASSEMBLY: tasks.assemble_video_task,
        }[stage]
        return task.delay(job_id).id

    def composite(self, job_id: str, composite_id: str) -> str:
        from .tasks import generate_single_composite_task

        return generate_single_composite_task.delay(job_id, composite_id).id

    def veo_clip(self, job_id: str, call_id: str, delay_seconds: int = 0) -> str:
        from .tasks import generate_single_veo_clip_task

        result = generate_single_veo_clip_task.apply_async(
            args=(job_id, call_id), countdown=delay_seconds or None
        )
        return result.id

    def sequential(self, job_id: str) -> str:
        from celery import chain

        from .tasks import generate_clips_task, generate_composites_task

        workflow = chain(generate_composites_task.si(job_id), generate_clips_task.si(job_id))
        return workflow.apply_async().id


class VideoJobService:
    """Create, inspect and requeue video jobs."""

    def __init__(
        self,
        pipeline: Optional[VideoJobPipeline] = None,
        trigger: Callable[[str], str] = enqueue_video_job,
        dispatcher: Optional[CeleryDispatcher] = None,
    ):
        self.pipeline = pipeline or VideoJobPipeline()
        self.trigger = trigger
        self.dispatcher = dispatcher or CeleryDispatcher()

    @property
    def jobs_repo(self):
        return self.pipeline.jobs_repo

    def create_video_job(
        self,
        user_id: str,
        product_id: str,
        avatar_id: str,
        tone: str,
        demo_ids: Optional[List[str]] = None,
        target_duration: int = 24,
        director_plan: Optional[Dict[str, Any]] = None,
    ) -> VideoJobRecord:
        """
        Create a pending video job and queue it.

        Args:
            user_id: Owner of the job
            product_id: Catalog product to advertise
            avatar_id: Catalog avatar presenting it
            tone: Free-form tone preference for the director
            demo_ids: Demo videos the director may cut into the ad
            target_duration: Requested length in seconds
            director_plan: Pre-made plan; skips the planning stage

        Returns:
            The persisted job (trigger_job_id is None if queueing failed)

        Raises:
            CatalogReferenceError: unknown product, avatar or demo
            PlanValidationError: supplied plan is invalid
        """
        demo_ids = list(demo_ids or [])
        director_input = self.pipeline.director_input_for(
            product_id, avatar_id, demo_ids, tone, target_duration
        )

        if director_plan is not None:
            result = validate_plan(director_plan, director_input)
            result.raise_for_errors()
            for warning in result.warnings:
                logger.warning(f"[JOBS] Supplied plan warning: {warning}")
            director_plan = result.plan.to_json_dict()
            target_duration = int(result.plan.total_duration)

        job_id = str(uuid.uuid4())
        self.jobs_repo.create_job(
            job_id=job_id,
            user_id=user_id,
            product_id=product_id,
            avatar_id=avatar_id,
            tone=tone,
            target_duration=target_duration,
            demo_ids=demo_ids,
            director_plan=director_plan,
        )
        logger.info(f"[JOBS] Created video job {job_id} for user {user_id}")

        self._queue(job_id)
        return self.pipeline.load_job(job_id)

    def _queue(self, job_id: str) -> Optional[str]:
        try:
            trigger_job_id = self.trigger(job_id)
            self.jobs_repo.set_trigger_job_id(job_id, trigger_job_id)
        except Exception as e:
            logger.error(f"[JOBS] Failed to queue video job {job_id}: {e}")
            return None
        logger.info(f"[JOBS] Queued video job {job_id} as {trigger_job_id}")
        return trigger_job_id

    def get_video_job(self, job_id: str, user_id: Optional[str] = None) -> VideoJobRecord:
        """Load a job; with ``user_id`` set, other users' jobs are not found."""
        job = self.pipeline.load_job(job_id)
        if user_id is not None and job.user_id != user_id:
            raise JobNotFoundError(job_id)
        return job

    def get_user_video_jobs(self, user_id: str, limit: int = 50) -> List[VideoJobRecord]:
        return self.jobs_repo.get_user_jobs(user_id, limit=limit)

    def get_job_progress(self, job_id: str) -> Dict[str, Any]:
        return self.pipeline.get_job_progress(job_id)

    def retry_video_job(self, job_id: str) -> Optional[str]:
        """
        Queue a failed job again. The pipeline reopens it at ``error_step``
        and completed stages are skipped.
        """
        job = self.pipeline.load_job(job_id)
        if job.status != JobStatus.FAILED.value:
            raise IllegalStatusTransition(job_id, job.status, "retry", reason="only failed jobs can be retried")
        logger.info(f"[JOBS] Retrying job {job_id} from {job.error_step}")
        return self._queue(job_id)

    # -----------------------------------------------------------------
    # Step-by-step generation
    # -----------------------------------------------------------------

    def _planned_job(self, job_id: str, user_id: Optional[str]) -> Tuple[VideoJobRecord, VideoGenerationPlan]:
        job = self.get_video_job(job_id, user_id=user_id)
        if job.director_plan is None:
            raise MissingStageInputError(f"Job {job_id} has no director plan", job_id=job_id)
        return job, VideoGenerationPlan.model_validate(job.director_plan)

    def trigger_stage(
        self,
        job_id: str,
        stage: Union[PipelineStage, str],
        user_id: Optional[str] = None,
    ) -> str:
        """Queue a single stage task. The state machine decides whether it may run."""
        stage = stage if isinstance(stage, PipelineStage) else PipelineStage.from_string(stage)
        self.get_video_job(job_id, user_id=user_id)
        task_id = self.dispatcher.stage(job_id, stage)
        logger.info(f"[JOBS] Queued {stage.value} for job {job_id} as {task_id}")
        return task_id

    def trigger_sequential_generation(self, job_id: str, user_id: Optional[str] = None) -> str:
        """Queue composites then clips for a planned job."""
        self._planned_job(job_id, user_id)
        task_id = self.dispatcher.sequential(job_id)
        logger.info(f"[JOBS] Queued composites and clips for job {job_id} as {task_id}")
        return task_id

    def trigger_composite_generation(
        self,
        job_id: str,
        composite_id: str,
        user_id: Optional[str] = None,
    ) -> str:
        """
        Queue generation of one planned composite.

        Raises:
            MissingStageInputError: the job has no plan yet
            PlanItemNotFoundError: the plan has no such composite
        """
        _, plan = self._planned_job(job_id, user_id)
        if plan.get_image_task(composite_id) is None:
            raise PlanItemNotFoundError(f"Composite {composite_id} is not in the plan", job_id=job_id)
        return self.dispatcher.composite(job_id, composite_id)

    def trigger_veo_generation(
        self,
        job_id: str,
        call_id: str,
        user_id: Optional[str] = None,
        delay_seconds: int = 0,
    ) -> str:
        """
        Queue generation of one planned Veo clip on the veo queue.

        Args:
            delay_seconds: Countdown before the task may start, for spacing
                clips queued back to back

        Raises:
            MissingStageInputError: no plan, or the source composite has
                not been generated yet
            PlanItemNotFoundError: the plan has no such call
        """
        job, plan = self._planned_job(job_id, user_id)
        call = plan.get_veo_call(call_id)
        if call is None:
            raise PlanItemNotFoundError(f"Veo call {call_id} is not in the plan", job_id=job_id)
        if (
            call.source_image_type == SourceImageType.COMPOSITE
            and call.source_image_ref not in job.completed_composite_ids
        ):
            raise MissingStageInputError(
                f"Composite {call.source_image_ref} not generated yet, generate it first", job_id=job_id
            )
        return self.dispatcher.veo_clip(job_id, call_id, delay_seconds=delay_seconds)

    async def generate_composite_for_job(
        self,
        job_id: str,
        composite_id: str,
        user_id: Optional[str] = None,
    ) -> CompositeImageRecord:
        """Generate one planned composite in the caller's event loop."""
        self.get_video_job(job_id, user_id=user_id)
        return await self.pipeline.generate_composite(job_id, composite_id)

    async def generate_veo_clip_for_job(
        self,
        job_id: str,
        call_id: str,
        user_id: Optional[str] = None,
    ) -> str:
        """Generate one planned Veo clip in the caller's event loop. Returns its URL."""
        self.get_video_job(job_id, user_id=user_id)
        return await self.pipeline.generate_veo_clip(job_id, call_id)

    def get_composite_images_for_job(self, job_id: str, user_id: Optional[str] = None) -> List[CompositeImageRecord]:
        self.get_video_job(job_id, user_id=user_id)
        return self.pipeline.media_repo.get_job_composites(job_id)


_service: Optional[VideoJobService] = None


def get_video_job_service() -> VideoJobService:
    """Get or create the video job service singleton."""
    global _service
    if _service is None:
        _service = VideoJobService()
    return _service
