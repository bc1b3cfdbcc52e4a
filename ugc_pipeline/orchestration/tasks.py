"""
Celery tasks for the video job pipeline.

One task per stage plus an orchestrating task that chains them, and
single-item tasks for step-by-step generation. Stage work is async;
each task builds a fresh pipeline and drives it with asyncio.run so no
HTTP client outlives its event loop.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from celery import Task, chain

from ..celery_app import celery_app
from ..config import config
from .animations import AnimationService
from .demos import DemoAnalysisService
from .enums import PipelineStage
from .exceptions import (
    CatalogReferenceError,
    IllegalStatusTransition,
    JobNotFoundError,
    PlanItemNotFoundError,
)
from .pipeline import VideoJobPipeline

logger = logging.getLogger(__name__)

# Retrying cannot fix these
NON_RETRYABLE = (JobNotFoundError, IllegalStatusTransition, CatalogReferenceError, PlanItemNotFoundError)

# Headroom between the soft limit (raised inside the task) and the hard kill
_HARD_LIMIT_GRACE = 60


class PipelineTask(Task):
    """
    Base Celery task with lifecycle logging.
    """

    abstract = True
    track_started = True
    acks_late = True
    reject_on_worker_lost = True

    max_retries = config.pipeline.max_retries

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        job_id = kwargs.get("job_id") or kwargs.get("generation_id") or (args[0] if args else "unknown")
        logger.error(f"Task {task_id} failed for {job_id}: {exc}")
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):
        job_id = kwargs.get("job_id") or kwargs.get("generation_id") or (args[0] if args else "unknown")
        logger.info(f"Task {task_id} completed successfully for {job_id}")
        super().on_success(retval, task_id, args, kwargs)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        job_id = kwargs.get("job_id") or kwargs.get("generation_id") or (args[0] if args else "unknown")
        logger.warning(f"Task {task_id} retrying for {job_id}: {exc}")
        super().on_retry(exc, task_id, args, kwargs, einfo)


def retry_countdown(retries: int) -> int:
    """Exponential backoff: 1s, 2s, 4s ... capped at retry_backoff_max."""
    return min(config.pipeline.retry_backoff_max, config.pipeline.retry_backoff * (2 ** retries))


async def _with_pipeline(work: Callable[[VideoJobPipeline], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
    pipeline = VideoJobPipeline()
    try:
        return await work(pipeline)
    finally:
        await pipeline.aclose()


def _execute(
    task: Task,
    job_id: str,
    label: str,
    work: Callable[[VideoJobPipeline], Awaitable[dict[str, Any]]],
) -> dict[str, Any]:
    """
    Run pipeline work inside a Celery task, retrying with backoff on failure.

    For stage work the pipeline has already marked the job failed at this
    stage when an exception reaches here; the retry reopens it from
    error_step.
    """
    logger.info(f"Starting {label} task {task.request.id} for job {job_id}")
    try:
        return asyncio.run(_with_pipeline(work))
    except NON_RETRYABLE:
        raise
    except Exception as e:
        if task.request.retries < task.max_retries:
            countdown = retry_countdown(task.request.retries)
            logger.info(
                f"Retrying {label} for job {job_id} in {countdown}s "
                f"(attempt {task.request.retries + 2})"
            )
            raise task.retry(exc=e, countdown=countdown)
        raise


def execute_stage(task: Task, job_id: str, stage: PipelineStage) -> dict[str, Any]:
    async def work(pipeline: VideoJobPipeline) -> dict[str, Any]:
        job = await pipeline.run_stage(job_id, stage)
        return {
            "job_id": job.id,
            "stage": stage.value,
            "status": job.status,
            "final_video_url": job.final_video_url,
        }

    return _execute(task, job_id, stage.value, work)


@celery_app.task(
    base=PipelineTask,
    bind=True,
    name="pipeline.run_video_job",
)
def run_video_job_task(self, job_id: str) -> dict[str, Any]:
    """
    Orchestrating task: chain the four stage tasks for one job.

    Args:
        job_id: Video job identifier

    Returns:
        Chain id and job id
    """
    workflow = chain(
        plan_video_task.si(job_id),
        generate_composites_task.si(job_id),
        generate_clips_task.si(job_id),
        assemble_video_task.si(job_id),
    )
    result = workflow.apply_async()
    logger.info(f"Task {self.request.id}: queued pipeline chain {result.id} for job {job_id}")
    return {"job_id": job_id, "chain_id": result.id}


@celery_app.task(
    base=PipelineTask,
    bind=True,
    name="pipeline.plan_video",
    soft_time_limit=config.pipeline.planning_time_limit,
    time_limit=config.pipeline.planning_time_limit + _HARD_LIMIT_GRACE,
)
def plan_video_task(self, job_id: str) -> dict[str, Any]:
    return execute_stage(self, job_id, PipelineStage.PLANNING)


@celery_app.task(
    base=PipelineTask,
    bind=True,
    name="pipeline.generate_composites",
    soft_time_limit=config.pipeline.composites_time_limit,
    time_limit=config.pipeline.composites_time_limit + _HARD_LIMIT_GRACE,
)
def generate_composites_task(self, job_id: str) -> dict[str, Any]:
    return execute_stage(self, job_id, PipelineStage.COMPOSITES)


@celery_app.task(
    base=PipelineTask,
    bind=True,
    name="pipeline.generate_clips",
    soft_time_limit=config.pipeline.clips_time_limit,
    time_limit=config.pipeline.clips_time_limit + _HARD_LIMIT_GRACE,
)
def generate_clips_task(self, job_id: str) -> dict[str, Any]:
    return execute_stage(self, job_id, PipelineStage.CLIPS)


@celery_app.task(
    base=PipelineTask,
    bind=True,
    name="pipeline.assemble_video",
    soft_time_limit=config.pipeline.assembly_time_limit,
    time_limit=config.pipeline.assembly_time_limit + _HARD_LIMIT_GRACE,
)
def assemble_video_task(self, job_id: str) -> dict[str, Any]:
    return execute_stage(self, job_id, PipelineStage.ASSEMBLY)


@celery_app.task(
    base=PipelineTask,
    bind=True,
    name="pipeline.generate_single_composite",
    soft_time_limit=config.pipeline.composites_time_limit,
    time_limit=config.pipeline.composites_time_limit + _HARD_LIMIT_GRACE,
)
def generate_single_composite_task(self, job_id: str, composite_id: str) -> dict[str, Any]:
    """
    Generate one planned composite image for a job.

    Args:
        job_id: Video job identifier
        composite_id: Plan composite id, e.g. "composite_1"

    Returns:
        Job id, composite id and the stored image URL
    """
    async def work(pipeline: VideoJobPipeline) -> dict[str, Any]:
        record = await pipeline.generate_composite(job_id, composite_id)
        return {"job_id": job_id, "composite_id": composite_id, "image_url": record.image_url}

    return _execute(self, job_id, f"composite {composite_id}", work)


@celery_app.task(
    base=PipelineTask,
    bind=True,
    name="pipeline.generate_single_veo_clip",
    soft_time_limit=config.pipeline.clips_time_limit,
    time_limit=config.pipeline.clips_time_limit + _HARD_LIMIT_GRACE,
)
def generate_single_veo_clip_task(self, job_id: str, call_id: str) -> dict[str, Any]:
    """
    Generate one planned Veo clip for a job. Routed to the veo queue.

    Args:
        job_id: Video job identifier
        call_id: Plan Veo call id, e.g. "call_2"

    Returns:
        Job id, call id and the stored clip URL
    """
    async def work(pipeline: VideoJobPipeline) -> dict[str, Any]:
        url = await pipeline.generate_veo_clip(job_id, call_id)
        return {"job_id": job_id, "call_id": call_id, "url": url}

    return _execute(self, job_id, f"Veo clip {call_id}", work)


async def _run_animation(generation_id: str, avatar_image_url: Optional[str]) -> dict[str, Any]:
    service = AnimationService()
    try:
        video_url = await service.run_generation(generation_id, avatar_image_url=avatar_image_url)
    finally:
        await service.aclose()
    return {"generation_id": generation_id, "video_url": video_url}


@celery_app.task(
    base=PipelineTask,
    bind=True,
    name="pipeline.generate_animation",
    soft_time_limit=config.pipeline.clips_time_limit,
    time_limit=config.pipeline.clips_time_limit + _HARD_LIMIT_GRACE,
)
def generate_animation_task(
    self,
    generation_id: str,
    avatar_image_url: Optional[str] = None,
) -> dict[str, Any]:
    """
    Animate an avatar image with Veo.

    Args:
        generation_id: Generation row driving this animation
        avatar_image_url: Overrides the avatar's stored image

    Returns:
        Generation id and the uploaded video URL
    """
    logger.info(f"Starting animation task {self.request.id} for generation {generation_id}")
    try:
        return asyncio.run(_run_animation(generation_id, avatar_image_url))
    except NON_RETRYABLE:
        raise
    except Exception as e:
        if self.request.retries < self.max_retries:
            raise self.retry(exc=e, countdown=retry_countdown(self.request.retries))
        raise


async def _run_demo_analysis(demo_id: str, mime_type: str) -> dict[str, Any]:
    service = DemoAnalysisService()
    try:
        return await service.analyze_demo(demo_id, mime_type=mime_type)
    finally:
        await service.aclose()


@celery_app.task(
    base=PipelineTask,
    bind=True,
    name="pipeline.analyze_demo",
    soft_time_limit=config.pipeline.demo_analysis_time_limit,
    time_limit=config.pipeline.demo_analysis_time_limit + _HARD_LIMIT_GRACE,
)
def analyze_demo_task(self, demo_id: str, mime_type: str = "video/mp4") -> dict[str, Any]:
    """
    Describe an uploaded demo video for the director.

    Args:
        demo_id: Catalog demo id
        mime_type: Content type of the uploaded video

    Returns:
        Demo id and the length of the stored description
    """
    logger.info(f"Starting demo analysis task {self.request.id} for demo {demo_id}")
    try:
        return asyncio.run(_run_demo_analysis(demo_id, mime_type))
    except NON_RETRYABLE:
        raise
    except Exception as e:
        if self.request.retries < self.max_retries:
            raise self.retry(exc=e, countdown=retry_countdown(self.request.retries))
        raise


@celery_app.task(name="pipeline.get_task_status")
def get_task_status(task_id: str) -> dict[str, Any]:
    """
    Get status of a pipeline task.

    Args:
        task_id: Celery task ID

    Returns:
        Task status and metadata
    """
    result = celery_app.AsyncResult(task_id)

    response = {
        "task_id": task_id,
        "status": result.status,
        "ready": result.ready(),
        "successful": result.successful() if result.ready() else None,
    }

    if result.ready():
        if result.successful():
            response["result"] = result.result
        else:
            response["error"] = str(result.result)
    elif result.status == "PENDING":
        response["message"] = "Task is pending or unknown"
    elif result.status == "STARTED":
        response["message"] = "Task has started"

    return response
