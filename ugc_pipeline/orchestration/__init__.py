"""
Orchestration: the video job state machine, its stages and the caller-facing
services. Celery tasks live in ``orchestration.tasks`` and are imported by
the worker only.
"""
from .enums import JobStatus, PipelineStage, GenerationStatus, STAGE_ORDER
from .exceptions import (
    PipelineError,
    JobNotFoundError,
    CatalogReferenceError,
    IllegalStatusTransition,
    MissingStageInputError,
    PlanRejectedError,
    PlanItemNotFoundError,
)
from .stages import (
    StageContext,
    RequestSpacer,
    CompositeStage,
    ClipStage,
    AssemblyStage,
    get_veo_spacer,
)
from .pipeline import VideoJobPipeline
from .jobs import VideoJobService, get_video_job_service
from .animations import AnimationService
from .demos import DemoAnalysisService

__all__ = [
    "JobStatus",
    "PipelineStage",
    "GenerationStatus",
    "STAGE_ORDER",
    "PipelineError",
    "JobNotFoundError",
    "CatalogReferenceError",
    "IllegalStatusTransition",
    "MissingStageInputError",
    "PlanRejectedError",
    "PlanItemNotFoundError",
    "StageContext",
    "RequestSpacer",
    "CompositeStage",
    "ClipStage",
    "AssemblyStage",
    "get_veo_spacer",
    "VideoJobPipeline",
    "VideoJobService",
    "get_video_job_service",
    "AnimationService",
    "DemoAnalysisService",
]
