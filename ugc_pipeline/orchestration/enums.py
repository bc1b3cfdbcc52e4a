"""
Pipeline status enumerations and the legal transitions between them.
"""
from enum import Enum
from typing import FrozenSet, List, Optional


class JobStatus(str, Enum):
    """
    Lifecycle of a video job.

    pending -> planning -> generating_composites -> composites_completed
    -> generating_clips -> clips_completed -> assembling -> completed

    A job created with a plan skips planning, and a plan without composites
    goes straight to composites_completed. Any non-terminal status may
    move to failed; a failed job is reopened only into the stage that failed.
    """
    PENDING = "pending"
    PLANNING = "planning"
    GENERATING_COMPOSITES = "generating_composites"
    COMPOSITES_COMPLETED = "composites_completed"
    GENERATING_CLIPS = "generating_clips"
    CLIPS_COMPLETED = "clips_completed"
    ASSEMBLING = "assembling"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_string(cls, value: str) -> "JobStatus":
        """Get status from string value."""
        value_lower = value.lower()
        for status in cls:
            if status.value == value_lower:
                return status
        raise ValueError(f"Unknown job status: {value}")

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in _JOB_TRANSITIONS[self]

    @classmethod
    def predecessors_of(cls, target: "JobStatus") -> List["JobStatus"]:
        """Statuses from which ``target`` may be entered."""
        return [status for status in cls if target in _JOB_TRANSITIONS[status]]


# Running statuses may be re-entered so a redelivered task can resume its stage.
_JOB_TRANSITIONS = {
    JobStatus.PENDING: frozenset({
        JobStatus.PLANNING, JobStatus.GENERATING_COMPOSITES, JobStatus.COMPOSITES_COMPLETED,
        JobStatus.FAILED,
    }),
    JobStatus.PLANNING: frozenset({
        JobStatus.PLANNING, JobStatus.GENERATING_COMPOSITES, JobStatus.COMPOSITES_COMPLETED,
        JobStatus.FAILED,
    }),
    JobStatus.GENERATING_COMPOSITES: frozenset({
        JobStatus.GENERATING_COMPOSITES, JobStatus.COMPOSITES_COMPLETED, JobStatus.FAILED,
    }),
    JobStatus.COMPOSITES_COMPLETED: frozenset({
        JobStatus.GENERATING_CLIPS, JobStatus.FAILED,
    }),
    JobStatus.GENERATING_CLIPS: frozenset({
        JobStatus.GENERATING_CLIPS, JobStatus.CLIPS_COMPLETED, JobStatus.FAILED,
    }),
    JobStatus.CLIPS_COMPLETED: frozenset({
        JobStatus.ASSEMBLING, JobStatus.FAILED,
    }),
    JobStatus.ASSEMBLING: frozenset({
        JobStatus.ASSEMBLING, JobStatus.COMPLETED, JobStatus.FAILED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset({
        JobStatus.PLANNING, JobStatus.GENERATING_COMPOSITES,
        JobStatus.GENERATING_CLIPS, JobStatus.ASSEMBLING,
    }),
}


class PipelineStage(str, Enum):
    """
    Independently retryable unit of work. The value is what gets stored
    in ``error_step`` when the stage fails.
    """
    PLANNING = "planning"
    COMPOSITES = "composites"
    CLIPS = "clips"
    ASSEMBLY = "assembly"

    @property
    def running_status(self) -> JobStatus:
        return {
            PipelineStage.PLANNING: JobStatus.PLANNING,
            PipelineStage.COMPOSITES: JobStatus.GENERATING_COMPOSITES,
            PipelineStage.CLIPS: JobStatus.GENERATING_CLIPS,
            PipelineStage.ASSEMBLY: JobStatus.ASSEMBLING,
        }[self]

    @property
    def completed_status(self) -> Optional[JobStatus]:
        """Status written when the stage finishes; planning keeps its running status."""
        return {
            PipelineStage.PLANNING: None,
            PipelineStage.COMPOSITES: JobStatus.COMPOSITES_COMPLETED,
            PipelineStage.CLIPS: JobStatus.CLIPS_COMPLETED,
            PipelineStage.ASSEMBLY: JobStatus.COMPLETED,
        }[self]

    @property
    def done_statuses(self) -> FrozenSet[JobStatus]:
        """Job statuses that imply this stage already finished."""
        later = _STATUS_ORDER[_STATUS_ORDER.index(self.running_status) + 1:]
        return frozenset(later)

    @classmethod
    def from_string(cls, value: str) -> "PipelineStage":
        value_lower = value.lower()
        for stage in cls:
            if stage.value == value_lower:
                return stage
        raise ValueError(f"Unknown pipeline stage: {value}")


_STATUS_ORDER = [
    JobStatus.PENDING,
    JobStatus.PLANNING,
    JobStatus.GENERATING_COMPOSITES,
    JobStatus.COMPOSITES_COMPLETED,
    JobStatus.GENERATING_CLIPS,
    JobStatus.CLIPS_COMPLETED,
    JobStatus.ASSEMBLING,
    JobStatus.COMPLETED,
]

STAGE_ORDER = [
    PipelineStage.PLANNING,
    PipelineStage.COMPOSITES,
    PipelineStage.CLIPS,
    PipelineStage.ASSEMBLY,
]


class GenerationStatus(str, Enum):
    """Lifecycle of a single-shot generation (avatar animation)."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def can_transition_to(self, target: "GenerationStatus") -> bool:
        return target in _GENERATION_TRANSITIONS[self]

    @classmethod
    def predecessors_of(cls, target: "GenerationStatus") -> List["GenerationStatus"]:
        return [status for status in cls if target in _GENERATION_TRANSITIONS[status]]


_GENERATION_TRANSITIONS = {
    GenerationStatus.PENDING: frozenset({GenerationStatus.PROCESSING, GenerationStatus.FAILED}),
    GenerationStatus.PROCESSING: frozenset({
        GenerationStatus.PROCESSING, GenerationStatus.COMPLETED, GenerationStatus.FAILED,
    }),
    GenerationStatus.COMPLETED: frozenset(),
    GenerationStatus.FAILED: frozenset({GenerationStatus.PROCESSING}),
}
