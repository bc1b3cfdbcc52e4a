"""
Pipeline exceptions.
"""
from typing import List, Optional

from ..providers.exceptions import GenerationFailure


class PipelineError(Exception):
    """Base pipeline error."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        self.message = message
        self.job_id = job_id
        super().__init__(message)


class JobNotFoundError(PipelineError):
    def __init__(self, job_id: str, kind: str = "Video job"):
        super().__init__(f"{kind} not found: {job_id}", job_id=job_id)


class CatalogReferenceError(PipelineError):
    """A product, avatar or demo id does not exist."""


class IllegalStatusTransition(PipelineError):
    """A status write that the transition table (or a concurrent writer) rejects."""

    def __init__(self, job_id: str, current: str, target: str, reason: Optional[str] = None):
        self.current = current
        self.target = target
        message = f"Job {job_id}: illegal transition {current} -> {target}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, job_id=job_id)


class MissingStageInputError(PipelineError):
    """A stage started without what an earlier stage should have produced."""


class PlanRejectedError(GenerationFailure):
    """The director produced a plan that failed validation."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("director", f"Plan rejected: {'; '.join(self.errors)}")


class PlanItemNotFoundError(PipelineError):
    """A composite or Veo call id that the job's plan does not contain."""
