"""
Tests for the caller-facing video job service.
"""
import asyncio
import pytest
from unittest.mock import MagicMock

from ugc_pipeline.orchestration import (
    CatalogReferenceError,
    IllegalStatusTransition,
    JobNotFoundError,
    MissingStageInputError,
    PipelineStage,
    PlanItemNotFoundError,
    VideoJobPipeline,
    VideoJobService,
)
from ugc_pipeline.plan import PlanValidationError


@pytest.fixture
def trigger():
    return MagicMock(return_value="celery-task-1")


@pytest.fixture
def dispatcher():
    dispatcher = MagicMock()
    dispatcher.stage.return_value = "stage-task"
    dispatcher.sequential.return_value = "chain-task"
    dispatcher.composite.return_value = "composite-task"
    dispatcher.veo_clip.return_value = "veo-task"
    return dispatcher


@pytest.fixture
def service(catalog, mock_gemini, storage, no_wait_spacer, trigger, dispatcher):
    pipeline = VideoJobPipeline(gemini=mock_gemini, storage=storage, spacer=no_wait_spacer)
    return VideoJobService(pipeline=pipeline, trigger=trigger, dispatcher=dispatcher)


class TestCreateVideoJob:
    """Job creation and enqueueing."""

    def test_creates_pending_job_and_queues_it(self, service, trigger):
        job = service.create_video_job("user-1", "product-1", "avatar-1", "friendly", demo_ids=["demo-1"])

        assert job.status == "pending"
        assert job.demo_ids == ["demo-1"]
        assert job.trigger_job_id == "celery-task-1"
        trigger.assert_called_once_with(job.id)

    def test_trigger_failure_keeps_job(self, service, trigger):
        """Queueing is a secondary effect: the job survives without a trigger id."""
        trigger.side_effect = ConnectionError("redis down")

        job = service.create_video_job("user-1", "product-1", "avatar-1", "friendly")

        assert job.trigger_job_id is None
        assert service.get_video_job(job.id).status == "pending"

    def test_unknown_product_rejected(self, service, trigger):
        with pytest.raises(CatalogReferenceError):
            service.create_video_job("user-1", "product-404", "avatar-1", "friendly")
        trigger.assert_not_called()

    def test_unknown_avatar_rejected(self, service):
        with pytest.raises(CatalogReferenceError):
            service.create_video_job("user-1", "product-1", "avatar-404", "friendly")

    def test_unknown_demo_rejected(self, service):
        with pytest.raises(CatalogReferenceError, match="demo-404"):
            service.create_video_job("user-1", "product-1", "avatar-1", "friendly", demo_ids=["demo-404"])

    def test_supplied_plan_is_validated_and_stored(self, service, valid_plan):
        job = service.create_video_job(
            "user-1", "product-1", "avatar-1", "friendly", director_plan=valid_plan
        )

        assert job.target_duration == 16
        assert job.director_plan["veoCalls"][0]["callId"] == "call_1"

    def test_invalid_supplied_plan_rejected(self, service, valid_plan):
        valid_plan["clips"][0]["veoCallId"] = "call_9"

        with pytest.raises(PlanValidationError) as exc_info:
            service.create_video_job("user-1", "product-1", "avatar-1", "friendly", director_plan=valid_plan)

        assert any("clip_1" in e for e in exc_info.value.errors)
        assert service.get_user_video_jobs("user-1") == []


class TestQueries:
    """Reading jobs back."""

    def test_get_video_job_enforces_owner(self, service):
        job = service.create_video_job("user-1", "product-1", "avatar-1", "friendly")

        assert service.get_video_job(job.id, user_id="user-1").id == job.id
        with pytest.raises(JobNotFoundError):
            service.get_video_job(job.id, user_id="user-2")

    def test_get_user_video_jobs(self, service):
        service.create_video_job("user-1", "product-1", "avatar-1", "friendly")
        service.create_video_job("user-1", "product-1", "avatar-1", "playful")

        assert len(service.get_user_video_jobs("user-1")) == 2

    def test_progress_delegates_to_pipeline(self, service):
        job = service.create_video_job("user-1", "product-1", "avatar-1", "friendly")

        progress = service.get_job_progress(job.id)

        assert progress["job_id"] == job.id
        assert progress["status"] == "pending"


class TestRetry:
    """Requeueing failed jobs."""

    def test_retry_requires_failed_job(self, service):
        job = service.create_video_job("user-1", "product-1", "avatar-1", "friendly")

        with pytest.raises(IllegalStatusTransition):
            service.retry_video_job(job.id)

    def test_retry_requeues_failed_job(self, service, trigger):
        job = service.create_video_job("user-1", "product-1", "avatar-1", "friendly")
        service.jobs_repo.update_status(job.id, "failed", expected=["pending"], error="x", error_step="planning")
        trigger.return_value = "celery-task-2"

        assert service.retry_video_job(job.id) == "celery-task-2"
        assert service.get_video_job(job.id).trigger_job_id == "celery-task-2"


class TestStepByStep:
    """Queueing single stages and single plan items."""

    @pytest.fixture
    def planned(self, service, valid_plan):
        return service.create_video_job(
            "user-1", "product-1", "avatar-1", "friendly", director_plan=valid_plan
        )

    @pytest.mark.parametrize("stage", [PipelineStage.CLIPS, "clips"])
    def test_trigger_stage(self, service, planned, dispatcher, stage):
        assert service.trigger_stage(planned.id, stage) == "stage-task"
        dispatcher.stage.assert_called_once_with(planned.id, PipelineStage.CLIPS)

    def test_trigger_stage_enforces_owner(self, service, planned, dispatcher):
        with pytest.raises(JobNotFoundError):
            service.trigger_stage(planned.id, PipelineStage.COMPOSITES, user_id="user-2")
        dispatcher.stage.assert_not_called()

    def test_sequential_needs_plan(self, service, dispatcher):
        job = service.create_video_job("user-1", "product-1", "avatar-1", "friendly")

        with pytest.raises(MissingStageInputError):
            service.trigger_sequential_generation(job.id)
        dispatcher.sequential.assert_not_called()

    def test_sequential_queued(self, service, planned, dispatcher):
        assert service.trigger_sequential_generation(planned.id, user_id="user-1") == "chain-task"
        dispatcher.sequential.assert_called_once_with(planned.id)

    def test_trigger_composite(self, service, planned, dispatcher):
        assert service.trigger_composite_generation(planned.id, "composite_1") == "composite-task"
        dispatcher.composite.assert_called_once_with(planned.id, "composite_1")

    def test_trigger_unknown_composite(self, service, planned, dispatcher):
        with pytest.raises(PlanItemNotFoundError):
            service.trigger_composite_generation(planned.id, "composite_7")
        dispatcher.composite.assert_not_called()

    def test_veo_waits_for_its_composite(self, service, planned, dispatcher):
        with pytest.raises(MissingStageInputError, match="generate it first"):
            service.trigger_veo_generation(planned.id, "call_1")
        dispatcher.veo_clip.assert_not_called()

    def test_trigger_veo_with_delay(self, service, planned, dispatcher):
        service.jobs_repo.record_composite(planned.id, "img-1", "composite_1")

        assert service.trigger_veo_generation(planned.id, "call_1", delay_seconds=30) == "veo-task"
        dispatcher.veo_clip.assert_called_once_with(planned.id, "call_1", delay_seconds=30)

    def test_avatar_call_needs_no_composite(self, service, planned, dispatcher):
        service.trigger_veo_generation(planned.id, "call_2")

        dispatcher.veo_clip.assert_called_once_with(planned.id, "call_2", delay_seconds=0)

    def test_trigger_unknown_call(self, service, planned):
        with pytest.raises(PlanItemNotFoundError, match="call_5"):
            service.trigger_veo_generation(planned.id, "call_5")

    def test_inline_generation_and_listing(self, service, planned, mock_gemini):
        record = asyncio.run(service.generate_composite_for_job(planned.id, "composite_1", user_id="user-1"))
        url = asyncio.run(service.generate_veo_clip_for_job(planned.id, "call_1"))

        composites = service.get_composite_images_for_job(planned.id, user_id="user-1")
        assert [c.id for c in composites] == [record.id]
        assert url == f"/media/veo-clips/{planned.id}/call_1.mp4"
        assert mock_gemini.generate_video.await_args.args[1] == record.image_url

    def test_inline_generation_enforces_owner(self, service, planned, mock_gemini):
        with pytest.raises(JobNotFoundError):
            asyncio.run(service.generate_composite_for_job(planned.id, "composite_1", user_id="user-2"))
        mock_gemini.generate_image_from_reference.assert_not_awaited()
