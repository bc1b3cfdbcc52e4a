"""
Tests for individual pipeline stages.
"""
import asyncio
import sqlite3
import pytest
from unittest.mock import AsyncMock, MagicMock

from ugc_pipeline.orchestration.exceptions import MissingStageInputError
from ugc_pipeline.orchestration.stages import (
    AssemblyStage,
    ClipStage,
    CompositeStage,
    RequestSpacer,
    StageContext,
    extract_audio_mood,
    resolve_product_image,
)
from ugc_pipeline.persistence import MediaRepository, VideoJobsRepository
from ugc_pipeline.plan import SourceImageType, VideoGenerationPlan
from ugc_pipeline.providers import GenerationFailure


@pytest.fixture
def ctx(catalog, valid_plan):
    jobs_repo = VideoJobsRepository()
    job = jobs_repo.create_job(
        job_id="job-1", user_id="user-1", product_id="product-1", avatar_id="avatar-1",
        tone="friendly", target_duration=16, director_plan=valid_plan,
    )
    return StageContext(
        job=job,
        plan=VideoGenerationPlan.model_validate(valid_plan),
        product=catalog["product"],
        avatar=catalog["avatar"],
    )


class TestRequestSpacer:
    """Minimum gap between Veo requests."""

    def test_first_request_does_not_wait(self):
        sleep = AsyncMock()
        spacer = RequestSpacer(30.0, clock=MagicMock(return_value=100.0), sleep=sleep)

        asyncio.run(spacer.wait())

        sleep.assert_not_awaited()

    def test_second_request_waits_remaining_gap(self):
        sleep = AsyncMock()
        clock = MagicMock(side_effect=[100.0, 110.0, 130.0])
        spacer = RequestSpacer(30.0, clock=clock, sleep=sleep)

        asyncio.run(spacer.wait())
        asyncio.run(spacer.wait())

        sleep.assert_awaited_once_with(20.0)

    def test_no_wait_after_gap_elapsed(self):
        sleep = AsyncMock()
        clock = MagicMock(side_effect=[100.0, 140.0, 140.0])
        spacer = RequestSpacer(30.0, clock=clock, sleep=sleep)

        asyncio.run(spacer.wait())
        asyncio.run(spacer.wait())

        sleep.assert_not_awaited()


class TestCompositeStage:
    """Composite generation and per-composite resume."""

    def _stage(self, gemini, storage):
        return CompositeStage(gemini, VideoJobsRepository(), MediaRepository(), storage=storage)

    def test_generate_uploads_and_records(self, ctx, mock_gemini, storage):
        stage = self._stage(mock_gemini, storage)

        record = asyncio.run(stage.generate(ctx, ctx.plan.image_generation[0]))

        assert record.image_url == "/media/composites/job-1/composite_1.png"
        assert record.product_image_indices == [0]
        assert (storage.media_dir / "composites/job-1/composite_1.png").read_bytes() == b"image"
        args = mock_gemini.generate_image_from_reference.await_args.args
        assert args[0] == "/media/catalog/avatar.png"
        assert args[3] == ["/media/catalog/serum-front.png"]
        assert VideoJobsRepository().get_job("job-1").completed_composite_ids == ["composite_1"]

    def test_generate_returns_stored_composite(self, ctx, mock_gemini, storage):
        MediaRepository().save_composite("job-1", "composite_1", "user-1", "avatar-1", "product-1", "p", "/media/c1.png")
        stage = self._stage(mock_gemini, storage)

        record = asyncio.run(stage.generate(ctx, ctx.plan.image_generation[0]))

        assert record.image_url == "/media/c1.png"
        mock_gemini.generate_image_from_reference.assert_not_awaited()
        assert VideoJobsRepository().get_job("job-1").completed_composite_ids == ["composite_1"]

    def test_empty_result_fails(self, ctx, mock_gemini, storage):
        mock_gemini.generate_image_from_reference.return_value = []

        with pytest.raises(GenerationFailure, match="composite_1"):
            asyncio.run(self._stage(mock_gemini, storage).run(ctx))


class TestClipStage:
    """Source image resolution and per-call resume."""

    def _stage(self, gemini, storage, spacer):
        return ClipStage(gemini, VideoJobsRepository(), MediaRepository(), storage=storage, spacer=spacer)

    def test_composite_must_exist(self, ctx, mock_gemini, storage, no_wait_spacer):
        stage = self._stage(mock_gemini, storage, no_wait_spacer)

        with pytest.raises(MissingStageInputError, match="composite_1"):
            asyncio.run(stage.run(ctx))
        mock_gemini.generate_video.assert_not_awaited()

    def test_product_source_resolves_catalog_image(self, ctx, mock_gemini, storage, no_wait_spacer):
        stage = self._stage(mock_gemini, storage, no_wait_spacer)
        call = ctx.plan.veo_calls[1].model_copy(
            update={"source_image_type": SourceImageType.PRODUCT, "source_image_ref": "PRODUCT_2"}
        )

        assert stage.resolve_source_image(ctx, call) == "/media/catalog/serum-side.png"

    def test_existing_clips_skipped(self, ctx, mock_gemini, storage, no_wait_spacer):
        media = MediaRepository()
        media.save_composite("job-1", "composite_1", "user-1", "avatar-1", "product-1", "p", "/media/c1.png")
        media.save_veo_clip("job-1", "call_1", "/media/c1.png", "p", "/media/veo-1.mp4")
        stage = self._stage(mock_gemini, storage, no_wait_spacer)

        urls = asyncio.run(stage.run(ctx))

        assert urls["call_1"] == "/media/veo-1.mp4"
        assert urls["call_2"] == "/media/veo-clips/job-1/call_2.mp4"
        assert mock_gemini.generate_video.await_count == 1
        assert VideoJobsRepository().get_job("job-1").completed_veo_call_ids == ["call_1", "call_2"]

    def test_every_generation_is_spaced(self, ctx, mock_gemini, storage):
        MediaRepository().save_composite("job-1", "composite_1", "user-1", "avatar-1", "product-1", "p", "/media/c1.png")
        spacer = MagicMock()
        spacer.wait = AsyncMock()

        asyncio.run(self._stage(mock_gemini, storage, spacer).run(ctx))

        assert spacer.wait.await_count == 2

    def test_generate_single_call(self, ctx, mock_gemini, storage, no_wait_spacer):
        stage = self._stage(mock_gemini, storage, no_wait_spacer)

        url = asyncio.run(stage.generate(ctx, ctx.plan.get_veo_call("call_2")))

        assert url == "/media/veo-clips/job-1/call_2.mp4"
        assert mock_gemini.generate_video.await_args.args[1] == "/media/catalog/avatar.png"
        assert MediaRepository().get_veo_clip("job-1", "call_2").video_url == url
        assert MediaRepository().get_veo_clip("job-1", "call_1") is None


class TestAssemblyStage:
    """Final upload, usage counters and clip indexing."""

    def _broll_ctx(self, ctx, valid_plan, catalog, existing_clip_id=None):
        segment = {"type": "product_broll", "brollPrompt": "Serum bottle on marble"}
        if existing_clip_id:
            segment["existingClipId"] = existing_clip_id
        valid_plan["segments"][1].update(segment)
        return StageContext(
            job=ctx.job, plan=VideoGenerationPlan.model_validate(valid_plan),
            product=catalog["product"], avatar=catalog["avatar"],
        )

    def _save_clips(self):
        media = MediaRepository()
        media.save_veo_clip("job-1", "call_1", "/media/c1.png", "p", "/media/veo-1.mp4")
        media.save_veo_clip("job-1", "call_2", "/media/avatar.png", "p", "/media/veo-2.mp4")

    def _engine(self):
        engine = MagicMock()
        engine.assemble = AsyncMock(return_value=b"final")
        return engine

    def test_missing_clip_blocks_assembly(self, ctx, catalog, storage):
        stage = AssemblyStage(MediaRepository(), catalog["repo"], engine=self._engine(), storage=storage)

        with pytest.raises(MissingStageInputError, match="call_1"):
            asyncio.run(stage.run(ctx))

    def test_final_video_uploaded(self, ctx, catalog, storage):
        self._save_clips()
        engine = self._engine()
        stage = AssemblyStage(MediaRepository(), catalog["repo"], engine=engine, storage=storage)

        url = asyncio.run(stage.run(ctx))

        assert url == "/media/videos/user-1/job-1/final.mp4"
        assert (storage.media_dir / "videos/user-1/job-1/final.mp4").read_bytes() == b"final"
        assert engine.assemble.await_args.args[1] == {"call_1": "/media/veo-1.mp4", "call_2": "/media/veo-2.mp4"}

    def test_broll_clip_indexed_once(self, ctx, catalog, storage, valid_plan):
        self._save_clips()
        upload_to = storage.media_dir / "veo-2.mp4"
        upload_to.parent.mkdir(parents=True, exist_ok=True)
        upload_to.write_bytes(b"clip")
        broll_ctx = self._broll_ctx(ctx, valid_plan, catalog)
        stage = AssemblyStage(MediaRepository(), catalog["repo"], engine=self._engine(), storage=storage,
                              thumbnailer=MagicMock(return_value=b"jpeg"))

        asyncio.run(stage.run(broll_ctx))
        asyncio.run(stage.record_reuse(broll_ctx))
        asyncio.run(stage.record_reuse(broll_ctx))

        clip = catalog["repo"].get_clip_by_file_url("/media/veo-2.mp4")
        assert clip.type == "product_broll"
        assert clip.description == "Serum bottle on marble"
        assert clip.audio_mood == "calm"
        assert clip.thumbnail_url == "/media/thumbnails/job-1/call_2.jpg"
        assert len(catalog["repo"].get_top_clips_for_product("product-1")) == 1

    def test_thumbnail_failure_still_indexes(self, ctx, catalog, storage, valid_plan):
        self._save_clips()
        broll_ctx = self._broll_ctx(ctx, valid_plan, catalog)
        stage = AssemblyStage(MediaRepository(), catalog["repo"], engine=self._engine(), storage=storage,
                              thumbnailer=MagicMock(side_effect=OSError("ffmpeg missing")))

        asyncio.run(stage.record_reuse(broll_ctx))

        clip = catalog["repo"].get_clip_by_file_url("/media/veo-2.mp4")
        assert clip is not None
        assert clip.thumbnail_url is None

    def test_reused_clip_usage_bumped(self, ctx, catalog, storage, valid_plan):
        self._save_clips()
        indexed = catalog["repo"].index_clip("user-1", "product_broll", 8.0, "Old clip", "/media/old.mp4",
                                             product_id="product-1")
        broll_ctx = self._broll_ctx(ctx, valid_plan, catalog, existing_clip_id=indexed.id)
        engine = self._engine()
        stage = AssemblyStage(MediaRepository(), catalog["repo"], engine=engine, storage=storage)

        asyncio.run(stage.run(broll_ctx))

        assert engine.assemble.await_args.args[3] == {indexed.id: "/media/old.mp4"}
        assert catalog["repo"].get_indexed_clips([indexed.id])[0].usage_count == 1

        asyncio.run(stage.record_reuse(broll_ctx))

        assert catalog["repo"].get_indexed_clips([indexed.id])[0].usage_count == 2


    def test_index_lookup_failure_is_logged(self, ctx, catalog, storage, valid_plan, caplog):
        self._save_clips()
        broll_ctx = self._broll_ctx(ctx, valid_plan, catalog)
        repo = MagicMock()
        repo.get_indexed_clips.return_value = []
        repo.get_clip_by_file_url.side_effect = sqlite3.OperationalError("database is locked")
        stage = AssemblyStage(MediaRepository(), repo, engine=self._engine(), storage=storage)

        asyncio.run(stage.record_reuse(broll_ctx))

        repo.index_clip.assert_not_called()
        assert "failed to index call_2" in caplog.text


class TestHelpers:
    def test_resolve_product_image_out_of_range(self, catalog):
        with pytest.raises(MissingStageInputError):
            resolve_product_image(catalog["product"], "PRODUCT_5")

    @pytest.mark.parametrize("prompt,mood", [
        ("Slow pan, calm morning light", "calm"),
        ("ENERGETIC jump cuts", "energetic"),
        ("Plain product shot", None),
    ])
    def test_extract_audio_mood(self, prompt, mood):
        assert extract_audio_mood(prompt) == mood
