"""
Tests for demo video analysis.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from ugc_pipeline.orchestration import DemoAnalysisService, JobNotFoundError
from ugc_pipeline.orchestration.demos import DEMO_ANALYSIS_PROMPT
from ugc_pipeline.providers import GenerationFailure


@pytest.fixture
def gemini():
    gemini = MagicMock()
    gemini.analyze_video = AsyncMock(return_value="Hands apply two drops and pat them in, 0-6s.")
    gemini.close = AsyncMock()
    return gemini


@pytest.fixture
def service(catalog, gemini):
    return DemoAnalysisService(catalog_repo=catalog["repo"], gemini=gemini)


class TestAnalyzeDemo:
    """Describing a catalog demo."""

    def test_description_stored(self, service, catalog, gemini):
        result = asyncio.run(service.analyze_demo("demo-1", mime_type="video/webm"))

        assert result == {"demo_id": "demo-1", "analysis_length": 44}
        assert catalog["repo"].get_demo("demo-1").description == "Hands apply two drops and pat them in, 0-6s."
        gemini.analyze_video.assert_awaited_once_with(
            "/media/catalog/demo.mp4", DEMO_ANALYSIS_PROMPT, mime_type="video/webm"
        )

    def test_unknown_demo(self, service, gemini):
        with pytest.raises(JobNotFoundError, match="Demo not found: demo-9"):
            asyncio.run(service.analyze_demo("demo-9"))
        gemini.analyze_video.assert_not_awaited()

    def test_failed_analysis_keeps_old_description(self, service, catalog, gemini):
        gemini.analyze_video.side_effect = GenerationFailure("gemini", "Video analysis returned no text")

        with pytest.raises(GenerationFailure):
            asyncio.run(service.analyze_demo("demo-1"))

        assert catalog["repo"].get_demo("demo-1").description == "Applying the serum"

    def test_aclose_closes_client(self, service, gemini):
        asyncio.run(service.aclose())

        gemini.close.assert_awaited_once()


class TestEnqueue:
    def test_enqueue_returns_task_id(self):
        from ugc_pipeline.orchestration.demos import enqueue_demo_analysis

        with patch("ugc_pipeline.orchestration.tasks.analyze_demo_task") as task:
            task.delay.return_value.id = "celery-demo-1"

            assert enqueue_demo_analysis("demo-1", mime_type="video/webm") == "celery-demo-1"

        task.delay.assert_called_once_with("demo-1", mime_type="video/webm")
