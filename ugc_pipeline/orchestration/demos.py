"""
Demo video analysis.

Uploaded product demos get a written description so the director knows
what each one shows and which timestamps are worth cutting into an ad.
"""
import logging
from typing import Any, Dict, Optional

from ..persistence import CatalogRepository, get_catalog_repository
from ..providers import GeminiClient
from .exceptions import JobNotFoundError

logger = logging.getLogger(__name__)

DEMO_ANALYSIS_PROMPT = """Watch this product demo video and describe it for a video editor.

Cover:
- What the product is and how it is shown being used
- Each distinct shot with approximate start and end times in seconds
- Moments that would work as b-roll in a short vertical ad
- On-screen text, voiceover or music if present

Write plain text, no markdown headings. Keep it under 300 words."""


def enqueue_demo_analysis(demo_id: str, mime_type: str = "video/mp4") -> str:
    from .tasks import analyze_demo_task

    return analyze_demo_task.delay(demo_id, mime_type=mime_type).id


class DemoAnalysisService:
    """Fills ``demos.description`` from a Gemini reading of the video."""

    def __init__(
        self,
        catalog_repo: Optional[CatalogRepository] = None,
        gemini: Optional[GeminiClient] = None,
    ):
        self.catalog_repo = catalog_repo or get_catalog_repository()
        self._gemini = gemini

    @property
    def gemini(self) -> GeminiClient:
        if self._gemini is None:
            self._gemini = GeminiClient()
        return self._gemini

    async def aclose(self) -> None:
        if self._gemini is not None:
            await self._gemini.close()

    async def analyze_demo(self, demo_id: str, mime_type: str = "video/mp4") -> Dict[str, Any]:
        """
        Analyze a demo and store the description.

        Raises:
            JobNotFoundError: unknown demo
            GenerationFailure: the model call failed; the demo keeps its
                previous description
        """
        demo = self.catalog_repo.get_demo(demo_id)
        if demo is None:
            raise JobNotFoundError(demo_id, kind="Demo")

        logger.info(f"[DEMOS] Analyzing demo {demo_id}")
        analysis = await self.gemini.analyze_video(demo.url, DEMO_ANALYSIS_PROMPT, mime_type=mime_type)

        self.catalog_repo.set_demo_description(demo_id, analysis)
        logger.info(f"[DEMOS] Demo {demo_id} described ({len(analysis)} chars)")
        return {"demo_id": demo_id, "analysis_length": len(analysis)}
