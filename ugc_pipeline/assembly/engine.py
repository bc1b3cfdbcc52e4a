"""
Assembly Engine - renders a plan timeline into one MP4 using MoviePy.

Downloads every source once into a scratch directory, cuts each timeline
entry, concatenates in order, trims to the plan duration and returns the
encoded bytes.
"""
import os
import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Dict, Optional, Tuple

import httpx

from ..config import config
from ..plan.models import VideoGenerationPlan
from ..providers.exceptions import StorageError
from ..providers.storage import StorageBackend, load_media
from .exceptions import AssemblyError
from .timeline import Timeline, TimelineEntry, build_timeline

logger = logging.getLogger(__name__)

# Sources shorter than the requested range are cut at their end minus this margin
_END_MARGIN = 0.05


def clamp_range(start: float, end: float, duration: float) -> Tuple[float, float]:
    """Fit [start, end) inside a source of the given duration."""
    end = min(end, duration)
    start = min(start, max(end - _END_MARGIN, 0.0))
    return start, end


class AssemblyEngine:
    """Plan + sources in, one rendered video out."""

    def __init__(
        self,
        work_dir: Optional[Path] = None,
        width: int = 1080,
        height: int = 1920,
        fps: int = 30,
        storage: Optional[StorageBackend] = None,
    ):
        self.work_dir = Path(work_dir or config.paths.work_dir)
        self.storage = storage
        self.width = width
        self.height = height
        self.fps = fps

    async def assemble(
        self,
        plan: VideoGenerationPlan,
        veo_clip_map: Dict[str, str],
        demo_map: Dict[str, str],
        existing_clip_map: Dict[str, str],
    ) -> bytes:
        """
        Build the timeline, fetch its sources and render.

        Returns:
            Encoded MP4 bytes

        Raises:
            AssemblyError: missing source, failed download or failed render
        """
        timeline = build_timeline(plan, veo_clip_map, demo_map, existing_clip_map)
        logger.info(
            f"[ASSEMBLY] Timeline: {len(timeline.entries)} cuts, "
            f"{timeline.duration:.2f}s of {timeline.total_duration:.0f}s"
        )

        self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.work_dir) as tmp:
            local_paths = await self._download_sources(timeline, Path(tmp))
            output_path = Path(tmp) / "final.mp4"
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.render, timeline, local_paths, output_path)
            return output_path.read_bytes()

    async def _download_sources(self, timeline: Timeline, target_dir: Path) -> Dict[str, str]:
        local_paths: Dict[str, str] = {}
        async with httpx.AsyncClient(timeout=120.0, follow_redirects=True) as client:
            for i, url in enumerate(timeline.source_urls):
                try:
                    data = await load_media(url, client=client, storage=self.storage)
                except StorageError as e:
                    raise AssemblyError(f"Failed to fetch source {url}: {e}") from e

                path = target_dir / f"source_{i}.mp4"
                path.write_bytes(data)
                local_paths[url] = str(path)
                logger.debug(f"[ASSEMBLY] Fetched {url} -> {path}")
        return local_paths

    def render(self, timeline: Timeline, local_paths: Dict[str, str], output_path: Path) -> None:
        """Cut, concatenate and encode the timeline with MoviePy."""
        from moviepy import VideoFileClip, concatenate_videoclips

        opened: Dict[str, VideoFileClip] = {}

        def source(url: str) -> VideoFileClip:
            if url not in local_paths:
                raise AssemblyError(f"Source not downloaded: {url}")
            if url not in opened:
                opened[url] = VideoFileClip(local_paths[url])
            return opened[url]

        video = None
        try:
            cuts = [self._cut(entry, source) for entry in timeline.entries]

            logger.info("[ASSEMBLY] Concatenating clips...")
            video = concatenate_videoclips(cuts, method="compose")
            if video.duration > timeline.total_duration:
                video = video.subclipped(0, timeline.total_duration)

            os.makedirs(os.path.dirname(str(output_path)), exist_ok=True)
            logger.info(f"[ASSEMBLY] Writing video to {output_path}")
            video.write_videofile(
                str(output_path),
                fps=self.fps,
                codec="libx264",
                audio_codec="aac",
                audio_bitrate="192k",
                preset="medium",
                threads=4,
                logger=None,
            )
        except AssemblyError:
            raise
        except Exception as e:
            logger.error(f"[ASSEMBLY] Render failed: {e}")
            raise AssemblyError(f"Render failed: {e}") from e
        finally:
            if video is not None:
                video.close()
            for clip in opened.values():
                clip.close()

        logger.info(f"[ASSEMBLY] Video created: {output_path}")

    def _cut(self, entry: TimelineEntry, source):
        from moviepy import CompositeVideoClip

        visual_src = source(entry.source_url)
        start, end = clamp_range(entry.source_start, entry.source_end, visual_src.duration)
        if end <= start:
            raise AssemblyError(
                f"Clip {entry.clip_id} range {entry.source_start}-{entry.source_end}s "
                f"is outside its {visual_src.duration:.2f}s source",
                clip_id=entry.clip_id,
            )
        visual = resize_to_fill(visual_src.subclipped(start, end), self.width, self.height)

        audio = None
        audio_src = source(entry.audio_url)
        if audio_src.audio is not None:
            a_start, a_end = clamp_range(entry.audio_start, entry.audio_end, audio_src.duration)
            if a_end > a_start:
                audio = audio_src.audio.subclipped(a_start, a_end)

        length = visual.duration if audio is None else min(visual.duration, audio.duration)
        visual = visual.subclipped(0, length)

        if entry.overlay_url:
            overlay_src = source(entry.overlay_url)
            o_start, o_end = clamp_range(entry.audio_start, entry.audio_end, overlay_src.duration)
            overlay = overlay_src.subclipped(o_start, o_end).without_audio()
            overlay = overlay.resized(width=self.width // 3)
            overlay = overlay.with_position(("right", "bottom")).with_duration(length)
            visual = CompositeVideoClip([visual, overlay], size=(self.width, self.height)).with_duration(length)

        if audio is not None:
            return visual.with_audio(audio.subclipped(0, length))
        return visual.without_audio()


def resize_to_fill(clip, target_width: int, target_height: int):
    """
    Resize clip to fill target dimensions, cropping if necessary.
    Maintains aspect ratio and centers the frame.
    """
    orig_width, orig_height = clip.size

    scale = max(target_width / orig_width, target_height / orig_height)
    new_width = int(orig_width * scale)
    new_height = int(orig_height * scale)
    clip = clip.resized((new_width, new_height))

    x1 = int(new_width / 2 - target_width / 2)
    y1 = int(new_height / 2 - target_height / 2)
    return clip.cropped(x1=x1, y1=y1, width=target_width, height=target_height)


def create_thumbnail(video_bytes: bytes, time_offset: float = 1.0) -> bytes:
    """Grab one JPEG frame from an encoded video."""
    from moviepy import VideoFileClip

    with tempfile.TemporaryDirectory() as tmp:
        video_path = Path(tmp) / "clip.mp4"
        frame_path = Path(tmp) / "thumbnail.jpg"
        video_path.write_bytes(video_bytes)

        video = VideoFileClip(str(video_path))
        try:
            t = max(0.0, min(time_offset, video.duration - 0.1))
            video.save_frame(str(frame_path), t=t)
        finally:
            video.close()

        return frame_path.read_bytes()
