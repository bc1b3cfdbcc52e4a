"""
Timeline construction.

Turns a plan plus resolved source URLs into an ordered list of cuts.
Pure: no I/O, no moviepy, so the cut decisions are testable on their own.

Each plan clip is placed on the output timeline in ``order``. Its
originating segment is the one sharing its veoCallId with the greatest
overlap on the output timeline; failing that, an overlaid demo_broll
segment covering it. The segment decides where the picture comes from:

- demo_broll with a demoId: the demo, offset from demoTimestamp[0]
- a segment reusing an indexed clip: that clip, from 0
- a segment with a brollVeoCallId: the b-roll Veo clip
- otherwise: the clip's own Veo generation

Audio always comes from the clip's own Veo generation. When the picture
is not that generation and the segment overlays a talking head, the
Veo generation is also kept as a picture-in-picture overlay.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..plan.models import SegmentType, VideoClip, VideoGenerationPlan, VideoSegment
from .exceptions import AssemblyError


class SourceKind(str, Enum):
    VEO = "veo"
    DEMO = "demo"
    INDEXED = "indexed"


@dataclass(frozen=True)
class TimelineEntry:
    clip_id: str
    order: int
    timeline_start: float
    source_kind: SourceKind
    source_url: str
    source_start: float
    source_end: float
    audio_url: str
    audio_start: float
    audio_end: float
    segment_index: Optional[int] = None
    overlay_url: Optional[str] = None

    @property
    def duration(self) -> float:
        return self.source_end - self.source_start


@dataclass
class Timeline:
    total_duration: float
    entries: List[TimelineEntry] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return sum(entry.duration for entry in self.entries)

    @property
    def source_urls(self) -> List[str]:
        """Every URL the renderer needs, each once, in first-use order."""
        urls: List[str] = []
        for entry in self.entries:
            for url in (entry.source_url, entry.audio_url, entry.overlay_url):
                if url and url not in urls:
                    urls.append(url)
        return urls


def _overlap(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    return max(0.0, min(a[1], b[1]) - max(a[0], b[0]))


def find_segment(
    plan: VideoGenerationPlan,
    clip: VideoClip,
    timeline_start: float,
) -> Optional[VideoSegment]:
    """Segment a clip belongs to, or None when nothing claims it."""
    span = (timeline_start, timeline_start + clip.duration)

    candidates = [s for s in plan.segments if s.veo_call_id == clip.veo_call_id]
    if candidates:
        return max(candidates, key=lambda s: _overlap(span, (s.start_time, s.end_time)))

    overlays = [
        s for s in plan.segments
        if s.type == SegmentType.DEMO_BROLL
        and s.overlay_talking_head
        and _overlap(span, (s.start_time, s.end_time)) > 0
    ]
    if overlays:
        return max(overlays, key=lambda s: _overlap(span, (s.start_time, s.end_time)))
    return None


def _lookup(mapping: Dict[str, str], key: str, what: str, clip_id: str) -> str:
    url = mapping.get(key)
    if not url:
        raise AssemblyError(f"Missing {what} source {key} for clip {clip_id}", clip_id=clip_id)
    return url


def build_timeline(
    plan: VideoGenerationPlan,
    veo_clip_map: Dict[str, str],
    demo_map: Dict[str, str],
    existing_clip_map: Dict[str, str],
) -> Timeline:
    """
    Resolve every plan clip to a concrete cut, trimmed to totalDuration.

    Raises:
        AssemblyError: a referenced Veo clip, demo or indexed clip has no URL
    """
    timeline = Timeline(total_duration=float(plan.total_duration))
    cursor = 0.0

    for clip in plan.clips_in_order():
        if cursor >= timeline.total_duration:
            break

        veo_url = _lookup(veo_clip_map, clip.veo_call_id, "Veo clip", clip.clip_id)
        segment = find_segment(plan, clip, cursor)

        kind = SourceKind.VEO
        source_url = veo_url
        source_start, source_end = clip.start_time, clip.end_time
        overlay_url = None

        if segment is not None and segment.type == SegmentType.DEMO_BROLL and segment.demo_id:
            kind = SourceKind.DEMO
            source_url = _lookup(demo_map, segment.demo_id, "demo", clip.clip_id)
            offset = segment.demo_timestamp[0] if segment.demo_timestamp else 0.0
            source_start, source_end = offset + clip.start_time, offset + clip.end_time
        elif segment is not None and segment.existing_clip_id:
            kind = SourceKind.INDEXED
            source_url = _lookup(existing_clip_map, segment.existing_clip_id, "indexed clip", clip.clip_id)
            source_start, source_end = 0.0, clip.duration
        elif (
            segment is not None
            and segment.broll_veo_call_id
            and segment.broll_veo_call_id != clip.veo_call_id
        ):
            source_url = _lookup(veo_clip_map, segment.broll_veo_call_id, "b-roll Veo clip", clip.clip_id)

        if source_url != veo_url and segment is not None and segment.overlay_talking_head:
            overlay_url = veo_url

        # Trim the last cut so the output never exceeds totalDuration
        remaining = timeline.total_duration - cursor
        length = min(clip.duration, remaining)
        if length <= 0:
            continue

        timeline.entries.append(TimelineEntry(
            clip_id=clip.clip_id,
            order=clip.order,
            timeline_start=cursor,
            source_kind=kind,
            source_url=source_url,
            source_start=source_start,
            source_end=source_start + length,
            audio_url=veo_url,
            audio_start=clip.start_time,
            audio_end=clip.start_time + length,
            segment_index=segment.segment_index if segment is not None else None,
            overlay_url=overlay_url,
        ))
        cursor += length

    if not timeline.entries:
        raise AssemblyError("Plan produced an empty timeline")
    return timeline
