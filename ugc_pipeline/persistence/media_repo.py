"""
Generated media repository.
Composite images and Veo clips produced for a job, keyed by their plan ids.
"""
import json
import uuid
import logging
from dataclasses import dataclass, field
from typing import Optional, List

from .database import get_connection

logger = logging.getLogger(__name__)


@dataclass
class CompositeImageRecord:
    """Avatar + product composite generated for one plan composite."""
    id: str
    job_id: str
    plan_composite_id: str
    user_id: str
    avatar_id: str
    product_id: str
    prompt: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    product_image_indices: List[int] = field(default_factory=list)
    created_at: Optional[str] = None


@dataclass
class VeoClipRecord:
    """Video clip generated for one Veo call."""
    id: str
    job_id: str
    call_id: str
    source_image_url: str
    prompt: str
    video_url: Optional[str] = None
    created_at: Optional[str] = None


class MediaRepository:
    """SQLite repository for composite images and Veo clips."""

    # -- composites -------------------------------------------------------

    def save_composite(
        self,
        job_id: str,
        plan_composite_id: str,
        user_id: str,
        avatar_id: str,
        product_id: str,
        prompt: str,
        image_url: str,
        description: Optional[str] = None,
        product_image_indices: Optional[List[int]] = None,
    ) -> CompositeImageRecord:
        """Insert the composite, or fill in the URL of an earlier partial row."""
        conn = get_connection()
        conn.execute("""
            INSERT INTO composite_images (
                id, job_id, plan_composite_id, user_id, avatar_id, product_id,
                product_image_indices_json, prompt, description, image_url
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(job_id, plan_composite_id) DO UPDATE SET
                image_url = excluded.image_url,
                prompt = excluded.prompt,
                description = excluded.description
        """, (
            str(uuid.uuid4()), job_id, plan_composite_id, user_id, avatar_id, product_id,
            json.dumps(product_image_indices or []), prompt, description, image_url,
        ))

        logger.debug(f"Saved composite {plan_composite_id} for job {job_id}")
        return self.get_composite(job_id, plan_composite_id)

    def get_composite(self, job_id: str, plan_composite_id: str) -> Optional[CompositeImageRecord]:
        conn = get_connection()
        row = conn.execute(
            "SELECT * FROM composite_images WHERE job_id = ? AND plan_composite_id = ?",
            (job_id, plan_composite_id)
        ).fetchone()
        return self._row_to_composite(row) if row else None

    def get_job_composites(self, job_id: str) -> List[CompositeImageRecord]:
        conn = get_connection()
        cursor = conn.execute(
            "SELECT * FROM composite_images WHERE job_id = ? ORDER BY created_at ASC",
            (job_id,)
        )
        return [self._row_to_composite(row) for row in cursor.fetchall()]

    # -- Veo clips --------------------------------------------------------

    def save_veo_clip(
        self,
        job_id: str,
        call_id: str,
        source_image_url: str,
        prompt: str,
        video_url: str,
    ) -> VeoClipRecord:
        conn = get_connection()
        conn.execute("""
            INSERT INTO veo_clips (id, job_id, call_id, source_image_url, prompt, video_url)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(job_id, call_id) DO UPDATE SET
                video_url = excluded.video_url,
                source_image_url = excluded.source_image_url
        """, (str(uuid.uuid4()), job_id, call_id, source_image_url, prompt, video_url))

        logger.debug(f"Saved Veo clip {call_id} for job {job_id}")
        return self.get_veo_clip(job_id, call_id)

    def get_veo_clip(self, job_id: str, call_id: str) -> Optional[VeoClipRecord]:
        conn = get_connection()
        row = conn.execute(
            "SELECT * FROM veo_clips WHERE job_id = ? AND call_id = ?",
            (job_id, call_id)
        ).fetchone()
        return self._row_to_veo_clip(row) if row else None

    def get_job_veo_clips(self, job_id: str) -> List[VeoClipRecord]:
        conn = get_connection()
        cursor = conn.execute(
            "SELECT * FROM veo_clips WHERE job_id = ? ORDER BY created_at ASC",
            (job_id,)
        )
        return [self._row_to_veo_clip(row) for row in cursor.fetchall()]

    def _row_to_composite(self, row) -> CompositeImageRecord:
        return CompositeImageRecord(
            id=row["id"],
            job_id=row["job_id"],
            plan_composite_id=row["plan_composite_id"],
            user_id=row["user_id"],
            avatar_id=row["avatar_id"],
            product_id=row["product_id"],
            prompt=row["prompt"],
            description=row["description"],
            image_url=row["image_url"],
            product_image_indices=json.loads(row["product_image_indices_json"] or "[]"),
            created_at=row["created_at"],
        )

    def _row_to_veo_clip(self, row) -> VeoClipRecord:
        return VeoClipRecord(
            id=row["id"],
            job_id=row["job_id"],
            call_id=row["call_id"],
            source_image_url=row["source_image_url"],
            prompt=row["prompt"],
            video_url=row["video_url"],
            created_at=row["created_at"],
        )


_media_repo: Optional[MediaRepository] = None


def get_media_repository() -> MediaRepository:
    """Get or create the media repository singleton."""
    global _media_repo
    if _media_repo is None:
        _media_repo = MediaRepository()
    return _media_repo
