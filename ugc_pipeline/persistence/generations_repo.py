"""
SQLite Generations Repository.
Lifecycle of single-shot generations and the animations they produce.
"""
import json
import uuid
import logging
from datetime import datetime
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Iterable

from .database import get_connection, transaction

logger = logging.getLogger(__name__)


@dataclass
class GenerationRecord:
    """Generation row; prompt holds {"prompt": ..., "productImageUrls": [...]}."""
    id: str
    user_id: str
    status: str
    created_at: str
    updated_at: str
    prompt: Dict[str, Any] = field(default_factory=dict)
    trigger_job_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def prompt_text(self) -> str:
        return self.prompt.get("prompt") or json.dumps(self.prompt)

    @property
    def product_image_urls(self) -> list:
        return list(self.prompt.get("productImageUrls") or [])


@dataclass
class AnimationRecord:
    id: str
    user_id: str
    avatar_id: str
    generation_id: str
    prompt: str
    video_url: Optional[str] = None
    created_at: Optional[str] = None


class GenerationsRepository:
    """SQLite repository for generations and animations."""

    def create_animation_generation(
        self,
        user_id: str,
        avatar_id: str,
        prompt: str,
        product_image_urls: Optional[list] = None,
    ) -> tuple[GenerationRecord, AnimationRecord]:
        """Insert a pending generation and its linked animation in one transaction."""
        generation_id = str(uuid.uuid4())
        animation_id = str(uuid.uuid4())
        now = datetime.utcnow().isoformat()
        prompt_json = json.dumps({"prompt": prompt, "productImageUrls": product_image_urls or []})

        with transaction() as conn:
            conn.execute("""
                INSERT INTO generations (id, user_id, status, prompt_json, created_at, updated_at)
                VALUES (?, ?, 'pending', ?, ?, ?)
            """, (generation_id, user_id, prompt_json, now, now))
            conn.execute("""
                INSERT INTO animations (id, user_id, avatar_id, generation_id, prompt, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (animation_id, user_id, avatar_id, generation_id, prompt, now, now))

        logger.info(f"Created generation {generation_id} with animation {animation_id}")
        return self.get_generation(generation_id), self.get_animation(animation_id)

    def get_generation(self, generation_id: str) -> Optional[GenerationRecord]:
        conn = get_connection()
        row = conn.execute("SELECT * FROM generations WHERE id = ?", (generation_id,)).fetchone()
        return self._row_to_generation(row) if row else None

    def set_trigger_job_id(self, generation_id: str, trigger_job_id: str) -> bool:
        conn = get_connection()
        cursor = conn.execute("""
            UPDATE generations SET trigger_job_id = ?, updated_at = ? WHERE id = ?
        """, (trigger_job_id, datetime.utcnow().isoformat(), generation_id))
        return cursor.rowcount > 0

    def update_status(
        self,
        generation_id: str,
        status: str,
        expected: Iterable[str],
        error: Optional[str] = None,
    ) -> bool:
        """Conditional status write, same contract as the video job repository."""
        expected = list(expected)
        placeholders = ", ".join("?" for _ in expected)
        conn = get_connection()
        cursor = conn.execute(
            f"UPDATE generations SET status = ?, error = ?, updated_at = ? "
            f"WHERE id = ? AND status IN ({placeholders})",
            [status, error, datetime.utcnow().isoformat(), generation_id, *expected],
        )
        return cursor.rowcount > 0

    def get_animation(self, animation_id: str) -> Optional[AnimationRecord]:
        conn = get_connection()
        row = conn.execute("SELECT * FROM animations WHERE id = ?", (animation_id,)).fetchone()
        return self._row_to_animation(row) if row else None

    def get_animation_for_generation(self, generation_id: str) -> Optional[AnimationRecord]:
        conn = get_connection()
        row = conn.execute(
            "SELECT * FROM animations WHERE generation_id = ? LIMIT 1", (generation_id,)
        ).fetchone()
        return self._row_to_animation(row) if row else None

    def set_animation_video_url(self, animation_id: str, video_url: str) -> bool:
        conn = get_connection()
        cursor = conn.execute("""
            UPDATE animations SET video_url = ?, updated_at = ? WHERE id = ?
        """, (video_url, datetime.utcnow().isoformat(), animation_id))
        return cursor.rowcount > 0

    def _row_to_generation(self, row) -> GenerationRecord:
        return GenerationRecord(
            id=row["id"],
            user_id=row["user_id"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            prompt=json.loads(row["prompt_json"] or "{}"),
            trigger_job_id=row["trigger_job_id"],
            error=row["error"],
        )

    def _row_to_animation(self, row) -> AnimationRecord:
        return AnimationRecord(
            id=row["id"],
            user_id=row["user_id"],
            avatar_id=row["avatar_id"],
            generation_id=row["generation_id"],
            prompt=row["prompt"],
            video_url=row["video_url"],
            created_at=row["created_at"],
        )


_generations_repo: Optional[GenerationsRepository] = None


def get_generations_repository() -> GenerationsRepository:
    """Get or create the generations repository singleton."""
    global _generations_repo
    if _generations_repo is None:
        _generations_repo = GenerationsRepository()
    return _generations_repo
