"""
SQLite Video Jobs Repository.
Persists UGC video jobs so every stage can resume after a restart or retry.
"""
import json
import logging
from datetime import datetime
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Iterable

from .database import get_connection, transaction

logger = logging.getLogger(__name__)


@dataclass
class VideoJobRecord:
    """Complete video job record."""
    id: str
    user_id: str
    product_id: str
    avatar_id: str
    tone: str
    target_duration: int
    status: str
    created_at: str
    updated_at: str
    demo_ids: List[str] = field(default_factory=list)
    trigger_job_id: Optional[str] = None
    director_plan: Optional[Dict[str, Any]] = None

    # Stage progress
    composite_image_ids: List[str] = field(default_factory=list)
    completed_composite_ids: List[str] = field(default_factory=list)
    veo_clip_urls: List[str] = field(default_factory=list)
    completed_veo_call_ids: List[str] = field(default_factory=list)

    # Result
    final_video_url: Optional[str] = None
    final_duration: Optional[float] = None
    error: Optional[str] = None
    error_step: Optional[str] = None


# Columns update_status may touch alongside the status itself
_STATUS_FIELD_COLUMNS = {
    "error": "error",
    "error_step": "error_step",
    "final_video_url": "final_video_url",
    "final_duration": "final_duration",
    "target_duration": "target_duration",
}


class VideoJobsRepository:
    """
    SQLite repository for video generation jobs.

    Status writes are conditional single-row updates: callers pass the
    statuses the row must currently be in, and a lost race shows up as
    a False return rather than an overwritten status.
    """

    def create_job(
        self,
        job_id: str,
        user_id: str,
        product_id: str,
        avatar_id: str,
        tone: str,
        target_duration: int = 24,
        demo_ids: Optional[List[str]] = None,
        director_plan: Optional[Dict[str, Any]] = None,
    ) -> VideoJobRecord:
        """Create a new job in the pending state."""
        conn = get_connection()
        now = datetime.utcnow().isoformat()

        conn.execute("""
            INSERT INTO video_jobs (
                id, user_id, product_id, avatar_id, demo_ids_json, tone,
                target_duration, status, director_plan_json, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?)
        """, (
            job_id, user_id, product_id, avatar_id,
            json.dumps(demo_ids or []), tone, target_duration,
            json.dumps(director_plan) if director_plan is not None else None,
            now, now,
        ))

        logger.info(f"Created video job: {job_id} for user {user_id}")
        return self.get_job(job_id)

    def get_job(self, job_id: str) -> Optional[VideoJobRecord]:
        """Get a job by ID."""
        conn = get_connection()
        cursor = conn.execute("SELECT * FROM video_jobs WHERE id = ?", (job_id,))
        row = cursor.fetchone()
        return self._row_to_record(row) if row else None

    def get_user_jobs(self, user_id: str, limit: int = 50) -> List[VideoJobRecord]:
        """Get jobs for a user, newest first."""
        conn = get_connection()
        cursor = conn.execute("""
            SELECT * FROM video_jobs
            WHERE user_id = ?
            ORDER BY created_at DESC
            LIMIT ?
        """, (user_id, limit))
        return [self._row_to_record(row) for row in cursor.fetchall()]

    def set_trigger_job_id(self, job_id: str, trigger_job_id: str) -> bool:
        conn = get_connection()
        cursor = conn.execute("""
            UPDATE video_jobs
            SET trigger_job_id = ?, updated_at = ?
            WHERE id = ?
        """, (trigger_job_id, datetime.utcnow().isoformat(), job_id))
        return cursor.rowcount > 0

    def update_status(
        self,
        job_id: str,
        status: str,
        expected: Iterable[str],
        **fields: Any,
    ) -> bool:
        """
        Move a job to ``status`` if it is currently in one of ``expected``.

        Extra keyword fields (error, error_step, final_video_url,
        final_duration, target_duration) are written in the same statement.

        Returns:
            True if the row was updated
        """
        expected = list(expected)
        if not expected:
            return False

        assignments = ["status = ?", "updated_at = ?"]
        params: List[Any] = [status, datetime.utcnow().isoformat()]
        for name, value in fields.items():
            column = _STATUS_FIELD_COLUMNS.get(name)
            if column is None:
                raise ValueError(f"Unknown video job field: {name}")
            assignments.append(f"{column} = ?")
            params.append(value)

        placeholders = ", ".join("?" for _ in expected)
        params.append(job_id)
        params.extend(expected)

        conn = get_connection()
        cursor = conn.execute(
            f"UPDATE video_jobs SET {', '.join(assignments)} "
            f"WHERE id = ? AND status IN ({placeholders})",
            params,
        )
        updated = cursor.rowcount > 0
        if updated:
            logger.info(f"[STATUS] Job {job_id} -> {status}")
        else:
            logger.warning(f"[STATUS] Job {job_id} not in {expected}, {status} not applied")
        return updated

    def save_plan(self, job_id: str, plan: Dict[str, Any], target_duration: int) -> bool:
        """Store the validated director plan; the plan's duration wins."""
        conn = get_connection()
        cursor = conn.execute("""
            UPDATE video_jobs
            SET director_plan_json = ?, target_duration = ?, updated_at = ?
            WHERE id = ?
        """, (json.dumps(plan), target_duration, datetime.utcnow().isoformat(), job_id))
        logger.info(f"[CHECKPOINT] Job {job_id} plan saved ({target_duration}s)")
        return cursor.rowcount > 0

    def record_composite(self, job_id: str, composite_image_id: str, plan_composite_id: str) -> bool:
        """Append a finished composite to the job's progress arrays."""
        with transaction() as conn:
            row = conn.execute(
                "SELECT composite_image_ids_json, completed_composite_ids_json FROM video_jobs WHERE id = ?",
                (job_id,)
            ).fetchone()
            if not row:
                return False

            image_ids = _append_unique(json.loads(row["composite_image_ids_json"]), composite_image_id)
            completed = _append_unique(json.loads(row["completed_composite_ids_json"]), plan_composite_id)

            conn.execute("""
                UPDATE video_jobs
                SET composite_image_ids_json = ?, completed_composite_ids_json = ?, updated_at = ?
                WHERE id = ?
            """, (json.dumps(image_ids), json.dumps(completed), datetime.utcnow().isoformat(), job_id))

        logger.info(f"[CHECKPOINT] Job {job_id} composite {plan_composite_id} recorded")
        return True

    def record_veo_clip(self, job_id: str, call_id: str, video_url: str) -> bool:
        """Append a finished Veo clip to the job's progress arrays."""
        with transaction() as conn:
            row = conn.execute(
                "SELECT veo_clip_urls_json, completed_veo_call_ids_json FROM video_jobs WHERE id = ?",
                (job_id,)
            ).fetchone()
            if not row:
                return False

            urls = _append_unique(json.loads(row["veo_clip_urls_json"]), video_url)
            completed = _append_unique(json.loads(row["completed_veo_call_ids_json"]), call_id)

            conn.execute("""
                UPDATE video_jobs
                SET veo_clip_urls_json = ?, completed_veo_call_ids_json = ?, updated_at = ?
                WHERE id = ?
            """, (json.dumps(urls), json.dumps(completed), datetime.utcnow().isoformat(), job_id))

        logger.info(f"[CHECKPOINT] Job {job_id} Veo call {call_id} recorded")
        return True

    def _row_to_record(self, row) -> VideoJobRecord:
        """Convert database row to VideoJobRecord."""
        plan_json = row["director_plan_json"]
        return VideoJobRecord(
            id=row["id"],
            user_id=row["user_id"],
            product_id=row["product_id"],
            avatar_id=row["avatar_id"],
            tone=row["tone"],
            target_duration=row["target_duration"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            demo_ids=json.loads(row["demo_ids_json"] or "[]"),
            trigger_job_id=row["trigger_job_id"],
            director_plan=json.loads(plan_json) if plan_json else None,
            composite_image_ids=json.loads(row["composite_image_ids_json"] or "[]"),
            completed_composite_ids=json.loads(row["completed_composite_ids_json"] or "[]"),
            veo_clip_urls=json.loads(row["veo_clip_urls_json"] or "[]"),
            completed_veo_call_ids=json.loads(row["completed_veo_call_ids_json"] or "[]"),
            final_video_url=row["final_video_url"],
            final_duration=row["final_duration"],
            error=row["error"],
            error_step=row["error_step"],
        )


def _append_unique(items: List[str], value: str) -> List[str]:
    if value not in items:
        items.append(value)
    return items


_video_jobs_repo: Optional[VideoJobsRepository] = None


def get_video_jobs_repository() -> VideoJobsRepository:
    """Get or create the video jobs repository singleton."""
    global _video_jobs_repo
    if _video_jobs_repo is None:
        _video_jobs_repo = VideoJobsRepository()
    return _video_jobs_repo
