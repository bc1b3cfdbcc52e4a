"""
SQLite Database Connection and Schema Management.
"""
import os
import sqlite3
import logging
from pathlib import Path
from threading import Lock
from typing import Optional
from contextlib import contextmanager

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_PATH = "data/app.db"

_connection_lock = Lock()
_connection: Optional[sqlite3.Connection] = None


def get_database_path() -> str:
    """Get database path from environment or default."""
    return os.environ.get("DATABASE_PATH", DEFAULT_DATABASE_PATH)


def get_connection() -> sqlite3.Connection:
    """
    Get or create SQLite connection.
    Thread-safe singleton pattern.
    """
    global _connection

    with _connection_lock:
        if _connection is None:
            db_path = get_database_path()

            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

            _connection = sqlite3.connect(
                db_path,
                check_same_thread=False,
                isolation_level=None,
            )
            _connection.row_factory = sqlite3.Row

            _connection.execute("PRAGMA journal_mode=WAL")
            _connection.execute("PRAGMA foreign_keys=ON")
            _connection.execute("PRAGMA busy_timeout=5000")

            logger.info(f"SQLite connection established: {db_path}")

            init_schema(_connection)

        return _connection


@contextmanager
def transaction():
    """
    Context manager for database transactions.
    Auto-commits on success, rolls back on exception.
    """
    conn = get_connection()

    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise


def init_schema(conn: sqlite3.Connection) -> None:
    """
    Initialize database schema.
    Creates tables if they don't exist. JSON arrays are stored as TEXT.
    """
    conn.executescript("""
        -- Catalog owned by the surrounding app
        CREATE TABLE IF NOT EXISTS products (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            price REAL,
            description TEXT,
            hooks_json TEXT NOT NULL DEFAULT '[]',
            images_json TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS avatars (
            id TEXT PRIMARY KEY,
            user_id TEXT,
            image_url TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS demos (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            url TEXT NOT NULL,
            description TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        -- Video generation jobs
        CREATE TABLE IF NOT EXISTS video_jobs (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            product_id TEXT NOT NULL,
            avatar_id TEXT NOT NULL,
            demo_ids_json TEXT NOT NULL DEFAULT '[]',
            tone TEXT NOT NULL,
            target_duration INTEGER NOT NULL DEFAULT 24,
            status TEXT NOT NULL DEFAULT 'pending',
            trigger_job_id TEXT,
            director_plan_json TEXT,
            composite_image_ids_json TEXT NOT NULL DEFAULT '[]',
            completed_composite_ids_json TEXT NOT NULL DEFAULT '[]',
            veo_clip_urls_json TEXT NOT NULL DEFAULT '[]',
            completed_veo_call_ids_json TEXT NOT NULL DEFAULT '[]',
            final_video_url TEXT,
            final_duration REAL,
            error TEXT,
            error_step TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            FOREIGN KEY (product_id) REFERENCES products(id),
            FOREIGN KEY (avatar_id) REFERENCES avatars(id)
        );

        -- One row per plan composite; (job_id, plan_composite_id) is the resume key
        CREATE TABLE IF NOT EXISTS composite_images (
            id TEXT PRIMARY KEY,
            job_id TEXT NOT NULL,
            plan_composite_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            avatar_id TEXT NOT NULL,
            product_id TEXT NOT NULL,
            product_image_indices_json TEXT NOT NULL DEFAULT '[]',
            prompt TEXT NOT NULL,
            description TEXT,
            image_url TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            FOREIGN KEY (job_id) REFERENCES video_jobs(id),
            UNIQUE(job_id, plan_composite_id)
        );

        -- One row per Veo call; (job_id, call_id) is the resume key
        CREATE TABLE IF NOT EXISTS veo_clips (
            id TEXT PRIMARY KEY,
            job_id TEXT NOT NULL,
            call_id TEXT NOT NULL,
            source_image_url TEXT NOT NULL,
            prompt TEXT NOT NULL,
            video_url TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            FOREIGN KEY (job_id) REFERENCES video_jobs(id),
            UNIQUE(job_id, call_id)
        );

        -- Reusable broll library
        CREATE TABLE IF NOT EXISTS indexed_clips (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            avatar_id TEXT,
            product_id TEXT,
            type TEXT NOT NULL,
            duration REAL NOT NULL,
            description TEXT NOT NULL,
            script TEXT,
            veo_prompt TEXT,
            audio_mood TEXT,
            file_url TEXT NOT NULL,
            thumbnail_url TEXT,
            usage_count INTEGER NOT NULL DEFAULT 0,
            last_used_at TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        -- Single-shot avatar animations
        CREATE TABLE IF NOT EXISTS generations (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            prompt_json TEXT NOT NULL DEFAULT '{}',
            trigger_job_id TEXT,
            error TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS animations (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            avatar_id TEXT NOT NULL,
            generation_id TEXT NOT NULL,
            prompt TEXT NOT NULL,
            video_url TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            FOREIGN KEY (generation_id) REFERENCES generations(id)
        );

        -- Indexes for performance
        CREATE INDEX IF NOT EXISTS idx_video_jobs_user_id
            ON video_jobs(user_id);
        CREATE INDEX IF NOT EXISTS idx_video_jobs_status
            ON video_jobs(status);
        CREATE INDEX IF NOT EXISTS idx_composite_images_job_id
            ON composite_images(job_id);
        CREATE INDEX IF NOT EXISTS idx_veo_clips_job_id
            ON veo_clips(job_id);
        CREATE INDEX IF NOT EXISTS idx_indexed_clips_product_usage
            ON indexed_clips(product_id, usage_count DESC);
        CREATE INDEX IF NOT EXISTS idx_animations_generation_id
            ON animations(generation_id);
    """)

    logger.info("Database schema initialized")


def close_connection() -> None:
    """Close database connection."""
    global _connection

    with _connection_lock:
        if _connection is not None:
            _connection.close()
            _connection = None
            logger.info("SQLite connection closed")
