"""
Catalog Repository.

Products, avatars, demos and the reusable indexed clip library. The
pipeline reads these to build director input and writes only to the
indexed clip library.
"""
import json
import uuid
import logging
from datetime import datetime
from dataclasses import dataclass, field
from typing import Optional, List

from .database import get_connection

logger = logging.getLogger(__name__)


@dataclass
class ProductRecord:
    id: str
    user_id: str
    title: str
    price: Optional[float] = None
    description: Optional[str] = None
    hooks: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)


@dataclass
class AvatarRecord:
    id: str
    image_url: str
    user_id: Optional[str] = None


@dataclass
class DemoRecord:
    id: str
    user_id: str
    url: str
    description: Optional[str] = None


@dataclass
class IndexedClipRecord:
    """A generated broll clip kept for reuse in later videos."""
    id: str
    user_id: str
    type: str
    duration: float
    description: str
    file_url: str
    avatar_id: Optional[str] = None
    product_id: Optional[str] = None
    script: Optional[str] = None
    veo_prompt: Optional[str] = None
    audio_mood: Optional[str] = None
    thumbnail_url: Optional[str] = None
    usage_count: int = 0
    last_used_at: Optional[str] = None


class CatalogRepository:
    """SQLite repository for catalog entities and indexed clips."""

    # -- products / avatars / demos --------------------------------------

    def create_product(
        self,
        user_id: str,
        title: str,
        images: List[str],
        price: Optional[float] = None,
        description: Optional[str] = None,
        hooks: Optional[List[str]] = None,
        product_id: Optional[str] = None,
    ) -> ProductRecord:
        product_id = product_id or str(uuid.uuid4())
        conn = get_connection()
        conn.execute("""
            INSERT INTO products (id, user_id, title, price, description, hooks_json, images_json)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (product_id, user_id, title, price, description, json.dumps(hooks or []), json.dumps(images)))
        return self.get_product(product_id)

    def get_product(self, product_id: str) -> Optional[ProductRecord]:
        conn = get_connection()
        row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
        if not row:
            return None
        return ProductRecord(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            price=row["price"],
            description=row["description"],
            hooks=json.loads(row["hooks_json"] or "[]"),
            images=json.loads(row["images_json"] or "[]"),
        )

    def create_avatar(self, image_url: str, user_id: Optional[str] = None,
                      avatar_id: Optional[str] = None) -> AvatarRecord:
        avatar_id = avatar_id or str(uuid.uuid4())
        conn = get_connection()
        conn.execute(
            "INSERT INTO avatars (id, user_id, image_url) VALUES (?, ?, ?)",
            (avatar_id, user_id, image_url)
        )
        return self.get_avatar(avatar_id)

    def get_avatar(self, avatar_id: str) -> Optional[AvatarRecord]:
        conn = get_connection()
        row = conn.execute("SELECT * FROM avatars WHERE id = ?", (avatar_id,)).fetchone()
        if not row:
            return None
        return AvatarRecord(id=row["id"], image_url=row["image_url"], user_id=row["user_id"])

    def create_demo(self, user_id: str, url: str, description: Optional[str] = None,
                    demo_id: Optional[str] = None) -> DemoRecord:
        demo_id = demo_id or str(uuid.uuid4())
        conn = get_connection()
        conn.execute(
            "INSERT INTO demos (id, user_id, url, description) VALUES (?, ?, ?, ?)",
            (demo_id, user_id, url, description)
        )
        return self.get_demos([demo_id])[0]

    def get_demos(self, demo_ids: List[str]) -> List[DemoRecord]:
        """Fetch demos by id, preserving the requested order. Unknown ids are skipped."""
        if not demo_ids:
            return []
        conn = get_connection()
        placeholders = ", ".join("?" for _ in demo_ids)
        rows = conn.execute(
            f"SELECT * FROM demos WHERE id IN ({placeholders})", list(demo_ids)
        ).fetchall()
        by_id = {
            row["id"]: DemoRecord(
                id=row["id"], user_id=row["user_id"], url=row["url"], description=row["description"]
            )
            for row in rows
        }
        return [by_id[demo_id] for demo_id in demo_ids if demo_id in by_id]

    def get_demo(self, demo_id: str) -> Optional[DemoRecord]:
        demos = self.get_demos([demo_id])
        return demos[0] if demos else None

    def set_demo_description(self, demo_id: str, description: str) -> bool:
        conn = get_connection()
        cursor = conn.execute(
            "UPDATE demos SET description = ? WHERE id = ?", (description, demo_id)
        )
        return cursor.rowcount > 0

    # -- indexed clips ----------------------------------------------------

    def index_clip(
        self,
        user_id: str,
        clip_type: str,
        duration: float,
        description: str,
        file_url: str,
        avatar_id: Optional[str] = None,
        product_id: Optional[str] = None,
        script: Optional[str] = None,
        veo_prompt: Optional[str] = None,
        audio_mood: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
    ) -> IndexedClipRecord:
        """Add a generated clip to the reusable library; it counts as used once."""
        clip_id = str(uuid.uuid4())
        conn = get_connection()
        conn.execute("""
            INSERT INTO indexed_clips (
                id, user_id, avatar_id, product_id, type, duration, description,
                script, veo_prompt, audio_mood, file_url, thumbnail_url,
                usage_count, last_used_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?)
        """, (
            clip_id, user_id, avatar_id, product_id, clip_type, duration, description,
            script, veo_prompt, audio_mood, file_url, thumbnail_url,
            datetime.utcnow().isoformat(),
        ))
        logger.info(f"[INDEX] Indexed {clip_type} clip {clip_id} for product {product_id}")
        return self.get_indexed_clips([clip_id])[0]

    def get_indexed_clips(self, clip_ids: List[str]) -> List[IndexedClipRecord]:
        if not clip_ids:
            return []
        conn = get_connection()
        placeholders = ", ".join("?" for _ in clip_ids)
        rows = conn.execute(
            f"SELECT * FROM indexed_clips WHERE id IN ({placeholders})", list(clip_ids)
        ).fetchall()
        return [self._row_to_indexed_clip(row) for row in rows]

    def get_clip_by_file_url(self, file_url: str) -> Optional[IndexedClipRecord]:
        conn = get_connection()
        row = conn.execute(
            "SELECT * FROM indexed_clips WHERE file_url = ? LIMIT 1", (file_url,)
        ).fetchone()
        return self._row_to_indexed_clip(row) if row else None

    def get_top_clips_for_product(self, product_id: str, limit: int = 10) -> List[IndexedClipRecord]:
        """Most reused clips first."""
        conn = get_connection()
        rows = conn.execute("""
            SELECT * FROM indexed_clips
            WHERE product_id = ?
            ORDER BY usage_count DESC, created_at DESC
            LIMIT ?
        """, (product_id, limit)).fetchall()
        return [self._row_to_indexed_clip(row) for row in rows]

    def increment_usage(self, clip_ids: List[str]) -> int:
        """Bump usage counters for reused clips. Returns rows touched."""
        if not clip_ids:
            return 0
        conn = get_connection()
        placeholders = ", ".join("?" for _ in clip_ids)
        cursor = conn.execute(
            f"UPDATE indexed_clips SET usage_count = usage_count + 1, last_used_at = ? "
            f"WHERE id IN ({placeholders})",
            [datetime.utcnow().isoformat(), *clip_ids],
        )
        return cursor.rowcount

    def _row_to_indexed_clip(self, row) -> IndexedClipRecord:
        return IndexedClipRecord(
            id=row["id"],
            user_id=row["user_id"],
            type=row["type"],
            duration=row["duration"],
            description=row["description"],
            file_url=row["file_url"],
            avatar_id=row["avatar_id"],
            product_id=row["product_id"],
            script=row["script"],
            veo_prompt=row["veo_prompt"],
            audio_mood=row["audio_mood"],
            thumbnail_url=row["thumbnail_url"],
            usage_count=row["usage_count"],
            last_used_at=row["last_used_at"],
        )


_catalog_repo: Optional[CatalogRepository] = None


def get_catalog_repository() -> CatalogRepository:
    """Get or create the catalog repository singleton."""
    global _catalog_repo
    if _catalog_repo is None:
        _catalog_repo = CatalogRepository()
    return _catalog_repo
