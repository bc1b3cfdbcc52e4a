"""
Pytest configuration and fixtures for the UGC pipeline tests.
"""
import os
import copy
import tempfile
import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Set test environment before importing ugc_pipeline modules
_TEST_ROOT = tempfile.mkdtemp(prefix="ugc-pipeline-tests-")
os.environ["DATA_DIR"] = _TEST_ROOT
os.environ["DATABASE_PATH"] = str(Path(_TEST_ROOT) / "app.db")
os.environ["STORAGE_BACKEND"] = "local"
os.environ["GOOGLE_API_KEY"] = "test-google-key"
os.environ["VEO_MIN_REQUEST_INTERVAL"] = "30"
os.environ["DEBUG"] = "true"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def isolated_db(temp_dir, monkeypatch):
    """Fresh SQLite database per test."""
    from ugc_pipeline.persistence import close_connection

    close_connection()
    monkeypatch.setenv("DATABASE_PATH", str(temp_dir / "test.db"))
    yield temp_dir / "test.db"
    close_connection()


@pytest.fixture
def storage(temp_dir):
    """Local storage rooted in the test directory."""
    from ugc_pipeline.providers import LocalStorage

    return LocalStorage(media_dir=temp_dir / "media", public_url="/media")


@pytest.fixture
def catalog():
    """Seeded product, avatar and demo."""
    from ugc_pipeline.persistence import CatalogRepository

    repo = CatalogRepository()
    product = repo.create_product(
        user_id="user-1",
        title="Glow Serum",
        images=["/media/catalog/serum-front.png", "/media/catalog/serum-side.png"],
        price=29.99,
        description="Vitamin C face serum",
        hooks=["Glass skin in a week"],
        product_id="product-1",
    )
    avatar = repo.create_avatar("/media/catalog/avatar.png", user_id="user-1", avatar_id="avatar-1")
    demo = repo.create_demo("user-1", "/media/catalog/demo.mp4", "Applying the serum", demo_id="demo-1")
    return {"repo": repo, "product": product, "avatar": avatar, "demo": demo}


@pytest.fixture
def director_input():
    """Catalog snapshot matching the seeded catalog fixture."""
    from ugc_pipeline.plan import (
        AvatarContext,
        DemoContext,
        DirectorInput,
        Preferences,
        ProductContext,
    )

    return DirectorInput(
        product=ProductContext(
            id="product-1",
            name="Glow Serum",
            price=29.99,
            description="Vitamin C face serum",
            hooks=("Glass skin in a week",),
            images=("/media/catalog/serum-front.png", "/media/catalog/serum-side.png"),
        ),
        avatar=AvatarContext(id="avatar-1", image_url="/media/catalog/avatar.png"),
        demos=(DemoContext(id="demo-1", description="Applying the serum"),),
        preferences=Preferences(tone="friendly", target_duration=16),
    )


VALID_PLAN = {
    "productInteraction": "handheld",
    "interactionReasoning": "A small bottle the avatar can hold up to camera.",
    "imageGeneration": [
        {
            "compositeId": "composite_1",
            "avatarSource": "AVATAR_1",
            "productSources": ["PRODUCT_1"],
            "prompt": "The avatar holding the serum bottle next to her cheek",
            "description": "Avatar holding the serum",
        }
    ],
    "totalDuration": 16,
    "segments": [
        {
            "segmentIndex": 0,
            "veoCallId": "call_1",
            "startTime": 0,
            "endTime": 8,
            "type": "talking_head",
            "script": "I tried this serum for a week and honestly my skin has never looked this bright before today",
        },
        {
            "segmentIndex": 1,
            "veoCallId": "call_2",
            "startTime": 8,
            "endTime": 16,
            "type": "talking_head",
            "script": "It absorbs fast, it smells amazing and it costs less than thirty dollars so grab yours now",
        },
    ],
    "veoCalls": [
        {
            "callId": "call_1",
            "sourceImageType": "composite",
            "sourceImageRef": "composite_1",
            "prompt": "Woman holding a serum bottle talks to camera in a bright bathroom, upbeat tone",
        },
        {
            "callId": "call_2",
            "sourceImageType": "avatar",
            "sourceImageRef": "AVATAR_1",
            "prompt": "Woman smiling and talking to camera in a bright bathroom, calm natural light",
        },
    ],
    "clips": [
        {"clipId": "clip_1", "veoCallId": "call_1", "startTime": 0, "endTime": 8, "order": 0},
        {"clipId": "clip_2", "veoCallId": "call_2", "startTime": 0, "endTime": 8, "order": 1},
    ],
}


@pytest.fixture
def valid_plan():
    """A 16 second handheld plan with one composite and two Veo calls."""
    return copy.deepcopy(VALID_PLAN)


@pytest.fixture
def mock_gemini():
    """Gemini client double returning tiny base64 payloads."""
    from ugc_pipeline.providers import GeneratedImage, GeneratedVideo

    gemini = MagicMock()
    gemini.generate_image_from_reference = AsyncMock(
        return_value=[GeneratedImage(image_bytes="aW1hZ2U=", mime_type="image/png")]
    )
    gemini.generate_video = AsyncMock(return_value=GeneratedVideo(video_bytes="dmlkZW8="))
    gemini.generate_text = AsyncMock()
    gemini.close = AsyncMock()
    return gemini


@pytest.fixture
def no_wait_spacer():
    """Request spacer that never actually sleeps."""
    from ugc_pipeline.orchestration.stages import RequestSpacer

    return RequestSpacer(30.0, clock=MagicMock(return_value=0.0), sleep=AsyncMock())
