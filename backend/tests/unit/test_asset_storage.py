"""
Unit Tests for AssetStorage
"""

import os

import httpx
import pytest

from reelforge.services.asset_storage import AssetStorage


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("missing.mp4"):
        return httpx.Response(404, text="gone")
    return httpx.Response(200, content=b"fake-mp4-bytes")


@pytest.fixture
def storage(tmp_path):
    """Create AssetStorage using a temporary static root."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(_handler))
    return AssetStorage(static_root=str(tmp_path), public_base_url="http://localhost:8000/", client=client)


def test_paths_and_urls(storage: AssetStorage, tmp_path):
    """Test path and URL generation."""
    path = storage.get_storage_path("videos/p1/j1.mp4")

    assert path == os.path.join(str(tmp_path), "videos", "p1", "j1.mp4")
    assert storage.get_public_url("videos/p1/j1.mp4") == "http://localhost:8000/static/videos/p1/j1.mp4"


def test_hint_cannot_escape_root(storage: AssetStorage):
    with pytest.raises(ValueError):
        storage.get_storage_path("../outside.mp4")


async def test_relocate_downloads_and_publishes(storage: AssetStorage):
    url = await storage.relocate("https://replicate.delivery/pbxt/clip.mp4", "videos/p1/j1.mp4")

    assert url == "http://localhost:8000/static/videos/p1/j1.mp4"
    with open(storage.get_storage_path("videos/p1/j1.mp4"), "rb") as f:
        assert f.read() == b"fake-mp4-bytes"


async def test_relocate_failure_leaves_no_partial_file(storage: AssetStorage):
    with pytest.raises(httpx.HTTPStatusError):
        await storage.relocate("https://replicate.delivery/pbxt/missing.mp4", "videos/p1/j2.mp4")

    target = storage.get_storage_path("videos/p1/j2.mp4")
    assert not os.path.exists(target)
    assert not os.path.exists(f"{target}.part")


def test_store_file(storage: AssetStorage, tmp_path):
    source = tmp_path / "work" / "final.mp4"
    source.parent.mkdir()
    source.write_bytes(b"final")

    url = storage.store_file(str(source), "final/p1/final-1.mp4")

    assert url == "http://localhost:8000/static/final/p1/final-1.mp4"
    assert not source.exists()
    assert os.path.exists(storage.get_storage_path("final/p1/final-1.mp4"))
