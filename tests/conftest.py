"""Shared pytest fixtures for the image generation backend tests."""

import sys
from pathlib import Path
from typing import Dict

import httpx
import pytest

# Add src directory (and this directory, for fakes) to path for imports
src_path = Path(__file__).parent.parent / "src"
for path in (src_path, Path(__file__).parent):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from fakes import PNG_BYTES, FakeBackend, FakeCatalog, FakeStorage, InMemoryTaskStore  # noqa: E402

DEV_TOKEN = "test-dev-token"


def remote_files_handler(request: httpx.Request) -> httpx.Response:
    """Serve fake remote images for URL-based edits and external outputs."""
    url = str(request.url)
    if url.endswith("/missing.png"):
        return httpx.Response(404, text="not found")
    if url.endswith("/mask.png"):
        return httpx.Response(200, content=b"MASK", headers={"content-type": "image/png"})
    if url.endswith(".jpg"):
        return httpx.Response(200, content=b"JPEGDATA", headers={"content-type": "image/jpeg; charset=binary"})
    return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})


@pytest.fixture
def sample_config() -> Dict:
    """Sample configuration for testing."""
    return {
        "gemini_api_key": "test_gemini_key",
        "genai_model": "gemini-2.5-flash-image-preview",
        "provider": "gemini",
        "image_bucket": "gen-images",
        "pinata_jwt": "",
        "pinata_upload_endpoint": "https://uploads.pinata.test/v3/files",
        "pinata_pin_endpoint": "https://api.pinata.test/pinning/pinFileToIPFS",
        "pinata_gateway_base": "https://gateway.pinata.test/ipfs",
        "pinata_prefer_ipfs": True,
        "r2_account_id": "",
        "r2_access_key_id": "",
        "r2_secret_access_key": "",
        "r2_public_url": None,
        "dev_token": DEV_TOKEN,
        "cors_origins": ["*"],
        "max_upload_bytes": 25 * 1024 * 1024,
        "result_inline_max_bytes": 800_000,
        "result_url_expiry_seconds": 300,
        "log_level": "INFO",
        "log_json": False,
    }


@pytest.fixture
def http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(remote_files_handler))


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def storage(http_client) -> FakeStorage:
    return FakeStorage(http_client=http_client)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog(
        styles={"anime-general": {"id": "style-1", "base_prompt": "Anime style"}},
        presets={"preset-1": {"id": "preset-1", "prompt_template": "Heroic anime portrait"}},
    )


@pytest.fixture
def orchestrator(task_store, storage, backend, catalog, sample_config, http_client):
    from services.task_orchestrator import TaskOrchestrator

    return TaskOrchestrator(
        task_store=task_store,
        storage=storage,
        backend=backend,
        catalog=catalog,
        config=sample_config,
        http_client=http_client,
    )


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {DEV_TOKEN}"}


@pytest.fixture
def api_client(monkeypatch, orchestrator):
    """TestClient whose routes use the fake-backed orchestrator."""
    from unittest.mock import AsyncMock

    from fastapi.testclient import TestClient

    monkeypatch.setenv("DEV_TOKEN", DEV_TOKEN)
    monkeypatch.setenv("MAX_UPLOAD_BYTES", str(1024 * 1024))

    from api import server
    from api.routers import edits, generation

    get_orchestrator = AsyncMock(return_value=orchestrator)
    monkeypatch.setattr(generation, "get_orchestrator", get_orchestrator)
    monkeypatch.setattr(edits, "get_orchestrator", get_orchestrator)

    with TestClient(server.app) as client:
        yield client
