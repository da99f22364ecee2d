"""Integration tests for the readiness HTTP surface."""

import asyncio
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from modelready.app import create_app
from modelready.config import Settings
from modelready.exceptions import DownloadError, FailureCause

PREFIX = "/api/v1/models"


class WritingDownloader:
    def __init__(self, write_files):
        self.write_files = write_files
        self.calls = 0

    async def download(self, descriptor, cache_root, on_progress=None):
        self.calls += 1
        snapshot = cache_root / descriptor.cache_dir_name / "snapshots" / "main"
        self.write_files(snapshot, files=descriptor.required_files)
        return snapshot


class FailingDownloader:
    async def download(self, descriptor, cache_root, on_progress=None):
        raise DownloadError("404 Client Error: Repository Not Found", FailureCause.NOT_FOUND)


class BlockingDownloader:
    async def download(self, descriptor, cache_root, on_progress=None):
        await asyncio.Event().wait()


@pytest.fixture(autouse=True)
def no_process_scan():
    with patch("modelready.external.detector.psutil.process_iter", return_value=[]):
        yield


@pytest.fixture
def settings(cache_root):
    return Settings(
        cache_roots=[str(cache_root)],
        debounce_seconds=0,
        external_ttl_seconds=0,
        root_ttl_seconds=0,
        retry_backoff_base=0,
    )


def _client(settings, downloader):
    app = create_app(settings)
    with patch("modelready.app.HubDownloader", return_value=downloader):
        client = TestClient(app)
        client.__enter__()
    return client


@pytest.fixture
def make_client(settings):
    clients = []

    def _make(downloader):
        client = _client(settings, downloader)
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


def test_ready_from_cache(make_client, make_snapshot, write_files):
    snapshot = make_snapshot()
    downloader = WritingDownloader(write_files)
    client = make_client(downloader)

    response = client.post(f"{PREFIX}/ready", json={"wait": True})

    assert response.status_code == 202
    body = response.json()
    assert body["outcome"]["status"] == "READY"
    assert body["outcome"]["directory"] == str(snapshot)
    assert body["status"]["state"] == "READY"
    assert downloader.calls == 0

    readyz = client.get("/readyz")
    assert readyz.status_code == 200
    assert readyz.json() == {"ready": True, "directory": str(snapshot)}


def test_download_on_startup(make_client, write_files):
    downloader = WritingDownloader(write_files)
    client = make_client(downloader)

    outcome = client.get(f"{PREFIX}/wait", params={"timeout": 5}).json()

    assert outcome["status"] == "READY"
    assert downloader.calls == 1
    assert client.get(f"{PREFIX}/status").json()["state"] == "READY"


def test_failure_is_reported_with_category(make_client):
    client = make_client(FailingDownloader())

    outcome = client.get(f"{PREFIX}/wait", params={"timeout": 5}).json()

    assert outcome["status"] == "FAILED"
    assert outcome["cause"] == "NOT_FOUND"
    assert outcome["category"] == "FILES_MISSING"
    assert outcome["user_message"]
    assert client.get("/readyz").status_code == 503
    liveness = client.get("/livez")
    assert liveness.status_code == 503
    assert liveness.json()["state"] == "FAILED"


def test_in_flight_conflicts(make_client):
    client = make_client(BlockingDownloader())

    assert client.get("/readyz").status_code == 503
    assert client.get("/livez").status_code == 200

    conflict = client.post(f"{PREFIX}/ready", json={"model_id": "llama3_2_1B_4bit"})
    assert conflict.status_code == 409

    assert client.post(f"{PREFIX}/cleanup").status_code == 409

    timeout = client.get(f"{PREFIX}/wait", params={"timeout": 0.05})
    assert timeout.status_code == 504


def test_reset_cancels_attempt(make_client):
    client = make_client(BlockingDownloader())

    status = client.post(f"{PREFIX}/reset").json()

    assert status["state"] == "NOT_STARTED"
    assert status["generation"] == 1


def test_unknown_model_is_404(make_client, write_files):
    client = make_client(WritingDownloader(write_files))

    assert client.post(f"{PREFIX}/ready", json={"model_id": "gpt-5"}).status_code == 404
    assert client.post(f"{PREFIX}/clear-cache", params={"model_id": "gpt-5"}).status_code == 404


def test_clear_cache(make_client, make_snapshot, write_files, cache_root, descriptor):
    make_snapshot()
    client = make_client(WritingDownloader(write_files))
    client.get(f"{PREFIX}/wait", params={"timeout": 5})

    report = client.post(f"{PREFIX}/clear-cache").json()

    assert report["removed"]
    assert not (cache_root / descriptor.cache_dir_name).exists()
    assert client.get(f"{PREFIX}/status").json()["state"] == "NOT_STARTED"


def test_cache_and_cleanup(make_client, make_snapshot, write_files, cache_root):
    make_snapshot()
    (cache_root / "leftover.incomplete").write_bytes(b"partial")
    client = make_client(WritingDownloader(write_files))
    client.get(f"{PREFIX}/wait", params={"timeout": 5})

    cache = client.get(f"{PREFIX}/cache").json()
    assert cache["model_count"] == 1
    assert cache["corrupted_files"] == [str(cache_root / "leftover.incomplete")]
    assert cache["formatted_size"] == "0 MB"

    cleanup = client.post(f"{PREFIX}/cleanup")
    assert cleanup.status_code == 200
    assert cleanup.json()["removed"] == [str(cache_root / "leftover.incomplete")]


def test_registry(make_client, write_files):
    client = make_client(WritingDownloader(write_files))

    models = client.get(f"{PREFIX}/registry").json()

    assert {m["model_id"] for m in models} == {
        "gemma3_2B_4bit", "gemma3_9B_4bit", "llama3_2_1B_4bit", "llama3_2_3B_4bit",
    }


def test_liveness_cache_is_per_app(make_client):
    failed = make_client(FailingDownloader())
    failed.get(f"{PREFIX}/wait", params={"timeout": 5})
    assert failed.get("/livez").status_code == 503

    fresh = make_client(BlockingDownloader())

    liveness = fresh.get("/livez")
    assert liveness.status_code == 200
    assert liveness.json()["state"] != "FAILED"
