"""
Pytest configuration and fixtures for Satire Paper Backend tests.
"""

import pytest
from fastapi.testclient import TestClient

from satire_paper_backend.configuration import make_runtime_config
from satire_paper_backend.job_manager import JobManager
from satire_paper_backend.main import create_app

from .fakes import TEST_AUTH_TOKEN, FakeCompiler, FakeGenerator, FakeStorage, RecordingJobStore


@pytest.fixture
def store():
    return RecordingJobStore()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def compiler():
    return FakeCompiler()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def work_root(tmp_path):
    root = tmp_path / "work"
    root.mkdir()
    return root


@pytest.fixture
def manager(store, generator, compiler, storage, work_root):
    return JobManager(
        store=store,
        generator=generator,
        compiler=compiler,
        storage=storage,
        work_root=work_root,
        job_timeout=60,
        sweep_interval=60,
        eviction_delay=0.2,
    )


@pytest.fixture
def app_config():
    """Default configuration with rate limits high enough for polling tests."""
    return make_runtime_config(
        overrides={"rate_limit": {"short_max_requests": 1000, "long_max_requests": 1000}},
        environ={},
    )


@pytest.fixture
def client(app_config, manager):
    """Create a test client for the FastAPI app with fake adapters."""
    app = create_app(config=app_config, manager=manager, auth_token=TEST_AUTH_TOKEN)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_AUTH_TOKEN}"}
