"""Pytest configuration and fixtures for BrAPI importer tests.

Engine tests run against the in-memory BrAPI store. API tests additionally
need a real MongoDB at ``TEST_MONGODB_URL``.
"""

import os
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from beanie import init_beanie
from httpx import ASGITransport, AsyncClient
from motor.motor_asyncio import AsyncIOMotorClient

from brapi_importer.config import BrAPIConfig, ImporterConfig, SecretsConfig, Settings
from brapi_importer.database import get_document_models
from brapi_importer.services.auth import create_access_token
from brapi_importer.services.brapi import InMemoryBrAPIClient
from brapi_importer.services.brapi.memory import reset_shared_memory_client, shared_memory_client
from brapi_importer.services.import_service import run_import

# MongoDB connection URL for tests (can be overridden with env var)
TEST_MONGODB_URL = os.environ.get("TEST_MONGODB_URL", "mongodb://localhost:27017")

REFERENCE_SOURCE = "test.brapi.org"
PROGRAM_ID = "program-1"
USER_ID = "user-1"


def create_test_app():
    """Create a FastAPI app configured for testing (no database lifespan)."""
    from fastapi import FastAPI

    from brapi_importer import __version__

    # Empty lifespan for testing - we manage the database ourselves
    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        yield

    test_app = FastAPI(title="BrAPI Importer Test", version=__version__, lifespan=test_lifespan)

    from brapi_importer.main import app as main_app

    for route in main_app.routes:
        test_app.routes.append(route)
    return test_app


_test_app = None


def get_test_app():
    """Get the test app singleton."""
    global _test_app
    if _test_app is None:
        _test_app = create_test_app()
    return _test_app


@pytest.fixture
def test_settings() -> Settings:
    """Settings built in memory, independent of any config.toml on disk."""
    return Settings(
        config=ImporterConfig(brapi=BrAPIConfig(reference_source=REFERENCE_SOURCE)),
        secrets=SecretsConfig(secret_key="test-secret-key-" + "x" * 32),
    )


@pytest.fixture
def brapi_store(test_settings: Settings) -> InMemoryBrAPIClient:
    """A fresh in-memory BrAPI store."""
    return InMemoryBrAPIClient(test_settings)


@pytest.fixture
def run_workflow(brapi_store: InMemoryBrAPIClient):
    """Run a workflow over rows given as lists of cell strings."""

    async def _run(
        workflow: str,
        headers: list[str],
        rows: list[list[str]],
        *,
        commit: bool = False,
        user_fields: dict[str, str] | None = None,
        overwrite: bool = False,
        overwrite_reason: str | None = None,
        job_id: str = "job-1",
    ):
        return await run_import(
            client=brapi_store,
            workflow_id=workflow,
            program_id=PROGRAM_ID,
            headers=headers,
            rows=[dict(zip(headers, row)) for row in rows],
            job_id=job_id,
            user_id=USER_ID,
            reference_source=REFERENCE_SOURCE,
            user_fields=user_fields,
            commit=commit,
            overwrite=overwrite,
            overwrite_reason=overwrite_reason,
        )

    return _run


@pytest_asyncio.fixture(scope="function")
async def mongo_client():
    """Create a MongoDB client for testing."""
    client = AsyncIOMotorClient(TEST_MONGODB_URL, maxPoolSize=10, minPoolSize=1)
    yield client
    client.close()


@pytest_asyncio.fixture(scope="function")
async def init_test_db(mongo_client):
    """Initialize Beanie with a unique test database, dropped after the test."""
    db_name = f"test_brapi_importer_{uuid.uuid4().hex[:8]}"
    db = mongo_client[db_name]

    await init_beanie(database=db, document_models=get_document_models())
    yield db

    await mongo_client.drop_database(db_name)


@pytest.fixture
def shared_store() -> InMemoryBrAPIClient:
    """The process-wide in-memory store the API routes fall back to."""
    from brapi_importer.config import get_settings

    reset_shared_memory_client()
    store = shared_memory_client(get_settings())
    yield store
    reset_shared_memory_client()


@pytest_asyncio.fixture(scope="function")
async def client(init_test_db, shared_store) -> AsyncGenerator[AsyncClient, None]:
    """Async test client authenticated as ``USER_ID``."""
    access_token = create_access_token(data={"sub": USER_ID})

    transport = ASGITransport(app=get_test_app())
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {access_token}"},
    ) as ac:
        yield ac
