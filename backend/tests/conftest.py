"""
Jigu Backend: Test Configuration (conftest.py)
==============================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all
       tests. Nothing here needs a running MongoDB or upstream: collections
       are MagicMocks and the app is built around a mocked AppContext.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── test_settings:     Settings with test-friendly values
    ├── mock_collection:   Mock `logs`/`scripts` collection
    ├── log_service:       Synchronous LogService over mock_collection
    ├── log_dir:           Temporary directory for the file sink
    ├── mock_context:      AppContext with mocked Mongo and services
    └── test_client:       HTTPX AsyncClient for API endpoint testing
"""

import os
import tempfile
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient


# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Set before any jigu import so the module-level settings pick them up
os.environ["MONGODB_URI"] = "mongodb://localhost:27017/jigu_test"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="jigu_test_logs_")
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests
os.environ["ENVIRONMENT"] = "test"

from jigu.config import Settings  # noqa: E402
from jigu.context import AppContext  # noqa: E402
from jigu.models.log_entry import StoragePolicy  # noqa: E402
from jigu.services.log_service import LogService, LogServiceConfig  # noqa: E402


def make_cursor(docs):
    """Mimics an async pymongo cursor: chainable, resolved by to_list()."""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=list(docs))
    return cursor


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures (created fresh for each test)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        mongodb_uri="mongodb://localhost:27017/jigu_test",
        environment="test",
        log_dir=str(tmp_path / "logs"),
        log_async=False,
        http_log_enabled=False,
        shutdown_timeout_ms=1000,
    )


@pytest.fixture
def mock_collection():
    """
    Provides a mock async MongoDB collection.

    Usage:
        async def test_insert(mock_collection):
            mock_collection.find.return_value = make_cursor([{"_id": 1}])
    """
    collection = MagicMock()
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id="665f1c2e9b1d4a0012345678"))
    collection.find_one = AsyncMock(return_value=None)
    collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=0))
    collection.count_documents = AsyncMock(return_value=0)
    collection.find = MagicMock(return_value=make_cursor([]))
    collection.aggregate = AsyncMock(return_value=make_cursor([]))
    return collection


@pytest.fixture
def log_dir(tmp_path):
    path = tmp_path / "logs"
    return str(path)


@pytest.fixture
def log_service(mock_collection, log_dir):
    """LogService in synchronous mode: every log() call writes before returning."""
    config = LogServiceConfig(
        service="jigu-test",
        environment="test",
        default_storage=StoragePolicy.CONSOLE_DB,
        log_dir=log_dir,
        async_mode=False,
    )
    return LogService(config, collection_provider=lambda: mock_collection)


@pytest.fixture
def mock_context(test_settings, log_service):
    """
    AppContext whose Mongo, script and completion services are mocks.

    The log service is real (synchronous, mock collection) so routes that
    record logs exercise the actual pipeline.
    """
    mongo = MagicMock()
    mongo.ping = AsyncMock(return_value=True)
    mongo.close = AsyncMock()

    script_service = MagicMock()
    completion_service = MagicMock()
    completion_service.close = AsyncMock()

    exit_codes = []
    ctx = AppContext(
        test_settings,
        mongo=mongo,
        log_service=log_service,
        script_service=script_service,
        completion_service=completion_service,
        exit_func=exit_codes.append,
    )
    ctx.exit_codes = exit_codes
    return ctx


@pytest_asyncio.fixture
async def test_client(mock_context):
    """
    Provides an async HTTP test client for endpoint testing.

    ASGITransport does not run the lifespan, so the mocked context is never
    started and no database connection is attempted.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from jigu.main import create_app

    app = create_app(context=mock_context)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
