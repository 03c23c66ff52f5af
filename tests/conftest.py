"""Pytest configuration and shared fixtures."""

import asyncio
from typing import Any, Dict, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from coverage_engine.core.database import DatabaseClient, set_db_client
from coverage_engine.main import app
from coverage_engine.repositories.coverage_repository import coverage_path, product_path
from coverage_engine.repositories.record_store import RecordStore
from coverage_engine.schemas.coverage import Coverage
from coverage_engine.services.compatibility.compatibility_service import CompatibilityService
from coverage_engine.services.migration.migration_service import MigrationService
from coverage_engine.services.parsing.value_parser import ValueParser
from coverage_engine.services.rollback.rollback_service import RollbackService
from coverage_engine.services.validation.validation_service import ValidationService


def coverage_document(extra: Optional[Dict[str, Any]] = None, **fields: Any) -> Dict[str, Any]:
    """Build a stored coverage body from snake_case fields plus raw extra keys."""
    fields.setdefault("name", "Coverage")
    body = Coverage(**fields).to_document()
    body.pop("productId", None)
    body.update(extra or {})
    return body


async def seed_coverage(
    store: RecordStore,
    product_id: str,
    coverage_id: str,
    extra: Optional[Dict[str, Any]] = None,
    **fields: Any,
) -> None:
    await store.set(product_path(product_id), {"name": f"Product {product_id}"}, merge=True)
    await store.set(coverage_path(product_id, coverage_id), coverage_document(extra, **fields))


def seed_database(url: str, coverages: Dict[tuple, Dict[str, Any]]) -> None:
    """Seed a database file from synchronous tests (CLI, HTTP).

    ``coverages`` maps ``(product_id, coverage_id)`` to snake_case coverage fields.
    """

    async def _seed() -> None:
        client = DatabaseClient.from_url(url)
        await client.create_tables()
        store = RecordStore(client.session_maker, retry_delay=0, max_retry_delay=0)
        for (product_id, coverage_id), fields in coverages.items():
            await seed_coverage(store, product_id, coverage_id, **fields)
        await client.disconnect()

    asyncio.run(_seed())


def write_document(url: str, path: str, data: Dict[str, Any]) -> None:
    """Store one raw document from synchronous tests."""

    async def _write() -> None:
        client = DatabaseClient.from_url(url)
        store = RecordStore(client.session_maker, retry_delay=0, max_retry_delay=0)
        await store.set(path, data)
        await client.disconnect()

    asyncio.run(_write())


def read_document(url: str, path: str) -> Optional[Dict[str, Any]]:
    """Read one stored document from synchronous tests."""

    async def _read() -> Optional[Dict[str, Any]]:
        client = DatabaseClient.from_url(url)
        store = RecordStore(client.session_maker, retry_delay=0, max_retry_delay=0)
        snapshot = await store.get(path)
        await client.disconnect()
        return snapshot.data if snapshot else None

    return asyncio.run(_read())


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'store.db'}"


@pytest_asyncio.fixture
async def db_client(database_url):
    """Database client on a fresh SQLite file with the store tables created."""
    client = DatabaseClient.from_url(database_url)
    await client.create_tables()
    yield client
    await client.disconnect()


@pytest.fixture
def store(db_client) -> RecordStore:
    return RecordStore(db_client.session_maker, max_retries=3, retry_delay=0, max_retry_delay=0)


@pytest.fixture
def parser() -> ValueParser:
    return ValueParser()


@pytest.fixture
def validator(parser) -> ValidationService:
    return ValidationService(parser)


@pytest.fixture
def compat(store) -> CompatibilityService:
    return CompatibilityService(store, dual_write=True)


@pytest.fixture
def compat_no_dual_write(store) -> CompatibilityService:
    return CompatibilityService(store, dual_write=False)


@pytest.fixture
def migration(store) -> MigrationService:
    return MigrationService(store, concurrency=4)


@pytest.fixture
def rollback_service(store) -> RollbackService:
    return RollbackService(store)


@pytest.fixture
def seed(store):
    """Async helper seeding a coverage: ``await seed("p1", "c1", legacy_limits=[...])``."""

    async def _seed(product_id: str, coverage_id: str, extra: Optional[Dict[str, Any]] = None, **fields):
        await seed_coverage(store, product_id, coverage_id, extra, **fields)

    return _seed


@pytest.fixture
def test_client(database_url):
    """FastAPI test client bound to a fresh SQLite file.

    Returns:
        TestClient: FastAPI test client instance
    """
    set_db_client(DatabaseClient.from_url(database_url))
    with TestClient(app) as client:
        yield client
    set_db_client(None)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}
