"""
Pytest configuration.
Provides an in-memory async database, a temporary blob store and an HTTP
client wired to both.
"""

import os
import sys
import tempfile
from pathlib import Path
from typing import AsyncIterator

# Settings are read at import time, so the environment goes first
os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("STORAGE_UPLOAD_DIR", tempfile.mkdtemp(prefix="ats-uploads-"))
os.environ.setdefault("ENVIRONMENT", "testing")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Add project root to sys.path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ats.api import app, get_blob_store
from ats.db import get_session
from ats.models import Base
from ats.storage import LocalBlobStore


# ==================== Database fixtures ====================

@pytest.fixture(scope="function")
async def test_db_engine():
    """
    Fresh in-memory SQLite engine per test.
    StaticPool keeps every session on the same connection so they see one database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        hide_parameters=True,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=test_db_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncIterator[AsyncSession]:
    async with session_maker() as session:
        yield session


# ==================== Blob store fixtures ====================

@pytest.fixture(scope="function")
def blob_store(tmp_path) -> LocalBlobStore:
    """Blob store in a per-test temporary directory."""
    return LocalBlobStore(tmp_path / "blobs", chunk_size=1024)


# ==================== Payload fixtures ====================

@pytest.fixture(scope="function")
def candidate_data() -> dict:
    """A valid submission payload in wire (camelCase) format."""
    return {
        "firstName": "María-José",
        "lastName": "O'Connor",
        "email": "Maria.OConnor@Example.com",
        "phone": "+34 600-123456",
        "address": "Calle Mayor 1, Madrid",
        "linkedIn": "https://www.linkedin.com/in/maria",
        "portfolio": "",
        "educations": [
            {
                "institution": "Universidad Complutense",
                "degree": "Bachelor",
                "fieldOfStudy": "Computer Science",
                "startDate": "2012-09-01",
                "endDate": "2016-06-30",
                "current": False,
            }
        ],
        "experiences": [
            {
                "company": "Acme Corp",
                "position": "Backend Developer",
                "startDate": "2016-09-01",
                "endDate": "",
                "ongoing": True,
            }
        ],
    }


# ==================== HTTP client fixtures ====================

@pytest.fixture(scope="function")
async def client(session_maker, blob_store) -> AsyncIterator[httpx.AsyncClient]:
    """
    HTTP client against the app with the database and blob store overridden.
    """
    async def override_get_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_blob_store] = lambda: blob_store

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()


# ==================== Pytest configuration ====================

def pytest_configure(config):
    """
    Register test markers.
    """
    config.addinivalue_line(
        "markers", "unit: Unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests"
    )
