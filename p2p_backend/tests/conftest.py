"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from p2p_backend.app.main import app
from p2p_backend.app.db.session import get_db, Base
from p2p_backend.app.core.dependencies import get_posting_engine
from p2p_backend.app.core.jwt import create_access_token
from p2p_backend.app.domain.posting.engine import PostingEngine
from p2p_backend.app.services.event_store import create_event

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_ID = "farm-1"
SITE_ID = "site-1"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_posting_engine():
        return PostingEngine(TestingSessionLocal)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_posting_engine] = override_get_posting_engine
    yield

    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def session_factory():
    return TestingSessionLocal


# Shared session for fixture data creation and read-back
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def posting_engine():
    return PostingEngine(TestingSessionLocal)


@pytest.fixture
def make_event():
    """
    Factory committing one PENDING event.

    Usage:
        event_id = await make_event("RECEIPT_POSTED", payload, source_id="r-1")
    """
    async def _make(event_type, payload, site_id=SITE_ID, tenant_id=TENANT_ID, **kwargs):
        async with TestingSessionLocal() as db:
            async with db.begin():
                created, _ = await create_event(
                    db,
                    tenant_id=tenant_id,
                    event_type=event_type,
                    payload=payload,
                    site_id=site_id,
                    **kwargs
                )
                return created.id

    return _make


def _auth_headers(role: str, user_id: str, tenant_id: str = TENANT_ID) -> dict:
    token = create_access_token(data={
        "sub": f"{role.lower()}_user",
        "user_id": user_id,
        "tenant_id": tenant_id,
        "role": role,
    })
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def member_headers():
    return _auth_headers("MEMBER", "u-member")


@pytest.fixture
def manager_headers():
    return _auth_headers("MANAGER", "u-manager")


@pytest.fixture
def other_tenant_headers():
    return _auth_headers("MANAGER", "u-other", tenant_id="farm-2")


@pytest.fixture
def receipt_payload():
    """Single-line feed receipt: 100 @ 5.00 from vendor v1."""
    return {
        "poId": "po-1",
        "vendorId": "v1",
        "lines": [
            {"itemId": "feed-1", "qtyReceived": 100, "unitCost": 5, "totalCost": 500, "category": "FEED"}
        ],
        "totals": {"totalCost": 500},
    }
