import os

import pytest

os.environ.setdefault("ENABLE_REALTIME", "0")
os.environ.setdefault("SESSION_SECRET", "test-secret")
os.environ.setdefault("DASHBOARD_TIMEZONE", "UTC")

from httpx import ASGITransport, AsyncClient

from app.config import get_db
from app.main import app
from app.security import get_identity_client
from services import devices as devices_service
from tests.fakes import FakeFirestore, FakeIdentity

@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture(autouse=True)
def plain_transactions(monkeypatch):
    # the fake transaction applies writes immediately; no retry wrapper needed
    monkeypatch.setattr(devices_service, "_register_in_transaction", devices_service._register_device)


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
async def client(db, identity):
    """Async HTTP client for testing FastAPI endpoints."""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_identity_client] = lambda: identity
    app.state.labels = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
async def signed_in(client):
    """Client with a browser session."""
    response = await client.post("/login", data={"email": "ops@example.com", "password": "secret123"})
    assert response.status_code == 303
    return client
