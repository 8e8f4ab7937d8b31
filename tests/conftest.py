import os

# Settings are read at import time; point them at throwaway resources first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import uuid
from datetime import date

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clientflow.db import Base, get_db
from clientflow.main import app as fastapi_app
from clientflow.models.models import (
    AuthUser,
    Client,
    ClientAssignment,
    ClientPortalUser,
    ClientService,
    Profile,
    Service,
)
from clientflow.auth.security import create_access_token, get_password_hash
from clientflow.routes.storage import get_storage
from clientflow.services.catalog import seed_service_catalog
from clientflow.storage.local_provider import LocalStorageProvider
from clientflow.client.backend import Backend
from clientflow.client.session import AuthSessionManager


PASSWORD = "Secret123"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    seed_service_catalog(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def app(db, tmp_path):
    def _get_db():
        s = TestingSessionLocal()
        try:
            yield s
        finally:
            s.close()

    fastapi_app.dependency_overrides[get_db] = _get_db
    fastapi_app.dependency_overrides[get_storage] = lambda: LocalStorageProvider(str(tmp_path / "storage"))
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def backend_factory(app):
    """Client SDK backends wired straight into the app."""

    def _make() -> Backend:
        return Backend("http://testserver", transport=httpx.ASGITransport(app=app))

    return _make


def make_user(db, email: str, role: str = "employee", full_name: str = None, manager_id=None) -> Profile:
    user = AuthUser(email=email, password_hash=get_password_hash(PASSWORD), user_metadata={"full_name": full_name or email})
    db.add(user)
    db.flush()
    profile = Profile(
        id=user.id,
        email=email,
        full_name=full_name or email.split("@")[0],
        role=role,
        status="active",
        manager_id=manager_id,
        max_capacity=5,
        skills=[],
    )
    db.add(profile)
    db.commit()
    return profile


def make_portal_user(db, email: str, client_id) -> ClientPortalUser:
    user = AuthUser(email=email, password_hash=get_password_hash(PASSWORD), user_metadata={})
    db.add(user)
    db.flush()
    portal = ClientPortalUser(client_id=client_id, auth_user_id=user.id, email=email, full_name="Client Contact", is_active=True)
    db.add(portal)
    db.commit()
    return portal


def auth_headers(user_id, email: str = "user@clientflow.io") -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user_id), email=email)}"}


def service_id(db, slug: str) -> uuid.UUID:
    return db.query(Service.id).filter(Service.slug == slug).scalar()


def make_client(db, name: str, slugs=(), **fields) -> Client:
    fields.setdefault("status", "active")
    c = Client(name=name, **fields)
    db.add(c)
    db.flush()
    for slug in slugs:
        db.add(ClientService(client_id=c.id, service_id=service_id(db, slug)))
    db.commit()
    return c


def assign(db, client: Client, employee: Profile, slug: str, is_account_manager: bool = False) -> ClientAssignment:
    a = ClientAssignment(
        client_id=client.id,
        employee_id=employee.id,
        service_id=service_id(db, slug),
        is_account_manager=is_account_manager,
        is_active=True,
    )
    db.add(a)
    db.commit()
    return a


@pytest.fixture
def admin(db):
    return make_user(db, "admin@clientflow.io", role="admin", full_name="Ada Admin")


@pytest.fixture
def employee(db):
    return make_user(db, "emma@clientflow.io", full_name="Emma Employee")


@pytest.fixture
def other_employee(db):
    return make_user(db, "omar@clientflow.io", full_name="Omar Other")


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin.id, admin.email)


@pytest.fixture
def employee_headers(employee):
    return auth_headers(employee.id, employee.email)


LOG_DATE = date(2024, 1, 15)


async def signed_in(backend: Backend, email: str):
    """Sign in through the session manager and return its settled state."""
    manager = AuthSessionManager(backend.auth, backend)
    await manager.start()
    error = await manager.sign_in(email, PASSWORD)
    assert error is None, error
    return manager.state
