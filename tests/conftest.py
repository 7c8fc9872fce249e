"""
Shared fixtures: test database (in-memory SQLite), sessions, data factory,
HTTP clients signed in as a given user, recording event sink.
"""
import itertools
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from werkzeug.security import generate_password_hash

from app.auth import create_session_token
from app.config import SESSION_COOKIE_NAME
from app.database import Base, get_db
from app.main import app
from app.models import Organization, Resource, User
from app.models.resource import ResourceStatus
from app.models.user import UserRole
from app.services.event_sink import EventSink, get_event_sink

# In-memory SQLite for tests (one engine for the whole run)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
)
TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

TEST_PASSWORD = "testpass"

_seq = itertools.count(1)


def unique(prefix: str) -> str:
    """The in-memory database lives for the whole run, so names must not repeat."""
    return f"{prefix}-{next(_seq)}"


@pytest_asyncio.fixture
async def create_tables():
    """Creates the tables (function scope, works with pytest-asyncio)."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture
async def db(create_tables) -> AsyncGenerator[AsyncSession, None]:
    """Session rolled back after the test (own connection, rollback at the end)."""
    async with test_engine.connect() as conn:
        await conn.begin()
        async with AsyncSession(bind=conn, expire_on_commit=False) as session:
            yield session
        await conn.rollback()


@pytest_asyncio.fixture
async def db_commit(create_tables) -> AsyncGenerator[AsyncSession, None]:
    """Committing session (data visible to later application requests)."""
    async with TestSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


class Factory:
    """Creates rows in the given session and flushes; the caller decides on commit."""

    async def organization(self, db: AsyncSession, name: str | None = None) -> Organization:
        org = Organization(name=name or unique("Org"))
        db.add(org)
        await db.flush()
        return org

    async def user(
        self,
        db: AsyncSession,
        role: UserRole = UserRole.volunteer,
        organization: Organization | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            username=unique(role.value),
            password_hash=generate_password_hash(TEST_PASSWORD),
            role=role,
            organization_id=organization.id if organization else None,
            is_active=is_active,
        )
        db.add(user)
        await db.flush()
        return user

    async def resource(
        self,
        db: AsyncSession,
        organization: Organization | None = None,
        quantity: int = 5,
        available: int | None = None,
        serial: bool = False,
        status: ResourceStatus = ResourceStatus.available,
        is_returnable: bool = True,
    ) -> Resource:
        resource = Resource(
            name=unique("Resource"),
            organization_id=organization.id if organization else None,
            quantity_total=quantity,
            quantity_available=quantity if available is None else available,
            serial_number=unique("SN") if serial else None,
            status=status,
            is_returnable=is_returnable,
        )
        db.add(resource)
        await db.flush()
        return resource


@pytest.fixture
def factory() -> Factory:
    return Factory()


class RecordingEventSink(EventSink):
    def __init__(self):
        self.published = []

    async def publish(self, notification) -> None:
        self.published.append(notification)


@pytest.fixture
def sink() -> RecordingEventSink:
    return RecordingEventSink()


async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest_asyncio.fixture
async def world(db_commit: AsyncSession, factory: Factory) -> dict:
    """
    Committed baseline for HTTP tests: two organizations, an admin, a coordinator
    and a volunteer of the first organization, a coordinator of the second one,
    and a bulk plus a serialized resource owned by the first organization.
    """
    org = await factory.organization(db_commit)
    other_org = await factory.organization(db_commit)
    world = {
        "org": org,
        "other_org": other_org,
        "admin": await factory.user(db_commit, UserRole.admin),
        "coordinator": await factory.user(db_commit, UserRole.coordinator, org),
        "volunteer": await factory.user(db_commit, UserRole.volunteer, org),
        "other_coordinator": await factory.user(db_commit, UserRole.coordinator, other_org),
        "bulk": await factory.resource(db_commit, org, quantity=3),
        "radio": await factory.resource(db_commit, org, quantity=1, serial=True),
    }
    await db_commit.commit()
    return world


@pytest_asyncio.fixture
async def client_factory(create_tables, sink: RecordingEventSink):
    """
    Returns an async context manager factory: `async with client_factory(user) as ac`.
    get_db and the event sink are overridden; user=None gives an anonymous client.
    """
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_sink] = lambda: sink

    def _make(user: User | None = None) -> AsyncClient:
        ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        if user is not None:
            ac.cookies.set(SESSION_COOKIE_NAME, create_session_token(user.id))
        return ac

    try:
        yield _make
    finally:
        app.dependency_overrides.pop(get_db, None)
        app.dependency_overrides.pop(get_event_sink, None)


@pytest_asyncio.fixture
async def client_anon(client_factory) -> AsyncGenerator[AsyncClient, None]:
    """Client without a session cookie."""
    async with client_factory() as ac:
        yield ac



@pytest.fixture
def password() -> str:
    """Plain-text password of every user the factory creates."""
    return TEST_PASSWORD
