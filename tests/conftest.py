"""Shared test fixtures for RepoMirror."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repomirror.config import Settings
from repomirror.database import create_engine, init_schema
from repomirror.main import create_app
from repomirror.services.clone_service import NewClone, insert_clone, set_sync_enabled
from repomirror.services.dispatch_service import SyncDispatcher
from tests.fake_github import FakeGitHub

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from repomirror.database import SessionFactory
    from repomirror.models.clone import RepositoryClone

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"
TEST_GITHUB_TOKEN = "ghp_test_token"


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    github: FakeGitHub | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB, admin user,
    GitHub client, dispatcher) because ASGITransport does not trigger it.
    The app talks to ``github`` instead of the real API.
    """
    from repomirror.services.auth_service import ensure_admin_user

    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    await init_schema(engine)

    async with session_factory() as session:
        await ensure_admin_user(session, settings)

    client = github if github is not None else FakeGitHub()
    dispatcher = SyncDispatcher(session_factory, client, settings)
    app.state.github_client = client
    app.state.dispatcher = dispatcher

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await dispatcher.drain()
    await engine.dispose()


async def login_headers(
    client: AsyncClient, username: str = "admin", password: str = "admin"
) -> dict[str, str]:
    resp = await client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


async def add_clone(
    session_factory: SessionFactory,
    settings: Settings,
    source: str = "octo/widgets",
    mirror: str = "me/widgets-clone",
    *,
    credential: str | None = TEST_GITHUB_TOKEN,
    user_id: int | None = None,
    enabled: bool = True,
) -> RepositoryClone:
    """Register a relationship directly in the registry."""
    async with session_factory() as session:
        clone = await insert_clone(
            session,
            NewClone(
                user_id=user_id,
                source_full_name=source,
                mirror_full_name=mirror,
                source_url=f"https://github.com/{source}",
                mirror_url=f"https://github.com/{mirror}",
                credential=credential or "unused",
            ),
            settings.secret_key,
        )
        if credential is None:
            clone.encrypted_credential = None
            await session.commit()
        if not enabled:
            clone = await set_sync_enabled(session, clone, False)
        return clone


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database and no pacing delays."""
    db_path = tmp_path / "test.db"
    return Settings(
        secret_key=TEST_SECRET_KEY,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        public_base_url="https://mirror.example.com",
        sync_file_delay_seconds=0,
        sweep_check_delay_seconds=0,
    )


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine, _ = create_engine(test_settings)
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory: SessionFactory) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
