import asyncio

import jwt
import pytest
from fastapi.testclient import TestClient

from tubely.api import deps
from tubely.core.config import get_settings
from tubely.core.db import Base, create_engine, create_session_factory
from tubely.db.models import Video
from tubely.main import create_app

from tests.fakes import FakeOptimizer, FakeProbe


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default Tubely environment bootstrap fixture for tests that manage their own .env",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()
        return
    db_path = tmp_path / "tubely_test.db"

    monkeypatch.setenv("TUBELY_ENV", "test")
    monkeypatch.setenv("TUBELY_LOG_LEVEL", "debug")
    monkeypatch.setenv("TUBELY_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("TUBELY_STAGING_ROOT", str(tmp_path / "staging"))
    monkeypatch.setenv("TUBELY_STORAGE_BACKEND", "local")
    monkeypatch.setenv("TUBELY_LOCAL_STORAGE_BASE_PATH", str(tmp_path / "objects"))
    monkeypatch.setenv("TUBELY_JWT_SECRET", "test-secret")
    monkeypatch.setenv("TUBELY_JWT_ISSUER", "tubely-test")
    monkeypatch.setenv("TUBELY_JWT_AUDIENCE", "tubely")

    get_settings.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    async def _setup() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_setup())

    yield

    async def _teardown() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(_teardown())
    get_settings.cache_clear()


def seed_video(video_id: str, user_id: str, *, video_url: str | None = None) -> None:
    settings = get_settings()
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    async def _seed() -> None:
        async with session_factory() as session:
            session.add(Video(id=video_id, user_id=user_id, title="boots", video_url=video_url))
            await session.commit()
        await engine.dispose()

    asyncio.run(_seed())


def fetch_video_url(video_id: str) -> str | None:
    settings = get_settings()
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    async def _fetch() -> str | None:
        async with session_factory() as session:
            video = await session.get(Video, video_id)
            url = video.video_url if video else None
        await engine.dispose()
        return url

    return asyncio.run(_fetch())


def build_token(user_id: str) -> str:
    payload = {"sub": user_id, "iss": "tubely-test", "aud": "tubely"}
    return jwt.encode(payload, "test-secret", algorithm="HS256")


@pytest.fixture()
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture()
def fake_optimizer() -> FakeOptimizer:
    return FakeOptimizer()


@pytest.fixture()
def client(configure_environment, fake_probe, fake_optimizer):
    app = create_app()
    app.dependency_overrides[deps.get_media_probe] = lambda: fake_probe
    app.dependency_overrides[deps.get_stream_optimizer] = lambda: fake_optimizer
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def owner_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-owner')}"}


@pytest.fixture()
def stranger_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-stranger')}"}
