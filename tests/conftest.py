"""
测试公共夹具：每个测试使用 tmp_path 下独立的 SQLite 数据库
"""
import itertools
from datetime import datetime
from typing import Optional

import httpx
import pytest

from engagement.db.database import build_engine, build_session_factory, get_db, get_session_factory, init_db
from engagement.models.user import User
from engagement.services.engagement_service import EngagementService
from engagement.services.events import EngagementEventBus
from engagement.utils.auth import create_access_token
from engagement.utils.keyed_lock import KeyedLock


@pytest.fixture()
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'engagement.db'}")
    await init_db(engine)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture()
def bus():
    return EngagementEventBus()


@pytest.fixture()
def service(session_factory, bus):
    return EngagementService(session_factory, bus=bus, locks=KeyedLock())


@pytest.fixture()
def make_user(session_factory):
    counter = itertools.count(1)

    async def _make(**fields) -> User:
        n = next(counter)
        fields.setdefault("username", f"user{n}")
        fields.setdefault("display_name", f"用户{n}")
        async with session_factory() as session:
            user = User(**fields)
            session.add(user)
            await session.commit()
            return user

    return _make


@pytest.fixture()
def make_video(service):
    counter = itertools.count(1)

    async def _make(owner: User, published_at: Optional[datetime] = None, **fields):
        n = next(counter)
        fields.setdefault("title", f"视频{n}")
        fields.setdefault("video_url", f"https://cdn.example.com/v/{n}.mp4")
        fields.setdefault("thumbnail_url", f"https://cdn.example.com/t/{n}.jpg")
        fields.setdefault("duration", 30)
        fields.setdefault("category", "short")
        return await service.register_video(owner_id=owner.id, published_at=published_at, **fields)

    return _make


@pytest.fixture()
def fetch(session_factory):
    """从新会话重新读取一行，确认已提交的状态"""

    async def _fetch(model, entity_id):
        async with session_factory() as session:
            return await session.get(model, entity_id)

    return _fetch


@pytest.fixture()
def auth_header():
    def _header(user_id: int) -> dict:
        return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}

    return _header


@pytest.fixture()
async def client(session_factory):
    from main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
