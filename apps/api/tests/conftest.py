from unittest.mock import patch
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from main import app
from database import Base, get_db
from models.user import User
from routers import rate_limit
from services.session_token import create_session_token
from services.tiers import classify
from services.webhook_events import reset_webhook_event_cache


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit.reset_local_counters()
    yield
    rate_limit.reset_local_counters()
    app.state.disable_rate_limits = previous


@pytest.fixture(autouse=True)
def reset_webhook_dedup_cache():
    reset_webhook_event_cache()
    yield
    reset_webhook_event_cache()


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """Temp SQLite database; notifications are written through the same database."""
    db_path = tmp_path / "collabos.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    with patch("services.notifications.async_session_maker", maker):
        yield maker

    await engine.dispose()


@pytest_asyncio.fixture
async def api_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def make_user(session_maker):
    async def _make_user(name: str = "user", coins: int = 0, role: str = "USER") -> str:
        user_id = f"{name}-{uuid.uuid4().hex[:8]}"
        async with session_maker() as session:
            session.add(
                User(
                    id=user_id,
                    email=f"{user_id}@example.com",
                    name=name.title(),
                    role=role,
                    coins=coins,
                    tier=classify(coins).value,
                )
            )
            await session.commit()
        return user_id

    return _make_user


def auth_header(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_session_token(user_id)['token']}"}


@pytest.fixture
def auth():
    return auth_header
