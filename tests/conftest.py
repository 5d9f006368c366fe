import os
import sys
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SMS_RU_API_ID", "test-api-id")
os.environ.setdefault("ADMIN_PASSWORD", "test-admin-password")
os.environ.setdefault("SERVICE_KEY", "test-service-key")
os.environ.setdefault("CALL_WEBHOOK_SECRET", "test-webhook-secret")

from libs.common import get_settings
from libs.data.models import Category, Product
from libs.data.models.base import Base


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture(scope="function")
async def session_factory():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
async def file_session_factory(tmp_path):
    """File-backed SQLite where every session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture(scope="function")
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def catalog(session_factory):
    """Two products in one category: a bouquet (1000) and a card (200)."""
    async with session_factory() as session:
        category = Category(name="Bouquets", slug="bouquets", sort_order=1)
        session.add(category)
        await session.flush()
        bouquet = Product(title="Roses", price=1000, category_id=category.id, in_stock=True, is_visible=True)
        card = Product(title="Postcard", price=200, category_id=category.id, in_stock=True, is_visible=True)
        sold_out = Product(title="Peonies", price=3000, category_id=category.id, in_stock=False, is_visible=True)
        session.add_all([bouquet, card, sold_out])
        await session.commit()
        return {"category": category.id, "bouquet": bouquet.id, "card": card.id, "sold_out": sold_out.id}
