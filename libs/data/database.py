from __future__ import annotations

import ssl
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from libs.common import AppSettings, get_settings

_engine = None
_async_session_factory = None


def _ssl_connect_args(settings: AppSettings) -> dict:
    """asyncpg SSL options derived from POSTGRES_SSL_MODE."""
    if not settings.uses_postgres:
        return {}
    ssl_mode = settings.postgres_ssl_mode.lower()
    if ssl_mode == "disable":
        return {}
    ssl_context = ssl.create_default_context()
    if ssl_mode == "verify-full" and settings.app_env == "prod":
        return {"ssl": ssl_context}
    # require / prefer: encrypted, hosted databases ship self-signed certificates
    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE
    return {"ssl": ssl_context}


def _init_engine():
    """Initialize database engine lazily."""
    global _engine, _async_session_factory
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            echo=False,
            connect_args=_ssl_connect_args(settings),
            pool_pre_ping=True,
        )
        _async_session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine, _async_session_factory


def __getattr__(name: str):
    """Lazy initialization of engine and async_session_factory."""
    if name == "engine":
        engine, _ = _init_engine()
        return engine
    if name == "async_session_factory":
        _, factory = _init_engine()
        return factory
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


async def get_async_session() -> AsyncIterator[AsyncSession]:
    _, factory = _init_engine()
    async with factory() as session:
        yield session
