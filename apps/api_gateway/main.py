from __future__ import annotations

import logging
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from sqlalchemy import text

from libs.common import configure_logging, get_settings
from libs.common.logging import set_correlation_id
from libs.data.database import get_async_session

from .background import start_category_cache_listener, stop_category_cache_listener
from .dependencies import get_category_cache
from .exception_handlers import EXCEPTION_HANDLERS
from .routes import router as api_router

logger = logging.getLogger(__name__)

API_TITLE = "Flower Shop API"
API_VERSION = "0.1.0"


async def probe_database() -> str:
    """"ok", or the error text when SELECT 1 fails."""
    try:
        async for session in get_async_session():
            await session.execute(text("SELECT 1"))
            break
    except Exception as e:
        return f"error: {e}"
    return "ok"


@asynccontextmanager
async def lifespan(app: FastAPI):
    cache = get_category_cache()
    await start_category_cache_listener(cache)

    db_status = await probe_database()
    if db_status == "ok":
        logger.info("Database connection verified successfully")
    else:
        logger.error(f"Failed to connect to database: {db_status}")
        logger.warning("Application will start but database operations may fail")

    yield

    await stop_category_cache_listener(cache)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(title=API_TITLE, version=API_VERSION, lifespan=lifespan)

    for exc_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exc_class, handler)

    app.include_router(api_router)

    @app.middleware("http")
    async def tracing_middleware(request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-Id", str(uuid.uuid4()))
        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id
        response: Response = await call_next(request)
        response.headers["X-Correlation-Id"] = correlation_id
        return response

    @app.get("/", tags=["system"])
    async def root():
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "status": "running",
            "call_window_seconds": settings.verification_window_seconds,
            "notifications": settings.telegram_enabled,
        }

    @app.get("/healthz", tags=["system"])
    async def health():
        db_status = await probe_database()
        return {"status": "ok" if db_status == "ok" else "degraded", "database": db_status}

    return app


app = create_app()


def run():
    import uvicorn

    port = int(os.environ.get("PORT", 8000))
    reload = get_settings().app_env == "local"
    uvicorn.run("apps.api_gateway.main:app", host="0.0.0.0", port=port, reload=reload)


if __name__ == "__main__":
    run()
