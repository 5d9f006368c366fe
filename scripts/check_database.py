#!/usr/bin/env python3
"""Check database connectivity and that the migrated schema matches the models."""

import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import create_async_engine

from libs.common import get_settings
from libs.data.models import Base


async def check_database() -> bool:
    settings = get_settings()
    print(f"Database: {settings.postgres_host}:{settings.postgres_port}/{settings.postgres_db}")

    engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            print("Connection successful")

            tables = set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))
            missing = sorted(set(Base.metadata.tables) - tables)
            for name in sorted(Base.metadata.tables):
                marker = "ok" if name in tables else "MISSING"
                print(f"  {name}: {marker}")

            if "alembic_version" in tables:
                version = (await conn.execute(text("SELECT version_num FROM alembic_version"))).scalar()
                print(f"Migration version: {version}")
            else:
                print("No alembic_version table; run: alembic upgrade head")
    except Exception as e:
        print(f"Error checking database: {type(e).__name__}: {e}")
        return False
    finally:
        await engine.dispose()

    if missing:
        print(f"Missing {len(missing)} table(s); run: alembic upgrade head")
    return not missing


if __name__ == "__main__":
    success = asyncio.run(check_database())
    sys.exit(0 if success else 1)
