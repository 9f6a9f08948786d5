#!/usr/bin/env python3
"""
Run migrations (same process, same DATABASE_URL), then seed, then uvicorn.
Ensures tables exist before seed and app start.
"""
import logging
import os
import sys

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger("start_api")


def migrate(database_url: str) -> None:
    alembic_cfg = Config(os.path.join(os.path.dirname(__file__), "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(alembic_cfg, "head")


def seed(database_url: str) -> None:
    # Engine created *after* migrations so it sees the new tables
    from app.seed import run as run_seed

    seed_engine = create_engine(database_url, pool_pre_ping=True)
    SeedSession = sessionmaker(autocommit=False, autoflush=False, bind=seed_engine)
    try:
        run_seed(SeedSession())
    finally:
        seed_engine.dispose()


def main() -> None:
    import wait_for_db

    from app.core.config import settings

    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    wait_for_db.wait(settings.DATABASE_URL)
    logger.info("Running migrations")
    migrate(settings.DATABASE_URL)
    logger.info("Seeding")
    seed(settings.DATABASE_URL)
    os.execv(
        sys.executable,
        [sys.executable, "-m", "uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", os.getenv("PORT", "8000")],
    )


if __name__ == "__main__":
    main()
