# helpdesk/core/database.py
from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager

from fastapi import Request
from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from helpdesk.core.config import Settings


class Base(DeclarativeBase):
    pass


def build_engine(settings: Settings) -> Engine:
    url = make_url(settings.DATABASE_URL)

    if url.drivername.startswith("sqlite"):
        if url.database in (None, "", ":memory:"):
            # one shared connection, otherwise every checkout sees an empty database
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": settings.DB_CONNECT_TIMEOUT},
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=3600,
        connect_args={"connect_timeout": settings.DB_CONNECT_TIMEOUT},
    )


class Database:
    """Connection pool handle owned by the application lifespan.

    Built once in ``create_app`` and reached by request handlers through
    ``app.state.database``; there is no module level engine.
    """

    def __init__(self, settings: Settings, engine: Engine | None = None):
        self.settings = settings
        self.engine = engine if engine is not None else build_engine(settings)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    def create_all(self) -> None:
        # models must be imported so their tables are registered on Base.metadata
        from helpdesk.ticket import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def wait_until_ready(self) -> None:
        """Check the store, retrying a few times before giving up."""
        retries = self.settings.DB_CONNECT_RETRIES
        for attempt in range(1, retries + 1):
            try:
                self.ping()
            except SQLAlchemyError as exc:
                logger.error(
                    "Database connection failed ({}). Retries left: {}", exc, retries - attempt
                )
                if attempt == retries:
                    logger.error("Failed to connect to database after all retries")
                    raise
                logger.info("Retrying connection in {} seconds...", self.settings.DB_CONNECT_RETRY_DELAY)
                time.sleep(self.settings.DB_CONNECT_RETRY_DELAY)
            else:
                logger.info("Connected to database {}", self.engine.url.render_as_string())
                return

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database connection pool closed")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        db: Session = self.SessionLocal()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


# Common DB dependency
def get_db(request: Request) -> Generator[Session, None, None]:
    database: Database = request.app.state.database
    with database.session() as db:
        yield db
