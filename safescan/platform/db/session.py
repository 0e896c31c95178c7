from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from safescan.platform.config import settings


def create_db_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        # Worker threads share the file; writers wait on the lock instead of failing fast.
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    return create_engine(
        database_url,
        future=True,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


def create_session_factory(database_url: str, create_tables: bool = False) -> sessionmaker:
    """Build the session factory handed to the stores, the ledger and the orchestrator."""
    engine = create_db_engine(database_url)
    if create_tables:
        from safescan.features.scan.models import Base

        Base.metadata.create_all(bind=engine)
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        class_=Session,
        expire_on_commit=False,
    )


@lru_cache
def get_session_factory() -> sessionmaker:
    return create_session_factory(settings.DATABASE_URL, create_tables=settings.DATABASE_URL.startswith("sqlite"))

