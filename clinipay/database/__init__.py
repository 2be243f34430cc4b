"""
SQLAlchemy engine, session factory and declarative base.

Services call ``commit`` themselves; ``get_db`` only guarantees that a request
which raised leaves nothing half-written and that the connection goes back to
the pool.
"""

import logging
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from ..core.config import settings

logger = logging.getLogger(__name__)

_SERVER_POOL: Dict[str, Any] = {
    "pool_size": 10,
    "max_overflow": 10,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}


def engine_options(url: str) -> Dict[str, Any]:
    # SQLite connections are handed to asyncio.to_thread workers
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {**_SERVER_POOL, "connect_args": {"connect_timeout": 10, "application_name": "clinipay"}}


engine: Engine = create_engine(settings.database_url, **engine_options(settings.database_url))
logger.info(f"Database engine ready ({engine.url.get_backend_name()})")

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    else:
        session.commit()
    finally:
        session.close()


__all__ = ["Base", "SessionLocal", "engine", "engine_options", "get_db"]
