from __future__ import annotations

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from dnsguard.exceptions import StorageUnavailable
from dnsguard.settings import get_settings

settings = get_settings()

engine: Engine | None = (
    create_engine(settings.database_url, pool_pre_ping=True) if settings.database_url else None
)
SessionLocal = (
    sessionmaker(bind=engine, autoflush=False, autocommit=False) if engine is not None else None
)


def storage_configured() -> bool:
    return SessionLocal is not None


def get_db() -> Generator[Session, None, None]:
    if SessionLocal is None:
        raise StorageUnavailable()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
