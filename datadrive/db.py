# datadrive/db.py
from __future__ import annotations

from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import settings


def make_engine(url: str = settings.DB_URL, **kwargs) -> Engine:
    # sessions are handed across threadpool workers by FastAPI
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, **kwargs)


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db(bind: Optional[Engine] = None) -> None:
    """Create the dataset, edit-request, media and audit tables."""
    from . import models  # noqa: F401  (registers every table on Base)

    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
