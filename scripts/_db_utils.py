from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session, sessionmaker

from app.ngoadmin.db import build_engine

DEFAULT_DATABASE_URL = "sqlite:///ngoadmin.db"


def database_url(explicit: str | None = None) -> str:
    """Explicit argument, then DATABASE_URL, then the local SQLite file."""
    return (explicit or os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL).strip()


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    # Same engine settings as the app, so SQLite scripts also get ON DELETE CASCADE.
    engine = build_engine(db_url)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
