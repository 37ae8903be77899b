from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.vendorflow.db import build_engine, build_sessionmaker

DEFAULT_DATABASE_URL = "sqlite:///vendorflow.db"


def database_url(explicit: str | None = None) -> str:
    """--database-url wins, then DATABASE_URL, then the local SQLite file."""
    return (explicit or os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL).strip()


@contextmanager
def script_session(db_url: str) -> Iterator[Session]:
    engine = build_engine(db_url)
    s = build_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
