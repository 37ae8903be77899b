from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator, Iterator

from flask import Flask, current_app, g
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.vendorflow.errors import StorageUnavailable

SQLITE_BUSY_TIMEOUT_SECONDS = 15


def engine_options(db_url: str) -> dict[str, object]:
    opts: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("postgres"):
        opts.update(pool_recycle=1800, pool_size=5, max_overflow=10, pool_timeout=30)
    elif db_url.startswith("sqlite"):
        # Concurrent writers wait on the file lock instead of failing at once.
        opts["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
    return opts


def build_engine(db_url: str) -> Engine:
    """Engine shared by the app and the scripts; SQLite gets foreign keys enforced."""
    engine = create_engine(db_url, **engine_options(db_url))
    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _sqlite_foreign_keys(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    # Objects stay readable after commit; responses are built from them.
    return sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False)


def init_db(app: Flask) -> None:
    engine = build_engine(app.config["DATABASE_URL"])
    if app.config.get("ENV") != "production":

        @event.listens_for(engine, "checkout")
        def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
            app.logger.debug("DB connection checkout from pool")

    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = build_sessionmaker(engine)


def db_session(app: Flask | None = None) -> Session:
    """
    Session for the current request, opened on first use and closed on teardown.
    """
    s: Session | None = g.get("db_session")
    if s is None:
        sm = (app or current_app).extensions["sqlalchemy_sessionmaker"]
        s = g.db_session = sm()
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is not None:
        s.close()


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Unit of work outside a request (scripts, tests): commit on success,
    roll back and re-raise on any error.
    """
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


@contextmanager
def storage_guard() -> Iterator[None]:
    """Translate connection-level database failures into StorageUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise StorageUnavailable(f"Storage is unavailable: {e.orig or e}") from e
