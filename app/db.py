"""Database engine, session factory and declarative base."""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.settings import settings


def build_database_url() -> tuple[str, dict]:
    """
    Resolve the SQLAlchemy URL and connect args.

    A Turso/libSQL URL (libsql://host) is translated to the
    ``sqlite+libsql`` dialect provided by the ``turso`` extra.
    """
    if settings.TURSO_DATABASE_URL:
        host = settings.TURSO_DATABASE_URL.split("://", 1)[-1]
        connect_args = {}
        if settings.TURSO_AUTH_TOKEN:
            connect_args["auth_token"] = settings.TURSO_AUTH_TOKEN
        return f"sqlite+libsql://{host}?secure=true", connect_args

    connect_args = {}
    if settings.DATABASE_URL.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return settings.DATABASE_URL, connect_args


_url, _connect_args = build_database_url()
engine = create_engine(_url, connect_args=_connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """Turn on ON DELETE CASCADE for SQLite connections."""
    module = type(dbapi_connection).__module__
    if "sqlite" not in module and "libsql" not in module:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_db():
    """Yield a database session for a request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
