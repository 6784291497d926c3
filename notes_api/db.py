from datetime import datetime, timezone

from fastapi import Request
from sqlalchemy import DateTime, create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from notes_api.config import Settings

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Store datetimes as naive UTC and hand them back timezone-aware."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def _normalize_sqlalchemy_postgres_url(url: str) -> str:
    """
    Normalize a Postgres URL into a SQLAlchemy psycopg2 URL.

    Accepts:
    - postgresql://...
    - postgresql+psycopg2://...

    Returns:
    - postgresql+psycopg2://...
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg2://", 1)
    return url


# PUBLIC_INTERFACE
def build_database_url(settings: Settings) -> str:
    """
    Build a SQLAlchemy database URL.

    Preference order:
    1) NOTES_API_DATABASE_URL (Postgres URLs are normalized to psycopg2)
    2) notes.sqlite inside NOTES_API_DB_DIR, creating the directory if needed
    """
    if settings.database_url:
        return _normalize_sqlalchemy_postgres_url(settings.database_url)

    settings.db_dir.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{settings.database_path}"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless enabled per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# PUBLIC_INTERFACE
def create_db_engine(database_url: str) -> Engine:
    """Create an engine, enabling foreign key enforcement for SQLite."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        engine = create_engine(database_url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(database_url, pool_pre_ping=True)


# PUBLIC_INTERFACE
def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


# PUBLIC_INTERFACE
def get_db(request: Request):
    """FastAPI dependency that yields a database session and ensures it is closed."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
