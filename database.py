import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

DEFAULT_DATABASE_URL = "sqlite:///./jobconnect.db"


def build_database_url() -> str:
    """Resolve the DB URL from DATABASE_URL, then DB_* parts, then local SQLite."""
    env_url = os.getenv("DATABASE_URL")
    if env_url:
        # Hosted providers still hand out the legacy scheme
        if env_url.startswith("postgres://"):
            env_url = env_url.replace("postgres://", "postgresql://", 1)
        return env_url

    host = os.getenv("DB_HOST")
    if host:
        user = os.getenv("DB_USER", "postgres")
        password = os.getenv("DB_PASSWORD", "")
        port = os.getenv("DB_PORT", "5432")
        name = os.getenv("DB_NAME", "jobconnect")
        return f"postgresql://{user}:{password}@{host}:{port}/{name}"

    return DEFAULT_DATABASE_URL


def make_engine(url: str):
    """Create an engine; SQLite gets thread/timeout args and per-connection pragmas."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    sqlite_engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": 15},
        pool_pre_ping=True,
    )

    @event.listens_for(sqlite_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA busy_timeout = 5000")
            # Needed for ON DELETE SET NULL on applications.job_id
            cursor.execute("PRAGMA foreign_keys=ON;")
        finally:
            cursor.close()
        # ilike compiles to lower(); SQLite's builtin folds ASCII only
        dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)

    return sqlite_engine


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


SQLALCHEMY_DATABASE_URL = build_database_url()
engine = make_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def create_db_and_tables():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
