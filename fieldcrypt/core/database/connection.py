"""
Database connection and session management.
"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import OperationalError, DBAPIError
from typing import Generator, Optional
import logging
import time

from fieldcrypt.core.config import get_settings

logger = logging.getLogger(__name__)

engine: Optional[Engine] = None
SessionLocal = None


def normalize_database_url(url: str) -> str:
    """Convert postgres:// to postgresql:// (some hosts still hand out the old scheme)."""
    if url.startswith('postgres://'):
        return url.replace('postgres://', 'postgresql://', 1)
    return url


def enable_sqlite_savepoints(engine: Engine):
    """
    Make pysqlite transactions start with an explicit BEGIN.

    The driver otherwise begins transactions lazily, turns the first SAVEPOINT
    into the BEGIN and commits on its RELEASE, so per-user savepoints would
    commit users before the page that contains them.
    """
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_db(database_url: Optional[str] = None, max_retries: int = 3, retry_delay: float = 1.0):
    """
    Initialize the database engine and session factory with retry logic.
    Call this once at startup.

    Args:
        database_url: Override for FIELDCRYPT_DATABASE_URL
        max_retries: Number of connection attempts
        retry_delay: Seconds to wait between retries

    Raises:
        RuntimeError: If no URL is configured or connection fails after all retries
    """
    global engine, SessionLocal

    settings = get_settings()
    url = normalize_database_url(database_url or settings.database_url)
    if not url:
        raise RuntimeError("FIELDCRYPT_DATABASE_URL not set - cannot open the user table")

    engine_kwargs = {"pool_pre_ping": True, "echo": False}
    if not url.startswith('sqlite'):
        engine_kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_recycle=3600,
        )

    for attempt in range(max_retries):
        try:
            engine = create_engine(url, **engine_kwargs)
            if url.startswith('sqlite'):
                enable_sqlite_savepoints(engine)

            # Test connection
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))

            SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
            logger.info(f"Database initialized: {url.split('@')[1] if '@' in url else 'local'}")
            return engine

        except (OperationalError, DBAPIError) as e:
            logger.warning(f"Database connection attempt {attempt + 1}/{max_retries} failed: {e}")
            if attempt < max_retries - 1:
                time.sleep(retry_delay * (attempt + 1))
            else:
                logger.error(f"Database initialization failed after {max_retries} attempts")
                raise RuntimeError(f"Failed to connect to database: {e}") from e


def get_db() -> Generator[Session, None, None]:
    """
    Get a database session.

    Usage:
        from fieldcrypt.core.database import get_db

        db = next(get_db())
    """
    if not SessionLocal:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    db = SessionLocal()
    try:
        yield db
    except (OperationalError, DBAPIError) as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def create_tables():
    """
    Create all tables in the database.
    Only use for initial setup - prefer Alembic migrations for production.
    """
    if not engine:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    from .models import Base
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")
