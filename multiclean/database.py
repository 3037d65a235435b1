import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from . import config

logger = logging.getLogger(__name__)


def _enforce_sqlite_foreign_keys(dbapi_connection, _connection_record):
    # Rooms, completions and offers all hang off a job row
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str = config.DATABASE_URL):
    """
    SQLite gets a busy timeout and foreign keys; server databases get a
    pre-pinged pool, since sweeps can sit idle for minutes between runs.
    """
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": config.SQLITE_BUSY_TIMEOUT},
            echo=False,
        )
        event.listen(engine, "connect", _enforce_sqlite_foreign_keys)
        return engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=config.DB_POOL_RECYCLE,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_timeout=config.DB_POOL_TIMEOUT,
        echo=False,
    )


try:
    engine = build_engine()
    logger.info(f"✅ Job store engine ready ({engine.dialect.name})")
except Exception as e:
    logger.error(f"❌ Failed to create job store engine: {e}")
    raise

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
