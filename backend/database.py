import os
import logging
from contextlib import asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from tenacity import retry, stop_after_attempt, wait_fixed, retry_if_exception_type

from config import settings

try:
    import asyncpg.exceptions
    HAS_ASYNCPG = True
except ImportError:
    HAS_ASYNCPG = False

logger = logging.getLogger(__name__)


def get_database_url():
    # Local mode always runs against a SQLite file next to the app
    mode = os.getenv("DATABASE_MODE", "cloud")  # 'cloud' or 'local'

    if mode == "local":
        return "sqlite+aiosqlite:///./sitebuild_local.sqlite"

    return settings.database_url_async


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    Let pysqlite/aiosqlite honour SAVEPOINT.

    The driver's own transaction handling swallows BEGIN, which breaks
    begin_nested(). Turn it off and emit BEGIN ourselves.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, applying the SQLite connection setup when needed"""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}

    new_engine = create_async_engine(
        url,
        echo=settings.SQL_ECHO,
        future=True,
        connect_args=connect_args,
        **kwargs
    )
    if url.startswith("sqlite"):
        enable_sqlite_savepoints(new_engine)
    return new_engine


# Engine configuration with auto-switching
DATABASE_URL = get_database_url()
engine = build_engine(DATABASE_URL)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db():
    """Dependency for getting async database sessions"""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def transaction(db: AsyncSession):
    """
    Commit everything done inside the block, or roll all of it back.

    Used for multi-row business operations (supply approval, bulk imports)
    that must land together.
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise


# Define exception types to retry on
retry_exceptions = (ConnectionRefusedError, OSError)
if HAS_ASYNCPG:
    retry_exceptions += (asyncpg.exceptions.PostgresError,)


@retry(
    retry=retry_if_exception_type(retry_exceptions),
    stop=stop_after_attempt(12),  # 60 seconds total (12 attempts * 5 seconds)
    wait=wait_fixed(5),
    reraise=True,
    before_sleep=lambda retry_state: logger.warning(
        f"Database connection attempt {retry_state.attempt_number} failed. "
        f"Retrying in 5 seconds... (Error: {retry_state.outcome.exception()})"
    )
)
async def init_db():
    """
    Initialize database tables and schema with retry logic.

    Retries for up to a minute while the database server comes up
    (container start order is not guaranteed).
    """
    logger.info("Attempting to connect to database and run migrations...")

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("Database connection successful!")

        # Import here to avoid circular imports
        from migrations.schema_migrations import run_migrations
        await run_migrations()

        logger.info("Database initialization complete!")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise
