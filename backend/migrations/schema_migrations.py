"""
Auto-migration system for schema changes.

Runs at startup. Creates missing tables, then adds any columns and indexes
that models declare but an older database lacks. Safe to run repeatedly.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports when running standalone
if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from database import engine as default_engine, Base
import models  # noqa: F401  (registers every table on Base.metadata)

logger = logging.getLogger(__name__)


async def get_table_columns(engine: AsyncEngine, table_name: str) -> set:
    """Get all column names for a table from the database."""
    async with engine.connect() as conn:
        if engine.dialect.name == "sqlite":
            result = await conn.execute(text(f'PRAGMA table_info("{table_name}")'))
            return {row[1] for row in result}
        result = await conn.execute(
            text("SELECT column_name FROM information_schema.columns WHERE table_name = :table"),
            {"table": table_name}
        )
        return {row[0] for row in result}


def _default_clause(col) -> str:
    if col.default is None or not hasattr(col.default, "arg") or callable(col.default.arg):
        # Python-side callables like datetime.utcnow have no SQL equivalent
        return ""
    value = col.default.arg
    if isinstance(value, bool):
        return f"DEFAULT {str(value).upper()}"
    if isinstance(value, (int, float)):
        return f"DEFAULT {value}"
    if isinstance(value, str):
        return "DEFAULT '" + value.replace("'", "''") + "'"
    if hasattr(value, "name"):
        # Enum columns store the member name
        return f"DEFAULT '{value.name}'"
    return ""


async def add_missing_columns(engine: AsyncEngine):
    """
    Check all SQLAlchemy models and add any missing columns to the database.
    This is safe to run multiple times.
    """
    if engine.dialect.name == "sqlite":
        logger.info("ℹ️ Skipping column detection for SQLite. create_all handles table creation.")
        return

    logger.info("🔍 Checking for missing database columns...")
    changes_made = False

    for table_name, table in Base.metadata.tables.items():
        db_columns = await get_table_columns(engine, table_name)
        if not db_columns:
            continue

        missing_columns = {col.name for col in table.columns} - db_columns
        if not missing_columns:
            logger.debug(f"✅ Table '{table_name}' schema is up to date")
            continue

        logger.info(f"📝 Table '{table_name}' is missing columns: {missing_columns}")
        async with engine.begin() as conn:
            for col_name in sorted(missing_columns):
                col = table.columns[col_name]
                col_type = col.type.compile(engine.dialect)
                default_clause = _default_clause(col)
                # NOT NULL without a default would fail on populated tables
                nullable = "NOT NULL" if (not col.nullable and default_clause) else "NULL"

                alter_sql = (
                    f"ALTER TABLE {table_name} "
                    f"ADD COLUMN IF NOT EXISTS {col_name} {col_type} {nullable} {default_clause}"
                )
                await conn.execute(text(alter_sql))
                logger.info(f"✅ Added column {table_name}.{col_name}")
                changes_made = True

    if changes_made:
        logger.info("✅ Schema migration completed - columns added")
    else:
        logger.info("✅ Schema is up to date - no changes needed")


async def ensure_indexes(engine: AsyncEngine):
    """Create declared indexes that are missing (tables created before the index was added)."""
    async with engine.begin() as conn:
        for table in Base.metadata.tables.values():
            for index in table.indexes:
                await conn.run_sync(lambda sync_conn, idx=index: idx.create(sync_conn, checkfirst=True))
    logger.info("✅ All indexes exist")


async def run_migrations(engine: Optional[AsyncEngine] = None):
    """
    Main migration entry point.
    1. Creates missing tables (via create_all)
    2. Adds missing columns to existing tables
    3. Creates missing indexes
    """
    engine = engine or default_engine

    logger.info("=" * 60)
    logger.info("Starting database schema migration...")
    logger.info("=" * 60)

    # Step 1: Create any missing tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ All tables exist")

    # Step 2: Add missing columns to existing tables
    await add_missing_columns(engine)

    # Step 3: Indexes on activity logs and supply requests matter for the hot queries
    await ensure_indexes(engine)

    logger.info("=" * 60)
    logger.info("Database schema migration completed!")
    logger.info("=" * 60)


if __name__ == "__main__":
    # Allow running migrations standalone
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_migrations())
