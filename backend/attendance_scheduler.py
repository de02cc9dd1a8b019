"""
Attendance Photo Scheduler - Background cleanup of staff check-in photos

Check-in photos are only needed for a short audit window. This module
clears photo references older than ATTENDANCE_PHOTO_RETENTION_DAYS while
keeping the attendance rows themselves.

Run as a background task using APScheduler.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import async_session_maker
from models import StaffAttendance

logger = logging.getLogger(__name__)


async def cleanup_old_photos(db: AsyncSession, retention_days: Optional[int] = None) -> int:
    """
    Clear photo fields on attendance records older than the retention window.
    Returns the number of records cleaned. The caller commits.
    """
    days = retention_days if retention_days is not None else settings.ATTENDANCE_PHOTO_RETENTION_DAYS
    cutoff = datetime.utcnow() - timedelta(days=days)

    result = await db.execute(
        update(StaffAttendance)
        .where(
            StaffAttendance.photo.is_not(None),
            StaffAttendance.timestamp < cutoff,
        )
        .values(photo=None, photo_uploaded_at=None)
        .execution_options(synchronize_session=False)
    )
    cleaned = result.rowcount or 0
    logger.info(f"🧹 Cleared {cleaned} attendance photo(s) older than {days} days")
    return cleaned


async def run_attendance_cleanup():
    """Main entry point for the scheduled cleanup."""
    logger.info("🔍 Starting attendance photo cleanup...")

    try:
        async with async_session_maker() as db:
            await cleanup_old_photos(db)
            await db.commit()
        logger.info("✅ Attendance photo cleanup completed")
    except Exception as e:
        logger.error(f"❌ Attendance photo cleanup failed: {str(e)}", exc_info=True)


# ============================================================================
# Scheduler Setup (APScheduler)
# ============================================================================

def start_attendance_scheduler():
    """
    Start the APScheduler background scheduler for attendance cleanup.
    Runs every ATTENDANCE_CLEANUP_INTERVAL_HOURS (daily by default).
    """
    from apscheduler.schedulers.asyncio import AsyncIOScheduler
    from apscheduler.triggers.interval import IntervalTrigger

    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        run_attendance_cleanup,
        IntervalTrigger(hours=settings.ATTENDANCE_CLEANUP_INTERVAL_HOURS),
        id='attendance_photo_cleanup',
        name='Attendance Photo Cleanup',
        replace_existing=True
    )

    scheduler.start()
    logger.info(
        f"📅 Attendance scheduler started - cleanup every {settings.ATTENDANCE_CLEANUP_INTERVAL_HOURS} hours"
    )

    return scheduler


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_attendance_cleanup())
