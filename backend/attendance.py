"""
Attendance API Endpoints
Staff and supervisor check-in / check-out with photo and location.
"""
import logging
from datetime import datetime, time, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api_utils import success
from attendance_scheduler import cleanup_old_photos
from auth import ensure_role, get_current_user
from database import get_db, transaction
from exceptions import AuthorizationError, NotFoundError, ValidationError
from models import ADMIN_ROLES, CheckInType, StaffAttendance, User, UserRole
from schemas import CheckInRequest, StaffAttendanceResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/attendance", tags=["attendance"])

CHECK_IN_ROLES = (UserRole.STAFF, UserRole.SUPERVISOR)


def _label(check_type: CheckInType) -> str:
    return "Check In" if check_type == CheckInType.LOGIN else "Check Out"


def _range_filter(query, start_date: Optional[datetime], end_date: Optional[datetime]):
    if start_date:
        query = query.where(StaffAttendance.timestamp >= start_date)
    if end_date:
        query = query.where(StaffAttendance.timestamp <= end_date)
    return query


@router.post("", status_code=status.HTTP_201_CREATED)
async def check_in(
    payload: CheckInRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Record a check-in or check-out. One of each type per day."""
    ensure_role(current_user, *CHECK_IN_ROLES, message="Only staff and supervisors can submit attendance")

    now = datetime.utcnow()
    start_of_day = datetime.combine(now.date(), time.min)
    result = await db.execute(
        select(StaffAttendance.id).where(
            StaffAttendance.staff_id == current_user.id,
            StaffAttendance.type == payload.type,
            StaffAttendance.timestamp >= start_of_day,
            StaffAttendance.timestamp < start_of_day + timedelta(days=1),
        )
    )
    if result.first() is not None:
        raise ValidationError(f"You have already marked {_label(payload.type)} for today.")

    location = payload.location
    display_text = None
    if location is not None:
        display_text = location.display_text or f"{location.latitude:.5f}, {location.longitude:.5f}"

    async with transaction(db):
        record = StaffAttendance(
            staff_id=current_user.id,
            type=payload.type,
            photo=payload.photo,
            photo_uploaded_at=now if payload.photo else None,
            latitude=location.latitude if location else None,
            longitude=location.longitude if location else None,
            location_text=display_text,
            timestamp=now,
        )
        db.add(record)

    logger.info(f"✅ {_label(payload.type)} recorded for {current_user.username}")
    return success(
        StaffAttendanceResponse.model_validate(record),
        f"Attendance marked successfully: {_label(payload.type)}",
    )


@router.get("/my-records")
async def my_records(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    ensure_role(current_user, *CHECK_IN_ROLES, message="Unauthorized access")

    query = _range_filter(select(StaffAttendance).where(StaffAttendance.staff_id == current_user.id),
                          start_date, end_date)
    result = await db.execute(query.order_by(StaffAttendance.timestamp.desc()))
    records = result.scalars().all()

    # Photos are left out of list views
    data = [StaffAttendanceResponse.model_validate(r).model_dump(by_alias=True, mode="json", exclude={"photo"})
            for r in records]
    return success(data, count=len(records))


@router.get("/user/{user_id}")
async def user_records(
    user_id: int,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    ensure_role(current_user, *ADMIN_ROLES, message="Admin access required")
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    same_company = user.company_id is not None and user.company_id == current_user.company_id
    if not same_company and user.created_by_id != current_user.id:
        raise AuthorizationError("Access denied")

    query = _range_filter(select(StaffAttendance).where(StaffAttendance.staff_id == user.id),
                          start_date, end_date)
    result = await db.execute(query.order_by(StaffAttendance.timestamp.desc()))
    records = result.scalars().all()
    return success([StaffAttendanceResponse.model_validate(r) for r in records], count=len(records))


@router.delete("/cleanup")
async def cleanup_photos(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Clear photos past the retention window now instead of waiting for the scheduler"""
    ensure_role(current_user, *ADMIN_ROLES, message="Admin access required")
    async with transaction(db):
        cleaned = await cleanup_old_photos(db)
    return success(message="Photo cleanup completed", modifiedCount=cleaned)
