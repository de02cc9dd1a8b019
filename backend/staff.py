"""
Staff API Endpoints
Admin-managed staff accounts and their check-in history.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from activity_logger import ActivityLogger
from api_utils import clean_username, ensure_username_available, success
from auth import get_password_hash, require_roles
from database import get_db, transaction
from exceptions import NotFoundError, ValidationError
from models import ADMIN_ROLES, StaffAttendance, User, UserRole
from schemas import StaffAttendanceResponse, StaffCreate, StaffUpdate, UserResponse, UserSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/staff", tags=["staff"])


admin_user = require_roles(*ADMIN_ROLES, message="Admin access required")


def _staff_scope(admin: User):
    """Staff an admin manages: their company's, or those they created"""
    query = select(User).where(User.role == UserRole.STAFF)
    if admin.company_id:
        return query.where(User.company_id == admin.company_id)
    return query.where(User.created_by_id == admin.id)


async def _get_staff(db: AsyncSession, admin: User, staff_id: int) -> User:
    result = await db.execute(_staff_scope(admin).where(User.id == staff_id))
    staff = result.scalar_one_or_none()
    if staff is None:
        raise NotFoundError("Staff member not found")
    return staff


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_staff(
    payload: StaffCreate,
    current_user: User = Depends(admin_user),
    db: AsyncSession = Depends(get_db)
):
    username = clean_username(payload.username)
    await ensure_username_available(db, username)
    if payload.email:
        existing = await db.execute(select(User.id).where(User.email == payload.email))
        if existing.first() is not None:
            raise ValidationError("Email already exists", errorType="EMAIL_EXISTS")

    async with transaction(db):
        staff = User(
            username=username,
            hashed_password=get_password_hash(payload.password),
            role=UserRole.STAFF,
            full_name=payload.full_name.strip(),
            phone_number=payload.phone_number,
            email=payload.email,
            company_id=current_user.company_id,
            created_by_id=current_user.id,
        )
        db.add(staff)
        await db.flush()
        await ActivityLogger(db).log(
            current_user.id,
            "staff_created",
            current_user,
            {"staffId": staff.id, "username": username, "fullName": staff.full_name},
            f"{current_user.username} created staff member {staff.full_name} ({username})",
            target_model="User",
        )

    return success(UserResponse.model_validate(staff), "Staff member created successfully")


@router.get("")
async def list_staff(
    current_user: User = Depends(admin_user),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(_staff_scope(current_user).order_by(User.created_at.desc(), User.id.desc()))
    staff_members = result.scalars().all()
    return success([UserResponse.model_validate(s) for s in staff_members], count=len(staff_members))


@router.put("/{staff_id}")
async def update_staff(
    staff_id: int,
    payload: StaffUpdate,
    current_user: User = Depends(admin_user),
    db: AsyncSession = Depends(get_db)
):
    staff = await _get_staff(db, current_user, staff_id)

    async with transaction(db):
        if payload.full_name:
            staff.full_name = payload.full_name.strip()
        if payload.phone_number is not None:
            staff.phone_number = payload.phone_number
        if payload.email is not None:
            staff.email = payload.email
        if payload.password:
            staff.hashed_password = get_password_hash(payload.password)
        await db.flush()
        await ActivityLogger(db).log(
            current_user.id,
            "staff_updated",
            current_user,
            {"staffId": staff.id, "passwordChanged": bool(payload.password)},
            f"{current_user.username} updated staff member {staff.display_name}",
            target_model="User",
        )

    return success(UserResponse.model_validate(staff), "Staff member updated successfully")


@router.delete("/{staff_id}")
async def delete_staff(
    staff_id: int,
    current_user: User = Depends(admin_user),
    db: AsyncSession = Depends(get_db)
):
    staff = await _get_staff(db, current_user, staff_id)

    async with transaction(db):
        await db.delete(staff)
        await db.flush()
        await ActivityLogger(db).log(
            current_user.id,
            "staff_deleted",
            current_user,
            {"staffId": staff_id, "username": staff.username},
            f"{current_user.username} deleted staff member {staff.display_name}",
            target_model="User",
        )

    return success(message="Staff member deleted successfully")


@router.get("/{staff_id}/attendance")
async def staff_attendance(
    staff_id: int,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    current_user: User = Depends(admin_user),
    db: AsyncSession = Depends(get_db)
):
    staff = await _get_staff(db, current_user, staff_id)

    query = select(StaffAttendance).where(StaffAttendance.staff_id == staff.id)
    if start_date:
        query = query.where(StaffAttendance.timestamp >= start_date)
    if end_date:
        query = query.where(StaffAttendance.timestamp <= end_date)
    result = await db.execute(query.order_by(StaffAttendance.timestamp.desc()))
    records = result.scalars().all()

    return success(
        [StaffAttendanceResponse.model_validate(r) for r in records],
        count=len(records),
        staff=UserSummary.model_validate(staff),
    )
