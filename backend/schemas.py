from pydantic import AliasChoices, BaseModel, EmailStr, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional
from datetime import datetime, date
from models import (
    UserRole, SubscriptionStatus, SupplyStatus, SupplyRequestStatus,
    AttendanceStatus, CheckInType, MediaType
)


class CamelModel(BaseModel):
    """JSON uses camelCase (itemName, warehouseId, ...); Python attributes stay snake_case"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# ==================== AUTH ====================

class LoginRequest(CamelModel):
    username: str
    password: str
    expected_role: Optional[UserRole] = None


class RegisterAdminRequest(CamelModel):
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6)
    email: EmailStr
    phone_number: str
    first_name: str
    last_name: str
    firm_name: Optional[str] = None


class VerifyIdentityRequest(CamelModel):
    username: str
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    reset_token: str
    new_password: str = Field(..., min_length=6)


class UserResponse(CamelModel):
    id: int
    username: str
    role: UserRole
    email: Optional[str] = None
    phone_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    firm_name: Optional[str] = None
    full_name: Optional[str] = None
    company_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    created_at: Optional[datetime] = None


class UserSummary(CamelModel):
    id: int
    username: str
    full_name: Optional[str] = None


# ==================== COMPANY ====================

class CompanyRegisterRequest(CamelModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    phone_number: str
    gstin: Optional[str] = None
    address: Optional[str] = None
    # Owner account details
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class CompanyResponse(CamelModel):
    id: int
    name: str
    email: str
    phone_number: str
    gstin: Optional[str] = None
    address: Optional[str] = None
    subscription_status: SubscriptionStatus
    created_at: Optional[datetime] = None


# ==================== ACTIVITY LOGS ====================

class ActivityLogResponse(CamelModel):
    id: int
    target_model: str
    target_id: int
    action: str
    performed_by: Optional[int] = Field(None, validation_alias=AliasChoices("performed_by_id", "performedBy"))
    performed_by_name: str
    performed_by_role: str
    details: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    timestamp: datetime


class CompanyActivityLogResponse(ActivityLogResponse):
    company_id: int
    target_id: Optional[int] = None
    target_model: Optional[str] = None


# ==================== SITES ====================

class SiteSupplyResponse(CamelModel):
    id: int
    item_name: str
    quantity: float
    unit: str
    currency: Optional[str] = None
    cost: Optional[float] = None
    entry_price: Optional[float] = None
    current_price: Optional[float] = None
    status: SupplyStatus
    is_priced: bool
    added_by_name: Optional[str] = None
    priced_by_name: Optional[str] = None
    priced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WorkerAttendanceResponse(CamelModel):
    date: date
    status: AttendanceStatus


class WorkerResponse(CamelModel):
    id: int
    name: str
    role: str
    phone_number: Optional[str] = None
    attendance: List[WorkerAttendanceResponse] = []


class SiteResponse(CamelModel):
    id: int
    site_name: str
    location: str
    description: Optional[str] = None
    admin_id: Optional[int] = None
    company_id: Optional[int] = None
    supervisors: List[UserSummary] = []
    supplies: List[SiteSupplyResponse] = []
    workers: List[WorkerResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SiteDetailResponse(SiteResponse):
    recent_activity_logs: List[ActivityLogResponse] = []


class SiteCreate(CamelModel):
    site_name: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    description: Optional[str] = None
    # Optional supervisor: create a new account or attach an existing one
    supervisor_username: Optional[str] = None
    supervisor_password: Optional[str] = None
    supervisor_full_name: Optional[str] = None
    existing_supervisor_id: Optional[int] = None


class SiteUpdate(CamelModel):
    site_name: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None


class SiteSupplyCreate(CamelModel):
    item_name: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    unit: Optional[str] = None


class SiteSupplyUpdate(CamelModel):
    item_name: Optional[str] = None
    quantity: Optional[float] = Field(None, gt=0)
    unit: Optional[str] = None
    cost: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None


class SupplyPricingRequest(CamelModel):
    cost: float = Field(..., ge=0)
    currency: Optional[str] = None


class ImportRowIn(CamelModel):
    """Raw import row; values are validated by the reconciler, not here"""
    item_name: Any = None
    quantity: Any = None
    unit: Any = None
    price: Any = Field(None, validation_alias=AliasChoices("currentPrice", "price", "entryPrice"))


class BulkImportRequest(CamelModel):
    supplies: List[ImportRowIn]
    currency: Optional[str] = None


class WorkerCreate(CamelModel):
    name: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    phone_number: Optional[str] = None


class WorkerUpdate(CamelModel):
    name: Optional[str] = None
    role: Optional[str] = None
    phone_number: Optional[str] = None


class AttendanceMark(CamelModel):
    attendance_date: Optional[date] = Field(None, alias="date")
    status: AttendanceStatus = AttendanceStatus.PRESENT


class SupervisorCreate(CamelModel):
    username: str
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = None


class SupervisorAssign(CamelModel):
    supervisor_id: int


class PasswordResetByAdmin(CamelModel):
    new_password: str = Field(..., min_length=6)


class AnnouncementReadResponse(CamelModel):
    user_id: int
    read_at: datetime


class AnnouncementResponse(CamelModel):
    id: int
    title: str
    content: str
    created_by_id: Optional[int] = None
    created_by_name: Optional[str] = None
    media: Optional[str] = None
    media_type: Optional[MediaType] = None
    is_urgent: bool
    read_by: List[AnnouncementReadResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AnnouncementCreate(CamelModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    is_urgent: bool = False
    media: Optional[str] = None
    media_type: Optional[MediaType] = None


class AnnouncementUpdate(CamelModel):
    title: Optional[str] = None
    content: Optional[str] = None
    is_urgent: Optional[bool] = None
    media: Optional[str] = None
    media_type: Optional[MediaType] = None


# ==================== SUPPLY REQUESTS ====================

class SupplyRequestCreate(CamelModel):
    item_name: str
    requested_quantity: Any = None
    unit: str
    warehouse_id: int
    notes: Optional[str] = None


class BulkSupplyRequestCreate(CamelModel):
    # [{itemName, quantity, unit}, ...]
    items: List[Dict[str, Any]]
    warehouse_id: int


class SupplyRequestResponse(CamelModel):
    id: int
    site_id: int
    site_name: Optional[str] = None
    warehouse_id: int
    requested_by_id: Optional[int] = None
    requested_by_name: Optional[str] = None
    item_name: str
    requested_quantity: float
    unit: str
    status: SupplyRequestStatus
    batch_id: Optional[str] = None
    transferred_quantity: float = 0
    handled_by_id: Optional[int] = None
    handled_by_name: Optional[str] = None
    handled_at: Optional[datetime] = None
    notes: Optional[str] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None


class ApproveRequest(CamelModel):
    transfer_quantity: Any = None


class RejectRequest(CamelModel):
    reason: Optional[str] = None


# ==================== WAREHOUSES ====================

class WarehouseSupplyResponse(CamelModel):
    id: int
    item_name: str
    quantity: float
    unit: str
    currency: str
    entry_price: Optional[float] = None
    current_price: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WarehouseResponse(CamelModel):
    id: int
    warehouse_name: str
    location: str
    admin_id: Optional[int] = None
    company_id: Optional[int] = None
    managers: List[UserSummary] = []
    supplies: List[WarehouseSupplyResponse] = []
    created_at: Optional[datetime] = None


class WarehouseCreate(CamelModel):
    warehouse_name: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    manager_username: Optional[str] = None
    manager_password: Optional[str] = None


class WarehouseUpdate(CamelModel):
    warehouse_name: Optional[str] = None
    location: Optional[str] = None


class WarehouseSupplyCreate(CamelModel):
    item_name: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    unit: str = Field(..., min_length=1)
    currency: str = Field(..., min_length=1)
    entry_price: float = Field(..., ge=0)


class WarehouseSupplyUpdate(CamelModel):
    item_name: Optional[str] = None
    quantity: Optional[float] = Field(None, ge=0)
    unit: Optional[str] = None
    currency: Optional[str] = None
    entry_price: Optional[float] = Field(None, ge=0)


class PriceUpdate(CamelModel):
    current_price: float = Field(..., ge=0)
    currency: Optional[str] = None


class ManagerCreate(CamelModel):
    username: str
    password: str = Field(..., min_length=6)


# ==================== MESSAGES ====================

class MessageCreate(CamelModel):
    site_id: int
    content: Optional[str] = None
    video_url: Optional[str] = None


class MessageResponse(CamelModel):
    id: int
    sender_id: Optional[int] = None
    sender_name: str
    sender_role: str
    recipient_id: Optional[int] = None
    site_id: int
    site_name: Optional[str] = None
    content: Optional[str] = None
    video_url: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None


# ==================== STAFF & ATTENDANCE ====================

class StaffCreate(CamelModel):
    username: str
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1)
    phone_number: Optional[str] = None
    email: Optional[EmailStr] = None


class StaffUpdate(CamelModel):
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)


class LocationIn(CamelModel):
    latitude: float
    longitude: float
    display_text: Optional[str] = None


class CheckInRequest(CamelModel):
    type: CheckInType
    photo: Optional[str] = None
    location: Optional[LocationIn] = None


class StaffAttendanceResponse(CamelModel):
    id: int
    staff_id: int
    type: CheckInType
    photo: Optional[str] = None
    photo_uploaded_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_text: Optional[str] = None
    timestamp: datetime
