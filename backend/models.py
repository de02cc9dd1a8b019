from sqlalchemy import and_, Column, Integer, String, Float, DateTime, Date, ForeignKey, Boolean, Text, JSON, Enum as SQLEnum, Table, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from database import Base


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    COMPANY_OWNER = "company_owner"
    SUPERVISOR = "supervisor"
    WAREHOUSE_MANAGER = "warehouse_manager"
    STAFF = "staff"


# Roles that own sites and warehouses within a company
ADMIN_ROLES = (UserRole.ADMIN, UserRole.COMPANY_OWNER)


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TRIAL = "trial"


class SupplyStatus(str, enum.Enum):
    PENDING_PRICING = "pending_pricing"
    PRICED = "priced"


class SupplyRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_TRANSIT = "in_transit"  # reserved, nothing transitions into it


class AttendanceStatus(str, enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"


class CheckInType(str, enum.Enum):
    LOGIN = "login"
    LOGOUT = "logout"


class MediaType(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"


# Supervisor <-> Site assignment. Backs both Site.supervisors and a user's assigned sites.
site_supervisors = Table(
    'site_supervisors',
    Base.metadata,
    Column('site_id', Integer, ForeignKey('sites.id', ondelete='CASCADE'), primary_key=True),
    Column('user_id', Integer, ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
    Column('assigned_at', DateTime, default=datetime.utcnow),
    Index('idx_site_supervisors_user', 'user_id')
)


class Company(Base):
    """Tenant root - every site, warehouse and user hangs off a company"""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), unique=True, nullable=False)
    email = Column(String(150), unique=True, nullable=False)
    phone_number = Column(String(30), unique=True, nullable=False)
    gstin = Column(String(20), unique=True, nullable=True)
    address = Column(Text)
    subscription_status = Column(SQLEnum(SubscriptionStatus), default=SubscriptionStatus.TRIAL, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Company {self.name}>"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, index=True)

    # Admin / owner profile
    email = Column(String(150), unique=True, nullable=True)
    phone_number = Column(String(30))
    first_name = Column(String(80))
    last_name = Column(String(80))
    firm_name = Column(String(150))

    # Staff / supervisor display name
    full_name = Column(String(150))

    company_id = Column(Integer, ForeignKey("companies.id", ondelete='SET NULL'), nullable=True, index=True)
    warehouse_id = Column(Integer, nullable=True, index=True)  # weak ref to warehouses.id
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    company = relationship("Company", lazy="selectin")

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"


class Site(Base):
    """Construction site with its own inventory, workforce and announcement feed"""
    __tablename__ = "sites"

    id = Column(Integer, primary_key=True, index=True)
    site_name = Column(String(150), nullable=False)
    location = Column(String(255), nullable=False)
    description = Column(Text)
    admin_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete='CASCADE'), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    supplies = relationship("SiteSupply", back_populates="site", cascade="all, delete-orphan",
                            lazy="selectin", order_by="SiteSupply.id")
    workers = relationship("Worker", back_populates="site", cascade="all, delete-orphan",
                           lazy="selectin", order_by="Worker.id")
    announcements = relationship("Announcement", back_populates="site", cascade="all, delete-orphan",
                                 lazy="selectin", order_by="Announcement.created_at.desc()")
    supervisors = relationship("User", secondary=site_supervisors, lazy="selectin", order_by="User.id")

    def __repr__(self):
        return f"<Site {self.site_name}>"


class SiteSupply(Base):
    """Inventory line on a site. Priced once an admin sets its cost."""
    __tablename__ = "site_supplies"

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete='CASCADE'), nullable=False, index=True)
    item_name = Column(String(200), nullable=False)
    quantity = Column(Float, nullable=False, default=0)
    unit = Column(String(30), nullable=False, default="pcs")
    currency = Column(String(10), default="₹")
    cost = Column(Float, nullable=True)
    entry_price = Column(Float, nullable=True)
    current_price = Column(Float, nullable=True)
    status = Column(SQLEnum(SupplyStatus), default=SupplyStatus.PENDING_PRICING, nullable=False)

    added_by_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True)
    added_by_name = Column(String(150))
    priced_by_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True)
    priced_by_name = Column(String(150))
    priced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    site = relationship("Site", back_populates="supplies")

    @property
    def is_priced(self) -> bool:
        return self.status == SupplyStatus.PRICED

    def __repr__(self):
        return f"<SiteSupply {self.item_name} x{self.quantity}>"


class Worker(Base):
    __tablename__ = "workers"

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    role = Column(String(100), nullable=False)
    phone_number = Column(String(30))
    created_at = Column(DateTime, default=datetime.utcnow)

    site = relationship("Site", back_populates="workers")
    attendance = relationship("WorkerAttendance", back_populates="worker", cascade="all, delete-orphan",
                              lazy="selectin", order_by="WorkerAttendance.date")


class WorkerAttendance(Base):
    __tablename__ = "worker_attendance"

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("workers.id", ondelete='CASCADE'), nullable=False, index=True)
    date = Column(Date, nullable=False)
    status = Column(SQLEnum(AttendanceStatus), nullable=False)
    marked_by_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    worker = relationship("Worker", back_populates="attendance")

    __table_args__ = (
        UniqueConstraint('worker_id', 'date', name='uq_worker_attendance_date'),
    )


class Announcement(Base):
    __tablename__ = "announcements"

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete='CASCADE'), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True)
    created_by_name = Column(String(150))
    media = Column(String(500), nullable=True)  # URL on the media host
    media_type = Column(SQLEnum(MediaType), nullable=True)
    is_urgent = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    site = relationship("Site", back_populates="announcements")
    read_by = relationship("AnnouncementRead", back_populates="announcement", cascade="all, delete-orphan",
                           lazy="selectin")


class AnnouncementRead(Base):
    __tablename__ = "announcement_reads"

    id = Column(Integer, primary_key=True, index=True)
    announcement_id = Column(Integer, ForeignKey("announcements.id", ondelete='CASCADE'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete='CASCADE'), nullable=False)
    read_at = Column(DateTime, default=datetime.utcnow)

    announcement = relationship("Announcement", back_populates="read_by")

    __table_args__ = (
        UniqueConstraint('announcement_id', 'user_id', name='uq_announcement_read'),
    )


class Warehouse(Base):
    """Inventory pool that fulfils supply requests raised by sites"""
    __tablename__ = "warehouses"

    id = Column(Integer, primary_key=True, index=True)
    warehouse_name = Column(String(150), nullable=False)
    location = Column(String(255), nullable=False)
    admin_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete='CASCADE'), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    supplies = relationship("WarehouseSupply", back_populates="warehouse", cascade="all, delete-orphan",
                            lazy="selectin", order_by="WarehouseSupply.id")
    managers = relationship(
        "User",
        primaryjoin=lambda: and_(User.warehouse_id == Warehouse.id, User.role == UserRole.WAREHOUSE_MANAGER),
        foreign_keys=lambda: [User.warehouse_id],
        viewonly=True,
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Warehouse {self.warehouse_name}>"


class WarehouseSupply(Base):
    """
    Warehouse stock line.

    entry_price is recorded once when the line is created; current_price is
    the operative transfer price and may change.
    """
    __tablename__ = "warehouse_supplies"

    id = Column(Integer, primary_key=True, index=True)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id", ondelete='CASCADE'), nullable=False, index=True)
    item_name = Column(String(200), nullable=False)
    quantity = Column(Float, nullable=False, default=0)
    unit = Column(String(30), nullable=False)
    currency = Column(String(10), nullable=False, default="₹")
    entry_price = Column(Float, nullable=True)
    current_price = Column(Float, nullable=True)
    added_by_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    warehouse = relationship("Warehouse", back_populates="supplies")

    @property
    def transfer_price(self) -> float:
        return self.current_price or self.entry_price or 0

    def __repr__(self):
        return f"<WarehouseSupply {self.item_name} x{self.quantity}>"


class SupplyRequest(Base):
    """Transfer intent from a site against a warehouse"""
    __tablename__ = "supply_requests"

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete='CASCADE'), nullable=False, index=True)
    site_name = Column(String(150))
    warehouse_id = Column(Integer, ForeignKey("warehouses.id", ondelete='CASCADE'), nullable=False, index=True)
    requested_by_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True)
    requested_by_name = Column(String(150))
    item_name = Column(String(200), nullable=False)
    requested_quantity = Column(Float, nullable=False)
    unit = Column(String(30), nullable=False)
    status = Column(SQLEnum(SupplyRequestStatus), default=SupplyRequestStatus.PENDING, nullable=False, index=True)
    batch_id = Column(String(64), nullable=True, index=True)
    transferred_quantity = Column(Float, default=0, nullable=False)
    handled_by_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True)
    handled_by_name = Column(String(150))
    handled_at = Column(DateTime, nullable=True)
    notes = Column(Text)
    reason = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_supply_requests_warehouse_status', 'warehouse_id', 'status'),
    )

    def __repr__(self):
        return f"<SupplyRequest {self.id} {self.item_name} ({self.status})>"


class Message(Base):
    """Supervisor -> site admin note"""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True, index=True)
    sender_name = Column(String(150), nullable=False)
    sender_role = Column(String(30), nullable=False, default="supervisor")
    recipient_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True, index=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete='CASCADE'), nullable=False, index=True)
    site_name = Column(String(150))
    content = Column(Text)
    video_url = Column(String(500))
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class ActivityLog(Base):
    """Append-only audit entry attached to a Site, Warehouse or User"""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    target_model = Column(String(30), nullable=False)
    target_id = Column(Integer, nullable=False)
    action = Column(String(60), nullable=False, index=True)
    performed_by_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True)
    performed_by_name = Column(String(150), nullable=False)
    performed_by_role = Column(String(30), nullable=False)
    details = Column(JSON, default=dict)
    description = Column(Text)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_activity_logs_target_time', 'target_model', 'target_id', 'timestamp'),
    )

    def __repr__(self):
        return f"<ActivityLog {self.action} on {self.target_model}:{self.target_id}>"


class CompanyActivityLog(Base):
    """Denormalized copy of every activity entry, queried per company"""
    __tablename__ = "company_activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete='CASCADE'), nullable=False)
    action = Column(String(60), nullable=False)
    performed_by_id = Column(Integer, ForeignKey("users.id", ondelete='SET NULL'), nullable=True)
    performed_by_name = Column(String(150), nullable=False)
    performed_by_role = Column(String(30), nullable=False)
    target_id = Column(Integer, nullable=True)
    target_model = Column(String(30), nullable=True)
    details = Column(JSON, default=dict)
    description = Column(Text)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_company_logs_company_time', 'company_id', 'timestamp'),
    )


class StaffAttendance(Base):
    """Staff check-in / check-out record with optional photo and location"""
    __tablename__ = "staff_attendance"

    id = Column(Integer, primary_key=True, index=True)
    staff_id = Column(Integer, ForeignKey("users.id", ondelete='CASCADE'), nullable=False, index=True)
    type = Column(SQLEnum(CheckInType), nullable=False)
    photo = Column(String(500), nullable=True)
    photo_uploaded_at = Column(DateTime, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    location_text = Column(String(255), nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_staff_attendance_staff_time', 'staff_id', 'timestamp'),
    )
