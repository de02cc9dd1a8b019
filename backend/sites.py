"""
Site API Endpoints
Sites, their supplies, workers, supervisors, announcements and the supply
requests they raise against warehouses.
"""
import io
import logging
from datetime import date, datetime
from typing import List, Optional

import pandas as pd
from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from activity_logger import ActivityLogger, get_activity_logs
from api_utils import clean_username, ensure_username_available, success
from auth import (
    ensure_role, get_current_user, get_password_hash, get_site_for_actor, is_admin,
    supervisor_site_ids,
)
from config import settings
from database import get_db, transaction
from exceptions import AuthorizationError, NotFoundError, ValidationError
from models import (
    ADMIN_ROLES, Announcement, AnnouncementRead, Site, SiteSupply, SupplyStatus,
    User, UserRole, Worker, WorkerAttendance, site_supervisors,
)
from schemas import (
    ActivityLogResponse, AnnouncementCreate, AnnouncementResponse, AnnouncementUpdate,
    AttendanceMark, BulkImportRequest, BulkSupplyRequestCreate, PasswordResetByAdmin,
    SiteCreate, SiteDetailResponse, SiteResponse, SiteSupplyCreate, SiteSupplyResponse,
    SiteSupplyUpdate, SiteUpdate, SupervisorAssign, SupervisorCreate, SupplyPricingRequest,
    SupplyRequestCreate, SupplyRequestResponse, UserSummary, WorkerCreate, WorkerUpdate,
)
from supply_import import (
    ImportRow, apply_to_site, check_import_size, parse_import_file, reconcile,
    summarize, summary_message,
)
from supply_requests import SupplyRequestService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sites", tags=["sites"])

TEMPLATE_ROWS = [
    ("Cement Bags", 100, "pcs"),
    ("Steel Rods", 500, "kg"),
    ("Sand", 10, "tons"),
    ("Bricks", 5000, "pcs"),
    ("Paint", 25, "liters"),
]


async def _fresh_site(db: AsyncSession, site_id: int) -> Site:
    """Reload a site with all of its children for the response body"""
    result = await db.execute(
        select(Site).where(Site.id == site_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def supervisor_sites(db: AsyncSession, user_id: int) -> List[dict]:
    """Sites a supervisor is assigned to, as returned on login"""
    site_ids = await supervisor_site_ids(db, user_id)
    if not site_ids:
        return []
    result = await db.execute(select(Site).where(Site.id.in_(site_ids)).order_by(Site.id))
    return [
        {"id": site.id, "siteName": site.site_name, "location": site.location}
        for site in result.scalars().all()
    ]


def _site_payload(site: Site) -> dict:
    return SiteResponse.model_validate(site).model_dump(by_alias=True, mode="json")


def _require_admin(user: User, message: str = "Only admins can perform this action"):
    ensure_role(user, *ADMIN_ROLES, message=message)


def _find_child(items, child_id: int, label: str):
    for item in items:
        if item.id == child_id:
            return item
    raise NotFoundError(f"{label} not found")


def _import_message(plan) -> str:
    merged = f", {plan.duplicates_merged} duplicates merged" if plan.duplicates_merged else ""
    return (
        f"Import completed: {len(plan.to_create)} created, {len(plan.to_update)} updated"
        f"{merged}, {len(plan.errors)} errors"
    )


# ==================== SITES ====================

@router.get("")
async def list_sites(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Admins see every site of their company (or their own); supervisors see assigned sites"""
    if is_admin(current_user):
        query = select(Site)
        if current_user.company_id:
            query = query.where(Site.company_id == current_user.company_id)
        else:
            query = query.where(Site.admin_id == current_user.id)
    elif current_user.role == UserRole.SUPERVISOR:
        site_ids = await supervisor_site_ids(db, current_user.id)
        query = select(Site).where(Site.id.in_(site_ids))
    else:
        raise AuthorizationError("Access denied for your role")

    result = await db.execute(query.order_by(Site.created_at.desc(), Site.id.desc()))
    sites = result.scalars().all()
    return success([_site_payload(site) for site in sites], count=len(sites))


@router.get("/supplies/template")
async def download_supply_template(current_user: User = Depends(get_current_user)):
    """CSV template for the site bulk import (no price column: sites are priced by admins)"""
    frame = pd.DataFrame(TEMPLATE_ROWS, columns=["Item Name", "Quantity", "Unit"])
    buffer = io.StringIO()
    frame.to_csv(buffer, index=False)
    buffer.seek(0)
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="supplies_import_template.csv"'}
    )


@router.get("/{site_id}")
async def get_site(
    site_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    logs = await get_activity_logs(db, site.id)

    detail = SiteDetailResponse.model_validate(site)
    detail.recent_activity_logs = [ActivityLogResponse.model_validate(log) for log in logs]
    return success(detail)


@router.get("/{site_id}/logs")
async def get_site_logs(
    site_id: int,
    action: Optional[str] = None,
    limit: int = Query(settings.ACTIVITY_LOG_DEFAULT_LIMIT, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    logs = await get_activity_logs(db, site.id, limit=limit, action=action)
    return success([ActivityLogResponse.model_validate(log) for log in logs], count=len(logs))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_site(
    payload: SiteCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a site. Optionally creates a new supervisor account for it
    (supervisorUsername/supervisorPassword) or attaches an existing one.
    """
    _require_admin(current_user, "Invalid admin ID or user is not an admin/owner")

    supervisor = None
    created_supervisor = False
    if payload.supervisor_username and payload.supervisor_password:
        username = clean_username(payload.supervisor_username)
        await ensure_username_available(db, username, "Supervisor username already exists")
        supervisor = User(
            username=username,
            hashed_password=get_password_hash(payload.supervisor_password),
            role=UserRole.SUPERVISOR,
            full_name=payload.supervisor_full_name,
            company_id=current_user.company_id,
            created_by_id=current_user.id,
        )
        created_supervisor = True
    elif payload.existing_supervisor_id:
        supervisor = await db.get(User, payload.existing_supervisor_id)
        if supervisor is None or supervisor.role != UserRole.SUPERVISOR:
            raise NotFoundError("Supervisor not found")

    async with transaction(db):
        site = Site(
            site_name=payload.site_name.strip(),
            location=payload.location.strip(),
            description=payload.description,
            admin_id=current_user.id,
            company_id=current_user.company_id,
        )
        if supervisor is not None:
            site.supervisors.append(supervisor)
        db.add(site)
        await db.flush()

        await ActivityLogger(db).log(
            site.id,
            "site_created",
            current_user,
            {
                "siteName": site.site_name,
                "location": site.location,
                "supervisorUsername": supervisor.username if supervisor else None,
                "newSupervisor": created_supervisor,
            },
            f'{current_user.username} created site "{site.site_name}" at {site.location}',
        )

    logger.info(f"✅ Site {site.id} created by {current_user.username}")
    site = await _fresh_site(db, site.id)
    message = (
        "Site created successfully with supervisor" if supervisor else "Site created successfully"
    )
    return success(_site_payload(site), message)


@router.put("/{site_id}")
async def update_site(
    site_id: int,
    payload: SiteUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    _require_admin(current_user)

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    old_data = {field: getattr(site, field) for field in changes}

    async with transaction(db):
        for field, value in changes.items():
            setattr(site, field, value)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "site_updated",
            current_user,
            {"oldData": old_data, "newData": changes},
            f'{current_user.username} updated site "{site.site_name}"',
        )

    site = await _fresh_site(db, site.id)
    return success(_site_payload(site), "Site updated successfully")


@router.delete("/{site_id}")
async def delete_site(
    site_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete a site with its supplies, workers and announcements"""
    site = await get_site_for_actor(site_id, current_user, db)
    _require_admin(current_user)

    site_name = site.site_name
    async with transaction(db):
        await db.delete(site)
        await db.flush()
        # Recorded against the admin since the site row is gone
        await ActivityLogger(db).log(
            current_user.id,
            "site_deleted",
            current_user,
            {"siteId": site_id, "siteName": site_name},
            f'{current_user.username} deleted site "{site_name}"',
            target_model="User",
        )

    logger.info(f"⚠️ Site {site_id} deleted by {current_user.username}")
    return success(message="Site deleted successfully")


# ==================== SUPERVISORS ====================

@router.post("/{site_id}/supervisors", status_code=status.HTTP_201_CREATED)
async def create_supervisor(
    site_id: int,
    payload: SupervisorCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    _require_admin(current_user)

    username = clean_username(payload.username)
    await ensure_username_available(db, username)

    async with transaction(db):
        supervisor = User(
            username=username,
            hashed_password=get_password_hash(payload.password),
            role=UserRole.SUPERVISOR,
            full_name=payload.full_name,
            company_id=site.company_id or current_user.company_id,
            created_by_id=current_user.id,
        )
        site.supervisors.append(supervisor)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "supervisor_added",
            current_user,
            {"supervisorId": supervisor.id, "supervisorUsername": username, "fullName": payload.full_name},
            f'{current_user.username} added supervisor "{username}" to site',
        )

    return success(UserSummary.model_validate(supervisor), "Supervisor created successfully")


@router.post("/{site_id}/assign-supervisor")
async def assign_supervisor(
    site_id: int,
    payload: SupervisorAssign,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    _require_admin(current_user)

    supervisor = await db.get(User, payload.supervisor_id)
    if supervisor is None or supervisor.role != UserRole.SUPERVISOR:
        raise NotFoundError("Supervisor not found")
    if any(existing.id == supervisor.id for existing in site.supervisors):
        raise ValidationError("Supervisor already assigned to this site")

    async with transaction(db):
        site.supervisors.append(supervisor)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "supervisor_added",
            current_user,
            {"supervisorId": supervisor.id, "supervisorUsername": supervisor.username},
            f'{current_user.username} assigned supervisor "{supervisor.username}" to site',
        )

    site = await _fresh_site(db, site.id)
    return success(_site_payload(site), "Supervisor assigned successfully")


async def _unassign(db: AsyncSession, site: Site, supervisor_id: int, actor: User) -> None:
    supervisor = await db.get(User, supervisor_id)
    supervisor_name = supervisor.username if supervisor else "Unknown"

    async with transaction(db):
        await db.execute(
            delete(site_supervisors).where(
                site_supervisors.c.site_id == site.id,
                site_supervisors.c.user_id == supervisor_id,
            )
        )
        await ActivityLogger(db).log(
            site.id,
            "supervisor_removed",
            actor,
            {"supervisorId": supervisor_id, "supervisorUsername": supervisor_name},
            f'{actor.username} removed supervisor "{supervisor_name}" from site',
        )


@router.post("/{site_id}/remove-supervisor")
async def remove_supervisor(
    site_id: int,
    payload: SupervisorAssign,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    _require_admin(current_user)

    await _unassign(db, site, payload.supervisor_id, current_user)
    site = await _fresh_site(db, site.id)
    return success(_site_payload(site), "Supervisor removed successfully")


@router.delete("/{site_id}/supervisors/{supervisor_id}")
async def delete_supervisor_from_site(
    site_id: int,
    supervisor_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    _require_admin(current_user)

    await _unassign(db, site, supervisor_id, current_user)
    return success(message="Supervisor removed from site successfully")


@router.put("/{site_id}/supervisors/{supervisor_id}/reset-password")
async def reset_supervisor_password(
    site_id: int,
    supervisor_id: int,
    payload: PasswordResetByAdmin,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    _require_admin(current_user)

    supervisor = await db.get(User, supervisor_id)
    if supervisor is None:
        raise NotFoundError("Supervisor not found")
    if supervisor.role != UserRole.SUPERVISOR or site.id not in await supervisor_site_ids(db, supervisor.id):
        raise AuthorizationError("Supervisor does not belong to this site")

    async with transaction(db):
        supervisor.hashed_password = get_password_hash(payload.new_password)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "supervisor_password_reset",
            current_user,
            {"supervisorId": supervisor.id, "supervisorUsername": supervisor.username},
            f'{current_user.username} reset the password of supervisor "{supervisor.username}"',
        )

    return success(message="Supervisor password reset successfully")


# ==================== SUPPLIES ====================

@router.post("/{site_id}/supplies", status_code=status.HTTP_201_CREATED)
async def add_supply(
    site_id: int,
    payload: SiteSupplyCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Supervisors record supplies; they wait for an admin to price them"""
    site = await get_site_for_actor(site_id, current_user, db)
    ensure_role(current_user, UserRole.SUPERVISOR, message="Only supervisors can add supplies")

    async with transaction(db):
        supply = SiteSupply(
            item_name=payload.item_name.strip(),
            quantity=payload.quantity,
            unit=(payload.unit or settings.DEFAULT_UNIT).strip(),
            status=SupplyStatus.PENDING_PRICING,
            added_by_id=current_user.id,
            added_by_name=current_user.username,
        )
        site.supplies.append(supply)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "supply_added",
            current_user,
            {
                "supplyId": supply.id,
                "itemName": supply.item_name,
                "quantity": supply.quantity,
                "unit": supply.unit,
                "status": supply.status.value,
            },
            f'{current_user.username} added {supply.quantity} {supply.unit} of "{supply.item_name}" (pending pricing)',
        )

    site = await _fresh_site(db, site.id)
    return success(_site_payload(site), "Supply added successfully")


async def _import_into_site(db: AsyncSession, site: Site, user: User, rows: List[ImportRow]) -> dict:
    check_import_size(rows)
    plan = reconcile(site.supplies, rows)

    async with transaction(db):
        applied = apply_to_site(site, plan, user)
        await db.flush()

        activity = ActivityLogger(db)
        for change in plan.to_update:
            item = change.item
            old_quantity = item.quantity - change.added_quantity
            await activity.log(
                site.id,
                "supply_updated",
                user,
                {
                    "supplyId": item.id,
                    "itemName": item.item_name,
                    "oldQuantity": old_quantity,
                    "addedQuantity": change.added_quantity,
                    "newQuantity": item.quantity,
                    "unit": item.unit,
                    "updateMethod": "bulk_import",
                },
                f'{user.username} updated quantity of "{item.item_name}" from {old_quantity} to '
                f"{item.quantity} {item.unit} (added {change.added_quantity} via import)",
            )

        results = summarize(plan, applied, len(rows))
        await activity.log(
            site.id,
            "supply_added",
            user,
            {
                "isBulkImport": True,
                "totalImported": len(rows),
                "created": len(plan.to_create),
                "updated": len(plan.to_update),
                "errors": len(plan.errors),
                "duplicatesInFile": plan.duplicates_merged,
                "importSummary": {
                    "createdItems": results["created"],
                    "updatedItems": results["updated"],
                    "failedItems": results["errors"],
                },
            },
            summary_message(plan, len(rows), user.username),
        )

    logger.info(f"📝 Site {site.id} import: {_import_message(plan)}")
    site = await _fresh_site(db, site.id)
    return success(_site_payload(site), _import_message(plan), importResults=results)


@router.post("/{site_id}/supplies/bulk-import")
async def bulk_import_supplies(
    site_id: int,
    payload: BulkImportRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Import supply rows parsed by the client: [{itemName, quantity, unit}, ...]"""
    site = await get_site_for_actor(site_id, current_user, db)
    ensure_role(current_user, UserRole.SUPERVISOR, message="Only supervisors can add supplies")

    rows = [ImportRow(item_name=row.item_name, quantity=row.quantity, unit=row.unit) for row in payload.supplies]
    return await _import_into_site(db, site, current_user, rows)


@router.post("/{site_id}/supplies/bulk-import/file")
async def bulk_import_supplies_file(
    site_id: int,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Import a CSV/XLSX file with Item Name, Quantity and Unit columns"""
    site = await get_site_for_actor(site_id, current_user, db)
    ensure_role(current_user, UserRole.SUPERVISOR, message="Only supervisors can add supplies")

    content = await file.read()
    rows = parse_import_file(content, file.filename)
    return await _import_into_site(db, site, current_user, rows)


@router.put("/{site_id}/supplies/{supply_id}/pricing")
async def set_supply_pricing(
    site_id: int,
    supply_id: int,
    payload: SupplyPricingRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    _require_admin(current_user, "Only admins can set supply pricing")
    supply = _find_child(site.supplies, supply_id, "Supply")

    old_cost = supply.cost
    currency = payload.currency or supply.currency or settings.DEFAULT_CURRENCY

    async with transaction(db):
        supply.cost = payload.cost
        supply.current_price = payload.cost
        supply.currency = currency
        supply.status = SupplyStatus.PRICED
        supply.priced_by_id = current_user.id
        supply.priced_by_name = current_user.username
        supply.priced_at = datetime.utcnow()
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "supply_updated",
            current_user,
            {
                "supplyId": supply.id,
                "supplyName": supply.item_name,
                "cost": payload.cost,
                "currency": currency,
                "unit": supply.unit,
                "oldCost": old_cost,
            },
            f"{current_user.username} set pricing for '{supply.item_name}' at {currency}{payload.cost} per {supply.unit}",
        )

    return success({"supply": SiteSupplyResponse.model_validate(supply)}, "Supply pricing updated successfully")


@router.put("/{site_id}/supplies/{supply_id}")
async def update_supply(
    site_id: int,
    supply_id: int,
    payload: SiteSupplyUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Supervisors may edit name, quantity and unit; admins may also set cost"""
    site = await get_site_for_actor(site_id, current_user, db)
    supply = _find_child(site.supplies, supply_id, "Supply")

    old = {"itemName": supply.item_name, "quantity": supply.quantity, "unit": supply.unit, "cost": supply.cost}
    cost_changed = False

    async with transaction(db):
        if payload.item_name:
            supply.item_name = payload.item_name.strip()
        if payload.quantity:
            supply.quantity = payload.quantity
        if payload.unit:
            supply.unit = payload.unit.strip()
        if payload.cost is not None and is_admin(current_user):
            supply.cost = payload.cost
            supply.current_price = payload.cost
            supply.status = SupplyStatus.PRICED
            supply.priced_by_id = current_user.id
            supply.priced_by_name = current_user.username
            supply.priced_at = datetime.utcnow()
            if payload.currency:
                supply.currency = payload.currency
            cost_changed = True
        await db.flush()

        quantity_change = supply.quantity - old["quantity"]
        if cost_changed:
            currency = supply.currency or settings.DEFAULT_CURRENCY
            description = (
                f'{current_user.username} updated pricing for "{supply.item_name}" to '
                f"{currency}{supply.cost} per {supply.unit}"
            )
        elif quantity_change:
            direction = "increased" if quantity_change > 0 else "decreased"
            description = (
                f'{current_user.username} updated "{supply.item_name}" from {old["quantity"]} to '
                f"{supply.quantity} {supply.unit} ({direction} supply by {abs(quantity_change)} {supply.unit})"
            )
        elif old["itemName"] != supply.item_name:
            description = f'{current_user.username} updated item name from "{old["itemName"]}" to "{supply.item_name}"'
        elif old["unit"] != supply.unit:
            description = (
                f'{current_user.username} updated unit for "{supply.item_name}" from {old["unit"]} to {supply.unit}'
            )
        else:
            description = f'{current_user.username} updated supply "{supply.item_name}"'

        await ActivityLogger(db).log(
            site.id,
            "supply_updated",
            current_user,
            {
                "supplyId": supply.id,
                "itemName": supply.item_name,
                "oldQuantity": old["quantity"],
                "newQuantity": supply.quantity,
                "quantityChange": quantity_change,
                "changeType": "increased" if quantity_change > 0 else "decreased" if quantity_change < 0 else "no_change",
                "oldCost": old["cost"],
                "newCost": supply.cost,
                "oldUnit": old["unit"],
                "newUnit": supply.unit,
                "oldItemName": old["itemName"],
                "newItemName": supply.item_name,
                "unit": supply.unit,
            },
            description,
        )

    site = await _fresh_site(db, site.id)
    return success(_site_payload(site), "Supply updated successfully")


@router.delete("/{site_id}/supplies/{supply_id}")
async def delete_supply(
    site_id: int,
    supply_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    _require_admin(current_user, "Only admins can delete supplies")
    supply = _find_child(site.supplies, supply_id, "Supply")

    async with transaction(db):
        site.supplies.remove(supply)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "supply_deleted",
            current_user,
            {
                "itemName": supply.item_name,
                "quantity": supply.quantity,
                "cost": supply.cost if supply.cost is not None else "Not priced",
                "unit": supply.unit,
            },
            f'{current_user.username} deleted {supply.quantity} {supply.unit} of "{supply.item_name}"',
        )

    site = await _fresh_site(db, site.id)
    return success(_site_payload(site), "Supply deleted successfully")


# ==================== WORKERS ====================

@router.post("/{site_id}/workers", status_code=status.HTTP_201_CREATED)
async def add_worker(
    site_id: int,
    payload: WorkerCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)

    async with transaction(db):
        worker = Worker(name=payload.name.strip(), role=payload.role.strip(), phone_number=payload.phone_number)
        site.workers.append(worker)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "worker_added",
            current_user,
            {
                "workerId": worker.id,
                "workerName": worker.name,
                "workerRole": worker.role,
                "phoneNumber": worker.phone_number,
            },
            f'{current_user.username} added worker "{worker.name}" ({worker.role})',
        )

    site = await _fresh_site(db, site.id)
    return success(_site_payload(site), "Worker added successfully")


@router.put("/{site_id}/workers/{worker_id}")
async def update_worker(
    site_id: int,
    worker_id: int,
    payload: WorkerUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    worker = _find_child(site.workers, worker_id, "Worker")

    old_data = {"name": worker.name, "role": worker.role, "phoneNumber": worker.phone_number}
    async with transaction(db):
        for field, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
            setattr(worker, field, value)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "worker_updated",
            current_user,
            {
                "workerId": worker.id,
                "oldData": old_data,
                "newData": {"name": worker.name, "role": worker.role, "phoneNumber": worker.phone_number},
            },
            f'{current_user.username} updated worker "{worker.name}" details',
        )

    site = await _fresh_site(db, site.id)
    return success(_site_payload(site), "Worker updated successfully")


@router.delete("/{site_id}/workers/{worker_id}")
async def delete_worker(
    site_id: int,
    worker_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    worker = _find_child(site.workers, worker_id, "Worker")

    async with transaction(db):
        site.workers.remove(worker)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "worker_deleted",
            current_user,
            {"workerName": worker.name, "workerRole": worker.role, "phoneNumber": worker.phone_number},
            f'{current_user.username} removed worker "{worker.name}" ({worker.role})',
        )

    site = await _fresh_site(db, site.id)
    return success(_site_payload(site), "Worker deleted successfully")


@router.post("/{site_id}/workers/{worker_id}/attendance", status_code=status.HTTP_201_CREATED)
async def mark_attendance(
    site_id: int,
    worker_id: int,
    payload: AttendanceMark,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """One record per worker per date; marking again updates the status"""
    site = await get_site_for_actor(site_id, current_user, db)
    worker = _find_child(site.workers, worker_id, "Worker")
    attendance_date = payload.attendance_date or date.today()

    existing = next((record for record in worker.attendance if record.date == attendance_date), None)

    async with transaction(db):
        if existing is not None:
            old_status = existing.status
            existing.status = payload.status
            existing.marked_by_id = current_user.id
            action = "attendance_updated"
            description = (
                f"{current_user.username} updated {worker.name}'s attendance from {old_status.value} "
                f"to {payload.status.value} on {attendance_date.isoformat()}"
            )
        else:
            worker.attendance.append(WorkerAttendance(
                date=attendance_date,
                status=payload.status,
                marked_by_id=current_user.id,
            ))
            action = "attendance_marked"
            description = (
                f"{current_user.username} marked {worker.name} as {payload.status.value} on {attendance_date.isoformat()}"
            )
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            action,
            current_user,
            {
                "workerId": worker.id,
                "workerName": worker.name,
                "date": attendance_date.isoformat(),
                "status": payload.status.value,
            },
            description,
        )

    site = await _fresh_site(db, site.id)
    message = "Attendance updated successfully" if existing is not None else "Attendance marked successfully"
    return success(_site_payload(site), message)


# ==================== ANNOUNCEMENTS ====================

@router.get("/{site_id}/announcements")
async def list_announcements(
    site_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    announcements = sorted(site.announcements, key=lambda a: (a.created_at, a.id), reverse=True)
    return success([AnnouncementResponse.model_validate(a) for a in announcements])


@router.post("/{site_id}/announcements", status_code=status.HTTP_201_CREATED)
async def create_announcement(
    site_id: int,
    payload: AnnouncementCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)

    async with transaction(db):
        announcement = Announcement(
            title=payload.title,
            content=payload.content,
            is_urgent=payload.is_urgent,
            media=payload.media,
            media_type=payload.media_type,
            created_by_id=current_user.id,
            created_by_name=current_user.username,
        )
        site.announcements.append(announcement)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "announcement_created",
            current_user,
            {
                "announcementId": announcement.id,
                "title": announcement.title,
                "isUrgent": announcement.is_urgent,
                "hasMedia": bool(announcement.media),
            },
            f'{current_user.username} created {"urgent " if announcement.is_urgent else ""}'
            f'announcement: "{announcement.title}"',
        )

    await db.refresh(announcement)
    return success(AnnouncementResponse.model_validate(announcement), "Announcement created successfully")


@router.put("/{site_id}/announcements/{announcement_id}")
async def update_announcement(
    site_id: int,
    announcement_id: int,
    payload: AnnouncementUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    announcement = _find_child(site.announcements, announcement_id, "Announcement")

    old_data = {"title": announcement.title, "content": announcement.content, "isUrgent": announcement.is_urgent}
    async with transaction(db):
        for field, value in payload.model_dump(exclude_unset=True).items():
            setattr(announcement, field, value)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "announcement_updated",
            current_user,
            {
                "announcementId": announcement.id,
                "oldData": old_data,
                "newData": {
                    "title": announcement.title,
                    "content": announcement.content,
                    "isUrgent": announcement.is_urgent,
                },
            },
            f'{current_user.username} updated announcement: "{announcement.title}"',
        )

    await db.refresh(announcement)
    return success(AnnouncementResponse.model_validate(announcement), "Announcement updated successfully")


@router.delete("/{site_id}/announcements/{announcement_id}")
async def delete_announcement(
    site_id: int,
    announcement_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    announcement = _find_child(site.announcements, announcement_id, "Announcement")

    async with transaction(db):
        site.announcements.remove(announcement)
        await db.flush()
        await ActivityLogger(db).log(
            site.id,
            "announcement_deleted",
            current_user,
            {"title": announcement.title, "content": announcement.content, "isUrgent": announcement.is_urgent},
            f'{current_user.username} deleted announcement: "{announcement.title}"',
        )

    return success(message="Announcement deleted successfully")


@router.post("/{site_id}/announcements/{announcement_id}/read")
async def mark_announcement_read(
    site_id: int,
    announcement_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Idempotent: a user has at most one read receipt per announcement"""
    site = await get_site_for_actor(site_id, current_user, db)
    announcement = _find_child(site.announcements, announcement_id, "Announcement")

    if not any(read.user_id == current_user.id for read in announcement.read_by):
        async with transaction(db):
            announcement.read_by.append(AnnouncementRead(user_id=current_user.id))
            await db.flush()
            await ActivityLogger(db).log(
                site.id,
                "announcement_read",
                current_user,
                {"announcementId": announcement.id, "title": announcement.title},
                f'{current_user.username} read announcement: "{announcement.title}"',
            )
        await db.refresh(announcement)

    return success(AnnouncementResponse.model_validate(announcement), "Announcement marked as read")


# ==================== SUPPLY REQUESTS ====================

@router.post("/{site_id}/supply-requests", status_code=status.HTTP_201_CREATED)
async def create_supply_request(
    site_id: int,
    payload: SupplyRequestCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    ensure_role(current_user, UserRole.SUPERVISOR, message="Only supervisors can request supplies")

    supply_request = await SupplyRequestService(db).create(
        site,
        current_user,
        payload.warehouse_id,
        payload.item_name,
        payload.requested_quantity,
        payload.unit,
        payload.notes,
    )
    return success(SupplyRequestResponse.model_validate(supply_request), "Supply request created successfully")


@router.get("/{site_id}/supply-requests")
async def list_site_supply_requests(
    site_id: int,
    status_filter: Optional[str] = Query(None, alias="status"),
    batch_id: Optional[str] = Query(None, alias="batchId"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    requests = await SupplyRequestService(db).list_for_site(site.id, status_filter, batch_id)
    return success([SupplyRequestResponse.model_validate(r) for r in requests])


@router.post("/{site_id}/supply-requests/bulk", status_code=status.HTTP_201_CREATED)
async def create_supply_requests_bulk(
    site_id: int,
    payload: BulkSupplyRequestCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    ensure_role(current_user, UserRole.SUPERVISOR, message="Only supervisors can request supplies")

    batch_id, created, errors = await SupplyRequestService(db).create_batch(
        site, current_user, payload.warehouse_id, payload.items
    )
    return success(
        [SupplyRequestResponse.model_validate(r) for r in created],
        f"Successfully requested {len(created)} items",
        batchId=batch_id,
        errors=errors or None,
    )
