"""
Warehouse API Endpoints
Warehouse inventory, managers, supply request handling and reports.
"""
import logging
from collections import OrderedDict
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from activity_logger import ActivityLogger, get_activity_logs
from api_utils import clean_username, ensure_username_available, success
from auth import ensure_role, get_current_user, get_password_hash, get_warehouse_for_actor, is_admin
from config import settings
from database import get_db, transaction
from exceptions import AuthorizationError, NotFoundError, ValidationError
from models import (
    ADMIN_ROLES, Site, SupplyRequest, SupplyRequestStatus, User, UserRole,
    Warehouse, WarehouseSupply, site_supervisors,
)
from schemas import (
    ActivityLogResponse, ApproveRequest, BulkImportRequest, ManagerCreate, PasswordResetByAdmin,
    PriceUpdate, RejectRequest, SupplyRequestResponse, UserSummary, WarehouseCreate,
    WarehouseResponse, WarehouseSupplyCreate, WarehouseSupplyResponse, WarehouseSupplyUpdate,
    WarehouseUpdate,
)
from supply_import import (
    ImportRow, apply_to_warehouse, check_import_size, parse_import_file, reconcile,
    summarize, summary_message,
)
from supply_requests import SupplyRequestService, find_matching_item

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/warehouses", tags=["warehouses"])

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
REPORT_MONTHS = 6


async def _fresh_warehouse(db: AsyncSession, warehouse_id: int) -> Warehouse:
    result = await db.execute(
        select(Warehouse).where(Warehouse.id == warehouse_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


def _warehouse_payload(warehouse: Warehouse) -> dict:
    return WarehouseResponse.model_validate(warehouse).model_dump(by_alias=True, mode="json")


def _supplies_payload(warehouse: Warehouse) -> list:
    return [WarehouseSupplyResponse.model_validate(s).model_dump(by_alias=True, mode="json")
            for s in warehouse.supplies]


def _find_supply(warehouse: Warehouse, supply_id: int) -> WarehouseSupply:
    for supply in warehouse.supplies:
        if supply.id == supply_id:
            return supply
    raise NotFoundError("Supply not found")


def _owned_query(user: User):
    """Warehouses an admin/owner may see: the company's, or their own without a company"""
    if user.company_id:
        return select(Warehouse).where(Warehouse.company_id == user.company_id)
    return select(Warehouse).where(Warehouse.admin_id == user.id)


async def _get_manager(db: AsyncSession, warehouse: Warehouse, manager_id: int) -> User:
    manager = await db.get(User, manager_id)
    if manager is None or manager.role != UserRole.WAREHOUSE_MANAGER or manager.warehouse_id != warehouse.id:
        raise NotFoundError("Manager not found")
    return manager


# ==================== WAREHOUSES ====================

@router.get("")
async def list_warehouses(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    ensure_role(current_user, *ADMIN_ROLES, message="Admin access required")
    result = await db.execute(_owned_query(current_user).order_by(Warehouse.id))
    warehouses = result.scalars().all()
    return success([_warehouse_payload(w) for w in warehouses], count=len(warehouses))


@router.get("/supply-requests")
async def list_supply_requests(
    warehouse_id: Optional[int] = Query(None, alias="warehouseId"),
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Requests raised against a warehouse, newest first.

    Managers default to their own warehouse; admins without a warehouseId
    get every warehouse they own.
    """
    if warehouse_id is not None:
        warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
        warehouse_ids = [warehouse.id]
    elif current_user.role == UserRole.WAREHOUSE_MANAGER:
        if current_user.warehouse_id is None:
            raise ValidationError("warehouseId is required")
        warehouse = await get_warehouse_for_actor(current_user.warehouse_id, current_user, db)
        warehouse_ids = [warehouse.id]
    elif is_admin(current_user):
        result = await db.execute(_owned_query(current_user).with_only_columns(Warehouse.id))
        warehouse_ids = [row[0] for row in result]
    else:
        raise AuthorizationError("Not authorized for this warehouse")

    requests = await SupplyRequestService(db).list_for_warehouses(warehouse_ids, status_filter)
    return success([SupplyRequestResponse.model_validate(r) for r in requests], count=len(requests))


@router.post("/supply-requests/{request_id}/approve")
async def approve_supply_request(
    request_id: int,
    payload: ApproveRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Transfer stock to the requesting site at the warehouse's current price"""
    supply_request = await db.get(SupplyRequest, request_id)
    if supply_request is None:
        raise NotFoundError("Supply request not found")
    await get_warehouse_for_actor(supply_request.warehouse_id, current_user, db)

    result = await SupplyRequestService(db).approve(request_id, payload.transfer_quantity, current_user)
    approved = result.request
    warehouse = await db.get(Warehouse, approved.warehouse_id)
    item = find_matching_item(warehouse.supplies, approved.item_name) if warehouse else None
    currency = item.currency if item else settings.DEFAULT_CURRENCY
    message = (
        f"Successfully transferred {result.transferred_quantity} {approved.unit} of {approved.item_name} "
        f"to {approved.site_name} at {currency}{result.transfer_price} per {approved.unit}"
    )
    return success(result.to_dict(), message)


@router.post("/supply-requests/{request_id}/reject")
async def reject_supply_request(
    request_id: int,
    payload: RejectRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    supply_request = await db.get(SupplyRequest, request_id)
    if supply_request is None:
        raise NotFoundError("Supply request not found")
    await get_warehouse_for_actor(supply_request.warehouse_id, current_user, db)

    rejected = await SupplyRequestService(db).reject(request_id, payload.reason, current_user)
    return success(SupplyRequestResponse.model_validate(rejected), "Supply request rejected successfully")


@router.get("/for-requests")
async def list_warehouses_for_requests(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Warehouses a supervisor can raise requests against, with their stock"""
    if current_user.role == UserRole.SUPERVISOR:
        admin_ids = select(Site.admin_id).join(
            site_supervisors, site_supervisors.c.site_id == Site.id
        ).where(site_supervisors.c.user_id == current_user.id)
        conditions = [Warehouse.admin_id.in_(admin_ids)]
        if current_user.company_id:
            conditions.append(Warehouse.company_id == current_user.company_id)
        query = select(Warehouse).where(or_(*conditions))
    elif is_admin(current_user):
        query = _owned_query(current_user)
    else:
        raise AuthorizationError("Access denied")

    result = await db.execute(query.order_by(Warehouse.id))
    warehouses = result.scalars().all()
    return success(
        [_warehouse_payload(w) for w in warehouses],
        f"Found {len(warehouses)} warehouses",
    )


@router.get("/{warehouse_id}")
async def get_warehouse(
    warehouse_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db, allow_supervisor=True)
    return success(_warehouse_payload(warehouse))


@router.get("/{warehouse_id}/logs")
async def get_warehouse_logs(
    warehouse_id: int,
    action: Optional[str] = None,
    limit: int = Query(settings.ACTIVITY_LOG_DEFAULT_LIMIT, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    logs = await get_activity_logs(db, warehouse.id, target_model="Warehouse", limit=limit, action=action)
    return success([ActivityLogResponse.model_validate(log) for log in logs], count=len(logs))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_warehouse(
    payload: WarehouseCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a warehouse together with its first manager account"""
    ensure_role(current_user, *ADMIN_ROLES, message="Admin access required")
    if not payload.manager_username or not payload.manager_password:
        raise ValidationError("warehouseName, managerUsername, and managerPassword required")

    username = clean_username(payload.manager_username, strict=False)
    await ensure_username_available(db, username, "Manager username already exists")

    async with transaction(db):
        warehouse = Warehouse(
            warehouse_name=payload.warehouse_name.strip(),
            location=payload.location.strip(),
            admin_id=current_user.id,
            company_id=current_user.company_id,
        )
        db.add(warehouse)
        await db.flush()

        manager = User(
            username=username,
            hashed_password=get_password_hash(payload.manager_password),
            role=UserRole.WAREHOUSE_MANAGER,
            warehouse_id=warehouse.id,
            company_id=current_user.company_id,
            created_by_id=current_user.id,
        )
        db.add(manager)
        await db.flush()

        await ActivityLogger(db).log(
            warehouse.id,
            "warehouse_created",
            current_user,
            {"warehouseName": warehouse.warehouse_name, "location": warehouse.location, "managerUsername": username},
            f'{current_user.username} created warehouse "{warehouse.warehouse_name}" with manager {username}',
            target_model="Warehouse",
        )

    logger.info(f"✅ Warehouse {warehouse.id} created by {current_user.username}")
    warehouse = await _fresh_warehouse(db, warehouse.id)
    return success(
        _warehouse_payload(warehouse),
        "Warehouse created successfully",
        manager=UserSummary.model_validate(manager),
    )


@router.put("/{warehouse_id}")
async def update_warehouse(
    warehouse_id: int,
    payload: WarehouseUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    ensure_role(current_user, *ADMIN_ROLES, message="Admin access required")

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    old_data = {field: getattr(warehouse, field) for field in changes}
    async with transaction(db):
        for field, value in changes.items():
            setattr(warehouse, field, value)
        await db.flush()
        await ActivityLogger(db).log(
            warehouse.id,
            "warehouse_updated",
            current_user,
            {"oldData": old_data, "newData": changes},
            f'{current_user.username} updated warehouse "{warehouse.warehouse_name}"',
            target_model="Warehouse",
        )

    warehouse = await _fresh_warehouse(db, warehouse.id)
    return success(_warehouse_payload(warehouse), "Warehouse updated successfully")


@router.delete("/{warehouse_id}")
async def delete_warehouse(
    warehouse_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete a warehouse, its stock and its manager accounts"""
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    ensure_role(current_user, *ADMIN_ROLES, message="Admin access required")

    warehouse_name = warehouse.warehouse_name
    async with transaction(db):
        await db.execute(
            delete(User).where(
                User.role == UserRole.WAREHOUSE_MANAGER,
                User.warehouse_id == warehouse.id,
            ).execution_options(synchronize_session=False)
        )
        await db.delete(warehouse)
        await db.flush()
        await ActivityLogger(db).log(
            current_user.id,
            "warehouse_deleted",
            current_user,
            {"warehouseId": warehouse_id, "warehouseName": warehouse_name},
            f'{current_user.username} deleted warehouse "{warehouse_name}"',
            target_model="User",
        )

    logger.info(f"⚠️ Warehouse {warehouse_id} deleted by {current_user.username}")
    return success(message="Warehouse and all its managers deleted successfully")


# ==================== SUPPLIES ====================

@router.post("/{warehouse_id}/supplies", status_code=status.HTTP_201_CREATED)
async def add_warehouse_supply(
    warehouse_id: int,
    payload: WarehouseSupplyCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)

    async with transaction(db):
        supply = WarehouseSupply(
            item_name=payload.item_name.strip(),
            quantity=payload.quantity,
            unit=payload.unit.strip(),
            currency=payload.currency,
            entry_price=payload.entry_price,
            current_price=payload.entry_price,
            added_by_id=current_user.id,
        )
        warehouse.supplies.append(supply)
        await db.flush()
        await ActivityLogger(db).log(
            warehouse.id,
            "supply_added",
            current_user,
            {
                "supplyId": supply.id,
                "itemName": supply.item_name,
                "quantity": supply.quantity,
                "unit": supply.unit,
                "price": supply.entry_price,
                "currency": supply.currency,
            },
            f'{current_user.username} added {supply.quantity} {supply.unit} of "{supply.item_name}" '
            f"at {supply.currency}{supply.entry_price}",
            target_model="Warehouse",
        )

    warehouse = await _fresh_warehouse(db, warehouse.id)
    return success(message="Supply added successfully", supplies=_supplies_payload(warehouse))


@router.put("/{warehouse_id}/supplies/{supply_id}")
async def update_warehouse_supply(
    warehouse_id: int,
    supply_id: int,
    payload: WarehouseSupplyUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Edit a stock line. The entry price is write-once."""
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    supply = _find_supply(warehouse, supply_id)

    old_data = {"itemName": supply.item_name, "quantity": supply.quantity, "unit": supply.unit}
    async with transaction(db):
        if payload.item_name:
            supply.item_name = payload.item_name.strip()
        if payload.quantity:
            supply.quantity = payload.quantity
        if payload.unit:
            supply.unit = payload.unit.strip()
        if payload.currency:
            supply.currency = payload.currency
        if payload.entry_price and not supply.entry_price:
            supply.entry_price = payload.entry_price
            if supply.current_price is None:
                supply.current_price = payload.entry_price
        await db.flush()
        await ActivityLogger(db).log(
            warehouse.id,
            "supply_updated",
            current_user,
            {
                "supplyId": supply.id,
                "oldData": old_data,
                "newData": {"itemName": supply.item_name, "quantity": supply.quantity, "unit": supply.unit},
            },
            f'{current_user.username} updated "{supply.item_name}"',
            target_model="Warehouse",
        )

    warehouse = await _fresh_warehouse(db, warehouse.id)
    return success(message="Supply updated successfully", supplies=_supplies_payload(warehouse))


@router.put("/{warehouse_id}/supplies/{supply_id}/price")
async def update_warehouse_price(
    warehouse_id: int,
    supply_id: int,
    payload: PriceUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Set the transfer price used for future approvals"""
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    supply = _find_supply(warehouse, supply_id)

    old_price = supply.current_price
    async with transaction(db):
        supply.current_price = payload.current_price
        if payload.currency:
            supply.currency = payload.currency
        await db.flush()
        await ActivityLogger(db).log(
            warehouse.id,
            "supply_updated",
            current_user,
            {
                "supplyId": supply.id,
                "itemName": supply.item_name,
                "oldPrice": old_price,
                "newPrice": supply.current_price,
                "currency": supply.currency,
            },
            f'{current_user.username} changed the price of "{supply.item_name}" from '
            f"{supply.currency}{old_price} to {supply.currency}{supply.current_price}",
            target_model="Warehouse",
        )

    warehouse = await _fresh_warehouse(db, warehouse.id)
    return success(message="Price updated successfully", supplies=_supplies_payload(warehouse))


@router.delete("/{warehouse_id}/supplies/{supply_id}")
async def delete_warehouse_supply(
    warehouse_id: int,
    supply_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    supply = _find_supply(warehouse, supply_id)

    async with transaction(db):
        warehouse.supplies.remove(supply)
        await db.flush()
        await ActivityLogger(db).log(
            warehouse.id,
            "supply_deleted",
            current_user,
            {"itemName": supply.item_name, "quantity": supply.quantity, "unit": supply.unit},
            f'{current_user.username} deleted {supply.quantity} {supply.unit} of "{supply.item_name}"',
            target_model="Warehouse",
        )

    warehouse = await _fresh_warehouse(db, warehouse.id)
    return success(message="Supply deleted successfully", supplies=_supplies_payload(warehouse))


async def _import_into_warehouse(
    db: AsyncSession,
    warehouse: Warehouse,
    user: User,
    rows: List[ImportRow],
    currency: Optional[str],
) -> dict:
    check_import_size(rows)
    plan = reconcile(warehouse.supplies, rows, require_price=True)

    async with transaction(db):
        applied = apply_to_warehouse(warehouse, plan, user, currency)
        await db.flush()

        activity = ActivityLogger(db)
        for change in applied["updated"]:
            await activity.log(
                warehouse.id,
                "supply_updated",
                user,
                {**change, "updateMethod": "bulk_import"},
                f'{user.username} updated "{change["itemName"]}" via bulk import: '
                f'{change["oldQuantity"]} → {change["newQuantity"]} {change["unit"]}',
                target_model="Warehouse",
            )
        for change in applied["created"]:
            await activity.log(
                warehouse.id,
                "supply_added",
                user,
                {**change, "addMethod": "bulk_import"},
                f'{user.username} added "{change["itemName"]}" via bulk import: '
                f'{change["quantity"]} {change["unit"]} at {currency or settings.DEFAULT_CURRENCY}{change["price"]}',
                target_model="Warehouse",
            )

        results = summarize(plan, applied, len(rows))
        await activity.log(
            warehouse.id,
            "supply_added",
            user,
            {
                "isBulkImport": True,
                "totalImported": len(rows),
                "created": len(plan.to_create),
                "updated": len(plan.to_update),
                "errors": len(plan.errors),
                "duplicatesInFile": plan.duplicates_merged,
                "needsPricing": plan.needs_pricing,
                "importSummary": {
                    "createdItems": results["created"],
                    "updatedItems": results["updated"],
                    "failedItems": results["errors"],
                },
            },
            summary_message(plan, len(rows), user.username),
            target_model="Warehouse",
        )

    merged = f", {plan.duplicates_merged} duplicates merged" if plan.duplicates_merged else ""
    message = (
        f"Import completed: {len(plan.to_create)} created, {len(plan.to_update)} updated"
        f"{merged}, {len(plan.errors)} errors"
    )
    logger.info(f"📝 Warehouse {warehouse.id} import: {message}")
    warehouse = await _fresh_warehouse(db, warehouse.id)
    return success(_warehouse_payload(warehouse), message, importResults=results)


@router.post("/{warehouse_id}/supplies/bulk-import")
async def bulk_import_warehouse_supplies(
    warehouse_id: int,
    payload: BulkImportRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Import rows of {itemName, quantity, unit, currentPrice}; a price is required per row"""
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    rows = [
        ImportRow(item_name=row.item_name, quantity=row.quantity, unit=row.unit, price=row.price)
        for row in payload.supplies
    ]
    return await _import_into_warehouse(db, warehouse, current_user, rows, payload.currency)


@router.post("/{warehouse_id}/supplies/bulk-import/file")
async def bulk_import_warehouse_file(
    warehouse_id: int,
    file: UploadFile = File(...),
    currency: Optional[str] = Form(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    content = await file.read()
    rows = parse_import_file(content, file.filename, require_price=True)
    return await _import_into_warehouse(db, warehouse, current_user, rows, currency)


# ==================== MANAGERS ====================

@router.get("/{warehouse_id}/managers")
async def list_managers(
    warehouse_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    ensure_role(current_user, *ADMIN_ROLES, message="Admin access required")
    return success([UserSummary.model_validate(m) for m in warehouse.managers])


@router.post("/{warehouse_id}/managers", status_code=status.HTTP_201_CREATED)
async def add_manager(
    warehouse_id: int,
    payload: ManagerCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    ensure_role(current_user, *ADMIN_ROLES, message="Admin access required")

    username = clean_username(payload.username, strict=False)
    await ensure_username_available(db, username, "Manager username already exists")

    async with transaction(db):
        manager = User(
            username=username,
            hashed_password=get_password_hash(payload.password),
            role=UserRole.WAREHOUSE_MANAGER,
            warehouse_id=warehouse.id,
            company_id=warehouse.company_id,
            created_by_id=current_user.id,
        )
        db.add(manager)
        await db.flush()
        await ActivityLogger(db).log(
            warehouse.id,
            "manager_added",
            current_user,
            {"managerId": manager.id, "managerUsername": username},
            f"{current_user.username} added manager {username}",
            target_model="Warehouse",
        )

    return success({"id": manager.id, "username": manager.username}, "Warehouse manager created successfully")


@router.put("/{warehouse_id}/managers/{manager_id}/reset-password")
async def reset_manager_password(
    warehouse_id: int,
    manager_id: int,
    payload: PasswordResetByAdmin,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    ensure_role(current_user, *ADMIN_ROLES, message="Admin access required")
    manager = await _get_manager(db, warehouse, manager_id)

    async with transaction(db):
        manager.hashed_password = get_password_hash(payload.new_password)
        await db.flush()
        await ActivityLogger(db).log(
            warehouse.id,
            "manager_password_reset",
            current_user,
            {"managerId": manager.id, "managerUsername": manager.username},
            f"{current_user.username} reset the password of manager {manager.username}",
            target_model="Warehouse",
        )

    return success(message="Password reset successfully")


@router.delete("/{warehouse_id}/managers/{manager_id}")
async def delete_manager(
    warehouse_id: int,
    manager_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)
    ensure_role(current_user, *ADMIN_ROLES, message="Admin access required")
    manager = await _get_manager(db, warehouse, manager_id)

    async with transaction(db):
        await db.delete(manager)
        await db.flush()
        await ActivityLogger(db).log(
            warehouse.id,
            "manager_removed",
            current_user,
            {"managerId": manager_id, "managerUsername": manager.username},
            f"{current_user.username} removed manager {manager.username}",
            target_model="Warehouse",
        )

    return success(message="Manager removed successfully")


# ==================== REPORTS ====================

def _last_months(now: datetime, count: int) -> "OrderedDict[tuple, dict]":
    """(year, month) -> empty bucket for the last `count` months, oldest first"""
    buckets = OrderedDict()
    year, month = now.year, now.month
    keys = []
    for _ in range(count):
        keys.append((year, month))
        month -= 1
        if month == 0:
            month, year = 12, year - 1
    for year, month in reversed(keys):
        buckets[(year, month)] = {"month": MONTH_NAMES[month - 1], "year": year, "transfers": 0, "value": 0}
    return buckets


@router.get("/{warehouse_id}/reports")
async def warehouse_reports(
    warehouse_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Inventory value, recent transfers, monthly transfer volume and top items"""
    warehouse = await get_warehouse_for_actor(warehouse_id, current_user, db)

    transferred = (
        SupplyRequest.warehouse_id == warehouse.id,
        SupplyRequest.status == SupplyRequestStatus.APPROVED,
        SupplyRequest.transferred_quantity > 0,
    )

    total_transfers = (await db.execute(
        select(func.count(SupplyRequest.id)).where(*transferred)
    )).scalar_one()

    recent = (await db.execute(
        select(SupplyRequest).where(*transferred)
        .order_by(SupplyRequest.handled_at.desc(), SupplyRequest.id.desc())
        .limit(10)
    )).scalars().all()

    def _unit_price(item_name: str) -> float:
        item = find_matching_item(warehouse.supplies, item_name)
        return item.transfer_price if item else 0

    recent_transfers = [
        {
            "id": transfer.id,
            "itemName": transfer.item_name,
            "quantity": transfer.transferred_quantity,
            "unit": transfer.unit,
            "transferredTo": transfer.site_name,
            "date": (transfer.handled_at or transfer.created_at).isoformat(),
            "value": transfer.transferred_quantity * _unit_price(transfer.item_name),
            "requestedBy": transfer.requested_by_name,
            "handledBy": transfer.handled_by_name or "N/A",
        }
        for transfer in recent
    ]

    now = datetime.utcnow()
    months = _last_months(now, REPORT_MONTHS)
    oldest_year, oldest_month = next(iter(months))
    since = datetime(oldest_year, oldest_month, 1)
    handled = (await db.execute(
        select(SupplyRequest.handled_at, SupplyRequest.transferred_quantity)
        .where(*transferred, SupplyRequest.handled_at >= since)
    )).all()
    for handled_at, quantity in handled:
        bucket = months.get((handled_at.year, handled_at.month))
        if bucket is not None:
            bucket["transfers"] += 1
            bucket["value"] += quantity

    top_items = (await db.execute(
        select(
            SupplyRequest.item_name,
            func.sum(SupplyRequest.transferred_quantity).label("total_transferred"),
            func.count(SupplyRequest.id).label("transfer_count"),
            func.min(SupplyRequest.unit).label("unit"),
        )
        .where(*transferred)
        .group_by(SupplyRequest.item_name)
        .order_by(func.sum(SupplyRequest.transferred_quantity).desc())
        .limit(5)
    )).all()

    reports = {
        "totalSupplies": len(warehouse.supplies),
        "totalValue": sum(s.quantity * s.transfer_price for s in warehouse.supplies),
        "totalTransfers": total_transfers,
        "recentTransfers": recent_transfers,
        "supplySummary": [
            {
                "id": s.id,
                "itemName": s.item_name,
                "quantity": s.quantity,
                "unit": s.unit,
                "currentPrice": s.transfer_price,
                "totalValue": s.quantity * s.transfer_price,
            }
            for s in warehouse.supplies
        ],
        "monthlyTransfers": list(months.values()),
        "topTransferredItems": [
            {
                "itemName": row.item_name,
                "totalTransferred": row.total_transferred,
                "transferCount": row.transfer_count,
                "unit": row.unit,
            }
            for row in top_items
        ],
    }
    return success(reports)
