"""
Supply request lifecycle: pending -> approved | rejected.

Approving moves stock from a warehouse line to the matching site line and
runs as one database transaction. The status change and the stock
decrement are both conditional updates, so two approvers racing on the
same request (or on the same stock) cannot both succeed.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from activity_logger import ActivityLogger
from config import settings
from database import transaction
from exceptions import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from item_names import normalize_item_name
from models import (
    Site, SiteSupply, SupplyRequest, SupplyRequestStatus, SupplyStatus,
    User, Warehouse, WarehouseSupply,
)
from supply_import import parse_number

logger = logging.getLogger(__name__)

ALREADY_PROCESSED = "Supply request already processed"


@dataclass
class TransferResult:
    request: SupplyRequest
    transferred_quantity: float
    remaining_warehouse_quantity: float
    new_site_quantity: float
    transfer_price: float

    def to_dict(self) -> dict:
        return {
            "transferredQuantity": self.transferred_quantity,
            "remainingWarehouseQuantity": self.remaining_warehouse_quantity,
            "newSiteQuantity": self.new_site_quantity,
            "transferPrice": self.transfer_price,
        }


def find_matching_item(items, item_name: str):
    """First inventory line whose normalized name matches item_name"""
    key = normalize_item_name(item_name)
    for item in items:
        if normalize_item_name(item.item_name) == key:
            return item
    return None


def _parse_status(value: str) -> SupplyRequestStatus:
    try:
        return SupplyRequestStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}")


def _positive_quantity(value: Any, label: str) -> float:
    quantity = parse_number(value)
    if quantity is None or quantity <= 0:
        raise ValidationError(f"Invalid {label}: must be a positive number")
    return quantity


class SupplyRequestService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.activity = ActivityLogger(db)

    async def _get_request(self, request_id: int) -> SupplyRequest:
        supply_request = await self.db.get(SupplyRequest, request_id)
        if supply_request is None:
            raise NotFoundError("Supply request not found")
        return supply_request

    async def _get_warehouse(self, warehouse_id: int) -> Warehouse:
        warehouse = await self.db.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise NotFoundError("Warehouse not found")
        return warehouse

    # ------------------------------------------------------------------
    # Creating requests
    # ------------------------------------------------------------------

    async def create(
        self,
        site: Site,
        requester: User,
        warehouse_id: int,
        item_name: str,
        requested_quantity: Any,
        unit: str,
        notes: Optional[str] = None,
    ) -> SupplyRequest:
        """Raise a single request. The warehouse must stock the item in sufficient quantity."""
        if not item_name or not str(item_name).strip() or not unit or warehouse_id is None:
            raise ValidationError("itemName, requestedQuantity, unit, and warehouseId are required")
        quantity = _positive_quantity(requested_quantity, "requestedQuantity")

        warehouse = await self._get_warehouse(warehouse_id)
        warehouse_item = find_matching_item(warehouse.supplies, item_name)
        if warehouse_item is None:
            raise ValidationError(f'Item "{item_name}" not available in warehouse')
        if warehouse_item.quantity < quantity:
            raise InsufficientStockError(
                f"Insufficient quantity in warehouse. Available: {warehouse_item.quantity}"
            )

        async with transaction(self.db):
            supply_request = SupplyRequest(
                site_id=site.id,
                site_name=site.site_name,
                warehouse_id=warehouse.id,
                requested_by_id=requester.id,
                requested_by_name=requester.username,
                item_name=str(item_name).strip(),
                requested_quantity=quantity,
                unit=unit,
                notes=notes,
            )
            self.db.add(supply_request)
            await self.db.flush()

            await self.activity.log(
                site.id,
                "supply_requested",
                requester,
                {
                    "itemName": supply_request.item_name,
                    "requestedQuantity": quantity,
                    "unit": unit,
                    "warehouseName": warehouse.warehouse_name,
                    "requestId": supply_request.id,
                },
                f'{requester.username} requested {quantity} {unit} of "{supply_request.item_name}" '
                f"from {warehouse.warehouse_name}",
            )

        logger.info(f"✅ Supply request #{supply_request.id} created for site {site.id}")
        return supply_request

    async def create_batch(self, site: Site, requester: User, warehouse_id: int, items: List[dict]):
        """
        Raise several requests sharing one batch id.

        Stock is not checked here; the approver decides. Items without a
        name or a positive quantity are reported back and skipped.
        """
        if not items:
            raise ValidationError("Please provide a list of items")
        if warehouse_id is None:
            raise ValidationError("Warehouse ID is required")
        warehouse = await self._get_warehouse(warehouse_id)

        batch_id = uuid.uuid4().hex
        created, errors = [], []

        async with transaction(self.db):
            for index, item in enumerate(items):
                name = str(item.get("itemName") or "").strip()
                quantity = parse_number(item.get("quantity"))
                if not name or quantity is None or quantity <= 0:
                    errors.append(f"Item {index + 1}: itemName and a positive quantity are required")
                    continue

                supply_request = SupplyRequest(
                    site_id=site.id,
                    site_name=site.site_name,
                    warehouse_id=warehouse.id,
                    requested_by_id=requester.id,
                    requested_by_name=requester.username,
                    item_name=name,
                    requested_quantity=quantity,
                    unit=item.get("unit") or settings.DEFAULT_UNIT,
                    batch_id=batch_id,
                )
                self.db.add(supply_request)
                created.append(supply_request)

            await self.db.flush()
            await self.activity.log(
                site.id,
                "supply_requested",
                requester,
                {"count": len(created), "warehouseName": warehouse.warehouse_name, "batchId": batch_id},
                f"{requester.username} requested a list of {len(created)} supplies",
            )

        logger.info(f"✅ Batch {batch_id}: {len(created)} supply request(s) for site {site.id}")
        return batch_id, created, errors

    # ------------------------------------------------------------------
    # Handling requests
    # ------------------------------------------------------------------

    async def approve(self, request_id: int, transfer_quantity: Any, approver: User) -> TransferResult:
        """
        Transfer stock for a pending request.

        Raises ValidationError, NotFoundError, ConflictError or
        InsufficientStockError. Nothing is written unless every step succeeds.
        """
        quantity = _positive_quantity(transfer_quantity, "transfer quantity")

        async with transaction(self.db):
            supply_request = await self._get_request(request_id)
            if supply_request.status != SupplyRequestStatus.PENDING:
                raise ConflictError(ALREADY_PROCESSED)

            warehouse = await self._get_warehouse(supply_request.warehouse_id)
            warehouse_item = find_matching_item(warehouse.supplies, supply_request.item_name)
            if warehouse_item is None:
                raise NotFoundError("Item not found in warehouse")
            if warehouse_item.quantity < quantity:
                raise InsufficientStockError(
                    f"Insufficient quantity. Available: {warehouse_item.quantity} {warehouse_item.unit}"
                )

            site = await self.db.get(Site, supply_request.site_id)
            if site is None:
                raise NotFoundError("Site not found")

            now = datetime.utcnow()

            # Claim the request; a concurrent approval/rejection makes this match nothing
            claimed = await self.db.execute(
                update(SupplyRequest)
                .where(
                    SupplyRequest.id == supply_request.id,
                    SupplyRequest.status == SupplyRequestStatus.PENDING,
                )
                .values(
                    status=SupplyRequestStatus.APPROVED,
                    transferred_quantity=quantity,
                    handled_by_id=approver.id,
                    handled_by_name=approver.username,
                    handled_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise ConflictError(ALREADY_PROCESSED)
            await self.db.refresh(supply_request)

            drawn = await self.db.execute(
                update(WarehouseSupply)
                .where(
                    WarehouseSupply.id == warehouse_item.id,
                    WarehouseSupply.quantity >= quantity,
                )
                .values(quantity=WarehouseSupply.quantity - quantity, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if drawn.rowcount != 1:
                raise InsufficientStockError("Insufficient quantity. Stock changed during approval")
            await self.db.refresh(warehouse_item, ["quantity"])

            transfer_price = warehouse_item.transfer_price
            site_item = find_matching_item(site.supplies, supply_request.item_name)
            if site_item is not None:
                site_item.quantity = (site_item.quantity or 0) + quantity
                if not site_item.cost or not site_item.is_priced or site_item.cost != transfer_price:
                    site_item.cost = transfer_price
                    site_item.current_price = transfer_price
                    site_item.status = SupplyStatus.PRICED
                    site_item.priced_by_id = approver.id
                    site_item.priced_by_name = approver.username
                    site_item.priced_at = now
            else:
                site_item = SiteSupply(
                    item_name=supply_request.item_name,
                    quantity=quantity,
                    unit=warehouse_item.unit or supply_request.unit,
                    currency=warehouse_item.currency,
                    cost=transfer_price,
                    entry_price=transfer_price,
                    current_price=transfer_price,
                    status=SupplyStatus.PRICED,
                    added_by_id=approver.id,
                    added_by_name=approver.username,
                    priced_by_id=approver.id,
                    priced_by_name=approver.username,
                    priced_at=now,
                )
                site.supplies.append(site_item)
            await self.db.flush()

            currency = warehouse_item.currency
            await self.activity.log(
                site.id,
                "supply_request_approved",
                approver,
                {
                    "requestId": supply_request.id,
                    "itemName": supply_request.item_name,
                    "requestedQuantity": supply_request.requested_quantity,
                    "transferredQuantity": quantity,
                    "unit": supply_request.unit,
                    "warehouseName": warehouse.warehouse_name,
                    "transferPrice": transfer_price,
                    "currency": currency,
                },
                f"{approver.username} approved {quantity} {supply_request.unit} of "
                f'"{supply_request.item_name}" from {warehouse.warehouse_name} at {currency}{transfer_price}',
            )
            await self.activity.log(
                warehouse.id,
                "supply_request_approved",
                approver,
                {
                    "actionType": "transfer",
                    "requestId": supply_request.id,
                    "itemName": warehouse_item.item_name,
                    "transferredQuantity": quantity,
                    "remainingQuantity": warehouse_item.quantity,
                    "siteName": site.site_name,
                    "transferPrice": transfer_price,
                    "currency": currency,
                },
                f'{approver.username} transferred {quantity} {warehouse_item.unit} of "{warehouse_item.item_name}" '
                f"to {site.site_name} at {currency}{transfer_price}",
                target_model="Warehouse",
            )

            result = TransferResult(
                request=supply_request,
                transferred_quantity=quantity,
                remaining_warehouse_quantity=warehouse_item.quantity,
                new_site_quantity=site_item.quantity,
                transfer_price=transfer_price,
            )

        logger.info(
            f"✅ Supply request #{supply_request.id} approved: {quantity} {supply_request.unit} "
            f"{supply_request.item_name} -> site {site.id}"
        )
        return result

    async def reject(self, request_id: int, reason: Optional[str], approver: User) -> SupplyRequest:
        """
        Reject a request.

        Unless REJECT_REQUIRES_PENDING is set, any request can be rejected,
        including one that was already handled.
        """
        async with transaction(self.db):
            supply_request = await self._get_request(request_id)
            if settings.REJECT_REQUIRES_PENDING and supply_request.status != SupplyRequestStatus.PENDING:
                raise ConflictError(ALREADY_PROCESSED)

            now = datetime.utcnow()
            supply_request.status = SupplyRequestStatus.REJECTED
            supply_request.handled_by_id = approver.id
            supply_request.handled_by_name = approver.username
            supply_request.handled_at = now
            supply_request.reason = reason or "No reason provided"
            await self.db.flush()

            details = {
                "requestId": supply_request.id,
                "itemName": supply_request.item_name,
                "requestedQuantity": supply_request.requested_quantity,
                "unit": supply_request.unit,
                "reason": supply_request.reason,
            }
            await self.activity.log(
                supply_request.warehouse_id,
                "supply_request_rejected",
                approver,
                {**details, "siteName": supply_request.site_name},
                f'{approver.username} rejected request for "{supply_request.item_name}" '
                f"from {supply_request.site_name}: {supply_request.reason}",
                target_model="Warehouse",
            )
            await self.activity.log(
                supply_request.site_id,
                "supply_request_rejected",
                approver,
                details,
                f'{approver.username} rejected the request for {supply_request.requested_quantity} '
                f'{supply_request.unit} of "{supply_request.item_name}": {supply_request.reason}',
            )

        logger.info(f"⚠️ Supply request #{supply_request.id} rejected by {approver.username}")
        return supply_request

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_for_site(self, site_id: int, status: Optional[str] = None,
                            batch_id: Optional[str] = None) -> List[SupplyRequest]:
        query = select(SupplyRequest).where(SupplyRequest.site_id == site_id)
        if status:
            query = query.where(SupplyRequest.status == _parse_status(status))
        if batch_id:
            query = query.where(SupplyRequest.batch_id == batch_id)
        result = await self.db.execute(query.order_by(SupplyRequest.created_at.desc(), SupplyRequest.id.desc()))
        return list(result.scalars().all())

    async def list_for_warehouses(self, warehouse_ids: List[int], status: Optional[str] = None) -> List[SupplyRequest]:
        if not warehouse_ids:
            return []
        query = select(SupplyRequest).where(SupplyRequest.warehouse_id.in_(warehouse_ids))
        if status:
            query = query.where(SupplyRequest.status == _parse_status(status))
        result = await self.db.execute(query.order_by(SupplyRequest.created_at.desc(), SupplyRequest.id.desc()))
        return list(result.scalars().all())
