"""
Bulk supply import: spreadsheet parsing and reconciliation.

reconcile() is pure: it validates raw rows, merges rows that normalize to
the same item and decides, per item, whether it updates an existing
inventory line or creates a new one. The apply_* helpers then write that
plan onto a warehouse or site.
"""

import io
import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from config import settings
from exceptions import ImportFormatError, ValidationError
from item_names import normalize_item_name
from models import SiteSupply, SupplyStatus, User, WarehouseSupply

logger = logging.getLogger(__name__)

# Header synonyms accepted in uploaded files, matched case-insensitively
COLUMN_ALIASES: Dict[str, List[str]] = {
    "item_name": ["itemName", "Item Name", "item_name", "Item", "Name", "Product"],
    "quantity": ["quantity", "Quantity", "Qty", "qty", "Amount"],
    "unit": ["unit", "Unit", "Units", "UOM"],
    "price": [
        "entryPrice", "Entry Price", "Price", "price", "Current Price",
        "current_price", "Unit Price", "unit_price", "Cost", "cost",
    ],
}

# Names reported back when a required column is missing
COLUMN_LABELS = {
    "item_name": "Item Name",
    "quantity": "Quantity",
    "unit": "Unit",
    "price": "Price",
}

EXCEL_EXTENSIONS = (".xlsx", ".xls")

# Spreadsheet row 1 is the header, data rows are 1-based after it
HEADER_OFFSET = 2


@dataclass
class ImportRow:
    item_name: Any
    quantity: Any
    unit: Any = None
    price: Any = None


@dataclass
class RowError:
    row: Optional[int]
    item_name: str
    error: str

    def to_dict(self) -> dict:
        return {"row": self.row, "itemName": self.item_name, "error": self.error}


@dataclass
class PlannedCreate:
    key: str
    item_name: str
    quantity: float
    unit: str
    price: Optional[float] = None


@dataclass
class PlannedUpdate:
    key: str
    item: Any
    imported_name: str
    added_quantity: float
    new_quantity: float
    price: Optional[float] = None

    @property
    def was_renamed(self) -> bool:
        return self.item.item_name != self.imported_name


@dataclass
class ReconcileResult:
    to_create: List[PlannedCreate] = field(default_factory=list)
    to_update: List[PlannedUpdate] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)
    duplicates_merged: int = 0

    @property
    def needs_pricing(self) -> int:
        return sum(1 for plan in self.to_create if plan.price == 0)


def parse_number(value: Any) -> Optional[float]:
    """Parse a cell value as a finite float, or return None"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return number


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _validate_row(row: ImportRow, require_price: bool):
    """Returns (name, quantity, unit, price) or an error message. First failure wins."""
    name = "" if row.item_name is None else str(row.item_name).strip()
    if not name:
        return "Missing item name"

    quantity = parse_number(row.quantity)
    if quantity is None or quantity <= 0:
        return "Missing/invalid quantity"

    if _is_blank(row.unit):
        unit = settings.DEFAULT_UNIT
    else:
        unit = str(row.unit).strip()
        if not unit:
            return "Empty unit"

    price = None
    if require_price:
        price = parse_number(row.price)
        if price is None or price < 0:
            return "Missing/invalid price"

    return name, quantity, unit, price


def reconcile(existing_items: Iterable[Any], rows: List[ImportRow], require_price: bool = False) -> ReconcileResult:
    """
    Plan a bulk import against an inventory snapshot.

    existing_items are any objects with item_name and quantity. Rows that
    normalize to the same name are merged: quantities are summed, the
    highest price is kept and the first row's spelling becomes the display
    name. Nothing is mutated.
    """
    result = ReconcileResult()

    existing_by_key = {}
    for item in existing_items:
        existing_by_key[normalize_item_name(item.item_name)] = item

    groups: "OrderedDict[str, dict]" = OrderedDict()
    for index, row in enumerate(rows):
        validated = _validate_row(row, require_price)
        if isinstance(validated, str):
            display = str(row.item_name).strip() if not _is_blank(row.item_name) else ""
            result.errors.append(RowError(index + HEADER_OFFSET, display or "Unknown", validated))
            continue

        name, quantity, unit, price = validated
        key = normalize_item_name(name)
        group = groups.get(key)
        if group is None:
            groups[key] = {"item_name": name, "quantity": quantity, "unit": unit, "price": price}
            continue

        group["quantity"] += quantity
        if price is not None and (group["price"] is None or price > group["price"]):
            group["price"] = price
        result.duplicates_merged += 1

    for key, group in groups.items():
        existing = existing_by_key.get(key)
        if existing is not None:
            result.to_update.append(PlannedUpdate(
                key=key,
                item=existing,
                imported_name=group["item_name"],
                added_quantity=group["quantity"],
                new_quantity=(existing.quantity or 0) + group["quantity"],
                price=group["price"],
            ))
        else:
            result.to_create.append(PlannedCreate(
                key=key,
                item_name=group["item_name"],
                quantity=group["quantity"],
                unit=group["unit"],
                price=group["price"],
            ))

    return result


def check_import_size(rows: List[Any]) -> None:
    if not rows:
        raise ValidationError("No supplies provided for import")
    if len(rows) > settings.MAX_IMPORT_ROWS:
        raise ValidationError(
            f"Too many rows: {len(rows)}. Maximum {settings.MAX_IMPORT_ROWS} rows per import"
        )


# ============================================================================
# File parsing
# ============================================================================

def _read_frame(content: bytes, filename: str) -> pd.DataFrame:
    lower_name = (filename or "").lower()
    try:
        if lower_name.endswith(EXCEL_EXTENSIONS):
            frame = pd.read_excel(io.BytesIO(content), dtype=str)
        else:
            frame = pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False, skipinitialspace=True)
    except Exception as e:
        logger.warning(f"⚠️ Could not read import file {filename}: {e}")
        raise ImportFormatError(f"Could not read file: {e}")
    return frame.fillna("")


def _find_column(frame: pd.DataFrame, target: str) -> Optional[str]:
    """Find a column by checking aliases."""
    aliases = COLUMN_ALIASES.get(target, [])
    columns_lower = {str(col).lower().strip(): col for col in frame.columns}

    for alias in aliases:
        if alias.lower() in columns_lower:
            return columns_lower[alias.lower()]
    return None


def parse_import_file(content: bytes, filename: str, require_price: bool = False) -> List[ImportRow]:
    """
    Read a CSV/XLSX upload into ImportRows.

    Raises ImportFormatError listing the logical columns that could not be
    matched (Item Name, Quantity, Unit, Price).
    """
    frame = _read_frame(content, filename)

    required = ["item_name", "quantity", "unit"]
    if require_price:
        required.append("price")

    mapping = {target: _find_column(frame, target) for target in COLUMN_ALIASES}
    missing = [COLUMN_LABELS[target] for target in required if mapping[target] is None]
    if missing:
        raise ImportFormatError(
            f"Missing required columns: {', '.join(missing)}",
            missing_columns=missing,
        )

    rows = []
    for record in frame.to_dict(orient="records"):
        values = {target: (record[col] if col is not None else None) for target, col in mapping.items()}
        # Blank lines at the end of exported sheets
        if all(_is_blank(str(v).strip()) for v in values.values() if v is not None):
            continue
        rows.append(ImportRow(
            item_name=values["item_name"],
            quantity=values["quantity"],
            unit=values["unit"],
            price=values["price"],
        ))

    logger.info(f"📝 Parsed {len(rows)} row(s) from {filename}")
    return rows


# ============================================================================
# Applying a plan
# ============================================================================

def apply_to_warehouse(warehouse, plan: ReconcileResult, user: User, currency: Optional[str] = None) -> dict:
    """Write a reconcile plan onto a loaded warehouse. Returns the per-item summary."""
    created, updated = [], []

    for change in plan.to_update:
        item = change.item
        old_quantity = item.quantity
        item.quantity = change.new_quantity
        item.current_price = change.price
        item.currency = currency or item.currency
        updated.append({
            "itemName": item.item_name,
            "importedName": change.imported_name,
            "wasNameDifferent": change.was_renamed,
            "oldQuantity": old_quantity,
            "addedQuantity": change.added_quantity,
            "newQuantity": item.quantity,
            "unit": item.unit,
            "priceUpdated": True,
            "newPrice": change.price,
        })

    for change in plan.to_create:
        warehouse.supplies.append(WarehouseSupply(
            item_name=change.item_name,
            quantity=change.quantity,
            unit=change.unit,
            currency=currency or settings.DEFAULT_CURRENCY,
            entry_price=change.price,
            current_price=change.price,
            added_by_id=user.id,
        ))
        created.append({
            "itemName": change.item_name,
            "quantity": change.quantity,
            "unit": change.unit,
            "hasPrice": bool(change.price and change.price > 0),
            "price": change.price,
        })

    return {"created": created, "updated": updated}


def apply_to_site(site, plan: ReconcileResult, user: User) -> dict:
    """Write a reconcile plan onto a loaded site. New lines start unpriced."""
    created, updated = [], []

    for change in plan.to_update:
        item = change.item
        old_quantity = item.quantity
        item.quantity = change.new_quantity
        item.updated_at = datetime.utcnow()
        updated.append({
            "itemName": item.item_name,
            "importedName": change.imported_name,
            "wasNameDifferent": change.was_renamed,
            "oldQuantity": old_quantity,
            "addedQuantity": change.added_quantity,
            "newQuantity": item.quantity,
            "unit": item.unit,
        })

    for change in plan.to_create:
        site.supplies.append(SiteSupply(
            item_name=change.item_name,
            quantity=change.quantity,
            unit=change.unit,
            status=SupplyStatus.PENDING_PRICING,
            added_by_id=user.id,
            added_by_name=user.username,
        ))
        created.append({
            "itemName": change.item_name,
            "quantity": change.quantity,
            "unit": change.unit,
        })

    return {"created": created, "updated": updated}


def summarize(plan: ReconcileResult, applied: dict, total_rows: int) -> dict:
    """importResults payload returned to clients and stored on the summary log"""
    return {
        "totalRows": total_rows,
        "created": applied["created"],
        "updated": applied["updated"],
        "errors": [error.to_dict() for error in plan.errors],
        "duplicatesInFile": plan.duplicates_merged,
        "needsPricing": plan.needs_pricing,
    }


def summary_message(plan: ReconcileResult, total_rows: int, username: str) -> str:
    merged = f" ({plan.duplicates_merged} duplicates merged)" if plan.duplicates_merged else ""
    zero_price = f", {plan.needs_pricing} items with zero price" if plan.needs_pricing else ""
    return (
        f"{username} bulk imported {total_rows} supplies{merged}: "
        f"{len(plan.to_create)} created, {len(plan.to_update)} updated, "
        f"{len(plan.errors)} errors{zero_price}"
    )
