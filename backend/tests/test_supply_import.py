from types import SimpleNamespace

import pytest

from config import settings
from exceptions import ImportFormatError, ValidationError
from supply_import import (
    ImportRow, check_import_size, parse_import_file, parse_number, reconcile, summary_message,
)


def stock(name, quantity):
    return SimpleNamespace(item_name=name, quantity=quantity)


def test_parse_number():
    assert parse_number("12.5") == 12.5
    assert parse_number(" 3 ") == 3.0
    assert parse_number(7) == 7.0
    assert parse_number("abc") is None
    assert parse_number("") is None
    assert parse_number(None) is None
    assert parse_number(True) is None
    assert parse_number("nan") is None
    assert parse_number("inf") is None


def test_rows_with_same_normalized_name_are_merged():
    rows = [
        ImportRow("Tomatoes", 5, "kg"),
        ImportRow("tomato", "3", "kg"),
        ImportRow("Sand", 2, "tons"),
    ]
    plan = reconcile([], rows)

    assert plan.duplicates_merged == 1
    assert [c.item_name for c in plan.to_create] == ["Tomatoes", "Sand"]
    assert plan.to_create[0].quantity == 8
    assert plan.to_update == []
    assert plan.errors == []


def test_apple_and_apples_become_one_create():
    plan = reconcile([], [ImportRow("Apple", 5, "pcs"), ImportRow("apples", 3, "pcs")])

    assert len(plan.to_create) == 1
    assert plan.to_create[0].item_name == "Apple"
    assert plan.to_create[0].quantity == 8
    assert plan.duplicates_merged == 1


def test_merging_conserves_total_quantity():
    rows = [
        ImportRow("Cement Bags", 40, "bags"),
        ImportRow("cement bag", 10, "bags"),
        ImportRow("Boxes", 3, "pcs"),
        ImportRow("box", 2, "pcs"),
        ImportRow("Dry Leaves", 7.5, "kg"),
        ImportRow("Sand", 12, "tons"),
    ]
    plan = reconcile([], rows)

    assert plan.to_update == []
    assert len(plan.to_create) == 4
    assert sum(c.quantity for c in plan.to_create) == sum(r.quantity for r in rows)


def test_existing_item_is_updated_not_duplicated():
    existing = stock("Cement Bag", 10)
    plan = reconcile([existing], [ImportRow("cement bags", 5, "bags")])

    assert plan.to_create == []
    assert len(plan.to_update) == 1
    change = plan.to_update[0]
    assert change.item is existing
    assert change.added_quantity == 5
    assert change.new_quantity == 15
    assert change.was_renamed
    # planning leaves the snapshot alone
    assert existing.quantity == 10


def test_missing_unit_falls_back_to_default():
    plan = reconcile([], [ImportRow("Bricks", 100, None)])
    assert plan.to_create[0].unit == settings.DEFAULT_UNIT


@pytest.mark.parametrize("row, message", [
    (ImportRow("", 1, "kg"), "Missing item name"),
    (ImportRow(None, 1, "kg"), "Missing item name"),
    (ImportRow("Sand", "abc", "kg"), "Missing/invalid quantity"),
    (ImportRow("Sand", 0, "kg"), "Missing/invalid quantity"),
    (ImportRow("Sand", -4, "kg"), "Missing/invalid quantity"),
    (ImportRow("Sand", 4, "   "), "Empty unit"),
])
def test_invalid_rows_are_reported(row, message):
    plan = reconcile([], [ImportRow("Cement", 1, "bags"), row])

    assert len(plan.to_create) == 1
    assert len(plan.errors) == 1
    error = plan.errors[0]
    assert error.error == message
    # header is spreadsheet row 1, so the second data row is row 3
    assert error.row == 3


def test_error_keeps_item_name_for_display():
    plan = reconcile([], [ImportRow("Sand", "lots", "kg")])
    assert plan.errors[0].to_dict() == {"row": 2, "itemName": "Sand", "error": "Missing/invalid quantity"}


def test_price_required_for_warehouse_imports():
    rows = [
        ImportRow("Cement", 10, "bags", None),
        ImportRow("Sand", 2, "tons", "-1"),
        ImportRow("Bricks", 500, "pcs", "8.5"),
    ]
    plan = reconcile([], rows, require_price=True)

    assert [e.error for e in plan.errors] == ["Missing/invalid price", "Missing/invalid price"]
    assert [(c.item_name, c.price) for c in plan.to_create] == [("Bricks", 8.5)]


def test_price_is_ignored_when_not_required():
    plan = reconcile([], [ImportRow("Cement", 10, "bags", "not a price")])
    assert plan.errors == []
    assert plan.to_create[0].price is None


def test_merged_rows_keep_highest_price():
    rows = [
        ImportRow("Steel Rods", 10, "kg", 60),
        ImportRow("steel rod", 5, "kg", 72),
        ImportRow("STEEL RODS", 5, "kg", 65),
    ]
    plan = reconcile([], rows, require_price=True)

    assert plan.duplicates_merged == 2
    assert plan.to_create[0].quantity == 20
    assert plan.to_create[0].price == 72


def test_zero_priced_creates_need_pricing():
    rows = [ImportRow("Cement", 10, "bags", 0), ImportRow("Sand", 2, "tons", 900)]
    plan = reconcile([], rows, require_price=True)
    assert plan.needs_pricing == 1


def test_summary_message():
    rows = [ImportRow("Tomatoes", 5, "kg"), ImportRow("tomato", 3, "kg"), ImportRow("", 1, "kg")]
    plan = reconcile([stock("Sand", 1)], rows)
    assert summary_message(plan, len(rows), "site_sup") == (
        "site_sup bulk imported 3 supplies (1 duplicates merged): 1 created, 0 updated, 1 errors"
    )


def test_check_import_size_rejects_empty_upload():
    with pytest.raises(ValidationError) as exc:
        check_import_size([])
    assert exc.value.message == "No supplies provided for import"


def test_check_import_size_enforces_row_limit(monkeypatch):
    monkeypatch.setattr(settings, "MAX_IMPORT_ROWS", 2)
    with pytest.raises(ValidationError) as exc:
        check_import_size([ImportRow("a", 1), ImportRow("b", 1), ImportRow("c", 1)])
    assert exc.value.message == "Too many rows: 3. Maximum 2 rows per import"


# ---------------------------------------------------------------------------
# File parsing
# ---------------------------------------------------------------------------

def test_parse_csv_with_header_aliases():
    content = b"Item,Qty,UOM\nCement Bags,10,bags\n,,\nSand,2,tons\n"
    rows = parse_import_file(content, "supplies.csv")

    assert [(r.item_name, r.quantity, r.unit) for r in rows] == [
        ("Cement Bags", "10", "bags"),
        ("Sand", "2", "tons"),
    ]
    assert rows[0].price is None


def test_parse_csv_headers_are_case_insensitive():
    content = b"ITEM NAME, quantity ,Unit,Unit Price\nBricks,500,pcs,8.5\n"
    rows = parse_import_file(content, "stock.CSV", require_price=True)

    assert len(rows) == 1
    assert rows[0].item_name == "Bricks"
    assert rows[0].price == "8.5"


def test_parse_reports_missing_columns():
    content = b"Name,Quantity\nCement,10\n"

    with pytest.raises(ImportFormatError) as exc:
        parse_import_file(content, "supplies.csv")
    assert exc.value.missing_columns == ["Unit"]
    assert exc.value.extra == {"missingColumns": ["Unit"]}

    with pytest.raises(ImportFormatError) as exc:
        parse_import_file(content, "supplies.csv", require_price=True)
    assert exc.value.missing_columns == ["Unit", "Price"]
    assert exc.value.message == "Missing required columns: Unit, Price"


def test_parse_unreadable_spreadsheet():
    with pytest.raises(ImportFormatError) as exc:
        parse_import_file(b"this is not a workbook", "supplies.xlsx")
    assert exc.value.message.startswith("Could not read file")


def test_parsed_rows_feed_reconcile():
    content = b"Item Name,Quantity,Unit\nTomatoes,5,kg\ntomato,3,kg\nOnions,,kg\n"
    plan = reconcile([], parse_import_file(content, "veg.csv"))

    assert plan.duplicates_merged == 1
    assert plan.to_create[0].quantity == 8
    assert plan.errors[0].row == 4
    assert plan.errors[0].error == "Missing/invalid quantity"
