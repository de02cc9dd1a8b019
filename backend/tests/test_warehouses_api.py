from conftest import PASSWORD, auth_headers
from models import Warehouse
from supply_requests import SupplyRequestService


async def test_create_warehouse_with_manager(client, admin):
    response = await client.post("/api/warehouses", headers=auth_headers(admin), json={
        "warehouseName": "North Yard",
        "location": "Nashik",
        "managerUsername": "North_Mgr",
        "managerPassword": "secret123",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["manager"]["username"] == "north_mgr"
    assert [m["username"] for m in body["data"]["managers"]] == ["north_mgr"]
    assert body["data"]["companyId"] == admin.company_id

    login = await client.post(
        "/api/auth/login",
        json={"username": "north_mgr", "password": "secret123", "expectedRole": "warehouse_manager"},
    )
    assert login.status_code == 200
    assert login.json()["user"]["warehouseId"] == body["data"]["id"]


async def test_create_warehouse_requires_manager_credentials(client, admin):
    response = await client.post(
        "/api/warehouses", headers=auth_headers(admin), json={"warehouseName": "Yard", "location": "Nashik"}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "warehouseName, managerUsername, and managerPassword required"


async def test_warehouse_list_is_admin_only(client, warehouse, admin, manager):
    denied = await client.get("/api/warehouses", headers=auth_headers(manager))
    assert denied.status_code == 403
    assert denied.json()["message"] == "Admin access required"

    listed = await client.get("/api/warehouses", headers=auth_headers(admin))
    assert listed.json()["count"] == 1
    assert listed.json()["data"][0]["supplies"][0]["itemName"] == "Cement Bags"


async def test_supervisor_sees_company_warehouses_for_requests(client, site, warehouse, supervisor):
    response = await client.get("/api/warehouses/for-requests", headers=auth_headers(supervisor))

    assert response.json()["message"] == "Found 1 warehouses"
    assert response.json()["data"][0]["id"] == warehouse.id

    detail = await client.get(f"/api/warehouses/{warehouse.id}", headers=auth_headers(supervisor))
    assert detail.status_code == 200


async def test_supply_crud_keeps_entry_price(client, warehouse, manager):
    headers = auth_headers(manager)
    added = await client.post(f"/api/warehouses/{warehouse.id}/supplies", headers=headers, json={
        "itemName": "Steel Rods", "quantity": 50, "unit": "kg", "currency": "₹", "entryPrice": 60,
    })
    assert added.status_code == 201
    assert [s["itemName"] for s in added.json()["supplies"]] == ["Cement Bags", "Steel Rods"]

    cement_id = warehouse.supplies[0].id
    updated = await client.put(
        f"/api/warehouses/{warehouse.id}/supplies/{cement_id}", headers=headers,
        json={"quantity": 120, "entryPrice": 999},
    )
    cement = updated.json()["supplies"][0]
    assert cement["quantity"] == 120
    assert cement["entryPrice"] == 350

    repriced = await client.put(
        f"/api/warehouses/{warehouse.id}/supplies/{cement_id}/price", headers=headers, json={"currentPrice": 420},
    )
    assert repriced.json()["supplies"][0]["currentPrice"] == 420

    deleted = await client.delete(f"/api/warehouses/{warehouse.id}/supplies/{cement_id}", headers=headers)
    assert [s["itemName"] for s in deleted.json()["supplies"]] == ["Steel Rods"]


async def test_bulk_import_requires_prices(client, warehouse, manager):
    response = await client.post(
        f"/api/warehouses/{warehouse.id}/supplies/bulk-import", headers=auth_headers(manager), json={
            "currency": "₹",
            "supplies": [
                {"itemName": "cement bag", "quantity": 10, "unit": "bags", "currentPrice": 410},
                {"itemName": "Sand", "quantity": 3, "unit": "tons"},
                {"itemName": "Bricks", "quantity": 1000, "unit": "pcs", "price": "8"},
            ],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Import completed: 1 created, 1 updated, 1 errors"
    assert body["importResults"]["errors"][0]["error"] == "Missing/invalid price"

    supplies = {s["itemName"]: s for s in body["data"]["supplies"]}
    assert supplies["Cement Bags"]["quantity"] == 110
    assert supplies["Cement Bags"]["currentPrice"] == 410
    assert supplies["Cement Bags"]["entryPrice"] == 350
    assert supplies["Bricks"]["entryPrice"] == 8


async def test_file_import_needs_price_column(client, warehouse, manager):
    response = await client.post(
        f"/api/warehouses/{warehouse.id}/supplies/bulk-import/file",
        headers=auth_headers(manager),
        files={"file": ("stock.csv", b"Item Name,Quantity,Unit\nSand,5,tons\n", "text/csv")},
    )
    assert response.status_code == 400
    assert response.json()["missingColumns"] == ["Price"]


async def test_manager_cannot_touch_other_warehouse(client, save, admin, manager):
    other = await save(Warehouse(
        warehouse_name="South Yard", location="Satara", admin_id=admin.id, company_id=admin.company_id,
    ))
    response = await client.get(f"/api/warehouses/{other.id}", headers=auth_headers(manager))
    assert response.status_code == 403
    assert response.json()["message"] == "Not authorized for this warehouse"


async def test_reject_via_api(client, warehouse, manager, pending_request):
    response = await client.post(
        f"/api/warehouses/supply-requests/{pending_request.id}/reject",
        headers=auth_headers(manager), json={"reason": "Out of budget"},
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Supply request rejected successfully"
    assert response.json()["data"]["status"] == "rejected"
    assert response.json()["data"]["reason"] == "Out of budget"

    rejected = await client.get(
        "/api/warehouses/supply-requests", headers=auth_headers(manager), params={"status": "rejected"}
    )
    assert rejected.json()["count"] == 1


async def test_reports(client, session_maker, warehouse, admin, manager, pending_request):
    async with session_maker() as db:
        await SupplyRequestService(db).approve(pending_request.id, 20, manager)

    response = await client.get(f"/api/warehouses/{warehouse.id}/reports", headers=auth_headers(admin))
    reports = response.json()["data"]

    assert reports["totalSupplies"] == 1
    assert reports["totalValue"] == 80 * 400
    assert reports["totalTransfers"] == 1
    assert reports["recentTransfers"][0]["value"] == 20 * 400
    assert reports["recentTransfers"][0]["transferredTo"] == "Tower A"
    assert len(reports["monthlyTransfers"]) == 6
    assert reports["monthlyTransfers"][-1]["transfers"] == 1
    assert sum(m["transfers"] for m in reports["monthlyTransfers"]) == 1
    assert reports["topTransferredItems"] == [
        {"itemName": "cement bag", "totalTransferred": 20, "transferCount": 1, "unit": "bags"},
    ]



async def test_manager_accounts(client, warehouse, admin, manager):
    headers = auth_headers(admin)
    added = await client.post(
        f"/api/warehouses/{warehouse.id}/managers", headers=headers,
        json={"username": "night_mgr", "password": "secret123"},
    )
    assert added.status_code == 201
    assert added.json()["message"] == "Warehouse manager created successfully"
    new_id = added.json()["data"]["id"]

    duplicate = await client.post(
        f"/api/warehouses/{warehouse.id}/managers", headers=headers,
        json={"username": "store_manager", "password": "secret123"},
    )
    assert duplicate.json()["message"] == "Manager username already exists"

    listed = await client.get(f"/api/warehouses/{warehouse.id}/managers", headers=headers)
    assert {m["username"] for m in listed.json()["data"]} == {"store_manager", "night_mgr"}

    reset = await client.put(
        f"/api/warehouses/{warehouse.id}/managers/{manager.id}/reset-password",
        headers=headers, json={"newPassword": "changed99"},
    )
    assert reset.json()["message"] == "Password reset successfully"

    removed = await client.delete(f"/api/warehouses/{warehouse.id}/managers/{new_id}", headers=headers)
    assert removed.json()["message"] == "Manager removed successfully"

    logs = await client.get(f"/api/warehouses/{warehouse.id}/logs", headers=headers)
    assert [log["action"] for log in logs.json()["data"]] == [
        "manager_removed", "manager_password_reset", "manager_added",
    ]


async def test_delete_warehouse_removes_managers(client, warehouse, admin, manager):
    response = await client.delete(f"/api/warehouses/{warehouse.id}", headers=auth_headers(admin))
    assert response.json()["message"] == "Warehouse and all its managers deleted successfully"

    login = await client.post("/api/auth/login", json={"username": "store_manager", "password": PASSWORD})
    assert login.status_code == 401

    company_logs = await client.get("/api/company/logs", headers=auth_headers(admin))
    assert company_logs.json()["data"][0]["action"] == "warehouse_deleted"
