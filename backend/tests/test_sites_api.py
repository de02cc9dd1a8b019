import pytest

from conftest import PASSWORD_HASH, auth_headers
from models import Company, Site, SiteSupply, User, UserRole


@pytest.fixture
async def outsider(save):
    other = await save(Company(name="Other Infra", email="info@otherinfra.in", phone_number="9000000002"))
    return await save(User(
        username="other_admin",
        hashed_password=PASSWORD_HASH,
        role=UserRole.ADMIN,
        company_id=other.id,
    ))


async def test_admin_creates_site_with_new_supervisor(client, admin):
    response = await client.post("/api/sites", headers=auth_headers(admin), json={
        "siteName": "Tower B",
        "location": "Mumbai",
        "supervisorUsername": "new_sup",
        "supervisorPassword": "secret123",
        "supervisorFullName": "Anil Patil",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Site created successfully with supervisor"
    assert body["data"]["siteName"] == "Tower B"
    assert body["data"]["companyId"] == admin.company_id
    assert [s["username"] for s in body["data"]["supervisors"]] == ["new_sup"]

    login = await client.post("/api/auth/login", json={"username": "new_sup", "password": "secret123"})
    assert login.json()["user"]["assignedSites"][0]["siteName"] == "Tower B"


async def test_site_creation_validates_supervisor_username(client, admin):
    response = await client.post("/api/sites", headers=auth_headers(admin), json={
        "siteName": "Tower C",
        "location": "Thane",
        "supervisorUsername": "Bad Name!",
        "supervisorPassword": "secret123",
    })
    assert response.status_code == 400
    assert response.json()["errorType"] == "INVALID_USERNAME"


async def test_supervisor_cannot_create_site(client, supervisor):
    response = await client.post(
        "/api/sites", headers=auth_headers(supervisor), json={"siteName": "Rogue", "location": "Nowhere"}
    )
    assert response.status_code == 403
    assert response.json()["message"] == "Invalid admin ID or user is not an admin/owner"


async def test_supervisor_only_lists_assigned_sites(client, save, site, admin, supervisor):
    await save(Site(site_name="Tower Z", location="Pune", admin_id=admin.id, company_id=admin.company_id))

    as_supervisor = await client.get("/api/sites", headers=auth_headers(supervisor))
    as_admin = await client.get("/api/sites", headers=auth_headers(admin))

    assert [s["siteName"] for s in as_supervisor.json()["data"]] == ["Tower A"]
    assert as_admin.json()["count"] == 2


async def test_other_company_cannot_open_site(client, site, outsider):
    response = await client.get(f"/api/sites/{site.id}", headers=auth_headers(outsider))
    assert response.status_code == 403
    assert response.json()["message"] == "Access denied: you do not have permission for this site"

    missing = await client.get("/api/sites/9999", headers=auth_headers(outsider))
    assert missing.status_code == 404


async def test_update_and_delete_site(client, site, admin):
    updated = await client.put(
        f"/api/sites/{site.id}", headers=auth_headers(admin), json={"location": "Pune East"}
    )
    assert updated.json()["data"]["location"] == "Pune East"

    detail = await client.get(f"/api/sites/{site.id}", headers=auth_headers(admin))
    [log] = detail.json()["data"]["recentActivityLogs"]
    assert log["action"] == "site_updated"
    assert log["details"]["oldData"] == {"location": "Pune"}

    deleted = await client.delete(f"/api/sites/{site.id}", headers=auth_headers(admin))
    assert deleted.json()["message"] == "Site deleted successfully"
    gone = await client.get(f"/api/sites/{site.id}", headers=auth_headers(admin))
    assert gone.status_code == 404


# ---------------------------------------------------------------------------
# Supervisors
# ---------------------------------------------------------------------------

async def test_assign_and_remove_supervisor(client, save, site, admin):
    spare = await save(User(
        username="spare_sup", hashed_password=PASSWORD_HASH, role=UserRole.SUPERVISOR,
        company_id=admin.company_id,
    ))
    headers = auth_headers(admin)

    assigned = await client.post(
        f"/api/sites/{site.id}/assign-supervisor", headers=headers, json={"supervisorId": spare.id}
    )
    assert assigned.status_code == 200
    assert len(assigned.json()["data"]["supervisors"]) == 2

    again = await client.post(
        f"/api/sites/{site.id}/assign-supervisor", headers=headers, json={"supervisorId": spare.id}
    )
    assert again.status_code == 400
    assert again.json()["message"] == "Supervisor already assigned to this site"

    removed = await client.post(
        f"/api/sites/{site.id}/remove-supervisor", headers=headers, json={"supervisorId": spare.id}
    )
    assert [s["username"] for s in removed.json()["data"]["supervisors"]] == ["site_sup"]

    reset = await client.put(
        f"/api/sites/{site.id}/supervisors/{spare.id}/reset-password",
        headers=headers, json={"newPassword": "another1"},
    )
    assert reset.status_code == 403
    assert reset.json()["message"] == "Supervisor does not belong to this site"


# ---------------------------------------------------------------------------
# Supplies
# ---------------------------------------------------------------------------

async def test_supervisor_adds_supply_and_admin_prices_it(client, site, admin, supervisor):
    added = await client.post(
        f"/api/sites/{site.id}/supplies", headers=auth_headers(supervisor),
        json={"itemName": "Sand", "quantity": 5, "unit": "tons"},
    )
    assert added.status_code == 201
    [supply] = added.json()["data"]["supplies"]
    assert supply["status"] == "pending_pricing"
    assert supply["isPriced"] is False

    by_admin = await client.post(
        f"/api/sites/{site.id}/supplies", headers=auth_headers(admin),
        json={"itemName": "Gravel", "quantity": 1},
    )
    assert by_admin.status_code == 403
    assert by_admin.json()["message"] == "Only supervisors can add supplies"

    denied = await client.put(
        f"/api/sites/{site.id}/supplies/{supply['id']}/pricing",
        headers=auth_headers(supervisor), json={"cost": 1200},
    )
    assert denied.status_code == 403
    assert denied.json()["message"] == "Only admins can set supply pricing"

    priced = await client.put(
        f"/api/sites/{site.id}/supplies/{supply['id']}/pricing",
        headers=auth_headers(admin), json={"cost": 1200},
    )
    assert priced.status_code == 200
    assert priced.json()["data"]["supply"]["cost"] == 1200
    assert priced.json()["data"]["supply"]["status"] == "priced"


async def test_update_supply_quantity_logs_change(client, save, site, supervisor):
    supply = await save(SiteSupply(site_id=site.id, item_name="Bricks", quantity=100, unit="pcs"))

    response = await client.put(
        f"/api/sites/{site.id}/supplies/{supply.id}", headers=auth_headers(supervisor), json={"quantity": 80}
    )
    assert response.json()["data"]["supplies"][0]["quantity"] == 80

    logs = await client.get(
        f"/api/sites/{site.id}/logs", headers=auth_headers(supervisor), params={"action": "supply_updated"}
    )
    [log] = logs.json()["data"]
    assert log["details"]["changeType"] == "decreased"
    assert log["description"] == 'site_sup updated "Bricks" from 100.0 to 80.0 pcs (decreased supply by 20.0 pcs)'


async def test_bulk_import_merges_and_reports(client, save, site, supervisor):
    await save(SiteSupply(site_id=site.id, item_name="Cement Bags", quantity=3, unit="bags"))

    response = await client.post(
        f"/api/sites/{site.id}/supplies/bulk-import", headers=auth_headers(supervisor), json={"supplies": [
            {"itemName": "cement bags", "quantity": "2", "unit": "bags"},
            {"itemName": "Tomatoes", "quantity": 5, "unit": "kg"},
            {"itemName": "tomato", "quantity": 3, "unit": "kg"},
            {"itemName": "", "quantity": 1, "unit": "kg"},
        ]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Import completed: 1 created, 1 updated, 1 duplicates merged, 1 errors"
    results = body["importResults"]
    assert results["totalRows"] == 4
    assert results["duplicatesInFile"] == 1
    assert results["updated"][0]["newQuantity"] == 5
    assert results["updated"][0]["wasNameDifferent"] is True
    assert results["created"] == [{"itemName": "Tomatoes", "quantity": 8, "unit": "kg"}]
    assert results["errors"] == [{"row": 5, "itemName": "Unknown", "error": "Missing item name"}]

    supplies = {s["itemName"]: s for s in body["data"]["supplies"]}
    assert supplies["Cement Bags"]["quantity"] == 5
    assert supplies["Tomatoes"]["status"] == "pending_pricing"

    headers = auth_headers(supervisor)
    updates = await client.get(f"/api/sites/{site.id}/logs", headers=headers, params={"action": "supply_updated"})
    assert updates.json()["data"][0]["details"]["updateMethod"] == "bulk_import"
    summary = await client.get(f"/api/sites/{site.id}/logs", headers=headers, params={"action": "supply_added"})
    assert summary.json()["data"][0]["details"]["isBulkImport"] is True


async def test_file_import_reports_missing_columns(client, site, supervisor):
    response = await client.post(
        f"/api/sites/{site.id}/supplies/bulk-import/file",
        headers=auth_headers(supervisor),
        files={"file": ("supplies.csv", b"Item Name,Quantity\nSand,5\n", "text/csv")},
    )
    assert response.status_code == 400
    assert response.json()["missingColumns"] == ["Unit"]


async def test_file_import(client, site, supervisor):
    response = await client.post(
        f"/api/sites/{site.id}/supplies/bulk-import/file",
        headers=auth_headers(supervisor),
        files={"file": ("supplies.csv", b"Item,Qty,UOM\nSand,5,tons\nSteel Rods,40,kg\n", "text/csv")},
    )
    assert response.status_code == 200
    assert len(response.json()["importResults"]["created"]) == 2


async def test_empty_import_is_rejected(client, site, supervisor):
    response = await client.post(
        f"/api/sites/{site.id}/supplies/bulk-import", headers=auth_headers(supervisor), json={"supplies": []}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "No supplies provided for import"


async def test_template_download(client, supervisor):
    response = await client.get("/api/sites/supplies/template", headers=auth_headers(supervisor))
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.splitlines()[0] == "Item Name,Quantity,Unit"


# ---------------------------------------------------------------------------
# Workers and announcements
# ---------------------------------------------------------------------------

async def test_worker_attendance_is_one_record_per_day(client, site, supervisor):
    headers = auth_headers(supervisor)
    added = await client.post(
        f"/api/sites/{site.id}/workers", headers=headers, json={"name": "Mahesh", "role": "Mason"}
    )
    worker_id = added.json()["data"]["workers"][0]["id"]

    marked = await client.post(
        f"/api/sites/{site.id}/workers/{worker_id}/attendance", headers=headers,
        json={"date": "2026-10-01", "status": "present"},
    )
    assert marked.json()["message"] == "Attendance marked successfully"

    updated = await client.post(
        f"/api/sites/{site.id}/workers/{worker_id}/attendance", headers=headers,
        json={"date": "2026-10-01", "status": "absent"},
    )
    assert updated.json()["message"] == "Attendance updated successfully"
    assert updated.json()["data"]["workers"][0]["attendance"] == [{"date": "2026-10-01", "status": "absent"}]


async def test_announcement_read_receipts_are_idempotent(client, site, admin, supervisor):
    created = await client.post(
        f"/api/sites/{site.id}/announcements", headers=auth_headers(admin),
        json={"title": "Safety drill", "content": "Friday 10am", "isUrgent": True},
    )
    assert created.status_code == 201
    announcement_id = created.json()["data"]["id"]

    url = f"/api/sites/{site.id}/announcements/{announcement_id}/read"
    await client.post(url, headers=auth_headers(supervisor))
    second = await client.post(url, headers=auth_headers(supervisor))

    read_by = second.json()["data"]["readBy"]
    assert [r["userId"] for r in read_by] == [supervisor.id]

    listed = await client.get(f"/api/sites/{site.id}/announcements", headers=auth_headers(supervisor))
    assert listed.json()["data"][0]["isUrgent"] is True


# ---------------------------------------------------------------------------
# Supply requests
# ---------------------------------------------------------------------------

async def test_supply_request_round_trip(client, site, warehouse, supervisor, manager):
    created = await client.post(
        f"/api/sites/{site.id}/supply-requests", headers=auth_headers(supervisor),
        json={"itemName": "cement bags", "requestedQuantity": 10, "unit": "bags", "warehouseId": warehouse.id},
    )
    assert created.status_code == 201
    request_id = created.json()["data"]["id"]
    assert created.json()["data"]["status"] == "pending"

    queue = await client.get("/api/warehouses/supply-requests", headers=auth_headers(manager))
    assert [r["id"] for r in queue.json()["data"]] == [request_id]

    denied = await client.post(
        f"/api/warehouses/supply-requests/{request_id}/approve",
        headers=auth_headers(supervisor), json={"transferQuantity": 10},
    )
    assert denied.status_code == 403

    approved = await client.post(
        f"/api/warehouses/supply-requests/{request_id}/approve",
        headers=auth_headers(manager), json={"transferQuantity": 10},
    )
    assert approved.status_code == 200
    assert approved.json()["message"].startswith("Successfully transferred 10.0 bags of cement bags to Tower A")
    assert approved.json()["data"]["remainingWarehouseQuantity"] == 90

    twice = await client.post(
        f"/api/warehouses/supply-requests/{request_id}/approve",
        headers=auth_headers(manager), json={"transferQuantity": 10},
    )
    assert twice.status_code == 400
    assert twice.json()["message"] == "Supply request already processed"

    listed = await client.get(
        f"/api/sites/{site.id}/supply-requests", headers=auth_headers(supervisor), params={"status": "approved"}
    )
    assert [r["transferredQuantity"] for r in listed.json()["data"]] == [10]


async def test_supply_request_for_unstocked_item(client, site, warehouse, supervisor):
    response = await client.post(
        f"/api/sites/{site.id}/supply-requests", headers=auth_headers(supervisor),
        json={"itemName": "Plywood", "requestedQuantity": 2, "unit": "sheets", "warehouseId": warehouse.id},
    )
    assert response.status_code == 400
    assert response.json()["message"] == 'Item "Plywood" not available in warehouse'


async def test_bulk_supply_requests(client, site, warehouse, supervisor):
    response = await client.post(
        f"/api/sites/{site.id}/supply-requests/bulk", headers=auth_headers(supervisor),
        json={"warehouseId": warehouse.id, "items": [
            {"itemName": "Cement Bags", "quantity": 5, "unit": "bags"},
            {"itemName": "Sand", "quantity": 2, "unit": "tons"},
        ]},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Successfully requested 2 items"
    assert body["errors"] is None

    batch = await client.get(
        f"/api/sites/{site.id}/supply-requests", headers=auth_headers(supervisor),
        params={"batchId": body["batchId"]},
    )
    assert len(batch.json()["data"]) == 2
