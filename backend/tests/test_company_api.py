from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from attendance_scheduler import cleanup_old_photos
from conftest import PASSWORD_HASH, auth_headers
from models import CheckInType, StaffAttendance, User, UserRole

COMPANY = {
    "name": "Skyline Infra",
    "email": "hello@skylineinfra.in",
    "phoneNumber": "9811111111",
    "gstin": "27ABCDE1234F1Z5",
    "address": "Baner, Pune",
}


@pytest.fixture
async def staff_member(save, admin):
    return await save(User(
        username="gate_guard",
        hashed_password=PASSWORD_HASH,
        role=UserRole.STAFF,
        full_name="Gate Guard",
        company_id=admin.company_id,
        created_by_id=admin.id,
    ))


# ---------------------------------------------------------------------------
# Company registration
# ---------------------------------------------------------------------------

async def test_register_company_creates_owner(client):
    response = await client.post("/api/company/register", json=COMPANY)

    assert response.status_code == 201
    body = response.json()
    assert body["data"]["name"] == "Skyline Infra"
    assert body["data"]["subscriptionStatus"] == "trial"
    # no mail transport configured, so the credentials come back directly
    assert body["emailSent"] is False
    credentials = body["credentials"]
    assert credentials["username"].startswith("admin_skylineinfra_")

    login = await client.post("/api/auth/login", json=credentials)
    assert login.status_code == 200
    assert login.json()["user"]["role"] == "company_owner"
    assert login.json()["user"]["companyId"] == body["companyId"]

    logs = await client.get("/api/company/logs", headers={"Authorization": f"Bearer {login.json()['token']}"})
    assert [log["action"] for log in logs.json()["data"]] == ["company_registered"]


@pytest.mark.parametrize("field, value, message", [
    ("email", "ops@acmebuilders.in", "Email is already registered."),
    ("name", "Acme Builders", "Company Name is already registered."),
    ("phoneNumber", "9000000001", "Mobile Number is already registered."),
])
async def test_register_company_rejects_duplicates(client, company, field, value, message):
    response = await client.post("/api/company/register", json={**COMPANY, field: value})
    assert response.status_code == 400
    assert response.json()["message"] == message


async def test_register_company_rejects_taken_user_email(client, admin):
    response = await client.post("/api/company/register", json={**COMPANY, "email": "owner@acmebuilders.in"})
    assert response.status_code == 400
    assert response.json()["errorType"] == "EMAIL_EXISTS"


async def test_company_logs_are_admin_only(client, admin, supervisor):
    await client.post("/api/sites", headers=auth_headers(admin), json={"siteName": "Tower B", "location": "Pune"})

    logs = await client.get("/api/company/logs", headers=auth_headers(admin), params={"limit": 5})
    assert logs.json()["data"][0]["action"] == "site_created"
    assert logs.json()["data"][0]["performedByName"] == "acme_admin"

    denied = await client.get("/api/company/logs", headers=auth_headers(supervisor))
    assert denied.status_code == 403
    assert denied.json()["message"] == "Unauthorized"


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

async def test_supervisor_messages_site_admin(client, site, admin, supervisor):
    sent = await client.post(
        "/api/messages/send", headers=auth_headers(supervisor),
        json={"siteId": site.id, "content": "Need 50 more cement bags"},
    )
    assert sent.status_code == 201
    message = sent.json()["data"]
    assert message["recipientId"] == admin.id
    assert message["siteName"] == "Tower A"
    assert message["isRead"] is False

    inbox = await client.get(f"/api/messages/site/{site.id}", headers=auth_headers(admin))
    assert [m["id"] for m in inbox.json()["data"]] == [message["id"]]

    by_sender = await client.get(f"/api/messages/user/{supervisor.id}", headers=auth_headers(admin))
    assert by_sender.json()["count"] == 1

    read = await client.put(f"/api/messages/{message['id']}/read", headers=auth_headers(admin))
    assert read.json()["data"]["isRead"] is True


async def test_message_rules(client, site, admin, supervisor):
    empty = await client.post(
        "/api/messages/send", headers=auth_headers(supervisor), json={"siteId": site.id, "content": "  "}
    )
    assert empty.status_code == 400
    assert empty.json()["message"] == "Message must contain text or video"

    from_admin = await client.post(
        "/api/messages/send", headers=auth_headers(admin), json={"siteId": site.id, "content": "Hi"}
    )
    assert from_admin.status_code == 403
    assert from_admin.json()["message"] == "Only supervisors can send messages"


# ---------------------------------------------------------------------------
# Staff and check-ins
# ---------------------------------------------------------------------------

async def test_admin_manages_staff(client, admin):
    headers = auth_headers(admin)
    created = await client.post("/api/staff", headers=headers, json={
        "username": "store_keeper", "password": "secret123", "fullName": "Store Keeper",
    })
    assert created.status_code == 201
    staff_id = created.json()["data"]["id"]
    assert created.json()["data"]["role"] == "staff"

    listed = await client.get("/api/staff", headers=headers)
    assert listed.json()["count"] == 1

    updated = await client.put(f"/api/staff/{staff_id}", headers=headers, json={"fullName": "Head Store Keeper"})
    assert updated.json()["data"]["fullName"] == "Head Store Keeper"

    deleted = await client.delete(f"/api/staff/{staff_id}", headers=headers)
    assert deleted.json()["message"] == "Staff member deleted successfully"
    assert (await client.get("/api/staff", headers=headers)).json()["count"] == 0


async def test_staff_endpoints_need_admin(client, supervisor):
    response = await client.get("/api/staff", headers=auth_headers(supervisor))
    assert response.status_code == 403


async def test_check_in_once_per_day(client, admin, staff_member):
    headers = auth_headers(staff_member)
    payload = {"type": "login", "photo": "https://cdn.sitebuild.app/p/1.jpg",
               "location": {"latitude": 18.5204, "longitude": 73.8567}}

    first = await client.post("/api/attendance", headers=headers, json=payload)
    assert first.status_code == 201
    assert first.json()["message"] == "Attendance marked successfully: Check In"
    assert first.json()["data"]["locationText"] == "18.52040, 73.85670"

    second = await client.post("/api/attendance", headers=headers, json=payload)
    assert second.status_code == 400
    assert second.json()["message"] == "You have already marked Check In for today."

    check_out = await client.post("/api/attendance", headers=headers, json={"type": "logout"})
    assert check_out.status_code == 201

    mine = await client.get("/api/attendance/my-records", headers=headers)
    assert mine.json()["count"] == 2
    assert all("photo" not in record for record in mine.json()["data"])

    history = await client.get(f"/api/staff/{staff_member.id}/attendance", headers=auth_headers(admin))
    assert history.json()["count"] == 2
    assert history.json()["staff"]["username"] == "gate_guard"


async def test_admin_cannot_check_in(client, admin):
    response = await client.post("/api/attendance", headers=auth_headers(admin), json={"type": "login"})
    assert response.status_code == 403


async def test_old_photos_are_cleared(session_maker, save, staff_member):
    old = datetime.utcnow() - timedelta(days=30)
    await save(
        StaffAttendance(staff_id=staff_member.id, type=CheckInType.LOGIN, photo="old.jpg",
                        photo_uploaded_at=old, timestamp=old),
        StaffAttendance(staff_id=staff_member.id, type=CheckInType.LOGOUT, photo="new.jpg",
                        photo_uploaded_at=datetime.utcnow()),
    )

    async with session_maker() as db:
        cleared = await cleanup_old_photos(db, retention_days=15)
        await db.commit()

    assert cleared == 1
    async with session_maker() as db:
        result = await db.execute(select(StaffAttendance.photo).order_by(StaffAttendance.id))
        assert result.scalars().all() == [None, "new.jpg"]
