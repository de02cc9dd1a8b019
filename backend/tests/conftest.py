import os

# Must be set before the app modules read their settings
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["POSTMARK_ENABLED"] = "false"
os.environ["EMAIL_TEST_MODE"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from auth import create_access_token, get_password_hash
from database import Base, build_engine, get_db
from main import app
from models import (
    Company, Site, SupplyRequest, User, UserRole, Warehouse, WarehouseSupply, site_supervisors,
)

PASSWORD = "secret123"
PASSWORD_HASH = get_password_hash(PASSWORD)


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
async def engine():
    # One shared in-memory connection; every session must commit or close before the next starts
    test_engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def save(session_maker):
    """Persist rows in their own session and hand them back detached"""
    async def _save(*objects):
        async with session_maker() as session:
            session.add_all(objects)
            await session.commit()
        return objects[0] if len(objects) == 1 else objects
    return _save


@pytest.fixture
async def client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def company(save):
    return await save(Company(name="Acme Builders", email="ops@acmebuilders.in", phone_number="9000000001"))


@pytest.fixture
async def admin(save, company):
    return await save(User(
        username="acme_admin",
        hashed_password=PASSWORD_HASH,
        role=UserRole.COMPANY_OWNER,
        email="owner@acmebuilders.in",
        company_id=company.id,
    ))


@pytest.fixture
async def supervisor(save, company, admin):
    return await save(User(
        username="site_sup",
        hashed_password=PASSWORD_HASH,
        role=UserRole.SUPERVISOR,
        full_name="Ravi Kumar",
        company_id=company.id,
        created_by_id=admin.id,
    ))


@pytest.fixture
async def site(save, session_maker, company, admin, supervisor):
    tower = await save(Site(site_name="Tower A", location="Pune", admin_id=admin.id, company_id=company.id))
    async with session_maker() as session:
        await session.execute(insert(site_supervisors).values(site_id=tower.id, user_id=supervisor.id))
        await session.commit()
    return tower


@pytest.fixture
async def warehouse(save, company, admin):
    return await save(Warehouse(
        warehouse_name="Central Store",
        location="Chakan",
        admin_id=admin.id,
        company_id=company.id,
        supplies=[
            WarehouseSupply(
                item_name="Cement Bags",
                quantity=100,
                unit="bags",
                currency="₹",
                entry_price=350,
                current_price=400,
            ),
        ],
    ))


@pytest.fixture
async def manager(save, company, warehouse):
    return await save(User(
        username="store_manager",
        hashed_password=PASSWORD_HASH,
        role=UserRole.WAREHOUSE_MANAGER,
        warehouse_id=warehouse.id,
        company_id=company.id,
    ))


@pytest.fixture
async def pending_request(save, site, warehouse, supervisor):
    return await save(SupplyRequest(
        site_id=site.id,
        site_name=site.site_name,
        warehouse_id=warehouse.id,
        requested_by_id=supervisor.id,
        requested_by_name=supervisor.username,
        item_name="cement bag",
        requested_quantity=20,
        unit="bags",
    ))
