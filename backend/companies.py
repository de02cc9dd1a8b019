"""
Company API Endpoints
Tenant registration and the company-wide activity feed.
"""
import logging
import re
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from activity_logger import ActivityLogger, get_company_logs
from api_utils import generate_password, success, username_exists
from auth import ensure_role, get_current_user, get_password_hash
from config import settings
from database import get_db, transaction
from email_service import EmailService
from exceptions import ValidationError
from models import ADMIN_ROLES, Company, User, UserRole
from schemas import CompanyActivityLogResponse, CompanyRegisterRequest, CompanyResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/company", tags=["company"])


def _owner_username(company_name: str) -> str:
    slug = re.sub(r"[^a-z0-9]", "", company_name.lower())[:20] or "company"
    return f"admin_{slug}_{secrets.token_hex(2)}"


async def _check_company_unique(db: AsyncSession, payload: CompanyRegisterRequest) -> None:
    conditions = [
        Company.email == payload.email,
        Company.name == payload.name,
        Company.phone_number == payload.phone_number,
    ]
    if payload.gstin:
        conditions.append(Company.gstin == payload.gstin)

    result = await db.execute(select(Company).where(or_(*conditions)).limit(1))
    existing = result.scalar_one_or_none()
    if existing is None:
        return

    if existing.email == payload.email:
        duplicate = "Email"
    elif existing.name == payload.name:
        duplicate = "Company Name"
    elif existing.phone_number == payload.phone_number:
        duplicate = "Mobile Number"
    else:
        duplicate = "GSTIN"
    logger.warning(f"⚠️ Blocked duplicate company registration: {duplicate}")
    raise ValidationError(f"{duplicate} is already registered.")


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_company(
    payload: CompanyRegisterRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a company and its owner account.

    The owner's username and password are generated and emailed to the
    company address. They are echoed in the response only when the email
    could not be delivered (or in email test mode).
    """
    await _check_company_unique(db, payload)

    result = await db.execute(select(User.id).where(User.email == payload.email))
    if result.first() is not None:
        raise ValidationError("Email already exists", errorType="EMAIL_EXISTS")

    username = _owner_username(payload.name)
    while await username_exists(db, username):
        username = _owner_username(payload.name)
    password = generate_password()

    async with transaction(db):
        company = Company(
            name=payload.name.strip(),
            email=payload.email,
            phone_number=payload.phone_number.strip(),
            gstin=payload.gstin or None,
            address=payload.address,
        )
        db.add(company)
        await db.flush()

        owner = User(
            username=username,
            hashed_password=get_password_hash(password),
            role=UserRole.COMPANY_OWNER,
            email=payload.email,
            phone_number=payload.phone_number.strip(),
            first_name=payload.first_name,
            last_name=payload.last_name,
            firm_name=company.name,
            company_id=company.id,
        )
        db.add(owner)
        await db.flush()

        await ActivityLogger(db).log(
            owner.id,
            "company_registered",
            owner,
            {"companyId": company.id, "companyName": company.name},
            f'Company "{company.name}" registered with owner {username}',
            target_model="User",
        )

    logger.info(f"✅ Company {company.id} registered: {company.name}")

    email_sent = await EmailService().send_company_credentials_email(
        company_email=company.email,
        company_name=company.name,
        username=username,
        password=password,
    )
    if not email_sent:
        logger.warning(f"⚠️ Credentials email for company {company.id} was not delivered")

    extra = {"companyId": company.id, "emailSent": email_sent}
    if not email_sent or settings.EMAIL_TEST_MODE:
        extra["credentials"] = {"username": username, "password": password}

    message = (
        "Company registered successfully. Credentials sent to email."
        if email_sent else "Company registered successfully."
    )
    return success(CompanyResponse.model_validate(company), message, **extra)


@router.get("/logs")
async def company_logs(
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Latest centralized activity entries for the caller's company"""
    ensure_role(current_user, *ADMIN_ROLES, message="Unauthorized")
    if not current_user.company_id:
        return success([], count=0)

    logs = await get_company_logs(db, current_user.company_id, limit=limit)
    return success([CompanyActivityLogResponse.model_validate(log) for log in logs], count=len(logs))
