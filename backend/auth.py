from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from config import settings
from database import get_db
from exceptions import AuthorizationError, NotFoundError
from models import User, UserRole, Site, Warehouse, ADMIN_ROLES, site_supervisors

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

# Identity parameters the mobile/web clients send instead of a token
LEGACY_ID_PARAMS = ("userId", "adminId", "supervisorId", "managerId")

RESET_TOKEN_PURPOSE = "password_reset"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT carrying the user id and role"""
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {
        "sub": str(user.id),
        "role": user.role.value,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_reset_token(user: User) -> str:
    """Short-lived token issued after identity verification, good for one password reset"""
    expire = datetime.utcnow() + timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES)
    to_encode = {"sub": str(user.id), "purpose": RESET_TOKEN_PURPOSE, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str, purpose: Optional[str] = None) -> Optional[int]:
    """Return the user id in a valid token, or None"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if payload.get("purpose") != purpose:
        return None
    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        return None
    return int(subject)


async def _legacy_user_id(request: Request) -> Optional[str]:
    """First of userId/adminId/supervisorId/managerId in the query string or JSON body"""
    for name in LEGACY_ID_PARAMS:
        value = request.query_params.get(name)
        if value:
            return value

    if "application/json" not in request.headers.get("content-type", ""):
        return None
    try:
        body = await request.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    for name in LEGACY_ID_PARAMS:
        value = body.get(name)
        if value:
            return str(value)
    return None


async def resolve_actor(request: Request, token: Optional[str], db: AsyncSession) -> User:
    """
    Work out who is calling.

    A bearer token wins. Without one, and while ALLOW_LEGACY_ID_AUTH is on,
    the plain id parameters older clients send are accepted.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    user_id = None
    if token:
        user_id = decode_token(token)
        if user_id is None:
            raise credentials_exception
    elif settings.ALLOW_LEGACY_ID_AUTH:
        raw = await _legacy_user_id(request)
        if raw is None or not str(raw).isdigit():
            raise credentials_exception
        user_id = int(raw)
    else:
        raise credentials_exception

    user = await db.get(User, user_id)
    if user is None:
        raise credentials_exception
    return user


async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get the current authenticated user"""
    return await resolve_actor(request, token, db)


def require_roles(*roles: UserRole, message: str = "Access denied for your role"):
    """
    Dependency factory for role checks.

    Usage:
        admin_user = require_roles(*ADMIN_ROLES)

        @router.get("/")
        async def handler(current_user: User = Depends(admin_user)): ...
    """
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        ensure_role(current_user, *roles, message=message)
        return current_user
    return checker


def ensure_role(user: User, *roles: UserRole, message: str = "Access denied for your role") -> None:
    if user.role not in roles:
        raise AuthorizationError(message)


def is_admin(user: User) -> bool:
    return user.role in ADMIN_ROLES


def _same_company(user: User, company_id: Optional[int]) -> bool:
    return bool(company_id and user.company_id and company_id == user.company_id)


async def supervisor_site_ids(db: AsyncSession, user_id: int) -> list:
    result = await db.execute(
        select(site_supervisors.c.site_id).where(site_supervisors.c.user_id == user_id)
    )
    return [row[0] for row in result]


async def get_site_for_actor(site_id: int, user: User, db: AsyncSession) -> Site:
    """
    Load a site the caller may work on.

    Admins and company owners get sites they own or that belong to their
    company; supervisors get sites they are assigned to.
    """
    site = await db.get(Site, site_id)
    if site is None:
        raise NotFoundError("Site not found")

    if is_admin(user):
        if site.admin_id == user.id or _same_company(user, site.company_id):
            return site
    elif user.role == UserRole.SUPERVISOR:
        if site.id in await supervisor_site_ids(db, user.id):
            return site

    raise AuthorizationError("Access denied: you do not have permission for this site")


async def get_warehouse_for_actor(
    warehouse_id: int,
    user: User,
    db: AsyncSession,
    allow_supervisor: bool = False
) -> Warehouse:
    """
    Load a warehouse the caller may work on.

    Admins/owners: own or same-company warehouses. Managers: only the
    warehouse they are assigned to. Supervisors (read-only callers): any
    warehouse of their company.
    """
    warehouse = await db.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise NotFoundError("Warehouse not found")

    if is_admin(user):
        if warehouse.admin_id == user.id or _same_company(user, warehouse.company_id):
            return warehouse
    elif user.role == UserRole.WAREHOUSE_MANAGER:
        if user.warehouse_id == warehouse.id:
            return warehouse
    elif user.role == UserRole.SUPERVISOR and allow_supervisor:
        if _same_company(user, warehouse.company_id):
            return warehouse

    raise AuthorizationError("Not authorized for this warehouse")
