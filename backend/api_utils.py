"""
Helpers shared by the API routers: the response envelope, username rules
and account creation checks.
"""

import re
import secrets
import string
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from exceptions import ValidationError
from models import User

USERNAME_PATTERN = re.compile(r"^[a-z0-9_]{3,30}$")
USERNAME_RULES = "Username must be 3-30 characters: lowercase letters, numbers and underscores"


def success(data: Any = None, message: Optional[str] = None, **extra: Any) -> dict:
    """Standard success envelope: {success, message?, data?, ...extra}"""
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def error_body(message: str, error: Optional[str] = None, **extra: Any) -> dict:
    body = {"success": False, "message": message}
    if error:
        body["error"] = error
    body.update(extra)
    return body


def clean_username(raw: Optional[str], strict: bool = True) -> str:
    """Trim and lowercase a username. strict applies the supervisor/staff pattern."""
    username = (raw or "").strip().lower()
    if not username:
        raise ValidationError("Username is required", field="username")
    if strict and not USERNAME_PATTERN.match(username):
        raise ValidationError(USERNAME_RULES, field="username", errorType="INVALID_USERNAME")
    return username


async def username_exists(db: AsyncSession, username: str) -> bool:
    result = await db.execute(select(func.count(User.id)).where(User.username == username))
    return result.scalar_one() > 0


async def ensure_username_available(db: AsyncSession, username: str, message: str = "Username already exists"):
    if await username_exists(db, username):
        raise ValidationError(message, field="username", errorType="USERNAME_EXISTS")


def generate_password(length: int = 10) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))
