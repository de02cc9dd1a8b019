"""
Activity logging for sites, warehouses and users.

Every entry lands in activity_logs (keyed by target model + id) and, when
a company can be worked out, a copy goes to company_activity_logs for the
company-wide audit view.

Logging is best-effort. ActivityLogger.log() writes inside a SAVEPOINT,
never commits, and returns None instead of raising, so a broken log write
can never fail or roll back the operation that triggered it.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import ActivityLog, CompanyActivityLog, Site, User, Warehouse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SystemActor:
    name: str = "System"
    role: str = "system"
    id: Optional[int] = None
    company_id: Optional[int] = None


@dataclass(frozen=True)
class ResolvedUser:
    id: int
    name: str
    role: str
    company_id: Optional[int] = None


@dataclass(frozen=True)
class UnresolvedLegacyName:
    """An identifier that matched no user; kept as a display name"""
    name: str
    role: str = "admin"
    id: Optional[int] = None
    company_id: Optional[int] = None


Actor = Union[SystemActor, ResolvedUser, UnresolvedLegacyName]

SYSTEM = SystemActor()

TARGET_MODELS = {
    "Site": Site,
    "Warehouse": Warehouse,
    "User": User,
}


def actor_from_user(user: User) -> ResolvedUser:
    role = user.role.value if hasattr(user.role, "value") else str(user.role)
    return ResolvedUser(id=user.id, name=user.username, role=role, company_id=user.company_id)


async def resolve_actor(db: AsyncSession, performed_by: Any) -> Actor:
    """
    Turn whatever a caller has on hand into an Actor.

    - None -> SystemActor
    - User row or Actor -> used as-is
    - mapping with an id/_id -> ResolvedUser built from it
    - id or username -> looked up; unmatched values become UnresolvedLegacyName
    """
    if performed_by is None or performed_by == "":
        return SYSTEM

    if isinstance(performed_by, (SystemActor, ResolvedUser, UnresolvedLegacyName)):
        return performed_by

    if isinstance(performed_by, User):
        return actor_from_user(performed_by)

    if isinstance(performed_by, dict):
        user_id = performed_by.get("id") or performed_by.get("_id")
        if user_id is None:
            return UnresolvedLegacyName(name="Unknown User")
        return ResolvedUser(
            id=user_id,
            name=performed_by.get("username") or "Unknown User",
            role=performed_by.get("role") or "admin",
            company_id=performed_by.get("companyId") or performed_by.get("company_id"),
        )

    if isinstance(performed_by, (int, str)) and not isinstance(performed_by, bool):
        raw = str(performed_by).strip()
        conditions = [User.username == raw.lower()]
        if raw.isdigit():
            conditions.append(User.id == int(raw))
        result = await db.execute(select(User).where(or_(*conditions)).limit(1))
        user = result.scalar_one_or_none()
        if user is not None:
            return actor_from_user(user)
        return UnresolvedLegacyName(name=raw)

    return UnresolvedLegacyName(name="Unknown User")


def _plain(details: Optional[dict]) -> dict:
    # JSON column; dates and ids become strings
    payload = json.loads(json.dumps(details or {}, default=str))
    payload.setdefault("currency", settings.DEFAULT_CURRENCY)
    return payload


class ActivityLogger:
    """Writes activity entries through the caller's session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        target_id: Any,
        action: str,
        performed_by: Any = None,
        details: Optional[dict] = None,
        description: Optional[str] = None,
        target_model: str = "Site",
    ) -> Optional[ActivityLog]:
        """
        Append an entry to the target's log and the company log.

        Returns the new entry, or None when anything went wrong (unknown
        target, bad id, database error). The entry becomes durable with the
        caller's commit.
        """
        try:
            async with self.db.begin_nested():
                actor = await resolve_actor(self.db, performed_by)

                model = TARGET_MODELS.get(target_model)
                if model is None:
                    raise ValueError(f"Unknown target model {target_model}")

                target = await self.db.get(model, int(target_id))
                if target is None:
                    raise LookupError(f"{target_model} {target_id} not found")

                payload = _plain(details)
                entry = ActivityLog(
                    target_model=target_model,
                    target_id=target.id,
                    action=action,
                    performed_by_id=actor.id,
                    performed_by_name=actor.name,
                    performed_by_role=actor.role,
                    details=payload,
                    description=description,
                )
                self.db.add(entry)

                company_id = getattr(target, "company_id", None) or actor.company_id
                if company_id:
                    self.db.add(CompanyActivityLog(
                        company_id=company_id,
                        action=action,
                        performed_by_id=actor.id,
                        performed_by_name=actor.name,
                        performed_by_role=actor.role,
                        target_id=target.id,
                        target_model=target_model,
                        details=payload,
                        description=description,
                    ))
                else:
                    logger.warning(
                        f"⚠️ No company for {target_model}:{target_id}; "
                        f"'{action}' not copied to the company log"
                    )

                await self.db.flush()

            logger.debug(f"📝 {action} on {target_model}:{target_id} by {actor.name}")
            return entry
        except Exception as e:
            logger.error(f"❌ Failed to log '{action}' on {target_model}:{target_id}: {e}", exc_info=True)
            return None


async def get_activity_logs(
    db: AsyncSession,
    target_id: int,
    target_model: str = "Site",
    limit: Optional[int] = None,
    action: Optional[str] = None,
) -> List[ActivityLog]:
    """Newest entries first"""
    query = select(ActivityLog).where(
        ActivityLog.target_model == target_model,
        ActivityLog.target_id == target_id,
    )
    if action:
        query = query.where(ActivityLog.action == action)
    query = query.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc())
    query = query.limit(limit or settings.ACTIVITY_LOG_DEFAULT_LIMIT)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_company_logs(db: AsyncSession, company_id: int, limit: Optional[int] = None) -> List[CompanyActivityLog]:
    result = await db.execute(
        select(CompanyActivityLog)
        .where(CompanyActivityLog.company_id == company_id)
        .order_by(CompanyActivityLog.timestamp.desc(), CompanyActivityLog.id.desc())
        .limit(limit or settings.COMPANY_LOG_LIMIT)
    )
    return list(result.scalars().all())
