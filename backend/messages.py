"""
Message API Endpoints
Supervisors send text or video notes to the admin of their site.
"""
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api_utils import success
from auth import ensure_role, get_current_user, get_site_for_actor, is_admin
from database import get_db, transaction
from exceptions import AuthorizationError, NotFoundError, ValidationError
from models import Message, User, UserRole
from schemas import MessageCreate, MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.post("/send", status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    ensure_role(current_user, UserRole.SUPERVISOR, message="Only supervisors can send messages")
    if not (payload.content or "").strip() and not payload.video_url:
        raise ValidationError("Message must contain text or video")

    site = await get_site_for_actor(payload.site_id, current_user, db)

    async with transaction(db):
        message = Message(
            sender_id=current_user.id,
            sender_name=current_user.username,
            sender_role=current_user.role.value,
            recipient_id=site.admin_id,
            site_id=site.id,
            site_name=site.site_name,
            content=payload.content or "",
            video_url=payload.video_url,
        )
        db.add(message)

    logger.info(f"✅ Message {message.id} sent from {current_user.username} to site {site.id} admin")
    return success(MessageResponse.model_validate(message), "Message sent successfully")


@router.get("/user/{user_id}")
async def list_user_messages(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Messages sent by a user. Users see their own; admins see anyone in their company."""
    if user_id != current_user.id:
        sender = await db.get(User, user_id)
        if sender is None:
            raise NotFoundError("User not found")
        if not is_admin(current_user) or sender.company_id != current_user.company_id:
            raise AuthorizationError("Access denied")

    result = await db.execute(
        select(Message).where(Message.sender_id == user_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
    )
    messages = result.scalars().all()
    return success([MessageResponse.model_validate(m) for m in messages], count=len(messages))


@router.get("/site/{site_id}")
async def list_site_messages(
    site_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    site = await get_site_for_actor(site_id, current_user, db)
    result = await db.execute(
        select(Message).where(Message.site_id == site.id)
        .order_by(Message.created_at.desc(), Message.id.desc())
    )
    messages = result.scalars().all()
    return success([MessageResponse.model_validate(m) for m in messages], count=len(messages))


@router.put("/{message_id}/read")
async def mark_message_read(
    message_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    message = await db.get(Message, message_id)
    if message is None:
        raise NotFoundError("Message not found")
    if message.recipient_id != current_user.id:
        # Any admin of the site may clear it as well
        await get_site_for_actor(message.site_id, current_user, db)
        if not is_admin(current_user):
            raise AuthorizationError("Access denied")

    async with transaction(db):
        message.is_read = True

    return success(MessageResponse.model_validate(message), "Message marked as read")
