from fastapi import FastAPI, Depends, HTTPException, status, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, text
import logging

from config import settings
from database import get_db, init_db, async_session_maker, transaction
from exceptions import AppError, ValidationError
from models import User, UserRole, ADMIN_ROLES
from schemas import (
    LoginRequest, RegisterAdminRequest, VerifyIdentityRequest, ResetPasswordRequest,
    UserResponse
)
from auth import (
    get_password_hash, verify_password, create_access_token, create_reset_token,
    decode_token, get_current_user, RESET_TOKEN_PURPOSE
)
from api_utils import success, error_body, clean_username, ensure_username_available
from activity_logger import ActivityLogger
from sites import router as sites_router, supervisor_sites
from warehouses import router as warehouses_router
from companies import router as companies_router
from messages import router as messages_router
from staff import router as staff_router
from attendance import router as attendance_router

app = FastAPI(title=settings.APP_NAME, version="1.0.0")

# Setup logging
logger = logging.getLogger(__name__)

# Strip whitespace from each origin to prevent configuration errors
CORS_ORIGINS = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,  # Cache preflight responses for 1 hour
)

# ==================== CUSTOM EXCEPTION HANDLERS ====================


def _with_cors(request: Request, response: JSONResponse) -> JSONResponse:
    """Error responses produced outside the CORS middleware still need its headers"""
    origin = request.headers.get('origin')
    if origin and origin in CORS_ORIGINS:
        response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Access-Control-Allow-Credentials'] = 'true'
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Domain errors raised by services and routers: {success: false, message, ...extra}"""
    return _with_cors(request, JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, **exc.extra)
    ))


@app.exception_handler(StarletteHTTPException)
async def custom_http_exception_handler(request: Request, exc: StarletteHTTPException):
    response = JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None)
    )
    return _with_cors(request, response)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else (first.get("msg") or "Invalid request")
    return _with_cors(request, JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(message, error="validation_error", errors=[
            {"field": ".".join(str(part) for part in e.get("loc", ())), "message": e.get("msg")}
            for e in errors
        ])
    ))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler for unexpected errors.
    Ensures CORS headers are present even on 500 errors.
    """
    logger.error(f"❌ Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return _with_cors(request, JSONResponse(
        status_code=500,
        content=error_body("Internal server error", error=str(exc) if settings.DEBUG else None)
    ))

# ==================== END EXCEPTION HANDLERS ====================

app.include_router(companies_router)
app.include_router(sites_router)
app.include_router(warehouses_router)
app.include_router(messages_router)
app.include_router(staff_router)
app.include_router(attendance_router)


async def ensure_default_admin():
    """Create the bootstrap admin from DEFAULT_ADMIN_USERNAME/PASSWORD if it does not exist"""
    if not settings.DEFAULT_ADMIN_USERNAME or not settings.DEFAULT_ADMIN_PASSWORD:
        return

    async with async_session_maker() as db:
        username = settings.DEFAULT_ADMIN_USERNAME.strip().lower()
        result = await db.execute(select(User).where(User.username == username))
        if result.scalar_one_or_none():
            return

        db.add(User(
            username=username,
            hashed_password=get_password_hash(settings.DEFAULT_ADMIN_PASSWORD),
            role=UserRole.ADMIN,
            full_name="Admin User",
        ))
        await db.commit()
        logger.info(f"✅ Created default admin user: {username}")


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info("=" * 60)

    try:
        await init_db()
        logger.info("Database initialization successful!")
    except Exception as e:
        logger.error("=" * 60)
        logger.error(f"CRITICAL: Application startup failed: {e}")
        logger.error("=" * 60)
        raise

    await ensure_default_admin()

    # Daily cleanup of old check-in photos
    if settings.SCHEDULER_ENABLED:
        try:
            from attendance_scheduler import start_attendance_scheduler
            app.state.scheduler = start_attendance_scheduler()
            logger.info("✅ Attendance scheduler started successfully")
        except Exception as e:
            logger.error(f"⚠️ Failed to start attendance scheduler: {e}")
            # Don't fail startup if scheduler fails


@app.on_event("shutdown")
async def shutdown_event():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)


# ==================== AUTH ROUTES ====================

@app.post("/api/auth/login")
async def login(
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Username/password login.

    expectedRole lets each app screen (admin, supervisor, warehouse) refuse
    accounts of another role.
    """
    username = login_data.username.strip().lower()
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password"
        )

    if login_data.expected_role and user.role != login_data.expected_role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"No {login_data.expected_role.value} account found with this username"
        )

    token = create_access_token(user)
    user_data = UserResponse.model_validate(user).model_dump(by_alias=True, mode="json")
    if user.role == UserRole.SUPERVISOR:
        user_data["assignedSites"] = await supervisor_sites(db, user.id)

    logger.info(f"✅ {user.username} ({user.role.value}) logged in")
    return success(token=token, tokenType="bearer", user=user_data)


@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
async def register_admin(
    payload: RegisterAdminRequest,
    db: AsyncSession = Depends(get_db)
):
    """Self-service admin signup (no company; one can be registered separately)"""
    username = clean_username(payload.username, strict=False)
    await ensure_username_available(db, username)

    result = await db.execute(select(User.id).where(User.email == payload.email))
    if result.first() is not None:
        raise ValidationError("Email already exists", field="email", errorType="EMAIL_EXISTS")

    async with transaction(db):
        user = User(
            username=username,
            hashed_password=get_password_hash(payload.password),
            role=UserRole.ADMIN,
            email=payload.email,
            phone_number=payload.phone_number,
            first_name=payload.first_name,
            last_name=payload.last_name,
            firm_name=payload.firm_name or "",
        )
        db.add(user)
        await db.flush()
        await ActivityLogger(db).log(
            user.id,
            "admin_registered",
            user,
            {"username": username, "email": payload.email},
            f"{username} registered an admin account",
            target_model="User",
        )

    logger.info(f"✅ Admin account created: {username}")
    return success(UserResponse.model_validate(user), "Admin account created successfully")


@app.post("/api/auth/verify-identity")
async def verify_identity(
    payload: VerifyIdentityRequest,
    db: AsyncSession = Depends(get_db)
):
    """First step of the forgot-password flow; returns a short-lived reset token"""
    username = payload.username.strip().lower()
    result = await db.execute(
        select(User).where(User.username == username, User.role.in_(ADMIN_ROLES))
    )
    admin = result.scalar_one_or_none()

    if not admin:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No matching admin account found. Please check your information."
        )
    if (admin.email or "").lower() != payload.email.lower():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Email does not match our records"
        )

    return success(message="Identity verified successfully", resetToken=create_reset_token(admin))


@app.post("/api/auth/reset-password")
async def reset_password(
    payload: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db)
):
    user_id = decode_token(payload.reset_token, purpose=RESET_TOKEN_PURPOSE)
    user = await db.get(User, user_id) if user_id is not None else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token"
        )

    async with transaction(db):
        user.hashed_password = get_password_hash(payload.new_password)

    logger.info(f"Password successfully reset for user: {user.username}")
    return success(message="Password reset successfully")


@app.get("/api/auth/me")
async def get_me(current_user: User = Depends(get_current_user)):
    return success(UserResponse.model_validate(current_user))


# ==================== HEALTH CHECK ====================

@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check endpoint for Render/Cloud platforms"""
    try:
        await db.execute(text("SELECT 1"))
        database = "connected"
    except Exception as e:
        logger.error(f"❌ Health check database error: {e}")
        database = "unavailable"
    return {
        "status": "healthy" if database == "connected" else "degraded",
        "service": settings.APP_NAME,
        "database": database,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
