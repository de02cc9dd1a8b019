"""
Configuration management for the application.
Loads settings from environment variables using Pydantic Settings.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./sitebuild.sqlite"
    SQL_ECHO: bool = False

    @property
    def database_url_async(self) -> str:
        """
        Transform DATABASE_URL to use the appropriate async driver.
        - PostgreSQL: postgresql+asyncpg://...
        - SQLite: sqlite+aiosqlite:///...
        """
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif self.DATABASE_URL.startswith("postgres://"):
            return self.DATABASE_URL.replace("postgres://", "postgresql+asyncpg://", 1)
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return self.DATABASE_URL

    # Security
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    RESET_TOKEN_EXPIRE_MINUTES: int = 15
    # Accept adminId/userId/supervisorId/managerId when no bearer token is sent
    ALLOW_LEGACY_ID_AUTH: bool = True

    # Application
    APP_NAME: str = "SiteBuild API"
    DEBUG: bool = False
    CORS_ORIGINS: str = "http://localhost:8081,http://localhost:19006,http://localhost:3000"

    # Bootstrap admin (created at startup when both are set)
    DEFAULT_ADMIN_USERNAME: str = ""
    DEFAULT_ADMIN_PASSWORD: str = ""

    # Inventory rules
    MAX_IMPORT_ROWS: int = 1000
    DEFAULT_CURRENCY: str = "₹"
    DEFAULT_UNIT: str = "pcs"
    REJECT_REQUIRES_PENDING: bool = False

    # Activity logs
    ACTIVITY_LOG_DEFAULT_LIMIT: int = 50
    COMPANY_LOG_LIMIT: int = 100

    # Email Configuration (Postmark)
    POSTMARK_ENABLED: bool = False
    POSTMARK_SERVER_TOKEN: str = ""
    POSTMARK_FROM_EMAIL: str = "noreply@sitebuild.app"
    POSTMARK_FROM_NAME: str = "SiteBuild Team"
    EMAIL_TEST_MODE: bool = False

    # Frontend URL (for email links)
    FRONTEND_URL: str = "http://localhost:8081"

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    ATTENDANCE_PHOTO_RETENTION_DAYS: int = 15
    ATTENDANCE_CLEANUP_INTERVAL_HOURS: int = 24

    SUPPORT_EMAIL: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


# Singleton instance - import this in other modules
settings = Settings()
