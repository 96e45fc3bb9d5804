from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, computed_field

load_dotenv()


class Settings(BaseSettings):
    """Base settings for the application."""

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application settings
    APP_NAME: str = "AccessGate Core"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = "Access-session coordinator: temporary access grants, device presence and audit trail"
    APP_AUTHOR: str = "AccessGate Development Team"

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # Durable store
    STORE_BACKEND: str = Field(default="sql", description="'sql' (SQLModel kv table) or 'memory'")
    DATABASE_URL: str = ""
    LOCAL_SQLITE_PATH: str = "sqlite+aiosqlite:///./accessgate.db"
    STORE_TIMEOUT_SECONDS: float = 5.0
    UNIT_OF_WORK_MAX_RETRIES: int = 5

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """Resolve the database URL for the durable store.

        Priority:
        1. Explicit DATABASE_URL (Postgres, SQLite, etc.)
        2. Local SQLite fallback for development: LOCAL_SQLITE_PATH
        """
        if self.DATABASE_URL and self.DATABASE_URL.strip():
            return self.DATABASE_URL.strip()
        if self.LOCAL_SQLITE_PATH and self.LOCAL_SQLITE_PATH.strip():
            return self.LOCAL_SQLITE_PATH.strip()
        return "sqlite+aiosqlite:///./accessgate.db"

    # Access requests and sessions
    CUSTOM_DURATION_MIN_MINUTES: int = 1
    CUSTOM_DURATION_MAX_MINUTES: int = 1440
    SESSION_CACHE_TTL_SECONDS: float = 5.0
    SESSION_SWEEP_INTERVAL_SECONDS: int = 300

    # Audit log batching
    AUDIT_BATCH_SIZE: int = 50
    AUDIT_FLUSH_INTERVAL_SECONDS: float = 2.0
    AUDIT_RETENTION_LIMIT: int = 10000

    # Device presence
    HEARTBEAT_INTERVAL_SECONDS: int = 300
    DEVICE_REMOVAL_THRESHOLD_SECONDS: int = 3600
    DEVICE_REMOVAL_CHECK_INTERVAL_SECONDS: int = 60
    DEVICE_REACTIVATION_POLICY: str = Field(
        default="auto",
        description="'auto': a removed device that heartbeats again is reactivated; "
                    "'manual': it stays removed until an administrator reinstates it",
    )

    # Background timers
    SCHEDULER_ENABLED: bool = True
    BADGE_REFRESH_INTERVAL_SECONDS: int = 30

    # Administrator auth
    ADMIN_PASSWORD: str = "admin123"
    LOCAL_AUTH_SECRET: str = "JWT_SECRET_KEY"
    LOCAL_AUTH_TOKEN_EXP_SECONDS: int = 3600


settings = Settings()
