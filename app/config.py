"""Application configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="NutriCare Booking API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    cache_enabled: bool = Field(default=True, alias="CACHE_ENABLED")
    # Appointment listings are short-lived; every write drops them anyway
    appointment_list_cache_ttl: int = Field(default=60, alias="APPOINTMENT_LIST_CACHE_TTL")

    # JWT
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Firebase
    firebase_credentials_path: str | None = Field(
        default=None,
        alias="FIREBASE_CREDENTIALS_PATH",
        description="Path to Firebase service account JSON file",
    )
    firebase_config_json: str | None = Field(
        default=None,
        alias="FIREBASE_CONFIG_JSON",
        description="Raw JSON string of the Firebase service account",
    )
    push_default_icon: str = Field(default="/icons/icon-192x192.png", alias="PUSH_DEFAULT_ICON")
    # Public web app origin; notification links are built on it
    app_base_url: str = Field(default="", alias="APP_BASE_URL")

    # Scheduling
    clinic_timezone: str = Field(default="UTC", alias="CLINIC_TIMEZONE")
    default_workday_start: str = Field(default="09:00", alias="DEFAULT_WORKDAY_START")
    default_workday_end: str = Field(default="17:00", alias="DEFAULT_WORKDAY_END")
    lunch_break_start: str | None = Field(default="14:00", alias="LUNCH_BREAK_START")
    lunch_break_end: str | None = Field(default="15:00", alias="LUNCH_BREAK_END")
    enrichment_step_timeout: float = Field(default=10.0, alias="ENRICHMENT_STEP_TIMEOUT")

    # Meetings
    zoom_account_id: str = Field(default="", alias="ZOOM_ACCOUNT_ID")
    zoom_client_id: str = Field(default="", alias="ZOOM_CLIENT_ID")
    zoom_client_secret: str = Field(default="", alias="ZOOM_CLIENT_SECRET")
    default_video_provider: str = Field(default="google_meet", alias="DEFAULT_VIDEO_PROVIDER")

    # Google Calendar (per-user OAuth tokens live on the users table)
    google_client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")
    google_client_secret: str = Field(default="", alias="GOOGLE_CLIENT_SECRET")

    # Email
    smtp_host: str = Field(default="smtp.gmail.com", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_user: str = Field(default="", alias="SMTP_USER")
    smtp_password: str = Field(default="", alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=True, alias="SMTP_USE_TLS")
    email_from_address: str = Field(
        default="appointments@nutricare.example", alias="EMAIL_FROM_ADDRESS"
    )

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    @property
    def lunch_break(self) -> tuple[str, str] | None:
        """Lunch break window, or None when disabled."""
        if self.lunch_break_start and self.lunch_break_end:
            return self.lunch_break_start, self.lunch_break_end
        return None

    @property
    def smtp_configured(self) -> bool:
        """Check if SMTP credentials are present."""
        return bool(self.smtp_user and self.smtp_password)

    @property
    def zoom_configured(self) -> bool:
        """Check if Zoom server-to-server credentials are present."""
        return bool(self.zoom_account_id and self.zoom_client_id and self.zoom_client_secret)

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
