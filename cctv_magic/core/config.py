from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    if v is None or v == "":
        return _DEFAULT_CORS.copy()
    if isinstance(v, list):
        return [x for x in v if isinstance(x, str) and x.strip()]
    s = str(v).strip()
    if not s:
        return _DEFAULT_CORS.copy()
    if s.startswith("["):
        import json
        try:
            out = json.loads(s)
        except ValueError:
            return _DEFAULT_CORS.copy()
        return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
    return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")
    app_base_url: str = Field(default="http://localhost:3000", alias="APP_BASE_URL")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="cctv_magic", alias="MONGODB_DB_NAME")

    # Redis (arq worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Supabase (auth + optional storage)
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_anon_key: str = Field(default="", alias="SUPABASE_ANON_KEY")
    supabase_service_role_key: str = Field(default="", alias="SUPABASE_SERVICE_ROLE_KEY")
    supabase_storage_bucket: str = Field(default="videos", alias="SUPABASE_STORAGE_BUCKET")

    # Stripe
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_currency: str = Field(default="usd", alias="STRIPE_CURRENCY")

    # OpenAI Sora
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_api_url: str = Field(default="https://api.openai.com/v1/videos", alias="OPENAI_API_URL")
    openai_timeout_seconds: float = Field(default=120.0, alias="OPENAI_TIMEOUT_SECONDS")

    # Inbound provider webhook
    video_webhook_secret: str = Field(default="", alias="VIDEO_WEBHOOK_SECRET")
    video_webhook_skip_verification: bool = Field(default=False, alias="VIDEO_WEBHOOK_SKIP_VERIFICATION")
    video_webhook_tolerance_seconds: int = Field(default=300, alias="VIDEO_WEBHOOK_TOLERANCE_SECONDS")

    # Job tracking
    video_poll_max_attempts: int = Field(default=60, alias="VIDEO_POLL_MAX_ATTEMPTS")
    video_poll_interval_seconds: float = Field(default=5.0, alias="VIDEO_POLL_INTERVAL_SECONDS")
    video_stale_after_minutes: int = Field(default=30, alias="VIDEO_STALE_AFTER_MINUTES")

    # Storage
    storage_backend: str = Field(default="local", alias="STORAGE_BACKEND")
    storage_local_path: str = Field(default="./media", alias="STORAGE_LOCAL_PATH")
    storage_public_base_url: str = Field(default="/media", alias="STORAGE_PUBLIC_BASE_URL")
    gcs_bucket_name: str | None = Field(default=None, alias="GCS_BUCKET_NAME")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    @property
    def is_production(self) -> bool:
        return self.env.lower() in ("production", "prod")

    # Credits
    signup_bonus_credits: int = Field(default=0, alias="SIGNUP_BONUS_CREDITS")


@lru_cache
def get_settings() -> Settings:
    return Settings()
