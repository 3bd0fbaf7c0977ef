import json

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
]

SUPPORTED_LANGUAGES = ("ar", "en")


class Settings(BaseSettings):
    database_url: str
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    refresh_token_expire_minutes: int = 60 * 24 * 30
    allowed_origins: list[str] = DEFAULT_ALLOWED_ORIGINS
    admin_emails: list[str] = []
    auto_create_tables: bool = False
    auto_run_migrations: bool = False

    default_language: str = "ar"
    log_level: str = "INFO"

    storage_root: str = "./storage"
    backup_bucket: str = "documents"

    moderation_cache_ttl_seconds: float = 5.0
    suggestion_popular_threshold: int = 10
    notification_feed_limit: int = 10

    withdrawal_min_amount: float = 100.0
    wallet_reserve_amount: float = 50.0

    # `allowed_origins` supports comma-separated strings or JSON lists; disable pydantic-settings JSON decoding
    # so our validator can handle both formats.
    model_config = SettingsConfigDict(
        env_file=".topsecret",
        extra="ignore",
        case_sensitive=False,
        enable_decoding=False,
        env_ignore_empty=True,
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value):
        if value is None or value == "":
            return list(DEFAULT_ALLOWED_ORIGINS)

        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return [origin for origin in parsed if origin]
            except json.JSONDecodeError:
                pass

            parsed = [origin.strip() for origin in value.split(",")]
            return [origin for origin in parsed if origin]

        if isinstance(value, (list, tuple)):
            return [origin for origin in value if origin]

        raise ValueError("allowed_origins must be a list or comma-separated string")

    @field_validator("admin_emails", mode="before")
    @classmethod
    def parse_admin_emails(cls, value):
        if value is None or value == "":
            return []

        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return [str(email).strip().lower() for email in parsed if str(email).strip()]
            except json.JSONDecodeError:
                pass

            parsed = [email.strip().lower() for email in value.split(",")]
            return [email for email in parsed if email]

        if isinstance(value, (list, tuple)):
            return [str(email).strip().lower() for email in value if str(email).strip()]

        raise ValueError("admin_emails must be a list or comma-separated string")

    @field_validator("default_language", mode="before")
    @classmethod
    def parse_default_language(cls, value):
        if value is None or value == "":
            return "ar"
        lang = str(value).strip().lower()[:2]
        if lang not in SUPPORTED_LANGUAGES:
            raise ValueError("default_language must be 'ar' or 'en'")
        return lang


settings = Settings()
