from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(default="development", validation_alias="APP_ENV")

    shopify_shop: str | None = Field(default=None, validation_alias="SHOPIFY_SHOP")
    shopify_admin_token: str | None = Field(default=None, validation_alias="SHOPIFY_ADMIN_TOKEN")
    shopify_api_version: str = Field(default="2024-10", validation_alias="SHOPIFY_API_VERSION")

    admin_password: str | None = Field(default=None, validation_alias="ADMIN_PASSWORD")

    shopify_timeout_connect: float = Field(default=5.0, validation_alias="SHOPIFY_TIMEOUT_CONNECT")
    shopify_timeout_read: float = Field(default=20.0, validation_alias="SHOPIFY_TIMEOUT_READ")
    shopify_timeout_write: float = Field(default=30.0, validation_alias="SHOPIFY_TIMEOUT_WRITE")

    upload_max_bytes: int = Field(default=10 * 1024 * 1024, validation_alias="UPLOAD_MAX_BYTES")
    staged_upload_http_method: str = Field(default="PUT", validation_alias="STAGED_UPLOAD_HTTP_METHOD")
    upload_poll_interval_seconds: float = Field(default=1.0, validation_alias="UPLOAD_POLL_INTERVAL_SECONDS")
    upload_poll_timeout_seconds: float = Field(default=15.0, validation_alias="UPLOAD_POLL_TIMEOUT_SECONDS")

    remove_max_files: int = Field(default=1000, validation_alias="REMOVE_MAX_FILES")
    remove_batch_size: int = Field(default=10, validation_alias="REMOVE_BATCH_SIZE")
    remove_batch_delay_seconds: float = Field(default=0.5, validation_alias="REMOVE_BATCH_DELAY_SECONDS")
    remove_page_size: int = Field(default=50, validation_alias="REMOVE_PAGE_SIZE")
    remove_min_pattern_length: int = Field(default=2, validation_alias="REMOVE_MIN_PATTERN_LENGTH")

    rate_limit_backend: str = Field(default="memory", validation_alias="RATE_LIMIT_BACKEND")
    rate_limit_max_uploads: int = Field(default=50, validation_alias="RATE_LIMIT_MAX_UPLOADS")
    rate_limit_window_seconds: int = Field(default=3600, validation_alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_sweep_seconds: int = Field(default=300, validation_alias="RATE_LIMIT_SWEEP_SECONDS")
    rate_limit_fail_open: bool = Field(default=False, validation_alias="RATE_LIMIT_FAIL_OPEN")
    trust_proxy_headers: bool = Field(default=True, validation_alias="TRUST_PROXY_HEADERS")

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias="REDIS_URL",
    )


settings = Settings()


def _is_prod() -> bool:
    return (settings.app_env or "").strip().lower() in {"prod", "production"}


if _is_prod():
    if (settings.admin_password or "").strip().lower() in {"change-me", "admin", "password", "secret"}:
        raise RuntimeError("ADMIN_PASSWORD must be set to a strong value in production")

    if (settings.rate_limit_backend or "").strip().lower() == "redis":
        if settings.redis_url.strip() == "redis://localhost:6379/0":
            raise RuntimeError("REDIS_URL must be set in production when RATE_LIMIT_BACKEND=redis")

    if bool(settings.rate_limit_fail_open):
        raise RuntimeError("RATE_LIMIT_FAIL_OPEN must be false in production")
