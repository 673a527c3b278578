import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field
from typing import List, Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Generative-text service
    GENERATION_PROVIDER: str = "gemini"  # gemini | groq
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.1-8b-instant"
    GENERATION_TIMEOUT_SECONDS: float = 60.0

    # Identity provider (Supabase auth)
    IDENTITY_BACKEND: str = "auto"  # auto | supabase | memory
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    SUPABASE_JWT_SECRET: Optional[str] = None
    LOCAL_AUTH_SECRET: Optional[str] = None  # signs tokens of the in-memory provider
    IDENTITY_TIMEOUT_SECONDS: float = 10.0

    # Datastore
    DATABASE_URL: Optional[str] = None
    HISTORY_BACKEND: str = "auto"  # auto | sql | memory
    HISTORY_AWAIT_WRITES: bool = False
    HISTORY_MAX_PAGE_SIZE: int = Field(default=100, ge=1, le=100)

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://localhost:6379/0"
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_GENERAL_MAX: int = 100
    RATE_LIMIT_AUTH_MAX: int = 10
    RATE_LIMIT_PLAN_MAX: int = 10
    TRUST_PROXY_HOPS: int = 0  # only set when every request arrives through that many trusted proxies

    # HTTP surface
    CORS_ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    STATIC_DIR: str = "public"
    MAX_BODY_BYTES: int = 10 * 1024 * 1024

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ALLOWED_ORIGINS.split(",") if origin.strip()]


settings = Settings()


def missing_credentials(settings_obj: Optional[Settings] = None) -> List[str]:
    """Return the names of external-service credentials that are not configured."""
    cfg = settings_obj or settings
    provider = (getattr(cfg, "GENERATION_PROVIDER", "gemini") or "gemini").lower()
    required_keys = [
        "GROQ_API_KEY" if provider == "groq" else "GEMINI_API_KEY",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "DATABASE_URL",
    ]
    return [key for key in required_keys if not getattr(cfg, key, None)]


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode (CONFIG_STRICT or ENV=production) raise RuntimeError;
    otherwise emit one degraded-mode warning. Secrets are not logged, only
    missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("migration_expert")
    if strict is None:
        strict = bool(getattr(cfg, "CONFIG_STRICT", False)) or (getattr(cfg, "ENV", "") or "").lower() == "production"

    missing = missing_credentials(cfg)
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict:
            raise RuntimeError(message)
        log.warning(f"{message}; running in degraded mode with in-memory fallbacks")
        return False

    return True
