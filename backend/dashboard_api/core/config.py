from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Ignore unknown env vars so the frontend's .env (NEXT_PUBLIC_*, Supabase keys)
    # can be shared without breaking startup.
    model_config = SettingsConfigDict(env_file=(".env", "../.env"), case_sensitive=True, extra="ignore")

    PROJECT_NAME: str = "Dashboard Metrics API"
    ENVIRONMENT: str = "development"
    API_V1_STR: str = "/api/v1"
    ENABLE_API_DOCS: bool = False

    BACKEND_CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["*"])
    ALLOWED_HOSTS: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1", "testserver"])

    # External analytics backend (sessions/leads/clients counts).
    ANALYTICS_API_URL: str = "http://localhost:8080"
    UPSTREAM_TIMEOUT_SECONDS: float = 10.0
    UPSTREAM_MAX_RETRIES: int = 2
    UPSTREAM_RETRY_BACKOFF_SECONDS: float = 0.5
    # Longer ranges fall back to from/to so the upstream URL stays short.
    PERIODS_PARAM_MAX_DAYS: int = 60

    DEFAULT_FUNNEL: str = "session_to_lead"
    MONTH_LOCALE: str = "en"

    # Supabase issues the access tokens; we only verify them.
    REQUIRE_AUTH: bool = False
    SUPABASE_URL: str = ""
    SUPABASE_JWT_SECRET: str = ""
    SUPABASE_JWT_AUDIENCE: str = "authenticated"
    SUPABASE_JWT_ALGORITHM: str = "HS256"

    RATE_LIMIT_DEFAULT: str = "120/minute"

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    @model_validator(mode="after")
    def _guards(self):
        if self.UPSTREAM_MAX_RETRIES < 0 or self.UPSTREAM_MAX_RETRIES > 2:
            raise ValueError("UPSTREAM_MAX_RETRIES must be between 0 and 2")
        if self.UPSTREAM_TIMEOUT_SECONDS <= 0:
            raise ValueError("UPSTREAM_TIMEOUT_SECONDS must be positive")
        if self.DEFAULT_FUNNEL not in {"session_to_lead", "lead_to_client"}:
            raise ValueError("DEFAULT_FUNNEL must be session_to_lead or lead_to_client")
        if self.REQUIRE_AUTH and not self.SUPABASE_JWT_SECRET:
            raise ValueError("SUPABASE_JWT_SECRET is required when REQUIRE_AUTH is enabled")
        if self.ENVIRONMENT.lower() == "production":
            if self.ENABLE_API_DOCS:
                raise ValueError("ENABLE_API_DOCS must be false in production")
            if any(h == "*" for h in self.ALLOWED_HOSTS):
                raise ValueError('ALLOWED_HOSTS must not contain "*" in production')
        elif not self.ALLOWED_HOSTS:
            self.ALLOWED_HOSTS = ["*"]
        return self

    @property
    def ANALYTICS_BASE_URL(self) -> str:
        return self.ANALYTICS_API_URL.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()
