"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Shown in calendar event descriptions ("Created by ...")
    APP_NAME: str = "Booking Platform"

    # Proxy/Load Balancer Settings
    # Set to True when running behind nginx/Cloudflare to trust X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = False

    # Database
    DATABASE_URL: str

    # Redis (rate limiting storage)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Google OAuth (per-org calendar connection)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_CALENDAR_REDIRECT_URI: str = (
        "http://localhost:8000/integrations/google-calendar/callback"
    )

    # Frontend (for safe redirects after OAuth)
    FRONTEND_URL: str = "http://localhost:3000"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/* endpoints

    # Signs OAuth state values (falls back to INTERNAL_SECRET if empty)
    OAUTH_STATE_SECRET: str = ""
    OAUTH_STATE_MAX_AGE_SECONDS: int = 600

    # Token Encryption (OAuth tokens, webhook secrets)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # OpenTelemetry tracing (optional)
    OTEL_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "booking-sync-api"
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""
    OTEL_EXPORTER_OTLP_HEADERS: str = ""
    OTEL_SAMPLE_RATE: float = 0.1

    # Rate Limiting (requests per minute)
    RATE_LIMIT_VOICE_WEBHOOK: int = 180
    RATE_LIMIT_API: int = 60

    # Voice webhooks
    # auto: enforce signatures only when ENV == "production"
    # enforce: always reject bad signatures
    # log_only: accept and log mismatches
    VOICE_SIGNATURE_ENFORCEMENT: str = "auto"
    VOICE_SIGNATURE_MAX_SKEW_SECONDS: int = 300
    VOICE_WEBHOOK_MAX_PAYLOAD_BYTES: int = 1_000_000
    WEBHOOK_SECRET_GRACE_SECONDS: int = 86400
    DEFAULT_PHONE_COUNTRY_CODE: str = "64"

    # Calendar sync
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 15.0
    # Upper bound for a push run from synchronous booking code (refresh + write)
    CALENDAR_PUSH_TIMEOUT_SECONDS: float = 30.0
    CALENDAR_SYNC_MAX_CONCURRENCY: int = 4
    CALENDAR_PULL_MAX_EVENTS: int = 2500
    CALENDAR_TOKEN_REFRESH_SKEW_SECONDS: int = 120
    PROVENANCE_SOURCE: str = "booking-platform"
    DEFAULT_ORG_TIMEZONE: str = "Pacific/Auckland"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def oauth_state_secret(self) -> str:
        return self.OAUTH_STATE_SECRET or self.INTERNAL_SECRET

    @property
    def voice_signature_enforced(self) -> bool:
        """Whether a bad voice webhook signature is rejected."""
        mode = self.VOICE_SIGNATURE_ENFORCEMENT.strip().lower()
        if mode == "enforce":
            return True
        if mode == "log_only":
            return False
        return self.ENV == "production"


settings = Settings()
