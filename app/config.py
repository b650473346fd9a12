from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from app.domain.errors import ConfigurationError

LIVE_TOKEN_PREFIX = "APP_USR-"
TEST_TOKEN_PREFIX = "TEST-"


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    # General
    api_bearer_token: str = "testtoken"
    api_basic_username: str = "admin"
    api_basic_password: str = "admin"

    # Mercado Pago config
    mp_mode: str = "test"
    mp_access_token_test: str = ""
    mp_access_token: str = ""
    mp_api_base: str = "https://api.mercadopago.com"
    mp_timeout_seconds: float = 15.0
    # Enables x-signature verification on inbound notifications when set
    mp_webhook_secret: str = ""
    log_provider_events: bool = False

    # Reconciliation
    dedup_ttl_seconds: int = 300
    credit_max_attempts: int = 5
    legacy_reference_prefixes: str = "rbc"

    # Database (PostgreSQL)
    db_host: str = ""
    db_port: int = 5432
    db_user: str = ""
    db_password: str = ""
    db_name: str = ""
    db_schema: str = "ledger"

    @property
    def db_enabled(self) -> bool:
        return bool(self.db_host and self.db_user and self.db_name)

    @property
    def db_dsn(self) -> str:
        if not self.db_enabled:
            return ""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def resolved_mode(self) -> str:
        raw = (self.mp_mode or "").strip().lower()
        if raw in {"prod", "production", "live"}:
            return "prod"
        return "test"

    @property
    def reference_prefixes(self) -> tuple[str, ...]:
        return tuple(p.strip() for p in self.legacy_reference_prefixes.split(",") if p.strip())

    def mode_token(self) -> str:
        """Return the access token for the active mode without validating it."""
        if self.resolved_mode == "prod":
            return (self.mp_access_token or "").strip()
        return (self.mp_access_token_test or "").strip()

    def validate_mode(self) -> None:
        """Refuse a token that belongs to the other environment."""
        mode = self.resolved_mode
        token = self.mode_token()
        if mode == "test" and token.startswith(LIVE_TOKEN_PREFIX):
            raise ConfigurationError(
                f"MP_MODE=test but the access token is live ({LIVE_TOKEN_PREFIX}); use TEST- credentials"
            )
        if mode == "prod" and token.startswith(TEST_TOKEN_PREFIX):
            raise ConfigurationError(
                f"MP_MODE=prod but the access token is a {TEST_TOKEN_PREFIX} token; use {LIVE_TOKEN_PREFIX} credentials"
            )

    def access_token(self) -> str:
        self.validate_mode()
        token = self.mode_token()
        if not token:
            raise ConfigurationError(f"Mercado Pago access token not configured for mode {self.resolved_mode}")
        return token

    # Pydantic v2 settings config
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


def mask_token(token: str) -> str:
    """Keep the environment prefix and last four characters of a secret."""
    if not token:
        return ""
    head, sep, _ = token.partition("-")
    prefix = f"{head}{sep}" if sep and len(head) < len(token) - 4 else ""
    tail = token[-4:] if len(token) > 8 else ""
    return f"{prefix}****{tail}"


settings = Settings()
