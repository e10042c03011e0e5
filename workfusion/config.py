"""
Environment configuration loader using Pydantic BaseSettings.

This module centralizes all environment configuration for the Workfusion API.
It provides type safety, validation, and automatic loading from environment variables
and .env files. Missing integration credentials are reported at startup rather than
discovered mid-request.
"""

import json
import secrets
from typing import Annotated, Any, List, Optional

import structlog
from pydantic import (
    AliasChoices,
    AnyHttpUrl,
    BeforeValidator,
    Field,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = structlog.get_logger(__name__)


def parse_cors(v: Any) -> List[str]:
    """
    Parse CORS origins from various input formats.

    Supports:
    - Native Python list (from code/tests)
    - JSON array string: '["https://app.example.com"]'
    - Comma-separated string: 'https://a.example.com,https://b.example.com'
    - Empty string or None: returns empty list
    """
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        s = v.strip()
        if not s:
            return []
        if s.startswith("["):
            return json.loads(s)
        return [origin.strip() for origin in s.split(",") if origin.strip()]
    return v


CorsOrigins = Annotated[List[AnyHttpUrl], NoDecode, BeforeValidator(parse_cors)]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Priority order for loading values:
    1. Environment variables (highest priority)
    2. .env file
    3. Default values defined here

    Legacy ``REACT_APP_*`` names used by the dashboard's build are accepted as
    aliases for the provider credentials.
    """

    # ===== Application Settings =====
    app_env: str = Field(
        default="development",
        description="Application environment (development/staging/production/test)",
    )

    app_name: str = Field(
        default="Workfusion API",
        description="Application name for logging and identification",
    )

    app_version: str = Field(default="0.1.0", description="Application version")

    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)"
    )

    app_base_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("app_base_url", "REACT_APP_URL"),
        description="Public base URL used for OAuth callbacks and post-connect redirects",
    )

    cors_origins: CorsOrigins = Field(
        default=["http://localhost:3000"],
        description="List of allowed CORS origins (JSON array or comma-separated in env)",
    )

    # ===== Server Configuration =====
    host: str = Field(default="0.0.0.0", description="Host to bind the server to")

    port: int = Field(
        default=8080, description="Port to bind the server to", ge=1, le=65535
    )

    # ===== Identity (Firebase) =====
    firebase_service_account_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "firebase_service_account_key", "FIREBASE_SERVICE_ACCOUNT"
        ),
        description="Firebase service account JSON used for ID token verification and Firestore",
    )

    firebase_project_id: Optional[str] = Field(
        default=None, description="Firebase project ID (overrides the service account's)"
    )

    # ===== Credential Store =====
    credential_store_backend: str = Field(
        default="sql",
        description="Where integration credentials live: 'sql' or 'firestore'",
    )

    database_url: Optional[str] = Field(
        default="sqlite+aiosqlite:///./workfusion.db",
        validation_alias=AliasChoices("database_url", "DB_URL"),
        description="SQLAlchemy URL (postgresql://... or sqlite+aiosqlite://...)",
    )

    database_pool_size: int = Field(
        default=10, description="Database connection pool size", ge=1, le=100
    )

    firestore_collection: str = Field(
        default="integrations",
        description="Firestore collection holding one document per user",
    )

    store_retry_max_attempts: int = Field(
        default=3,
        description="Maximum attempts for a credential store read or write",
        ge=1,
        le=10,
    )

    store_retry_base_delay_ms: int = Field(
        default=200,
        description="Base delay in milliseconds for store retry backoff",
        ge=1,
        le=5000,
    )

    store_retry_max_delay_ms: int = Field(
        default=2000,
        description="Maximum delay in milliseconds between store retries",
        ge=1,
        le=60000,
    )

    # ===== Plaid =====
    plaid_client_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("plaid_client_id", "REACT_APP_PLAID_CLIENT_ID"),
        description="Plaid client ID",
    )

    plaid_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("plaid_secret", "REACT_APP_PLAID_SECRET"),
        description="Plaid secret for the selected environment",
    )

    plaid_env: str = Field(
        default="sandbox",
        description="Plaid environment (sandbox/development/production)",
    )

    plaid_client_name: str = Field(
        default="Workfusion App", description="Client name shown in Plaid Link"
    )

    plaid_redirect_uri: Optional[str] = Field(
        default=None, description="OAuth redirect URI registered with Plaid Link"
    )

    # ===== PayPal =====
    paypal_client_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("paypal_client_id", "REACT_APP_PAYPAL_CLIENT_ID"),
        description="PayPal OAuth client ID",
    )

    paypal_client_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("paypal_client_secret", "REACT_APP_PAYPAL_SECRET"),
        description="PayPal OAuth client secret",
    )

    paypal_env: str = Field(default="live", description="PayPal environment (live/sandbox)")

    # ===== Xero =====
    xero_client_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("xero_client_id", "REACT_APP_XERO_CLIENT_ID"),
        description="Xero OAuth client ID",
    )

    xero_client_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "xero_client_secret", "REACT_APP_XERO_CLIENT_SECRET"
        ),
        description="Xero OAuth client secret",
    )

    # ===== Stripe =====
    stripe_client_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("stripe_client_id", "REACT_APP_STRIPE_CLIENT_ID"),
        description="Stripe Connect client ID (ca_...)",
    )

    stripe_secret_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("stripe_secret_key", "REACT_APP_STRIPE_SECRET_KEY"),
        description="Stripe platform secret key; the Connect client secret",
    )

    # ===== OpenAI =====
    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("openai_api_key", "REACT_APP_OPENAI_API_KEY"),
        description="OpenAI API key for AI insights",
    )

    openai_model: str = Field(
        default="gpt-3.5-turbo", description="Chat completion model for insights"
    )

    openai_max_tokens: int = Field(
        default=200, description="Max tokens for insight responses", ge=1, le=4096
    )

    # ===== OAuth Token Refresh =====
    token_refresh_skew_seconds: int = Field(
        default=300,
        description="Lookahead window before expiry in which a token counts as stale",
        ge=0,
        le=3600,
    )

    oauth_state_ttl_seconds: int = Field(
        default=600,
        description="Lifetime of the signed OAuth state parameter",
        ge=60,
        le=3600,
    )

    # ===== Outbound HTTP =====
    provider_timeout_seconds: float = Field(
        default=20.0,
        description="Per-call timeout for provider API requests",
        ge=1,
        le=120,
    )

    provider_retry_max_attempts: int = Field(
        default=2,
        description="Attempts for idempotent provider calls that fail at the network level",
        ge=1,
        le=5,
    )

    # ===== Security & Encryption =====
    fernet_key: Optional[str] = Field(
        default=None,
        validate_default=True,
        description="Fernet encryption key for token storage (auto-generated if not provided)",
    )

    jwt_secret: Optional[str] = Field(
        default=None,
        validate_default=True,
        description="Secret for signing OAuth state tokens (auto-generated if not provided)",
    )

    # ===== Validators =====

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, origins: List[AnyHttpUrl], info) -> List[AnyHttpUrl]:
        """Prevent wildcard origins in production."""
        app_env = info.data.get("app_env", "development")
        if app_env == "production":
            for origin in origins:
                if str(origin) == "*":
                    raise ValueError("CORS wildcard (*) not allowed in production")
        return origins

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Ensure app environment is valid."""
        valid_envs = ["development", "staging", "production", "test"]
        v_lower = v.lower()
        if v_lower not in valid_envs:
            raise ValueError(f"Invalid app_env: {v}. Must be one of {valid_envs}")
        return v_lower

    @field_validator("credential_store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ("sql", "firestore"):
            raise ValueError(
                f"Invalid credential_store_backend: {v}. Must be 'sql' or 'firestore'"
            )
        return v_lower

    @field_validator("plaid_env")
    @classmethod
    def validate_plaid_env(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ("sandbox", "development", "production"):
            raise ValueError(f"Invalid plaid_env: {v}")
        return v_lower

    @field_validator("paypal_env")
    @classmethod
    def validate_paypal_env(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ("live", "sandbox"):
            raise ValueError(f"Invalid paypal_env: {v}. Must be 'live' or 'sandbox'")
        return v_lower

    @field_validator("app_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("fernet_key", mode="before")
    @classmethod
    def generate_fernet_key_if_needed(cls, v: Optional[str]) -> str:
        """Generate Fernet key if not provided."""
        if v is None or v == "":
            from cryptography.fernet import Fernet

            key = Fernet.generate_key().decode()
            logger.warning(
                "Generated new Fernet key - save this in .env for persistence"
            )
            return key
        return v

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def generate_jwt_secret_if_needed(cls, v: Optional[str]) -> str:
        """Generate JWT secret if not provided."""
        if v is None or v == "":
            secret = secrets.token_urlsafe(32)
            logger.warning(
                "Generated new JWT secret - save this in .env for persistence"
            )
            return secret
        return v

    # ===== Pydantic Config =====

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    def missing_required_settings(self) -> List[str]:
        """
        Return environment variable names for required values that are absent.

        The service still starts without them (so unrelated integrations keep
        working); callers log the list once at startup.
        """
        required = {
            "FIREBASE_SERVICE_ACCOUNT_KEY": self.firebase_service_account_key,
            "PLAID_CLIENT_ID": self.plaid_client_id,
            "PLAID_SECRET": self.plaid_secret,
            "PAYPAL_CLIENT_ID": self.paypal_client_id,
            "PAYPAL_CLIENT_SECRET": self.paypal_client_secret,
            "XERO_CLIENT_ID": self.xero_client_id,
            "XERO_CLIENT_SECRET": self.xero_client_secret,
            "STRIPE_CLIENT_ID": self.stripe_client_id,
            "STRIPE_SECRET_KEY": self.stripe_secret_key,
            "OPENAI_API_KEY": self.openai_api_key,
            "APP_BASE_URL": self.app_base_url,
        }
        if self.credential_store_backend == "sql":
            required["DATABASE_URL"] = self.database_url
        return [name for name, value in required.items() if not value]

    def log_config(self) -> None:
        """Log configuration (with secrets masked)."""
        config_dict = self.model_dump()

        sensitive_fields = [
            "firebase_service_account_key",
            "plaid_secret",
            "paypal_client_secret",
            "xero_client_secret",
            "stripe_secret_key",
            "openai_api_key",
            "fernet_key",
            "jwt_secret",
            "database_url",
        ]

        for field in sensitive_fields:
            if field in config_dict and config_dict[field]:
                value = str(config_dict[field])
                if len(value) > 8:
                    config_dict[field] = f"{value[:4]}...{value[-4:]}"
                else:
                    config_dict[field] = "***"

        logger.info("Configuration loaded", **config_dict)

    def validate_required_for_production(self) -> None:
        """Additional validation for production environment."""
        if self.app_env == "production":
            errors = []

            missing = self.missing_required_settings()
            if missing:
                errors.append(f"Missing required settings: {', '.join(missing)}")

            if self.credential_store_backend == "sql" and str(
                self.database_url
            ).startswith("sqlite"):
                errors.append("SQLite credential store is not supported in production")

            if self.log_level == "DEBUG":
                logger.warning(
                    "DEBUG log level in production - consider using INFO or higher"
                )

            if errors:
                raise ValueError(
                    f"Production configuration errors: {'; '.join(errors)}"
                )


# ===== Global Settings Instance =====

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton pattern).

    This ensures we only load and validate settings once during application startup.
    """
    global _settings
    if _settings is None:
        try:
            _settings = Settings()
            logger.info(
                "Settings loaded successfully",
                app_env=_settings.app_env,
                app_version=_settings.app_version,
            )
        except ValidationError as e:
            logger.error("Failed to load settings", errors=e.errors())
            raise

    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None
