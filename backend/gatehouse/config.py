"""
Gatehouse Backend: Application Configuration
============================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Type-safe environment variable loading with validation on startup.
       A missing signing secret must stop the process, not degrade it.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by the application factory and by tests that build apps
       with overridden values.
When:  Loaded once at module import time; validated by create_app() before
       any service is built, and again when the CredentialService is
       constructed.
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from gatehouse.exceptions import ConfigurationError

# Secrets that ship in example .env files and must never reach production
PLACEHOLDER_SECRETS = {"secret", "development-secret", "change-me", "your_jwt_secret_here"}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Production deployments MUST set JWT_SECRET and CORS_ORIGINS.
    Attributes are grouped by concern for readability.
    """

    # ── Environment ───────────────────────────────────────────────────────
    # What: Selects development vs production security posture
    # Affects: CSP strictness, HSTS, CORS permissiveness, Secure cookies
    environment: str = Field(default="development")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Restricts environment to the three known deployment modes."""
        lower = v.lower()
        if lower not in {"development", "production", "test"}:
            raise ValueError(f"Invalid environment '{v}'. Must be development, production or test")
        return lower

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    # ── Tokens & Credentials ──────────────────────────────────────────────
    # What: HMAC key for signing bearer tokens
    # Required: YES. The app refuses to start without it.
    jwt_secret: str = Field(default="", description="HMAC-SHA256 signing secret for bearer tokens")

    # What: Bearer token lifetime (default 24 hours)
    token_ttl_seconds: int = Field(default=86_400, ge=60, le=2_592_000)

    # What: PBKDF2 work factor for password hashing
    # Trade-off: Higher = slower brute force, but slower logins too
    password_hash_iterations: int = Field(default=210_000, ge=1_000, le=5_000_000)

    # ── CSRF ──────────────────────────────────────────────────────────────
    csrf_ttl_seconds: int = Field(default=86_400, ge=60, le=604_800)
    csrf_max_entries: int = Field(default=100_000, ge=100)

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: Comma-separated URLs. Outside production any origin is echoed.
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:3001,http://127.0.0.1:3000"
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # General API limit per client IP
    rate_limit_requests: int = Field(default=100, ge=1, le=100_000)
    rate_limit_window: int = Field(default=900, ge=1, le=86_400)  # seconds

    # Login/registration limit per client IP + path
    auth_rate_limit_requests: int = Field(default=5, ge=1, le=1_000)
    auth_rate_limit_window: int = Field(default=900, ge=1, le=86_400)  # seconds

    rate_limit_max_buckets: int = Field(default=100_000, ge=100)

    # What: Honour X-Forwarded-For when computing the caller IP
    # Only enable behind a proxy that overwrites the header
    trust_forwarded_for: bool = Field(default=False)

    # ── Housekeeping ──────────────────────────────────────────────────────
    # What: Interval of the janitor task that evicts expired CSRF entries
    # and rate-limit buckets
    sweep_interval_seconds: int = Field(default=300, ge=1, le=86_400)

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that security-critical settings are configured.
        When:  Called by create_app() before any service is built.
        How:   Collects every problem, then raises ConfigurationError once.
        """
        errors = []
        if not self.jwt_secret:
            errors.append("JWT_SECRET is not set. Generate one with: openssl rand -hex 32")
        elif self.is_production:
            if self.jwt_secret.lower() in PLACEHOLDER_SECRETS:
                errors.append("JWT_SECRET is a placeholder value")
            elif len(self.jwt_secret) < 32:
                errors.append("JWT_SECRET must be at least 32 characters in production")
        if self.is_production and "*" in self.cors_origins_list:
            errors.append("CORS_ORIGINS must list explicit origins in production")
        if errors:
            raise ConfigurationError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Singleton instance used by the module-level app
settings = Settings()
