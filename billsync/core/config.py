"""Service settings, read from the environment.

Provider secrets and plan mappings are per deployment; everything else has a default
that works for local development against a Postgres on localhost.
"""

import json
from typing import Optional

from pydantic import PostgresDsn, ValidationInfo, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings of the webhook service.

    Attributes:
    ----------
        PROJECT_NAME (str): The name of the project.
        ENVIRONMENT (str): The deployment environment (local, dev, test, prd).
        LOCAL_DEVELOPMENT (bool): Whether the service runs locally (text logs instead of JSON).
        DEBUG (bool): Whether debug mode is enabled.
        LOG_LEVEL (str): The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        POSTGRES_HOST (str): The PostgreSQL server hostname.
        POSTGRES_DB (str): The PostgreSQL database name.
        POSTGRES_USER (str): The PostgreSQL username.
        POSTGRES_PASSWORD (str): The PostgreSQL password.
        SQLALCHEMY_ASYNC_DATABASE_URI (Optional[str]): The SQLAlchemy async database URI.
        RUN_ALEMBIC_MIGRATIONS (bool): Whether to run the alembic migrations on startup.
        CREATE_TABLES_ON_STARTUP (bool): Whether to create missing tables on startup.
        STRIPE_WEBHOOK_SECRET (Optional[str]): Signing secret of the Stripe webhook endpoint.
        LEMONSQUEEZY_WEBHOOK_SECRET (Optional[str]): Signing secret of the LemonSqueezy webhook.
        STRIPE_PRICE_TIERS (dict[str, str]): Stripe price ID to tier mapping.
        LEMONSQUEEZY_VARIANT_TIERS (dict[str, str]): LemonSqueezy variant ID to tier mapping.
        WEBHOOK_TOLERANCE_SECONDS (int): Max age of a signed Stripe payload before it is
            treated as a replay.
        WEBHOOK_PROCESSING_TIMEOUT_SECONDS (float): Deadline for processing a single delivery.
        SUBSCRIPTION_CAS_MAX_RETRIES (int): Compare-and-swap attempts before giving up.
        SUBSCRIPTION_CAS_BACKOFF_SECONDS (float): Base backoff between CAS attempts.
        DEFAULT_LOCALE (str): Locale assumed for accounts without one.
        INTERNAL_API_KEY (Optional[str]): Key required by the read API when set.
    """

    PROJECT_NAME: str = "billsync"
    ENVIRONMENT: str = "local"
    LOCAL_DEVELOPMENT: bool = False

    # Debug configuration
    DEBUG: bool = False

    # Logging configuration
    LOG_LEVEL: str = "INFO"

    POSTGRES_HOST: str = "localhost"
    POSTGRES_DB: str = "billsync"
    POSTGRES_USER: str = "billsync"
    POSTGRES_PASSWORD: str = ""
    SQLALCHEMY_ASYNC_DATABASE_URI: Optional[str] = None

    RUN_ALEMBIC_MIGRATIONS: bool = False
    CREATE_TABLES_ON_STARTUP: bool = False

    # Provider secrets
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    LEMONSQUEEZY_WEBHOOK_SECRET: Optional[str] = None

    # Plan mapping, used when the event carries no explicit tier in its metadata
    STRIPE_PRICE_TIERS: dict[str, str] = {}
    LEMONSQUEEZY_VARIANT_TIERS: dict[str, str] = {}

    # Webhook processing
    WEBHOOK_TOLERANCE_SECONDS: int = 300
    WEBHOOK_PROCESSING_TIMEOUT_SECONDS: float = 8.0
    SUBSCRIPTION_CAS_MAX_RETRIES: int = 5
    SUBSCRIPTION_CAS_BACKOFF_SECONDS: float = 0.05

    DEFAULT_LOCALE: str = "en"
    INTERNAL_API_KEY: Optional[str] = None

    @field_validator("STRIPE_PRICE_TIERS", "LEMONSQUEEZY_VARIANT_TIERS", mode="before")
    def parse_tier_mapping(cls, v: Optional[str | dict]) -> dict[str, str]:
        """Normalize a provider plan mapping to string keys and values.

        Environment values arrive as JSON objects, e.g. `{"price_123": "pro"}`.

        Args:
            v: The mapping as dict or JSON object string.

        Returns:
            dict[str, str]: Provider plan identifier to tier name.
        """
        if v is None or v == "":
            return {}
        if isinstance(v, str):
            v = json.loads(v)
        return {str(key): str(value) for key, value in v.items()}

    @field_validator("SUBSCRIPTION_CAS_MAX_RETRIES")
    def validate_cas_retries(cls, v: int) -> int:
        """At least one compare-and-swap attempt is required."""
        if v < 1:
            raise ValueError("SUBSCRIPTION_CAS_MAX_RETRIES must be at least 1")
        return v

    @field_validator("SQLALCHEMY_ASYNC_DATABASE_URI", mode="before")
    def assemble_db_connection(cls, v: Optional[str], info: ValidationInfo) -> str:
        """Build the SQLAlchemy database URI.

        Args:
        ----
            v (Optional[str]): The value of the SQLALCHEMY_ASYNC_DATABASE_URI setting.
            info (ValidationInfo): The validation context containing all field values.

        Returns:
        -------
            str: The assembled SQLAlchemy async database URI.

        """
        if isinstance(v, str) and v:
            return v

        return str(
            PostgresDsn.build(
                scheme="postgresql+asyncpg",
                username=info.data.get("POSTGRES_USER"),
                password=info.data.get("POSTGRES_PASSWORD") or None,
                host=info.data.get("POSTGRES_HOST", "localhost"),
                path=f"{info.data.get('POSTGRES_DB') or ''}",
            )
        )

    @property
    def is_sqlite(self) -> bool:
        """Whether the configured database is SQLite (used by tests and local runs).

        Returns:
            bool: True for sqlite URIs.
        """
        return str(self.SQLALCHEMY_ASYNC_DATABASE_URI).startswith("sqlite")


settings = Settings()
