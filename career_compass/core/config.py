import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Dict, Optional

PAID_PLAN_IDS = ("standard", "premium")
BILLING_CYCLES = ("monthly", "yearly")


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Supabase auth (session tokens are HS256 JWTs signed with the project secret)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_JWT_SECRET: Optional[str] = None

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_STANDARD_MONTHLY_PRICE_ID: Optional[str] = None
    STRIPE_STANDARD_YEARLY_PRICE_ID: Optional[str] = None
    STRIPE_PREMIUM_MONTHLY_PRICE_ID: Optional[str] = None
    STRIPE_PREMIUM_YEARLY_PRICE_ID: Optional[str] = None

    # App URLs
    APP_URL: str = "http://localhost:3000"
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    # Analysis retention cleanup
    ANALYSIS_CLEANUP_DRY_RUN: bool = False

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def price_catalog(self) -> Dict[str, Optional[str]]:
        """Map `<plan>_<cycle>` keys to Stripe price ids."""
        return {
            "standard_monthly": self.STRIPE_STANDARD_MONTHLY_PRICE_ID,
            "standard_yearly": self.STRIPE_STANDARD_YEARLY_PRICE_ID,
            "premium_monthly": self.STRIPE_PREMIUM_MONTHLY_PRICE_ID,
            "premium_yearly": self.STRIPE_PREMIUM_YEARLY_PRICE_ID,
        }


settings = Settings()


def require_payment_secret(settings_obj: Optional[Settings] = None) -> str:
    """Return the Stripe secret key or fail hard.

    The application cannot serve any payment route without it, so the
    check runs when the app module is imported.
    """
    cfg = settings_obj or settings
    secret = getattr(cfg, "STRIPE_SECRET_KEY", None)
    if not secret:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured")
    return secret


def missing_price_keys(settings_obj: Optional[Settings] = None) -> list[str]:
    cfg = settings_obj or settings
    catalog = cfg.price_catalog()
    return [
        f"{plan_id}_{cycle}"
        for plan_id in PAID_PLAN_IDS
        for cycle in BILLING_CYCLES
        if not catalog.get(f"{plan_id}_{cycle}")
    ]


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys. The price catalog must
    resolve every paid plan and billing cycle before traffic is served.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("career_compass")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "SUPABASE_JWT_SECRET",
        "STRIPE_WEBHOOK_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    unresolved = missing_price_keys(cfg)
    if unresolved:
        message = f"Price catalog incomplete, no Stripe price for: {', '.join(unresolved)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
