# paintdesk/config.py
"""
Central configuration for the PaintDesk API.

Reads environment variables once and validates them. In production a
missing required variable stops the process at import time; elsewhere the
gap surfaces as a 503 from whichever route needs it.
"""
import os
from typing import List, Optional


REQUIRED_VARS = ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY")


class Config:
    """Environment-backed settings"""

    def __init__(self, environ: Optional[dict] = None):
        env = os.environ if environ is None else environ

        self.ENV: str = env.get("ENV", "development").lower()

        # Supabase (service role bypasses RLS on the server)
        self.SUPABASE_URL: str = env.get("SUPABASE_URL", "")
        self.SUPABASE_SERVICE_ROLE_KEY: str = env.get("SUPABASE_SERVICE_ROLE_KEY", "")
        self.SUPABASE_ANON_KEY: str = env.get("SUPABASE_ANON_KEY", "")
        self.SUPABASE_JWT_SECRET: str = env.get("SUPABASE_JWT_SECRET", "")

        # Stripe
        self.STRIPE_SECRET_KEY: Optional[str] = env.get("STRIPE_SECRET_KEY") or None
        self.STRIPE_WEBHOOK_SECRET: Optional[str] = env.get("STRIPE_WEBHOOK_SECRET") or None
        self.STRIPE_PRICE_ID: Optional[str] = env.get("STRIPE_PRICE_ID") or None
        self.STRIPE_CURRENCY: str = env.get("STRIPE_CURRENCY", "usd")

        self.APP_URL: str = env.get("APP_URL", "http://localhost:3000").rstrip("/")

        # Billing / affiliate economics
        self.SUBSCRIPTION_PRICE: float = float(env.get("SUBSCRIPTION_PRICE", "29.00"))
        self.AFFILIATE_COMMISSION_PERCENT: int = int(env.get("AFFILIATE_COMMISSION_PERCENT", "20"))
        self.TRIAL_DAYS: int = int(env.get("TRIAL_DAYS", "14"))
        self.AFFILIATE_DISCOUNT_PERCENT: int = int(env.get("AFFILIATE_DISCOUNT_PERCENT", "10"))
        self.REFERRAL_EXPIRY_DAYS: int = int(env.get("REFERRAL_EXPIRY_DAYS", "30"))

        # Crew invites and estimate follow-ups
        self.INVITE_EXPIRY_DAYS: int = int(env.get("INVITE_EXPIRY_DAYS", "7"))
        self.REMINDER_AFTER_DAYS: int = int(env.get("REMINDER_AFTER_DAYS", "2"))

        # A webhook claim older than this is treated as abandoned
        self.WEBHOOK_CLAIM_LEASE_SECONDS: int = int(env.get("WEBHOOK_CLAIM_LEASE_SECONDS", "300"))

        # Checkout throttling
        self.CHECKOUT_RATE_LIMIT: int = int(env.get("CHECKOUT_RATE_LIMIT", "10"))
        self.CHECKOUT_RATE_WINDOW_SECONDS: int = int(env.get("CHECKOUT_RATE_WINDOW_SECONDS", "60"))

        self.LOG_LEVEL: str = env.get("LOG_LEVEL", "INFO").upper()
        self.CORS_ORIGINS: List[str] = self._load_cors_origins(env.get("CORS_ORIGINS", ""))

        self._validate(env)

    def _load_cors_origins(self, raw: str) -> List[str]:
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        if self.APP_URL not in origins:
            origins.append(self.APP_URL)
        return origins

    def _validate(self, env) -> None:
        """Fail fast in production when required variables are missing"""
        missing = [name for name in REQUIRED_VARS if not env.get(name)]
        if missing and self.is_production:
            raise RuntimeError(
                "Missing required environment variables: " + ", ".join(missing)
            )

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.ENV == "development"

    @property
    def stripe_configured(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)


config = Config()


def get_config() -> Config:
    """FastAPI dependency for the process configuration"""
    return config
