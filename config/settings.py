"""
Configuration settings for the application
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Tier identifiers exposed on the pricing endpoint
PLAN_FREE = "free"
PLAN_PAID = "paid"

FREE_TIER_FEATURES = [
    "Access to public content",
    "Access to free subscriber content",
    "Weekly newsletter",
]

PAID_TIER_FEATURES = [
    "Access to all content",
    "Exclusive workout plans",
    "Meal prep guides",
    "Video tutorials",
    "Direct trainer support",
    "Downloadable PDFs",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Core authentication and security
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")
    jwt_expire_days: int = Field(default=7, alias="JWT_EXPIRE_DAYS")

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_price_id: Optional[str] = Field(default=None, alias="STRIPE_PRICE_ID")

    # Pricing configuration
    paid_tier_price: float = Field(default=29.99, alias="PAID_TIER_PRICE")

    # Infrastructure configuration
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")
    log_dir: str = Field(default="./logs", alias="LOG_DIR")

    # Frontend configuration (checkout redirects and CORS)
    client_url: str = Field(default="http://localhost:3000", alias="CLIENT_URL")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")

    @property
    def is_production(self) -> bool:
        return bool(self.env and self.env.lower() == "production")


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, with keyword overrides by field name."""
    return Settings(**overrides)
