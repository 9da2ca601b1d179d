"""
Runtime configuration

Everything is read from the environment once at startup. Nothing else in the
app calls os.getenv directly.
"""
import os
from typing import List, Optional

from pydantic import BaseModel, Field

RECAPTCHA_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: str = "storefront"
    transaction_timeout_ms: int = Field(10000, gt=0)
    recaptcha_secret_key: Optional[str] = None
    recaptcha_verify_url: str = RECAPTCHA_VERIFY_URL
    admin_token: Optional[str] = None
    cors_origins: List[str] = ["*"]
    port: int = 8000


def load_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS", "*")
    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        database_name=os.getenv("DATABASE_NAME", "storefront"),
        transaction_timeout_ms=int(os.getenv("TRANSACTION_TIMEOUT_MS", 10000)),
        recaptcha_secret_key=os.getenv("RECAPTCHA_SECRET_KEY") or None,
        recaptcha_verify_url=os.getenv("RECAPTCHA_VERIFY_URL", RECAPTCHA_VERIFY_URL),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        port=int(os.getenv("PORT", 8000)),
    )
