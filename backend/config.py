# backend/config.py
from pydantic_settings import BaseSettings
from typing import ClassVar, Optional
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite:///./database_bakery.db"
    LOG_LEVEL: str = "INFO"

    # PayMongo (GCash payment links)
    PAYMONGO_API_URL: str = "https://api.paymongo.com"
    PAYMONGO_SECRET_KEY: str = "sk_test_change_me"
    PAYMONGO_WEBHOOK_SECRET: str = "whsk_change_me"
    VERIFY_WEBHOOK_SIGNATURE: bool = True
    FRONTEND_URL: str = "http://localhost:5173"

    # Public backend URL used for processor callbacks (webhook)
    BACKEND_URL: str = "http://127.0.0.1:8000"

    # Amounts are in minor units (centavos); the processor rejects anything below PHP 20.00
    PAYMENT_CURRENCY: str = "PHP"
    PAYMENT_MIN_AMOUNT: int = 2000
    PAYMENT_TIMEOUT_SECONDS: float = 10.0
    PAYMENT_MAX_RETRIES: int = 3
    PAYMENT_RETRY_BACKOFF_SECONDS: float = 0.5

    # Client polling contract returned with every payment intent
    RECONCILIATION_TOKEN_TTL_MINUTES: int = 60
    POLL_INTERVAL_SECONDS: int = 5
    MAX_POLLS: int = 24

    # Abandoned checkout reaper
    ABANDONED_ORDER_TIMEOUT_MINUTES: int = 30
    REAPER_INTERVAL_SECONDS: int = 600
    REAPER_ENABLED: bool = True

    # Optional outbound webhook for order/payment events
    NOTIFY_WEBHOOK_URL: Optional[str] = None

    class Config:
        env_file: ClassVar[str] = str(env_path)

settings = Settings()
