"""Payment service configuration from environment."""
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings
from functools import lru_cache

_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=_env_path)


class PaymentSettings(BaseSettings):
    payment_app_name: str = "BMS Payment Service"
    debug: bool = False
    payment_api_prefix: str = "/api/payments"

    # Core service that owns leases and computes the payable amount
    core_service_url: str = "http://localhost:8000"
    core_service_api_prefix: str = "/api/v1"
    core_service_timeout_seconds: float = 10.0

    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    default_currency: str = "usd"

    @field_validator("core_service_url", "stripe_secret_key", "stripe_publishable_key", mode="before")
    @classmethod
    def strip_values(cls, v: str) -> str:
        return (v or "").strip()

    class Config:
        env_file = str(_env_path)
        extra = "ignore"


@lru_cache
def get_payment_settings() -> PaymentSettings:
    return PaymentSettings()
