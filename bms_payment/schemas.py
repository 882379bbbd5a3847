"""Payment intent request/response schemas."""
from typing import Any

from pydantic import EmailStr

from bms.envelope import CamelModel


class PaymentIntentRequest(CamelModel):
    lease_id: str | None = None
    # Cents. Ignored whenever lease_id is present, so only checked without one
    amount: Any = None
    currency: str | None = None
    tenant_id: str | None = None
    tenant_name: str | None = None
    tenant_email: EmailStr | None = None
    tenant_phone: str | None = None
    description: str | None = None
    receipt_email: EmailStr | None = None


class PaymentIntentResponse(CamelModel):
    client_secret: str | None = None
    payment_intent_id: str
    status: str
    amount: int
    currency: str


class PublishableKeyResponse(CamelModel):
    publishable_key: str
