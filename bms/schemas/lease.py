"""Lease schemas."""
from datetime import date
from decimal import Decimal

from bms.envelope import CamelModel


class LeaseResponse(CamelModel):
    id: int
    tenant_id: int
    manager_id: int
    property_name: str
    monthly_rent: Decimal
    security_deposit: Decimal | None = None
    payment_frequency: str
    start_date: date
    is_active: bool


class LeasePaymentDetailsResponse(CamelModel):
    connection_id: int
    lease_id: str
    tenant_id: int
    tenant_name: str
    tenant_email: str
    tenant_phone: str
    property_name: str
    rent_amount: Decimal
    late_payment_charges: Decimal
    total_payable_amount: Decimal
    security_deposit: Decimal
    payment_frequency: str
