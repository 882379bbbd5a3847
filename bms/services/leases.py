"""Lease lookups and the authoritative payable amount for a lease."""
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.orm import Session

from bms.models.lease import Lease
from bms.models.user import User, UserRole
from bms.services.errors import LeaseAccessDenied, LeaseNotFound

LATE_FEE_RATE = Decimal("0.10")
# Rent is due on the 1st; after the 5th the late fee applies
LATE_FEE_GRACE_DAY = 5

_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class LeasePaymentDetails:
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


def formatted_lease_id(lease: Lease) -> str:
    """Human-facing reference such as LEASE-2025-002A."""
    return f"LEASE-{lease.start_date.year}-{lease.id:04X}"


def late_payment_charges(lease: Lease, today: date) -> Decimal:
    if lease.start_date > today or today.day <= LATE_FEE_GRACE_DAY:
        return Decimal("0.00")
    return (Decimal(lease.monthly_rent) * LATE_FEE_RATE).quantize(_CENTS, rounding=ROUND_HALF_UP)


def get_lease_for_user(db: Session, user: User, lease_id: int) -> Lease:
    lease = db.query(Lease).filter(Lease.id == lease_id).first()
    if lease is None:
        raise LeaseNotFound(lease_id)
    if user.id not in (lease.tenant_id, lease.manager_id):
        raise LeaseAccessDenied()
    return lease


def get_lease_payment_details(db: Session, user: User, lease_id: int, today: date | None = None) -> LeasePaymentDetails:
    lease = get_lease_for_user(db, user, lease_id)
    today = today or date.today()
    rent = Decimal(lease.monthly_rent).quantize(_CENTS)
    late = late_payment_charges(lease, today)
    tenant = lease.tenant
    return LeasePaymentDetails(
        connection_id=lease.id,
        lease_id=formatted_lease_id(lease),
        tenant_id=tenant.id,
        tenant_name=tenant.full_name,
        tenant_email=tenant.email,
        tenant_phone=tenant.phone,
        property_name=lease.property_name,
        rent_amount=rent,
        late_payment_charges=late,
        total_payable_amount=rent + late,
        security_deposit=Decimal(lease.security_deposit or 0).quantize(_CENTS),
        payment_frequency=lease.payment_frequency,
    )


def list_leases(db: Session, user: User) -> list[Lease]:
    q = db.query(Lease)
    role = UserRole(user.role)
    if role == UserRole.TENANT:
        q = q.filter(Lease.tenant_id == user.id)
    elif role == UserRole.PROPERTY_MANAGER:
        q = q.filter(Lease.manager_id == user.id)
    # Building owners see every lease
    return q.order_by(Lease.start_date.desc()).all()
