"""Lease between a tenant and the manager of a property."""
from sqlalchemy import Column, Integer, String, Numeric, Boolean, Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from bms.database import Base


class Lease(Base):
    __tablename__ = "leases"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    manager_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    property_name = Column(String(255), nullable=False)
    monthly_rent = Column(Numeric(12, 2), nullable=False)
    security_deposit = Column(Numeric(12, 2), nullable=True)
    payment_frequency = Column(String(20), nullable=False, default="MONTHLY")
    start_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    tenant = relationship("User", foreign_keys=[tenant_id])
    manager = relationship("User", foreign_keys=[manager_id])
