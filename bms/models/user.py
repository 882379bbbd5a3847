"""User identity, role and account state."""
import enum

from sqlalchemy import Column, Integer, String, Enum as SQLEnum, DateTime, Boolean
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func

from bms.database import Base


class UserRole(str, enum.Enum):
    TENANT = "TENANT"
    PROPERTY_MANAGER = "PROPERTY_MANAGER"
    BUILDING_OWNER = "BUILDING_OWNER"


class AccountStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    DEACTIVATED = "DEACTIVATED"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(50), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False)
    account_status = Column(SQLEnum(AccountStatus), nullable=False, default=AccountStatus.PENDING)

    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    email_verified = Column(Boolean, default=False, nullable=False)
    email_verification_code = Column(String(10), nullable=True)
    email_verification_expires_at = Column(DateTime(timezone=True), nullable=True)

    phone_verified = Column(Boolean, default=False, nullable=False)
    phone_verification_code = Column(String(10), nullable=True)
    phone_verification_expires_at = Column(DateTime(timezone=True), nullable=True)

    password_reset_code = Column(String(10), nullable=True)
    password_reset_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Lockout bookkeeping; only the account guard writes these
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    account_locked_until = Column(DateTime(timezone=True), nullable=True)
    last_login = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")

    @validates("role")
    def _role_is_immutable(self, key, value):
        value = UserRole(value)
        if self.role is not None and UserRole(self.role) != value:
            raise ValueError("User role cannot be changed after creation")
        return value

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)
