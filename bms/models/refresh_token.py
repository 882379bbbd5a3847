"""Persisted refresh tokens: one row per (user, device)."""
import enum

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Enum as SQLEnum, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from bms.database import Base


class DeviceType(str, enum.Enum):
    IOS = "IOS"
    ANDROID = "ANDROID"
    WEB = "WEB"

    @classmethod
    def from_code(cls, code: str | None) -> "DeviceType":
        """Case-insensitive lookup ("ios", "web", ...); unknown or missing codes fall back to ANDROID."""
        for member in cls:
            if (code or "").strip().upper() == member.value:
                return member
        return cls.ANDROID


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"
    __table_args__ = (UniqueConstraint("user_id", "device_id", name="uq_refresh_tokens_user_device"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # sha256 of the signed token; the raw token is never stored
    token_hash = Column(String(64), nullable=False)
    device_id = Column(String(255), nullable=False)
    device_type = Column(SQLEnum(DeviceType), nullable=False, default=DeviceType.ANDROID)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="refresh_tokens")
