"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table.
"""
from bms.models.user import User, UserRole, AccountStatus
from bms.models.refresh_token import RefreshToken, DeviceType
from bms.models.lease import Lease

__all__ = [
    "User",
    "UserRole",
    "AccountStatus",
    "RefreshToken",
    "DeviceType",
    "Lease",
]
