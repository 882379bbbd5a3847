"""Domain errors raised by the account, session and verification services.

Routers translate these into HTTP responses; the message of each error is the
user-facing text.
"""
from __future__ import annotations

from bms.models.user import AccountStatus


class AuthError(Exception):
    """Base class for login/refresh failures."""


class InvalidCredentials(AuthError):
    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class AccountLocked(AuthError):
    # Unlock time is deliberately not part of the message
    def __init__(self, message: str = "Account is temporarily locked due to multiple failed login attempts"):
        super().__init__(message)


_NOT_ACTIVE_MESSAGES = {
    AccountStatus.PENDING: "Account verification is pending. Please verify your email and phone number.",
    AccountStatus.SUSPENDED: "Account is suspended. Please contact support.",
    AccountStatus.DEACTIVATED: "Account is deactivated. Please contact support.",
}


class AccountNotActive(AuthError):
    def __init__(self, status: AccountStatus):
        self.status = AccountStatus(status)
        super().__init__(_NOT_ACTIVE_MESSAGES.get(self.status, "Account is not active."))


class InvalidToken(AuthError):
    """Refresh token rejected. ``reason`` is for logs only; callers see one message."""

    def __init__(self, reason: str = "invalid token"):
        self.reason = reason
        super().__init__("Invalid refresh token")


class RegistrationError(ValueError):
    pass


class VerificationError(ValueError):
    pass


class AccountUpdateError(ValueError):
    """Rejected password change or contact update."""


class InvalidStatusTransition(ValueError):
    def __init__(self, current: AccountStatus, target: AccountStatus):
        self.current = AccountStatus(current)
        self.target = AccountStatus(target)
        super().__init__(f"Cannot change account status from {self.current.value} to {self.target.value}")


class LeaseNotFound(LookupError):
    def __init__(self, lease_id: int):
        self.lease_id = lease_id
        super().__init__(f"Lease not found with id: {lease_id}")


class LeaseAccessDenied(PermissionError):
    def __init__(self, message: str = "You do not have access to this lease"):
        super().__init__(message)
