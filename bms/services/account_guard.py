"""Account state guard: failed-login counting, lockout windows and account status transitions.

This module is the only writer of ``failed_login_attempts`` and
``account_locked_until``. Lockout expiry is evaluated lazily on the next
check; there is no background timer.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import and_, case, null, or_, update
from sqlalchemy.orm import Session

from bms.config import Settings
from bms.models.user import AccountStatus, User
from bms.services.auth import utc_now
from bms.services.errors import AccountNotActive, InvalidStatusTransition

log = logging.getLogger("uvicorn.error")

# Administrative transitions; PENDING -> ACTIVE additionally needs both verifications
ALLOWED_TRANSITIONS: dict[AccountStatus, set[AccountStatus]] = {
    AccountStatus.PENDING: {AccountStatus.ACTIVE},
    AccountStatus.ACTIVE: {AccountStatus.SUSPENDED, AccountStatus.DEACTIVATED},
}


@dataclass(frozen=True)
class LockoutPolicy:
    max_failed_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LockoutPolicy":
        return cls(
            max_failed_attempts=settings.max_failed_login_attempts,
            lockout_duration=timedelta(minutes=settings.account_lockout_minutes),
        )


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_account_locked(user: User, now: datetime) -> bool:
    locked_until = as_utc(user.account_locked_until)
    return locked_until is not None and locked_until > now


class AccountGuard:
    def __init__(self, db: Session, policy: LockoutPolicy, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.policy = policy
        self._clock = clock

    def is_locked(self, user: User) -> bool:
        return is_account_locked(user, self._clock())

    def record_failed_login(self, user: User) -> User:
        now = self._clock()
        # Lapsed window is judged on the stored row, so counting starts over exactly once
        lapsed = and_(User.account_locked_until.is_not(None), User.account_locked_until <= now)
        stmt = (
            update(User)
            .where(User.id == user.id)
            .values(
                failed_login_attempts=case((lapsed, 1), else_=User.failed_login_attempts + 1),
                account_locked_until=case((lapsed, null()), else_=User.account_locked_until),
            )
        )
        self.db.execute(stmt.execution_options(synchronize_session=False))

        lock = (
            update(User)
            .where(
                User.id == user.id,
                User.failed_login_attempts >= self.policy.max_failed_attempts,
                or_(User.account_locked_until.is_(None), User.account_locked_until <= now),
            )
            .values(account_locked_until=now + self.policy.lockout_duration)
        )
        locked = self.db.execute(lock.execution_options(synchronize_session=False)).rowcount
        self.db.commit()
        self.db.refresh(user)

        if locked:
            log.warning(
                "[Auth] Account locked user_id=%s after %d failed attempts",
                user.id,
                user.failed_login_attempts,
            )
        return user

    def record_successful_login(self, user: User) -> User:
        user.failed_login_attempts = 0
        user.account_locked_until = None
        user.last_login = self._clock()
        self.db.commit()
        self.db.refresh(user)
        return user

    def ensure_active(self, user: User) -> None:
        if AccountStatus(user.account_status) != AccountStatus.ACTIVE:
            raise AccountNotActive(user.account_status)

    def transition(self, user: User, target: AccountStatus) -> User:
        current = AccountStatus(user.account_status)
        target = AccountStatus(target)
        if target not in ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidStatusTransition(current, target)
        if target == AccountStatus.ACTIVE and not (user.email_verified and user.phone_verified):
            raise InvalidStatusTransition(current, target)
        user.account_status = target
        self.db.commit()
        self.db.refresh(user)
        log.info("[Auth] Account status user_id=%s %s -> %s", user.id, current.value, target.value)
        return user

    def activate_if_verified(self, user: User) -> bool:
        """Move a PENDING account to ACTIVE once both email and phone are verified."""
        if AccountStatus(user.account_status) != AccountStatus.PENDING:
            return False
        if not (user.email_verified and user.phone_verified):
            return False
        self.transition(user, AccountStatus.ACTIVE)
        return True

    def suspend(self, user: User) -> User:
        return self.transition(user, AccountStatus.SUSPENDED)

    def deactivate(self, user: User) -> User:
        return self.transition(user, AccountStatus.DEACTIVATED)
