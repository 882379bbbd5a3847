"""Registration, email/phone verification, passwords and contact details.

A new account starts PENDING with both verification flags cleared. Each
channel gets its own 6-digit code with an expiry; verifying the second
channel activates the account through the account guard. Password resets use
the same code scheme, delivered by email only.
"""
import logging
import random
import re
import string
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bms.config import get_settings
from bms.models.user import AccountStatus, User, UserRole
from bms.services.account_guard import AccountGuard, as_utc
from bms.services.auth import get_password_hash, utc_now, verify_password
from bms.services.errors import AccountUpdateError, RegistrationError, VerificationError
from bms.services.notifications import send_password_reset_email, send_verification_email, send_verification_sms

log = logging.getLogger("uvicorn.error")

_OTP_RE = re.compile(r"^\d{6}$")

# Self-service registration never creates building owners
SELF_REGISTER_ROLES = {UserRole.TENANT, UserRole.PROPERTY_MANAGER}


def _generate_verification_code() -> str:
    return "".join(random.choices(string.digits, k=6))


def _code_expiry(now: datetime) -> datetime:
    return now + timedelta(minutes=get_settings().verification_code_expire_minutes)


def find_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == (email or "").strip().lower()).first()


def find_by_phone(db: Session, phone: str) -> User | None:
    return db.query(User).filter(User.phone == (phone or "").strip()).first()


def register_user(
    db: Session,
    *,
    email: str,
    phone: str,
    password: str,
    first_name: str,
    last_name: str,
    role: UserRole,
    clock: Callable[[], datetime] = utc_now,
) -> User:
    role = UserRole(role)
    if role not in SELF_REGISTER_ROLES:
        raise RegistrationError("Only tenants and property managers can register")
    email = email.strip().lower()
    phone = phone.strip()
    if find_by_email(db, email):
        raise RegistrationError("Email is already registered")
    if find_by_phone(db, phone):
        raise RegistrationError("Phone number is already registered")

    now = clock()
    user = User(
        email=email,
        phone=phone,
        hashed_password=get_password_hash(password),
        role=role,
        account_status=AccountStatus.PENDING,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        email_verified=False,
        phone_verified=False,
        email_verification_code=_generate_verification_code(),
        email_verification_expires_at=_code_expiry(now),
        phone_verification_code=_generate_verification_code(),
        phone_verification_expires_at=_code_expiry(now),
        failed_login_attempts=0,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email or phone
        db.rollback()
        raise RegistrationError("Email or phone number is already registered") from None
    db.refresh(user)
    log.info("[Auth] Registered user_id=%s role=%s", user.id, role.value)

    expire_minutes = get_settings().verification_code_expire_minutes
    send_verification_email(user.email, user.email_verification_code, expire_minutes)
    send_verification_sms(user.phone, user.phone_verification_code, expire_minutes)
    return user


def _check_code(stored: str | None, expires_at: datetime | None, otp: str, now: datetime) -> None:
    otp = (otp or "").strip()
    if not _OTP_RE.match(otp):
        raise VerificationError("Invalid OTP format")
    if not stored or stored != otp:
        raise VerificationError("Invalid verification code")
    expires_at = as_utc(expires_at)
    if expires_at is None or expires_at <= now:
        raise VerificationError("Verification code has expired. Please request a new one.")


def verify_email(db: Session, guard: AccountGuard, email: str, otp: str, clock: Callable[[], datetime] = utc_now) -> User:
    user = find_by_email(db, email)
    if user is None:
        raise VerificationError("User not found")
    if not user.email_verified:
        _check_code(user.email_verification_code, user.email_verification_expires_at, otp, clock())
        user.email_verified = True
        user.email_verification_code = None
        user.email_verification_expires_at = None
        db.commit()
        db.refresh(user)
        log.info("[Auth] Email verified user_id=%s", user.id)
    guard.activate_if_verified(user)
    return user


def verify_phone(db: Session, guard: AccountGuard, phone: str, otp: str, clock: Callable[[], datetime] = utc_now) -> User:
    user = find_by_phone(db, phone)
    if user is None:
        raise VerificationError("User not found")
    if not user.phone_verified:
        _check_code(user.phone_verification_code, user.phone_verification_expires_at, otp, clock())
        user.phone_verified = True
        user.phone_verification_code = None
        user.phone_verification_expires_at = None
        db.commit()
        db.refresh(user)
        log.info("[Auth] Phone verified user_id=%s", user.id)
    guard.activate_if_verified(user)
    return user


def resend_email_verification(db: Session, email: str, clock: Callable[[], datetime] = utc_now) -> bool:
    user = find_by_email(db, email)
    if user is None:
        raise VerificationError("User not found")
    if user.email_verified:
        raise VerificationError("Email is already verified")
    user.email_verification_code = _generate_verification_code()
    user.email_verification_expires_at = _code_expiry(clock())
    db.commit()
    return send_verification_email(user.email, user.email_verification_code, get_settings().verification_code_expire_minutes)


def resend_phone_verification(db: Session, phone: str, clock: Callable[[], datetime] = utc_now) -> bool:
    user = find_by_phone(db, phone)
    if user is None:
        raise VerificationError("User not found")
    if user.phone_verified:
        raise VerificationError("Phone is already verified")
    user.phone_verification_code = _generate_verification_code()
    user.phone_verification_expires_at = _code_expiry(clock())
    db.commit()
    return send_verification_sms(user.phone, user.phone_verification_code, get_settings().verification_code_expire_minutes)


def change_password(db: Session, user: User, old_password: str, new_password: str) -> User:
    if not verify_password(old_password or "", user.hashed_password):
        raise AccountUpdateError("Current password is incorrect")
    if verify_password(new_password, user.hashed_password):
        raise AccountUpdateError("New password must be different from the current password")
    user.hashed_password = get_password_hash(new_password)
    db.commit()
    db.refresh(user)
    log.info("[Auth] Password changed user_id=%s", user.id)
    return user


def request_password_reset(db: Session, email: str, clock: Callable[[], datetime] = utc_now) -> bool:
    """Email a reset code. Unknown addresses are only logged."""
    user = find_by_email(db, email)
    if user is None:
        log.info("[Auth] Password reset requested for unknown email")
        return False
    user.password_reset_code = _generate_verification_code()
    user.password_reset_expires_at = _code_expiry(clock())
    db.commit()
    log.info("[Auth] Password reset code issued user_id=%s", user.id)
    return send_password_reset_email(user.email, user.password_reset_code, get_settings().verification_code_expire_minutes)


def reset_password(db: Session, email: str, otp: str, new_password: str, clock: Callable[[], datetime] = utc_now) -> User:
    user = find_by_email(db, email)
    if user is None:
        raise VerificationError("Invalid verification code")
    _check_code(user.password_reset_code, user.password_reset_expires_at, otp, clock())
    user.hashed_password = get_password_hash(new_password)
    user.password_reset_code = None
    user.password_reset_expires_at = None
    db.commit()
    db.refresh(user)
    log.info("[Auth] Password reset user_id=%s", user.id)
    return user


def update_contact(
    db: Session,
    user: User,
    *,
    email: str | None = None,
    phone: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> User:
    """Change names and contact channels. A changed email or phone must be verified again."""
    now = clock()
    email = email.strip().lower() if email is not None else None
    phone = phone.strip() if phone is not None else None
    email_changed = email is not None and email != user.email
    phone_changed = phone is not None and phone != user.phone
    if email_changed and find_by_email(db, email):
        raise AccountUpdateError("Email is already registered")
    if phone_changed and find_by_phone(db, phone):
        raise AccountUpdateError("Phone number is already registered")

    if email_changed:
        user.email = email
        user.email_verified = False
        user.email_verification_code = _generate_verification_code()
        user.email_verification_expires_at = _code_expiry(now)
    if phone_changed:
        user.phone = phone
        user.phone_verified = False
        user.phone_verification_code = _generate_verification_code()
        user.phone_verification_expires_at = _code_expiry(now)
    if first_name is not None:
        user.first_name = first_name.strip()
    if last_name is not None:
        user.last_name = last_name.strip()

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AccountUpdateError("Email or phone number is already registered") from None
    db.refresh(user)
    log.info("[Auth] Contact updated user_id=%s email_changed=%s phone_changed=%s", user.id, email_changed, phone_changed)

    expire_minutes = get_settings().verification_code_expire_minutes
    if email_changed:
        send_verification_email(user.email, user.email_verification_code, expire_minutes)
    if phone_changed:
        send_verification_sms(user.phone, user.phone_verification_code, expire_minutes)
    return user
