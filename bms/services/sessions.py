"""Session manager: login, refresh and logout over per-device refresh tokens."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Callable

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bms.models.refresh_token import DeviceType, RefreshToken
from bms.models.user import User
from bms.services.account_guard import AccountGuard, as_utc
from bms.services.auth import (
    TokenClaims,
    TokenCodec,
    TokenError,
    TokenKind,
    get_password_hash,
    hash_token,
    utc_now,
    verify_password,
)
from bms.services.errors import AccountLocked, InvalidCredentials, InvalidToken

log = logging.getLogger("uvicorn.error")

DEFAULT_DEVICE_ID = "default"


@lru_cache
def _dummy_password_hash() -> str:
    # Unknown identifiers still pay for one bcrypt check
    return get_password_hash("not-a-real-password")


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    user: User


@dataclass(frozen=True)
class DeviceInfo:
    device_id: str = DEFAULT_DEVICE_ID
    device_type: DeviceType = DeviceType.ANDROID
    ip_address: str | None = None
    user_agent: str | None = None


class SessionManager:
    def __init__(
        self,
        db: Session,
        codec: TokenCodec,
        guard: AccountGuard,
        rotate_refresh_tokens: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.codec = codec
        self.guard = guard
        self.rotate_refresh_tokens = rotate_refresh_tokens
        self._clock = clock

    @property
    def access_token_ttl_seconds(self) -> int:
        return int(self.codec.config.access_ttl.total_seconds())

    def find_user(self, identifier: str) -> User | None:
        ident = (identifier or "").strip()
        if not ident:
            return None
        return self.db.query(User).filter(or_(User.email == ident.lower(), User.phone == ident)).first()

    def login(self, identifier: str, password: str, device: DeviceInfo | None = None) -> TokenPair:
        device = device or DeviceInfo()
        user = self.find_user(identifier)
        if user is None:
            verify_password(password or "", _dummy_password_hash())
            log.info("[Session] Login failed: unknown identifier")
            raise InvalidCredentials()

        if self.guard.is_locked(user):
            log.info("[Session] Login refused: account locked user_id=%s", user.id)
            raise AccountLocked()

        if not verify_password(password or "", user.hashed_password):
            self.guard.record_failed_login(user)
            log.info("[Session] Login failed: bad password user_id=%s attempts=%s", user.id, user.failed_login_attempts)
            raise InvalidCredentials()

        self.guard.ensure_active(user)
        self.guard.record_successful_login(user)

        access_token = self.codec.issue_access_token(user)
        refresh_token = self._issue_refresh_token(user, device)
        log.info("[Session] Login succeeded user_id=%s device=%s", user.id, device.device_id)
        return TokenPair(access_token, refresh_token, self.access_token_ttl_seconds, user)

    def refresh(self, refresh_token: str) -> TokenPair:
        claims = self._parse_refresh(refresh_token)
        user = self._load_subject(claims)
        row = self._device_row(user.id, claims.device_id)
        if not self._row_matches(row, refresh_token):
            raise InvalidToken("refresh token revoked, superseded or expired")
        self.guard.ensure_active(user)

        access_token = self.codec.issue_access_token(user)
        if self.rotate_refresh_tokens:
            device = DeviceInfo(
                device_id=row.device_id,
                device_type=row.device_type,
                ip_address=row.ip_address,
                user_agent=row.user_agent,
            )
            refresh_token = self._issue_refresh_token(user, device)
        return TokenPair(access_token, refresh_token, self.access_token_ttl_seconds, user)

    def logout(self, refresh_token: str) -> None:
        """Revoke the device row the token belongs to. Unknown or already revoked tokens are ignored."""
        try:
            claims = self._parse_refresh(refresh_token)
            user = self._load_subject(claims)
        except InvalidToken as e:
            log.info("[Session] Logout with unusable token ignored: %s", e.reason)
            return
        row = self._device_row(user.id, claims.device_id)
        if row is not None and row.token_hash == hash_token(refresh_token) and not row.revoked:
            row.revoked = True
            self.db.commit()
            log.info("[Session] Logout user_id=%s device=%s", user.id, row.device_id)

    def logout_all_devices(self, refresh_token: str) -> int:
        try:
            claims = self._parse_refresh(refresh_token)
            user = self._load_subject(claims)
        except InvalidToken as e:
            log.info("[Session] Logout-all with unusable token ignored: %s", e.reason)
            return 0
        row = self._device_row(user.id, claims.device_id)
        if row is None or row.token_hash != hash_token(refresh_token):
            return 0
        return self.revoke_all(user.id)

    def revoke_all(self, user_id: int) -> int:
        rows = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
            .all()
        )
        for row in rows:
            row.revoked = True
        self.db.commit()
        if rows:
            log.info("[Session] Revoked %d refresh token(s) for user_id=%s", len(rows), user_id)
        return len(rows)

    def _parse_refresh(self, refresh_token: str) -> TokenClaims:
        try:
            return self.codec.parse(refresh_token, expected_kind=TokenKind.REFRESH)
        except TokenError as e:
            raise InvalidToken(str(e)) from e

    def _load_subject(self, claims: TokenClaims) -> User:
        try:
            user_id = int(claims.subject)
        except (TypeError, ValueError):
            raise InvalidToken("non-numeric subject") from None
        user = self.db.get(User, user_id)
        if user is None:
            raise InvalidToken("unknown subject")
        return user

    def _device_row(self, user_id: int, device_id: str | None) -> RefreshToken | None:
        return (
            self.db.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id, RefreshToken.device_id == (device_id or DEFAULT_DEVICE_ID))
            .first()
        )

    def _row_matches(self, row: RefreshToken | None, refresh_token: str) -> bool:
        if row is None or row.revoked or row.token_hash != hash_token(refresh_token):
            return False
        expires_at = as_utc(row.expires_at)
        return expires_at is not None and expires_at > self._clock()

    def _issue_refresh_token(self, user: User, device: DeviceInfo) -> str:
        device_id = device.device_id or DEFAULT_DEVICE_ID
        token = self.codec.issue_refresh_token(user, device_id, device.device_type)
        expires_at = self.codec.parse(token).expires_at
        self._store_refresh_token(user, token, device_id, device, expires_at)
        return token

    def _store_refresh_token(self, user: User, token: str, device_id: str, device: DeviceInfo, expires_at: datetime) -> RefreshToken:
        """Upsert the (user, device) row. A concurrent insert for the same pair is retried once as an update."""
        try:
            return self._write_refresh_row(user, token, device_id, device, expires_at)
        except IntegrityError:
            self.db.rollback()
            log.info("[Session] Concurrent login for user_id=%s device=%s, retrying as update", user.id, device_id)
            return self._write_refresh_row(user, token, device_id, device, expires_at)

    def _write_refresh_row(self, user: User, token: str, device_id: str, device: DeviceInfo, expires_at: datetime) -> RefreshToken:
        row = self._device_row(user.id, device_id)
        if row is None:
            row = RefreshToken(user_id=user.id, device_id=device_id)
            self.db.add(row)
        row.token_hash = hash_token(token)
        row.device_type = device.device_type
        row.ip_address = device.ip_address
        row.user_agent = device.user_agent
        row.expires_at = expires_at
        row.revoked = False
        self.db.commit()
        return row
