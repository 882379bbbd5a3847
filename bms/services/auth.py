"""Auth primitives: password hashing and the signed token codec (JWT)."""
from __future__ import annotations

import enum
import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import bcrypt
import jwt

from bms.config import Settings
from bms.models.refresh_token import DeviceType
from bms.models.user import AccountStatus, User, UserRole


def _pwd_bytes(password: str, max_len: int = 72) -> bytes:
    return password.encode("utf-8")[:max_len]


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_pwd_bytes(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(_pwd_bytes(password), bcrypt.gensalt()).decode("utf-8")


def hash_token(token: str) -> str:
    """Digest stored in place of a refresh token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


ROLE_PERMISSIONS = {
    UserRole.TENANT: ["read:profile", "write:profile", "read:properties", "create:rental_application"],
    UserRole.PROPERTY_MANAGER: ["read:profile", "write:profile", "manage:properties", "manage:tenants", "read:analytics"],
    UserRole.BUILDING_OWNER: [
        "read:profile", "write:profile", "manage:properties", "manage:managers", "read:analytics", "manage:billing",
    ],
}


class TokenKind(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class TokenError(Exception):
    """Token failed verification. Messages mention "expired" or "invalid"."""


class InvalidSignature(TokenError):
    def __init__(self, message: str = "invalid token signature"):
        super().__init__(message)


class TokenExpired(TokenError):
    def __init__(self, message: str = "token expired"):
        super().__init__(message)


class MalformedToken(TokenError):
    def __init__(self, detail: str = "malformed"):
        super().__init__(f"invalid token: {detail}")


@dataclass(frozen=True)
class TokenSettings:
    secret_key: str
    algorithm: str = "HS256"
    issuer: str = "bms-api"
    audience: str = "bms-app"
    access_ttl: timedelta = timedelta(seconds=900)
    refresh_ttl: timedelta = timedelta(days=30)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenSettings":
        return cls(
            secret_key=settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl=timedelta(seconds=settings.jwt_access_token_expire_seconds),
            refresh_ttl=timedelta(seconds=settings.jwt_refresh_token_expire_seconds),
        )


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    kind: TokenKind
    role: UserRole | None
    device_id: str | None
    device_type: DeviceType | None
    issued_at: datetime
    expires_at: datetime
    jti: str
    extra: dict[str, Any] = field(default_factory=dict)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


_RESERVED = {"sub", "type", "role", "device_id", "device_type", "iat", "exp", "iss", "aud", "jti"}


class TokenCodec:
    """Issues and verifies HS256-signed access/refresh tokens.

    Expiry is checked against ``clock`` on every ``parse`` call (PyJWT's own
    wall-clock check is disabled so the clock can be injected). Every token
    carries a ``type`` claim; a token without one is rejected as malformed.
    """

    def __init__(self, config: TokenSettings, clock: Callable[[], datetime] = utc_now):
        self.config = config
        self._clock = clock

    def issue(
        self,
        subject: str | int,
        role: UserRole | None,
        kind: TokenKind,
        device_id: str | None = None,
        ttl: timedelta | None = None,
        *,
        device_type: DeviceType | None = None,
        extra_claims: dict[str, Any] | None = None,
    ) -> str:
        kind = TokenKind(kind)
        if ttl is None:
            ttl = self.config.access_ttl if kind == TokenKind.ACCESS else self.config.refresh_ttl
        now = self._clock()
        issued_at = int(now.timestamp())
        payload: dict[str, Any] = dict(extra_claims or {})
        payload.update({
            "sub": str(subject),
            "type": kind.value,
            "iat": issued_at,
            "exp": issued_at + int(ttl.total_seconds()),
            "iss": self.config.issuer,
            "aud": self.config.audience,
            "jti": uuid.uuid4().hex,
        })
        if role is not None:
            payload["role"] = UserRole(role).value
        if device_id is not None:
            payload["device_id"] = device_id
        if device_type is not None:
            payload["device_type"] = DeviceType(device_type).value
        return jwt.encode(payload, self.config.secret_key, algorithm=self.config.algorithm)

    def issue_access_token(self, user: User) -> str:
        return self.issue(
            user.id,
            user.role,
            TokenKind.ACCESS,
            extra_claims={
                "email": user.email,
                "status": AccountStatus(user.account_status).value,
                "verified": {"email": bool(user.email_verified), "phone": bool(user.phone_verified)},
                "permissions": ROLE_PERMISSIONS.get(UserRole(user.role), ["read:profile"]),
            },
        )

    def issue_refresh_token(self, user: User, device_id: str, device_type: DeviceType) -> str:
        return self.issue(user.id, None, TokenKind.REFRESH, device_id, device_type=device_type)

    def parse(self, token: str, expected_kind: TokenKind | None = None) -> TokenClaims:
        if not token or not isinstance(token, str):
            raise MalformedToken("empty token")
        try:
            payload = jwt.decode(
                token.strip(),
                self.config.secret_key,
                algorithms=[self.config.algorithm],
                audience=self.config.audience,
                issuer=self.config.issuer,
                options={"verify_exp": False, "verify_iat": False, "require": ["sub", "iat", "exp"]},
            )
        except jwt.InvalidSignatureError as e:
            raise InvalidSignature() from e
        except (jwt.InvalidAudienceError, jwt.InvalidIssuerError) as e:
            raise MalformedToken("wrong issuer or audience") from e
        except jwt.PyJWTError as e:
            raise MalformedToken(str(e)) from e

        try:
            kind = TokenKind(payload.get("type"))
        except ValueError:
            raise MalformedToken("missing or unknown token type") from None
        try:
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
            role = UserRole(payload["role"]) if payload.get("role") else None
            device_type = DeviceType(payload["device_type"]) if payload.get("device_type") else None
        except (TypeError, ValueError) as e:
            raise MalformedToken(str(e)) from e

        if self._clock() >= expires_at:
            raise TokenExpired()
        if expected_kind is not None and kind != TokenKind(expected_kind):
            raise MalformedToken(f"expected {TokenKind(expected_kind).value} token, got {kind.value}")

        return TokenClaims(
            subject=str(payload["sub"]),
            kind=kind,
            role=role,
            device_id=payload.get("device_id"),
            device_type=device_type,
            issued_at=issued_at,
            expires_at=expires_at,
            jti=str(payload.get("jti") or ""),
            extra={k: v for k, v in payload.items() if k not in _RESERVED},
        )

    def is_access_token(self, token: str) -> bool:
        return self._is_kind(token, TokenKind.ACCESS)

    def is_refresh_token(self, token: str) -> bool:
        return self._is_kind(token, TokenKind.REFRESH)

    def _is_kind(self, token: str, kind: TokenKind) -> bool:
        try:
            return self.parse(token).kind == kind
        except TokenError:
            return False
