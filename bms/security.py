"""Request authorization: bearer token -> principal, attached to every request.

The middleware never rejects a request. It records either a principal or the
reason authentication failed on ``request.state.auth``; route dependencies
decide whether a principal is required and produce the 401/403.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from bms.models.user import AccountStatus, User, UserRole
from bms.services.account_guard import is_account_locked
from bms.services.auth import TokenCodec, TokenError, TokenKind, utc_now

log = logging.getLogger("uvicorn.error")

BEARER_PREFIX = "Bearer "

# Matched against the path with the API prefix removed
PUBLIC_PATH_PREFIXES = ("/auth/", "/actuator/", "/swagger-ui", "/v3/api-docs")
PUBLIC_PATHS = {"/health", "/error", "/docs", "/redoc", "/openapi.json", "/docs/oauth2-redirect"}
# Under /auth/ but requires a token
PROTECTED_AUTH_PATHS = {"/auth/profile", "/auth/change-password", "/auth/update-contact"}


class AuthFailureReason(str, enum.Enum):
    MISSING_HEADER = "missing_header"
    MALFORMED_HEADER = "malformed_header"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_INVALID = "token_invalid"
    UNKNOWN_USER = "unknown_user"
    ACCOUNT_NOT_ACTIVE = "account_not_active"
    ACCOUNT_LOCKED = "account_locked"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class Principal:
    user_id: int
    email: str
    role: UserRole

    def has_role(self, *roles: UserRole) -> bool:
        return self.role in roles


@dataclass(frozen=True)
class AuthFailure:
    reason: AuthFailureReason
    message: str


@dataclass(frozen=True)
class AuthContext:
    principal: Principal | None = None
    failure: AuthFailure | None = None


ANONYMOUS = AuthContext()


def strip_api_prefix(path: str, api_prefix: str) -> str:
    api_prefix = (api_prefix or "").rstrip("/")
    if api_prefix and (path == api_prefix or path.startswith(api_prefix + "/")):
        return path[len(api_prefix):] or "/"
    return path


def is_public_path(path: str, api_prefix: str = "") -> bool:
    rel = strip_api_prefix(path, api_prefix)
    if rel in PROTECTED_AUTH_PATHS:
        return False
    if rel in PUBLIC_PATHS or path in PUBLIC_PATHS:
        return True
    return any(rel.startswith(p) or path.startswith(p) for p in PUBLIC_PATH_PREFIXES)


def authentication_error_message(authorization: str | None, failure: AuthFailure | None = None) -> str:
    """401 message, chosen from the header shape and the failure text."""
    if not authorization:
        return "Authentication required. Please provide a valid access token."
    if not authorization.startswith(BEARER_PREFIX):
        return "Invalid authorization header format. Expected 'Bearer <token>'."
    message = (failure.message if failure else "").lower()
    if "expired" in message:
        return "Access token has expired. Please refresh your token."
    if "invalid" in message:
        return "Invalid access token. Please login again."
    return "Authentication failed. Please login again."


class RequestAuthorizer:
    def __init__(
        self,
        codec: TokenCodec,
        session_factory: Callable[[], Session],
        api_prefix: str = "",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.codec = codec
        self.session_factory = session_factory
        self.api_prefix = api_prefix
        self._clock = clock

    def authorize(self, path: str, authorization: str | None) -> AuthContext:
        """Never raises. Public paths skip token parsing entirely."""
        if is_public_path(path, self.api_prefix):
            return ANONYMOUS
        try:
            result = self._resolve(authorization)
        except Exception:
            log.exception("[Auth] Unexpected error while authorizing %s", path)
            result = AuthFailure(AuthFailureReason.INTERNAL_ERROR, "authentication failed")
        if isinstance(result, Principal):
            log.debug("[Auth] Authenticated user_id=%s role=%s path=%s", result.user_id, result.role.value, path)
            return AuthContext(principal=result)
        if result.reason != AuthFailureReason.MISSING_HEADER:
            log.warning("[Auth] Request to %s not authenticated: %s (%s)", path, result.reason.value, result.message)
        return AuthContext(failure=result)

    def _resolve(self, authorization: str | None) -> Principal | AuthFailure:
        if not authorization:
            return AuthFailure(AuthFailureReason.MISSING_HEADER, "no authorization header")
        if not authorization.startswith(BEARER_PREFIX):
            return AuthFailure(AuthFailureReason.MALFORMED_HEADER, "authorization header is not a bearer token")

        token = authorization[len(BEARER_PREFIX):].strip()
        try:
            claims = self.codec.parse(token, expected_kind=TokenKind.ACCESS)
        except TokenError as e:
            reason = AuthFailureReason.TOKEN_EXPIRED if "expired" in str(e) else AuthFailureReason.TOKEN_INVALID
            return AuthFailure(reason, str(e))

        try:
            user_id = int(claims.subject)
        except ValueError:
            return AuthFailure(AuthFailureReason.TOKEN_INVALID, "invalid token subject")

        db = self.session_factory()
        try:
            user = db.get(User, user_id)
            if user is None:
                return AuthFailure(AuthFailureReason.UNKNOWN_USER, "user no longer exists")
            if AccountStatus(user.account_status) != AccountStatus.ACTIVE:
                return AuthFailure(AuthFailureReason.ACCOUNT_NOT_ACTIVE, f"account status is {AccountStatus(user.account_status).value}")
            if is_account_locked(user, self._clock()):
                return AuthFailure(AuthFailureReason.ACCOUNT_LOCKED, "account is locked")
            return Principal(user_id=user.id, email=user.email, role=UserRole(user.role))
        finally:
            db.close()


class AuthorizationMiddleware(BaseHTTPMiddleware):
    """Attaches an AuthContext to ``request.state.auth`` and always calls through."""

    def __init__(self, app, authorizer_factory: Callable[[], RequestAuthorizer]):
        super().__init__(app)
        self.authorizer_factory = authorizer_factory

    async def dispatch(self, request: Request, call_next):
        authorizer = self.authorizer_factory()
        request.state.auth = await run_in_threadpool(
            authorizer.authorize, request.url.path, request.headers.get("Authorization")
        )
        return await call_next(request)
