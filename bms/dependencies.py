"""Shared dependencies: DB session, services, current principal and role gates."""
from functools import lru_cache

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from bms.config import get_settings
from bms.database import SessionLocal, get_db
from bms.models.user import User, UserRole
from bms.security import ANONYMOUS, AuthContext, Principal, RequestAuthorizer, authentication_error_message
from bms.services.account_guard import AccountGuard, LockoutPolicy
from bms.services.auth import TokenCodec, TokenSettings
from bms.services.sessions import SessionManager

# Declares bearer auth in the OpenAPI schema; the middleware does the actual parsing
security = HTTPBearer(auto_error=False)


@lru_cache
def get_token_codec() -> TokenCodec:
    return TokenCodec(TokenSettings.from_settings(get_settings()))


def get_lockout_policy() -> LockoutPolicy:
    return LockoutPolicy.from_settings(get_settings())


def get_request_authorizer() -> RequestAuthorizer:
    return RequestAuthorizer(get_token_codec(), SessionLocal, get_settings().api_prefix)


def get_account_guard(
    db: Session = Depends(get_db),
    policy: LockoutPolicy = Depends(get_lockout_policy),
) -> AccountGuard:
    return AccountGuard(db, policy)


def get_session_manager(
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    guard: AccountGuard = Depends(get_account_guard),
) -> SessionManager:
    return SessionManager(db, codec, guard, rotate_refresh_tokens=get_settings().rotate_refresh_tokens)


def get_auth_context(request: Request) -> AuthContext:
    return getattr(request.state, "auth", None) or ANONYMOUS


def get_current_principal(
    request: Request,
    _credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ctx: AuthContext = Depends(get_auth_context),
) -> Principal:
    if ctx.principal is None:
        message = authentication_error_message(request.headers.get("Authorization"), ctx.failure)
        raise HTTPException(status_code=401, detail=message, headers={"WWW-Authenticate": "Bearer"})
    return ctx.principal


def get_current_user(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> User:
    user = db.query(User).filter(User.id == principal.user_id).first()
    if not user:
        raise HTTPException(status_code=401, detail="Authentication failed. Please login again.")
    return user


def require_roles(*roles: UserRole):
    """Dependency factory: 403 unless the principal holds one of ``roles``."""
    allowed = ", ".join(r.value for r in roles)

    def _check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.has_role(*roles):
            raise HTTPException(status_code=403, detail=f"Access denied. Required role: {allowed}")
        return principal

    return _check


require_owner = require_roles(UserRole.BUILDING_OWNER)
require_tenant = require_roles(UserRole.TENANT)
# Owners share the manager surface
require_manager = require_roles(UserRole.PROPERTY_MANAGER, UserRole.BUILDING_OWNER)
