"""Building owner administration: suspend or deactivate accounts."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from bms.database import get_db
from bms.dependencies import get_account_guard, get_session_manager, require_owner
from bms.envelope import ApiResponse
from bms.models.user import AccountStatus, User
from bms.schemas.auth import UserDto
from bms.security import Principal
from bms.services.account_guard import AccountGuard
from bms.services.errors import InvalidStatusTransition
from bms.services.sessions import SessionManager

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/owner", tags=["owner"])


def _change_status(
    db: Session,
    guard: AccountGuard,
    sessions: SessionManager,
    owner: Principal,
    user_id: int,
    target: AccountStatus,
) -> User:
    if user_id == owner.user_id:
        raise HTTPException(status_code=400, detail="You cannot change the status of your own account")
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    try:
        guard.transition(user, target)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    revoked = sessions.revoke_all(user.id)
    log.info(
        "[Auth] Owner user_id=%s set user_id=%s to %s; %d session(s) revoked",
        owner.user_id, user.id, target.value, revoked,
    )
    return user


@router.post("/users/{user_id}/suspend", response_model=ApiResponse[UserDto])
def suspend_user(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    guard: AccountGuard = Depends(get_account_guard),
    sessions: SessionManager = Depends(get_session_manager),
    owner: Principal = Depends(require_owner),
):
    user = _change_status(db, guard, sessions, owner, user_id, AccountStatus.SUSPENDED)
    return ApiResponse.ok(UserDto.model_validate(user), "User suspended successfully", request.url.path)


@router.post("/users/{user_id}/deactivate", response_model=ApiResponse[UserDto])
def deactivate_user(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    guard: AccountGuard = Depends(get_account_guard),
    sessions: SessionManager = Depends(get_session_manager),
    owner: Principal = Depends(require_owner),
):
    user = _change_status(db, guard, sessions, owner, user_id, AccountStatus.DEACTIVATED)
    return ApiResponse.ok(UserDto.model_validate(user), "User deactivated successfully", request.url.path)
