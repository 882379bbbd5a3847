"""Authentication: registration, verification, login, token refresh, logout, profile, passwords."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from bms.database import get_db
from bms.dependencies import get_account_guard, get_current_user, get_session_manager
from bms.envelope import ApiResponse
from bms.models.user import User
from bms.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    UpdateContactRequest,
    UserDto,
)
from bms.services import accounts
from bms.services.account_guard import AccountGuard
from bms.services.errors import AccountUpdateError, AuthError, InvalidToken, RegistrationError, VerificationError
from bms.services.sessions import DEFAULT_DEVICE_ID, DeviceInfo, SessionManager, TokenPair

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/auth", tags=["auth"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def _auth_response(pair: TokenPair) -> AuthResponse:
    return AuthResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        user=UserDto.model_validate(pair.user),
        expires_in=pair.expires_in,
    )


@router.post("/register", response_model=ApiResponse[UserDto])
def register(request: Request, data: SignupRequest, db: Session = Depends(get_db)):
    try:
        user = accounts.register_user(
            db,
            email=data.email,
            phone=data.phone,
            password=data.password,
            first_name=data.first_name,
            last_name=data.last_name,
            role=data.role,
        )
    except RegistrationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse.ok(
        UserDto.model_validate(user),
        "Registration successful. Please verify your email and phone number.",
        request.url.path,
    )


@router.post("/login", response_model=ApiResponse[AuthResponse])
def login(request: Request, data: LoginRequest, sessions: SessionManager = Depends(get_session_manager)):
    device = DeviceInfo(
        device_id=(data.device_id or "").strip() or DEFAULT_DEVICE_ID,
        device_type=data.resolved_device_type(),
        ip_address=_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    try:
        pair = sessions.login(data.identifier, data.password, device)
    except AuthError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse.ok(_auth_response(pair), "Login successful", request.url.path)


@router.post("/refresh-token", response_model=ApiResponse[AuthResponse])
def refresh_token(
    request: Request,
    token: str = Query(..., alias="refreshToken"),
    sessions: SessionManager = Depends(get_session_manager),
):
    try:
        pair = sessions.refresh(token)
    except AuthError as e:
        if isinstance(e, InvalidToken):
            log.info("[Auth] Refresh rejected: %s", e.reason)
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse.ok(_auth_response(pair), "Token refreshed successfully", request.url.path)


@router.post("/logout", response_model=ApiResponse[None])
def logout(
    request: Request,
    token: str = Query(..., alias="refreshToken"),
    sessions: SessionManager = Depends(get_session_manager),
):
    sessions.logout(token)
    return ApiResponse.ok(None, "Logout successful", request.url.path)


@router.post("/logout-all-devices", response_model=ApiResponse[None])
def logout_all_devices(
    request: Request,
    token: str = Query(..., alias="refreshToken"),
    sessions: SessionManager = Depends(get_session_manager),
):
    sessions.logout_all_devices(token)
    return ApiResponse.ok(None, "Logged out from all devices successfully", request.url.path)


@router.post("/verify-email", response_model=ApiResponse[None])
def verify_email(
    request: Request,
    email: str = Query(...),
    otp: str = Query(...),
    db: Session = Depends(get_db),
    guard: AccountGuard = Depends(get_account_guard),
):
    try:
        accounts.verify_email(db, guard, email, otp)
    except VerificationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse.ok(None, "Email verified successfully", request.url.path)


@router.post("/verify-phone", response_model=ApiResponse[None])
def verify_phone(
    request: Request,
    phone: str = Query(...),
    otp: str = Query(...),
    db: Session = Depends(get_db),
    guard: AccountGuard = Depends(get_account_guard),
):
    try:
        accounts.verify_phone(db, guard, phone, otp)
    except VerificationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse.ok(None, "Phone verified successfully", request.url.path)


@router.post("/resend-email-verification", response_model=ApiResponse[None])
def resend_email_verification(request: Request, email: str = Query(...), db: Session = Depends(get_db)):
    try:
        accounts.resend_email_verification(db, email)
    except VerificationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse.ok(None, "Verification email sent successfully", request.url.path)


@router.post("/resend-phone-verification", response_model=ApiResponse[None])
def resend_phone_verification(request: Request, phone: str = Query(...), db: Session = Depends(get_db)):
    try:
        accounts.resend_phone_verification(db, phone)
    except VerificationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse.ok(None, "Verification SMS sent successfully", request.url.path)


@router.get("/profile", response_model=ApiResponse[UserDto])
def profile(request: Request, current_user: User = Depends(get_current_user)):
    return ApiResponse.ok(UserDto.model_validate(current_user), "Profile retrieved successfully", request.url.path)


@router.put("/update-contact", response_model=ApiResponse[UserDto])
def update_contact(
    request: Request,
    data: UpdateContactRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        user = accounts.update_contact(
            db,
            current_user,
            email=data.email,
            phone=data.phone,
            first_name=data.first_name,
            last_name=data.last_name,
        )
    except AccountUpdateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse.ok(UserDto.model_validate(user), "Contact information updated successfully", request.url.path)


@router.post("/change-password", response_model=ApiResponse[None])
def change_password(
    request: Request,
    data: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
):
    try:
        accounts.change_password(db, current_user, data.old_password, data.new_password)
    except AccountUpdateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    sessions.revoke_all(current_user.id)
    return ApiResponse.ok(None, "Password changed successfully. Please login with your new password.", request.url.path)


@router.post("/forgot-password", response_model=ApiResponse[None])
def forgot_password(request: Request, data: ForgotPasswordRequest, db: Session = Depends(get_db)):
    accounts.request_password_reset(db, data.email)
    return ApiResponse.ok(None, "Password reset OTP sent to your email. Please check your inbox.", request.url.path)


@router.post("/reset-password", response_model=ApiResponse[None])
def reset_password(
    request: Request,
    data: ResetPasswordRequest,
    db: Session = Depends(get_db),
    sessions: SessionManager = Depends(get_session_manager),
):
    try:
        user = accounts.reset_password(db, data.email, data.otp_code, data.new_password)
    except VerificationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    sessions.revoke_all(user.id)
    return ApiResponse.ok(None, "Password reset successful. You can now login with your new password.", request.url.path)
