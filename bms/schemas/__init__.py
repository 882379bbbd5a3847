from bms.envelope import ApiResponse, CamelModel
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
from bms.schemas.lease import LeasePaymentDetailsResponse, LeaseResponse
