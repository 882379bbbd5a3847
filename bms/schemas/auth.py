"""Auth request/response schemas."""
import re
from datetime import datetime

from pydantic import EmailStr, Field, field_validator, model_validator

from bms.models.refresh_token import DeviceType
from bms.models.user import AccountStatus, UserRole
from bms.envelope import CamelModel

PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15
PASSWORD_MIN_LENGTH = 8

# Public role names accepted at registration
_REGISTER_ROLES = {
    "TENANT": UserRole.TENANT,
    "MANAGER": UserRole.PROPERTY_MANAGER,
    "PROPERTY_MANAGER": UserRole.PROPERTY_MANAGER,
}


def _validate_phone_digits(phone: str) -> None:
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        raise ValueError("Phone number is required.")
    if len(digits) < PHONE_MIN_DIGITS:
        raise ValueError(f"Phone number must have at least {PHONE_MIN_DIGITS} digits.")
    if len(digits) > PHONE_MAX_DIGITS:
        raise ValueError(f"Phone number cannot exceed {PHONE_MAX_DIGITS} digits.")


class LoginRequest(CamelModel):
    identifier: str = Field(min_length=1, description="Email address or phone number")
    password: str = Field(min_length=1)
    device_id: str | None = None
    device_type: str | None = None

    def resolved_device_type(self) -> DeviceType:
        return DeviceType.from_code(self.device_type)


class SignupRequest(CamelModel):
    email: EmailStr
    phone: str
    password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    confirm_password: str | None = None
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    role: UserRole

    @field_validator("phone")
    @classmethod
    def phone_valid(cls, v: str) -> str:
        _validate_phone_digits(v)
        return v.strip()

    @field_validator("role", mode="before")
    @classmethod
    def role_known(cls, v):
        role = _REGISTER_ROLES.get(str(v or "").strip().upper())
        if role is None:
            raise ValueError("Role must be TENANT or MANAGER")
        return role

    @model_validator(mode="after")
    def passwords_match(self):
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Passwords do not match")
        return self


class ChangePasswordRequest(CamelModel):
    old_password: str = Field(min_length=1)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    confirm_password: str | None = None

    @model_validator(mode="after")
    def passwords_match(self):
        if self.confirm_password is not None and self.confirm_password != self.new_password:
            raise ValueError("Passwords do not match")
        return self


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    email: EmailStr
    otp_code: str = Field(min_length=1)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    confirm_password: str | None = None

    @model_validator(mode="after")
    def passwords_match(self):
        if self.confirm_password is not None and self.confirm_password != self.new_password:
            raise ValueError("Passwords do not match")
        return self


class UpdateContactRequest(CamelModel):
    email: EmailStr | None = None
    phone: str | None = None
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)

    @field_validator("phone")
    @classmethod
    def phone_valid(cls, v: str | None) -> str | None:
        if v is None:
            return v
        _validate_phone_digits(v)
        return v.strip()

    @model_validator(mode="after")
    def something_to_update(self):
        if all(v is None for v in (self.email, self.phone, self.first_name, self.last_name)):
            raise ValueError("Provide at least one field to update")
        return self


class UserDto(CamelModel):
    id: int
    email: str
    phone: str
    first_name: str | None = None
    last_name: str | None = None
    role: UserRole
    account_status: AccountStatus
    email_verified: bool = False
    phone_verified: bool = False
    created_at: datetime | None = None
    last_login: datetime | None = None


class AuthResponse(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    user: UserDto
    expires_in: int
