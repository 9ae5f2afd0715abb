from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import date

from .user import UserResponse

PHONE_PATTERN = r"^\+?[0-9]{7,15}$"

class SendPhoneOtp(BaseModel):
    phone_number: str = Field(..., pattern=PHONE_PATTERN)

class VerifyPhoneOtp(BaseModel):
    phone_number: str = Field(..., pattern=PHONE_PATTERN)
    otp: str = Field(..., min_length=6, max_length=6)

class SendEmailOtp(BaseModel):
    email: EmailStr

class VerifyEmailOtp(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6)

class OtpSentResponse(BaseModel):
    message: str
    expires_in: int
    development_otp: Optional[str] = None

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class PatientSignup(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    date_of_birth: Optional[date] = None
    address: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        if not any(ch.isdigit() for ch in value) or not any(ch.isalpha() for ch in value):
            raise ValueError("Password must contain letters and digits")
        return value

class VerifySignup(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6)

class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
    is_new_user: bool = False
