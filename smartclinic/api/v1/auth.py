from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ...core.database import get_db, get_redis
from ...core.config import settings
from ...core.security import security
from ...api.deps import get_current_user, get_current_user_token, rate_limit_check
from ...models.user import User, OtpChannel
from ...services.auth_service import AuthService
from ...services.notification_service import send_otp_email, send_otp_sms
from ...schemas.auth import (
    SendPhoneOtp, VerifyPhoneOtp, SendEmailOtp, VerifyEmailOtp, OtpSentResponse,
    UserLogin, PatientSignup, VerifySignup, TokenResponse
)
from ...schemas.user import UserResponse

router = APIRouter(prefix="/auth", tags=["Authentication"])

def _client_info(request: Request):
    host = request.client.host if request.client else None
    return host, request.headers.get("user-agent")

def _otp_sent(otp: str, message: str = "OTP sent successfully") -> OtpSentResponse:
    return OtpSentResponse(
        message=message,
        expires_in=settings.OTP_EXPIRE_MINUTES * 60,
        development_otp=otp if settings.EXPOSE_DEV_OTP else None,
    )

@router.post("/send-otp", response_model=OtpSentResponse)
async def send_otp(
    data: SendPhoneOtp,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """Text a login code to a phone number."""
    otp = AuthService(db).send_otp(OtpChannel.PHONE, data.phone_number)
    background_tasks.add_task(send_otp_sms, data.phone_number, otp)
    return _otp_sent(otp)

@router.post("/verify-otp", response_model=TokenResponse)
async def verify_otp(
    data: VerifyPhoneOtp,
    request: Request,
    db: Session = Depends(get_db)
):
    """Exchange a phone code for a session token; first-time numbers become patients."""
    ip_address, user_agent = _client_info(request)
    return AuthService(db).verify_otp(
        OtpChannel.PHONE, data.phone_number, data.otp, ip_address, user_agent
    )

@router.post("/send-email-otp", response_model=OtpSentResponse)
async def send_email_otp(
    data: SendEmailOtp,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """Email a login code to an existing account."""
    otp = AuthService(db).send_otp(OtpChannel.EMAIL, data.email)
    background_tasks.add_task(send_otp_email, data.email, otp)
    return _otp_sent(otp)

@router.post("/verify-email-otp", response_model=TokenResponse)
async def verify_email_otp(
    data: VerifyEmailOtp,
    request: Request,
    db: Session = Depends(get_db)
):
    ip_address, user_agent = _client_info(request)
    return AuthService(db).verify_otp(
        OtpChannel.EMAIL, data.email, data.otp, ip_address, user_agent
    )

@router.post("/patient-signup", response_model=OtpSentResponse)
async def patient_signup(
    data: PatientSignup,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    redis_client = Depends(get_redis),
    _: None = Depends(rate_limit_check)
):
    """Start a patient sign-up; the account is created once the emailed code is verified."""
    otp = AuthService(db).start_patient_signup(data, redis_client)
    background_tasks.add_task(send_otp_email, data.email, otp)
    return _otp_sent(otp, "Verification code sent to your email")

@router.post("/verify-signup-otp", response_model=TokenResponse)
async def verify_signup_otp(
    data: VerifySignup,
    request: Request,
    db: Session = Depends(get_db),
    redis_client = Depends(get_redis)
):
    ip_address, user_agent = _client_info(request)
    return AuthService(db).complete_patient_signup(
        data.email, data.otp, redis_client, ip_address, user_agent
    )

@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: UserLogin,
    request: Request,
    db: Session = Depends(get_db),
):
    """Authenticate an email/password account."""
    ip_address, user_agent = _client_info(request)
    return AuthService(db).authenticate_user(login_data, ip_address, user_agent)

@router.post("/logout")
async def logout(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
):
    """End the current session."""
    revoked = AuthService(db).logout(credentials.credentials)
    return {"message": "Successfully logged out" if revoked else "Logout completed"}

@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """Get current user information."""
    return UserResponse.model_validate(current_user)

@router.post("/verify-token")
async def verify_token_endpoint(
    token_payload = Depends(get_current_user_token),
    current_user: User = Depends(get_current_user)
):
    """Verify if token is valid."""
    return {
        "valid": True,
        "user_id": current_user.id,
        "role": current_user.role.value,
        "clinic_id": current_user.clinic_id,
        "expires": token_payload.exp
    }
