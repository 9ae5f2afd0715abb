from sqlalchemy.orm import Session
from fastapi import HTTPException, status
from datetime import date, datetime, timedelta
from typing import Optional
import json
import logging

from ..models.user import User, OtpSession, AuthSession, OtpChannel
from ..core.config import settings
from ..core.security import (
    verify_password, get_password_hash, create_access_token, verify_token,
    generate_otp, hash_token, token_expiry, UserRole, AuthenticationError
)
from ..schemas.auth import PatientSignup, TokenResponse, UserLogin
from ..schemas.user import UserResponse

logger = logging.getLogger(__name__)

class AuthService:
    def __init__(self, db: Session):
        self.db = db

    # One-time passcodes

    def send_otp(self, channel: OtpChannel, destination: str) -> str:
        """Create a fresh OTP session for the destination and return the code."""
        if channel == OtpChannel.EMAIL:
            user = self.db.query(User).filter(User.email == destination).first()
            if not user:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="No account is registered with this email"
                )

        # Only the newest code is valid
        self.db.query(OtpSession).filter(
            OtpSession.channel == channel,
            OtpSession.destination == destination,
            OtpSession.is_used == False
        ).update({"is_used": True})

        otp = generate_otp()
        session = OtpSession(
            channel=channel,
            destination=destination,
            otp_hash=get_password_hash(otp),
            expires_at=datetime.utcnow() + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
            attempts=0,
        )
        self.db.add(session)
        self.db.commit()

        logger.info(f"OTP issued for {channel.value} {destination}")
        return otp

    def verify_otp(
        self,
        channel: OtpChannel,
        destination: str,
        otp: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenResponse:
        """Check an OTP and sign the user in, creating a patient on first phone login."""
        session = self.db.query(OtpSession).filter(
            OtpSession.channel == channel,
            OtpSession.destination == destination,
            OtpSession.is_used == False,
            OtpSession.expires_at > datetime.utcnow()
        ).order_by(OtpSession.created_at.desc(), OtpSession.id.desc()).first()

        if not session:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid or expired OTP"
            )

        if session.attempts >= settings.OTP_MAX_ATTEMPTS:
            session.is_used = True
            self.db.commit()
            raise HTTPException(
                status_code=status.HTTP_423_LOCKED,
                detail="Too many failed attempts. Please request a new code."
            )

        if not verify_password(otp, session.otp_hash):
            session.attempts += 1
            self.db.commit()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid OTP"
            )

        session.is_used = True

        is_new_user = False
        if channel == OtpChannel.PHONE:
            user = self.db.query(User).filter(User.phone_number == destination).first()
            if not user:
                user = User(
                    phone_number=destination,
                    role=UserRole.PATIENT,
                    is_active=True,
                    is_approved=True,
                )
                self.db.add(user)
                self.db.flush()
                is_new_user = True
        else:
            user = self.db.query(User).filter(User.email == destination).first()
            if not user:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="No account is registered with this email"
                )

        self._check_can_sign_in(user)
        return self.issue_session(user, ip_address, user_agent, is_new_user=is_new_user)

    # Password logins

    def authenticate_user(
        self,
        login_data: UserLogin,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenResponse:
        """Authenticate an email/password user and open a session."""
        user = self.db.query(User).filter(User.email == login_data.email).first()

        if not user or not user.password_hash or not verify_password(
            login_data.password, user.password_hash
        ):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password"
            )

        self._check_can_sign_in(user)
        return self.issue_session(user, ip_address, user_agent)

    # Patient self sign-up, staged in Redis until the email is verified

    def start_patient_signup(self, signup: PatientSignup, redis_client) -> str:
        if self.db.query(User).filter(User.email == signup.email).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )
        if signup.phone_number and self.db.query(User).filter(
            User.phone_number == signup.phone_number
        ).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Phone number already registered"
            )

        otp = generate_otp()
        profile = signup.model_dump(mode="json", exclude={"password"})
        staged = {
            "profile": profile,
            "password_hash": get_password_hash(signup.password),
            "otp_hash": get_password_hash(otp),
            "attempts": 0,
        }
        redis_client.setex(self._signup_key(signup.email), settings.SIGNUP_TTL_SECONDS, json.dumps(staged))
        return otp

    def complete_patient_signup(
        self,
        email: str,
        otp: str,
        redis_client,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenResponse:
        key = self._signup_key(email)
        raw = redis_client.get(key)
        if not raw:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Sign-up expired or not started"
            )

        staged = json.loads(raw)
        if staged["attempts"] >= settings.OTP_MAX_ATTEMPTS:
            redis_client.delete(key)
            raise HTTPException(
                status_code=status.HTTP_423_LOCKED,
                detail="Too many failed attempts. Please sign up again."
            )

        if not verify_password(otp, staged["otp_hash"]):
            staged["attempts"] += 1
            redis_client.setex(key, settings.SIGNUP_TTL_SECONDS, json.dumps(staged))
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid OTP"
            )

        redis_client.delete(key)

        # The address may have been taken while the sign-up was pending
        if self.db.query(User).filter(User.email == email).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        profile = staged["profile"]
        date_of_birth = profile.get("date_of_birth")
        user = User(
            email=profile["email"],
            phone_number=profile.get("phone_number"),
            first_name=profile["first_name"],
            last_name=profile["last_name"],
            date_of_birth=date.fromisoformat(date_of_birth) if date_of_birth else None,
            address=profile.get("address"),
            password_hash=staged["password_hash"],
            role=UserRole.PATIENT,
            is_active=True,
            is_approved=True,
        )
        self.db.add(user)
        self.db.flush()

        return self.issue_session(user, ip_address, user_agent, is_new_user=True)

    # Sessions

    def issue_session(
        self,
        user: User,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        is_new_user: bool = False,
    ) -> TokenResponse:
        """Create a JWT and record it as a revocable auth session."""
        token = create_access_token({
            "sub": str(user.id),
            "role": user.role.value,
            "clinic_id": user.clinic_id,
        })
        payload = verify_token(token)

        self.db.add(AuthSession(
            user_id=user.id,
            token_hash=hash_token(token),
            expires_at=token_expiry(payload),
            ip_address=ip_address,
            user_agent=(user_agent or "")[:255] or None,
        ))
        user.last_login = datetime.utcnow()

        self.db.commit()
        self.db.refresh(user)

        return TokenResponse(
            token=token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user=UserResponse.model_validate(user),
            is_new_user=is_new_user,
        )

    def authenticate_token(self, token: str) -> User:
        """Resolve a bearer token to its user, checking the live session."""
        token_payload = verify_token(token)
        if not token_payload or token_payload.token_type != "access" or not token_payload.sub:
            raise AuthenticationError("Invalid or expired token")

        now = datetime.utcnow()
        session = self.db.query(AuthSession).filter(
            AuthSession.token_hash == hash_token(token),
            AuthSession.expires_at > now
        ).first()
        if not session:
            raise AuthenticationError("Session expired or revoked")

        user = self.db.query(User).filter(User.id == token_payload.user_id).first()
        if not user:
            raise AuthenticationError("User not found")

        if not user.is_active:
            raise AuthenticationError("User account is deactivated")

        session.last_activity = now
        self.db.commit()

        return user

    def logout(self, token: str) -> bool:
        deleted = self.db.query(AuthSession).filter(
            AuthSession.token_hash == hash_token(token)
        ).delete()
        self.db.commit()
        return deleted > 0

    def revoke_all_sessions(self, user_id: int) -> int:
        deleted = self.db.query(AuthSession).filter(
            AuthSession.user_id == user_id
        ).delete()
        self.db.commit()
        return deleted

    def cleanup_expired(self) -> None:
        """Remove expired auth and OTP sessions."""
        now = datetime.utcnow()
        self.db.query(AuthSession).filter(AuthSession.expires_at < now).delete()
        self.db.query(OtpSession).filter(OtpSession.expires_at < now).delete()
        self.db.commit()

    def _check_can_sign_in(self, user: User):
        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Account is deactivated"
            )
        if user.role != UserRole.PATIENT and not user.is_approved:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Account is pending approval"
            )

    @staticmethod
    def _signup_key(email: str) -> str:
        return f"signup:{email.lower()}"
