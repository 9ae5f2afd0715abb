from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from pydantic import BaseModel
import hashlib
import secrets
from enum import Enum

from .config import settings

# Password and passcode hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# JWT Security
security = HTTPBearer()

class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    STAFF = "staff"
    DOCTOR = "doctor"
    NURSE = "nurse"
    PATIENT = "patient"

# Roles that work inside a clinic
CLINIC_STAFF_ROLES = [UserRole.ADMIN, UserRole.STAFF, UserRole.DOCTOR, UserRole.NURSE]
# Roles that manage clinic operations (approvals, queue desk, inventory)
CLINIC_MANAGER_ROLES = [UserRole.ADMIN, UserRole.STAFF]

class TokenPayload(BaseModel):
    sub: Optional[str] = None
    role: Optional[str] = None
    clinic_id: Optional[int] = None
    exp: Optional[int] = None
    token_type: Optional[str] = None

    @property
    def user_id(self) -> Optional[int]:
        return int(self.sub) if self.sub else None

# Password utilities
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    """Generate password hash."""
    return pwd_context.hash(password)

def generate_otp(length: int = 6) -> str:
    """Generate a numeric one-time passcode."""
    return "".join(secrets.choice("0123456789") for _ in range(length))

def hash_token(token: str) -> str:
    """SHA-256 digest used to store issued tokens."""
    return hashlib.sha256(token.encode()).hexdigest()

# JWT utilities
def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create JWT access token."""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({
        "exp": expire,
        "token_type": "access",
        # Unique per token so two logins in the same second get distinct sessions
        "jti": secrets.token_hex(8),
    })

    encoded_jwt = jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )
    return encoded_jwt

def verify_token(token: str) -> Optional[TokenPayload]:
    """Verify and decode JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )

        return TokenPayload(**payload)

    except JWTError:
        return None

def token_expiry(token_payload: TokenPayload) -> datetime:
    if token_payload.exp:
        return datetime.utcfromtimestamp(token_payload.exp)
    return datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

def is_platform_admin(user) -> bool:
    """Platform team members run the multi-clinic console."""
    return (
        user.role == UserRole.SUPER_ADMIN
        and user.clinic_id is None
        and (user.email or "").lower() in [e.lower() for e in settings.PLATFORM_ADMIN_EMAILS]
    )

# Security exceptions
class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

class AuthorizationError(HTTPException):
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )
