from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List

from ..core.database import get_db, get_redis
from ..core.security import (
    security, verify_token, AuthenticationError, AuthorizationError,
    UserRole, TokenPayload, CLINIC_MANAGER_ROLES, CLINIC_STAFF_ROLES, is_platform_admin
)
from ..models.user import User
from ..services.auth_service import AuthService

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token_payload = verify_token(credentials.credentials)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user, checking the session is still live."""
    return AuthService(db).authenticate_token(credentials.credentials)

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if current_user.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return current_user

    return role_checker

async def get_platform_admin(
    current_user: User = Depends(get_current_user)
) -> User:
    """Require a platform team member."""
    if not is_platform_admin(current_user):
        raise AuthorizationError("Platform administrator access required")
    return current_user

async def get_clinic_admin(
    current_user: User = Depends(require_role([UserRole.ADMIN]))
) -> User:
    """Require an admin attached to a clinic."""
    if current_user.clinic_id is None:
        raise AuthorizationError("Clinic administrator access required")
    return current_user

async def get_clinic_manager(
    current_user: User = Depends(require_role(CLINIC_MANAGER_ROLES))
) -> User:
    """Require clinic admin or front-desk staff."""
    if current_user.clinic_id is None:
        raise AuthorizationError("User is not assigned to a clinic")
    return current_user

async def get_clinic_member(
    current_user: User = Depends(require_role(CLINIC_STAFF_ROLES))
) -> User:
    """Require any clinic employee."""
    if current_user.clinic_id is None:
        raise AuthorizationError("User is not assigned to a clinic")
    return current_user

async def get_patient_user(
    current_user: User = Depends(require_role([UserRole.PATIENT]))
) -> User:
    """Require patient role."""
    return current_user

async def get_doctor_user(
    current_user: User = Depends(require_role([UserRole.DOCTOR]))
) -> User:
    """Require doctor role."""
    return current_user

def ensure_same_clinic(current_user: User, clinic_id) -> None:
    """Staff may only act on records of their own clinic."""
    if is_platform_admin(current_user):
        return
    if current_user.clinic_id is None or current_user.clinic_id != clinic_id:
        raise AuthorizationError("Access denied for this clinic")

# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Basic rate limiting for passcode and sign-up endpoints."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:{client_ip}:{request.url.path}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, 3600, 1)  # 1 hour window
    else:
        if int(current_requests) >= 10:  # Max 10 requests per hour
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later."
            )
        redis_client.incr(key)
