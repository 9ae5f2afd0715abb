from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from ...core.database import get_db
from ...core.security import UserRole, AuthorizationError
from ...api.deps import get_clinic_member, ensure_same_clinic
from ...models.user import User
from ...services.staff_service import StaffService
from ...services.user_service import UserService
from ...schemas.staff import CheckIn, VerificationResponse

router = APIRouter(prefix="/staff", tags=["Staff Attendance"])

@router.post("/checkin", response_model=VerificationResponse, status_code=201)
async def check_in(
    data: CheckIn,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    """Start a shift; the device must be inside the clinic's geofence."""
    verification = StaffService(db).check_in(current_user, data)
    return VerificationResponse.model_validate(verification)

@router.post("/checkout", response_model=VerificationResponse)
async def check_out(
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    verification = StaffService(db).check_out(current_user)
    return VerificationResponse.model_validate(verification)

@router.get("/verifications", response_model=List[VerificationResponse])
async def verification_history(
    date: Optional[date] = Query(None, description="Clinic-local day"),
    staff_id: Optional[int] = Query(None, description="Admins only"),
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    """Check-in history of the caller, or of a colleague for clinic admins."""
    target_id = current_user.id
    if staff_id is not None and staff_id != current_user.id:
        if current_user.role != UserRole.ADMIN:
            raise AuthorizationError("Only clinic admins can view other staff")
        ensure_same_clinic(current_user, UserService(db).get_user(staff_id).clinic_id)
        target_id = staff_id

    verifications = StaffService(db).history(target_id, date)
    return [VerificationResponse.model_validate(v) for v in verifications]

@router.get("/checkins", response_model=List[VerificationResponse])
async def clinic_checkins(
    date: Optional[date] = Query(None, description="Clinic-local day, defaults to today"),
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    if current_user.role != UserRole.ADMIN:
        raise AuthorizationError("Clinic administrator access required")
    verifications = StaffService(db).clinic_checkins(current_user.clinic_id, date)
    return [VerificationResponse.model_validate(v) for v in verifications]
