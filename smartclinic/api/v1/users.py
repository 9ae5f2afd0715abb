from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.database import get_db
from ...core.security import UserRole, AuthorizationError, is_platform_admin
from ...api.deps import (
    get_current_user, get_clinic_admin, get_clinic_member, ensure_same_clinic
)
from ...models.user import User
from ...services.user_service import UserService
from ...schemas.user import UserResponse, DoctorSummary, UserUpdate, StaffCreate

router = APIRouter(prefix="/users", tags=["Users"])

@router.get("/me", response_model=UserResponse)
async def read_profile(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)

@router.put("/me", response_model=UserResponse)
async def update_profile(
    data: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update the signed-in user's own profile."""
    user = UserService(db).update_profile(current_user, data)
    return UserResponse.model_validate(user)

@router.post("/me/deactivate")
async def deactivate_own_account(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    UserService(db).deactivate(current_user)
    return {"message": "Account deactivated"}

@router.get("/doctors", response_model=List[DoctorSummary])
async def list_doctors(
    clinic_id: Optional[int] = Query(None),
    db: Session = Depends(get_db)
):
    """Public doctor directory used by the booking form."""
    doctors = UserService(db).list_public_doctors(clinic_id)
    return [DoctorSummary.model_validate(d) for d in doctors]

@router.get("/patients", response_model=List[UserResponse])
async def list_clinic_patients(
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    patients = UserService(db).list_clinic_patients(current_user.clinic_id)
    return [UserResponse.model_validate(p) for p in patients]

@router.put("/patients/{patient_id}", response_model=UserResponse)
async def update_patient(
    patient_id: int,
    data: UserUpdate,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    """Front desk and clinicians correct a patient's details."""
    service = UserService(db)
    patient = service.get_user(patient_id)
    if patient.role != UserRole.PATIENT:
        raise AuthorizationError("Only patient records can be edited here")
    if patient.id not in {p.id for p in service.list_clinic_patients(current_user.clinic_id)}:
        raise AuthorizationError("Patient is not registered with your clinic")
    return UserResponse.model_validate(service.update_profile(patient, data))

@router.get("", response_model=List[UserResponse])
async def list_users(
    role: Optional[UserRole] = Query(None),
    clinic_id: Optional[int] = Query(None),
    active_only: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List accounts.

    Doctors are visible to anyone signed in. Other roles need an admin:
    clinic admins see their own clinic, the platform team sees all.
    """
    if role == UserRole.DOCTOR:
        if clinic_id is None and current_user.role != UserRole.PATIENT:
            clinic_id = current_user.clinic_id
        active_only = True
    elif not is_platform_admin(current_user):
        if current_user.role != UserRole.ADMIN or current_user.clinic_id is None:
            raise AuthorizationError("Administrator access required")
        clinic_id = current_user.clinic_id

    users = UserService(db).list_users(role, clinic_id, active_only, skip, limit)
    return [UserResponse.model_validate(u) for u in users]

@router.post("/staff", response_model=UserResponse, status_code=201)
async def create_staff(
    data: StaffCreate,
    current_user: User = Depends(get_clinic_admin),
    db: Session = Depends(get_db)
):
    """Add a doctor, nurse, staff member or co-admin to the admin's clinic."""
    user = UserService(db).create_staff(current_user.clinic_id, data)
    return UserResponse.model_validate(user)

def _managed_user(db: Session, user_id: int, current_user: User) -> User:
    user = UserService(db).get_user(user_id)
    ensure_same_clinic(current_user, user.clinic_id)
    return user

@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    return UserResponse.model_validate(_managed_user(db, user_id, current_user))

@router.post("/{user_id}/approve", response_model=UserResponse)
async def approve_user(
    user_id: int,
    current_user: User = Depends(get_clinic_admin),
    db: Session = Depends(get_db)
):
    user = _managed_user(db, user_id, current_user)
    return UserResponse.model_validate(UserService(db).approve(user))

@router.post("/{user_id}/activate", response_model=UserResponse)
async def activate_user(
    user_id: int,
    current_user: User = Depends(get_clinic_admin),
    db: Session = Depends(get_db)
):
    user = _managed_user(db, user_id, current_user)
    return UserResponse.model_validate(UserService(db).set_active(user, True))

@router.post("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(
    user_id: int,
    current_user: User = Depends(get_clinic_admin),
    db: Session = Depends(get_db)
):
    if user_id == current_user.id:
        raise AuthorizationError("Use /users/me/deactivate to close your own account")
    user = _managed_user(db, user_id, current_user)
    return UserResponse.model_validate(UserService(db).set_active(user, False))
