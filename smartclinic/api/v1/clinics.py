from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.database import get_db
from ...core.security import UserRole, AuthorizationError, is_platform_admin
from ...api.deps import get_current_user, get_platform_admin, rate_limit_check, ensure_same_clinic
from ...models.user import User
from ...services.clinic_service import ClinicService
from ...services.notification_service import send_clinic_approved, send_clinic_registration_alert
from ...schemas.clinic import (
    ClinicCreate, ClinicUpdate, ClinicRegistration, ClinicResponse, ClinicStats
)

router = APIRouter(prefix="/clinics", tags=["Clinics"])

@router.post("/register", status_code=201)
async def register_clinic(
    registration: ClinicRegistration,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """Self-service clinic sign-up, reviewed by the platform team."""
    clinic, admin = ClinicService(db).register_clinic(registration)
    background_tasks.add_task(
        send_clinic_registration_alert, clinic.name, admin.full_name, admin.email
    )
    return {
        "message": "Clinic registered successfully. Our team will review it within 48 hours.",
        "clinic": ClinicResponse.model_validate(clinic),
        "admin_id": admin.id,
    }

@router.get("", response_model=List[ClinicResponse])
async def list_clinics(
    approved: Optional[bool] = Query(None),
    current_user: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    clinics = ClinicService(db).list_clinics(approved)
    return [ClinicResponse.model_validate(c) for c in clinics]

@router.post("", response_model=ClinicResponse, status_code=201)
async def create_clinic(
    data: ClinicCreate,
    current_user: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    return ClinicResponse.model_validate(ClinicService(db).create_clinic(data))

def _check_clinic_access(current_user: User, clinic_id: int, write: bool = False) -> None:
    if is_platform_admin(current_user):
        return
    if write and current_user.role != UserRole.ADMIN:
        raise AuthorizationError("Clinic administrator access required")
    ensure_same_clinic(current_user, clinic_id)

@router.get("/{clinic_id}", response_model=ClinicResponse)
async def get_clinic(
    clinic_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    _check_clinic_access(current_user, clinic_id)
    return ClinicResponse.model_validate(ClinicService(db).get_clinic(clinic_id))

@router.put("/{clinic_id}", response_model=ClinicResponse)
async def update_clinic(
    clinic_id: int,
    data: ClinicUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update clinic details, including the check-in location and radius."""
    _check_clinic_access(current_user, clinic_id, write=True)
    return ClinicResponse.model_validate(ClinicService(db).update_clinic(clinic_id, data))

@router.delete("/{clinic_id}")
async def delete_clinic(
    clinic_id: int,
    current_user: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    ClinicService(db).delete_clinic(clinic_id)
    return {"message": "Clinic deleted"}

@router.post("/{clinic_id}/approve", response_model=ClinicResponse)
async def approve_clinic(
    clinic_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_platform_admin),
    db: Session = Depends(get_db)
):
    clinic, admins = ClinicService(db).approve_clinic(clinic_id)
    for admin in admins:
        background_tasks.add_task(send_clinic_approved, admin.email, clinic.name)
    return ClinicResponse.model_validate(clinic)

@router.get("/{clinic_id}/stats", response_model=ClinicStats)
async def clinic_stats(
    clinic_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    _check_clinic_access(current_user, clinic_id, write=True)
    return ClinicService(db).clinic_stats(clinic_id)
