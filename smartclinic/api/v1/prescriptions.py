from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List

from ...core.database import get_db
from ...core.security import UserRole, CLINIC_STAFF_ROLES, AuthorizationError
from ...api.deps import get_current_user, get_doctor_user, get_patient_user, ensure_same_clinic
from ...models.medicine import Prescription
from ...models.user import User
from ...services.medicine_service import MedicineService
from ...schemas.medicine import (
    PrescriptionCreate, PrescriptionResponse, CustomMedicineCreate, CustomMedicineUpdate,
    MedicineUpload, UploadResult, PrescriptionStatusUpdate
)

router = APIRouter(prefix="/prescriptions", tags=["Prescriptions"])

def _check_prescription_access(prescription: Prescription, user: User) -> None:
    if user.role == UserRole.PATIENT:
        if prescription.patient_id != user.id:
            raise AuthorizationError("You do not have access to this prescription")
        return
    if user.role not in CLINIC_STAFF_ROLES or prescription.doctor is None:
        raise AuthorizationError("You do not have access to this prescription")
    ensure_same_clinic(user, prescription.doctor.clinic_id)

@router.post("", response_model=PrescriptionResponse, status_code=201)
async def create_prescription(
    data: PrescriptionCreate,
    current_user: User = Depends(get_doctor_user),
    db: Session = Depends(get_db)
):
    """Prescribe a clinic medicine; dose reminders are scheduled straight away."""
    prescription = MedicineService(db).prescribe(current_user, data)
    return PrescriptionResponse.model_validate(prescription)

@router.get("", response_model=List[PrescriptionResponse])
async def my_prescriptions(
    active_only: bool = Query(False),
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    prescriptions = MedicineService(db).list_for_patient(current_user.id, active_only)
    return [PrescriptionResponse.model_validate(p) for p in prescriptions]

@router.get("/active", response_model=List[PrescriptionResponse])
async def my_active_prescriptions(
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    prescriptions = MedicineService(db).list_for_patient(current_user.id, active_only=True)
    return [PrescriptionResponse.model_validate(p) for p in prescriptions]

@router.get("/patient/{patient_id}", response_model=List[PrescriptionResponse])
async def patient_prescriptions(
    patient_id: int,
    active_only: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if current_user.role == UserRole.PATIENT and current_user.id != patient_id:
        raise AuthorizationError("Patients can only view their own prescriptions")
    if current_user.role != UserRole.PATIENT and current_user.role not in CLINIC_STAFF_ROLES:
        raise AuthorizationError("Access denied")
    prescriptions = MedicineService(db).list_for_patient(patient_id, active_only)
    return [PrescriptionResponse.model_validate(p) for p in prescriptions]

# Medicines patients track on their own

@router.get("/custom-medicines", response_model=List[PrescriptionResponse])
async def list_custom_medicines(
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    prescriptions = MedicineService(db).list_custom(current_user)
    return [PrescriptionResponse.model_validate(p) for p in prescriptions]

@router.post("/custom-medicines", response_model=PrescriptionResponse, status_code=201)
async def add_custom_medicine(
    data: CustomMedicineCreate,
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    prescription = MedicineService(db).add_custom(current_user, data)
    return PrescriptionResponse.model_validate(prescription)

@router.post("/custom-medicines/upload", response_model=UploadResult)
async def upload_custom_medicines(
    data: MedicineUpload,
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    """Add several medicines from pasted text, one per line.

    Lines look like ``Paracetamol - 500mg - twice a day - after food``.
    Lines that cannot be read are reported back and skipped.
    """
    created, errors = MedicineService(db).upload_custom(current_user, data.text, data.start_date)
    return UploadResult(
        created=[PrescriptionResponse.model_validate(p) for p in created],
        errors=errors,
    )

@router.put("/custom-medicines/{prescription_id}", response_model=PrescriptionResponse)
async def update_custom_medicine(
    prescription_id: int,
    data: CustomMedicineUpdate,
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    prescription = MedicineService(db).update_custom(prescription_id, current_user, data)
    return PrescriptionResponse.model_validate(prescription)

@router.delete("/custom-medicines/{prescription_id}")
async def delete_custom_medicine(
    prescription_id: int,
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    MedicineService(db).delete_custom(prescription_id, current_user)
    return {"message": "Custom medicine deleted"}

@router.get("/{prescription_id}", response_model=PrescriptionResponse)
async def get_prescription(
    prescription_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    prescription = MedicineService(db).get_prescription(prescription_id)
    _check_prescription_access(prescription, current_user)
    return PrescriptionResponse.model_validate(prescription)

@router.patch("/{prescription_id}/status", response_model=PrescriptionResponse)
async def update_prescription_status(
    prescription_id: int,
    data: PrescriptionStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Pause, resume, complete or cancel a course; future reminders follow."""
    service = MedicineService(db)
    _check_prescription_access(service.get_prescription(prescription_id), current_user)
    prescription = service.update_prescription_status(prescription_id, data.status)
    return PrescriptionResponse.model_validate(prescription)
