from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session
from typing import List

from ...core.database import get_db
from ...api.deps import get_current_user, get_clinic_member, get_patient_user
from ...models.user import User
from ...services.emergency_service import EmergencyService
from ...services.notification_service import send_emergency_alert
from ...schemas.emergency import (
    EmergencyCreate, EmergencyStatusUpdate, EmergencyResponse, EmergencySubmitted
)

router = APIRouter(prefix="/emergency", tags=["Emergency Requests"])

@router.post("", response_model=EmergencySubmitted, status_code=201)
async def submit_emergency(
    data: EmergencyCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    """Raise an urgent request with the patient's clinic."""
    service = EmergencyService(db)
    request = service.submit(current_user, data)
    background_tasks.add_task(
        send_emergency_alert,
        service.clinic_email(request.clinic_id),
        current_user.full_name,
        request.urgency_level.value,
        request.symptoms,
    )
    return EmergencySubmitted(
        request=EmergencyResponse.model_validate(request),
        estimated_response_time=service.response_time(request.urgency_level),
    )

@router.get("", response_model=List[EmergencyResponse])
async def list_emergencies(
    open_only: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Patients see their own requests, clinic staff see their clinic's."""
    requests = EmergencyService(db).list_for_user(current_user, open_only)
    return [EmergencyResponse.model_validate(r) for r in requests]

@router.patch("/{request_id}/status", response_model=EmergencyResponse)
async def update_emergency_status(
    request_id: int,
    data: EmergencyStatusUpdate,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    request = EmergencyService(db).update_status(request_id, current_user, data.status, data.notes)
    return EmergencyResponse.model_validate(request)
