from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from ...core.database import get_db
from ...api.deps import (
    get_current_user, get_clinic_manager, get_patient_user, rate_limit_check
)
from ...models.appointment import AppointmentStatus
from ...models.user import User
from ...services.appointment_service import AppointmentService
from ...services.queue_broadcaster import queue_broadcaster
from ...services.notification_service import (
    send_appointment_approved, send_appointment_cancelled,
    send_appointment_request_received, send_appointment_rescheduled
)
from ...schemas.appointment import (
    AppointmentCreate, AppointmentRequest, PatientAppointmentRequest, AppointmentUpdate,
    AppointmentStatusUpdate, AppointmentApproval, AppointmentRejection, AppointmentCancel,
    AppointmentResponse
)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

def _notify_cancelled(background_tasks: BackgroundTasks, appointment, reason) -> None:
    patient = appointment.patient
    background_tasks.add_task(
        send_appointment_cancelled,
        patient.phone_number,
        patient.email,
        patient.full_name,
        appointment.doctor.full_name,
        appointment.appointment_date,
        reason,
    )

@router.post("", response_model=AppointmentResponse, status_code=201)
async def create_appointment(
    data: AppointmentCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Book an appointment directly (patients for themselves, staff for a patient)."""
    appointment = AppointmentService(db).create_appointment(current_user, data)
    return AppointmentResponse.model_validate(appointment)

@router.post("/request", status_code=201)
async def request_appointment(
    data: AppointmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """Public booking request; the clinic approves it before it is scheduled."""
    appointment, patient = AppointmentService(db).request_appointment(data)
    background_tasks.add_task(
        send_appointment_request_received,
        patient.phone_number,
        appointment.doctor.full_name,
        appointment.appointment_date,
    )
    return {
        "message": "Appointment request submitted. You will be notified once it is approved.",
        "appointment": AppointmentResponse.model_validate(appointment),
    }

@router.post("/patient-request", response_model=AppointmentResponse, status_code=201)
async def patient_request(
    data: PatientAppointmentRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    appointment = AppointmentService(db).request_for_patient(current_user, data)
    background_tasks.add_task(
        send_appointment_request_received,
        current_user.phone_number,
        appointment.doctor.full_name,
        appointment.appointment_date,
    )
    return AppointmentResponse.model_validate(appointment)

@router.get("/pending", response_model=List[AppointmentResponse])
async def list_pending(
    current_user: User = Depends(get_clinic_manager),
    db: Session = Depends(get_db)
):
    appointments = AppointmentService(db).list_pending(current_user.clinic_id)
    return [AppointmentResponse.model_validate(a) for a in appointments]

@router.post("/{appointment_id}/approve", response_model=AppointmentResponse)
async def approve_appointment(
    appointment_id: int,
    data: AppointmentApproval,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_clinic_manager),
    db: Session = Depends(get_db)
):
    appointment = AppointmentService(db).approve(appointment_id, current_user, data.confirmed_date)
    patient = appointment.patient
    background_tasks.add_task(
        send_appointment_approved,
        patient.phone_number,
        patient.email,
        patient.full_name,
        appointment.doctor.full_name,
        appointment.appointment_date,
    )
    return AppointmentResponse.model_validate(appointment)

@router.post("/{appointment_id}/reject", response_model=AppointmentResponse)
async def reject_appointment(
    appointment_id: int,
    data: AppointmentRejection,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_clinic_manager),
    db: Session = Depends(get_db)
):
    appointment = AppointmentService(db).reject(appointment_id, current_user, data.reason)
    _notify_cancelled(background_tasks, appointment, data.reason)
    return AppointmentResponse.model_validate(appointment)

@router.get("", response_model=List[AppointmentResponse])
async def list_appointments(
    date: Optional[date] = Query(None, description="Clinic-local day"),
    doctor_id: Optional[int] = Query(None),
    status: Optional[AppointmentStatus] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Appointments visible to the caller, optionally for one day and doctor."""
    appointments = AppointmentService(db).list_for_user(current_user, date, doctor_id, status)
    return [AppointmentResponse.model_validate(a) for a in appointments]

@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    appointment = AppointmentService(db).get_for_user(appointment_id, current_user)
    return AppointmentResponse.model_validate(appointment)

@router.put("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    appointment, previous_date = AppointmentService(db).update(appointment_id, current_user, data)
    if previous_date is not None:
        background_tasks.add_task(
            send_appointment_rescheduled,
            appointment.patient.email,
            appointment.patient.full_name,
            appointment.doctor.full_name,
            previous_date,
            appointment.appointment_date,
        )
    return AppointmentResponse.model_validate(appointment)

@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    appointment, queue_doctor_id = AppointmentService(db).update_status(
        appointment_id, current_user, data.status
    )
    if queue_doctor_id is not None:
        await queue_broadcaster.broadcast(queue_doctor_id, db)
    return AppointmentResponse.model_validate(appointment)

async def _cancel(appointment_id: int, reason, current_user: User, db: Session,
                  background_tasks: BackgroundTasks):
    appointment, queue_doctor_id = AppointmentService(db).cancel(appointment_id, current_user, reason)
    _notify_cancelled(background_tasks, appointment, reason)
    if queue_doctor_id is not None:
        await queue_broadcaster.broadcast(queue_doctor_id, db)
    return AppointmentResponse.model_validate(appointment)

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    data: Optional[AppointmentCancel] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Cancel an appointment and release the patient's queue token."""
    reason = data.reason if data else None
    return await _cancel(appointment_id, reason, current_user, db, background_tasks)

@router.delete("/{appointment_id}", response_model=AppointmentResponse)
async def delete_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return await _cancel(appointment_id, None, current_user, db, background_tasks)
