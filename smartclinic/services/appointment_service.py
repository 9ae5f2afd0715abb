from sqlalchemy.orm import Session
from fastapi import HTTPException, status
from datetime import date, datetime
from typing import List, Optional, Tuple
import logging

from ..core.clock import day_bounds, to_utc_naive, utcnow
from ..core.security import UserRole, CLINIC_STAFF_ROLES, AuthorizationError, is_platform_admin
from ..models.appointment import Appointment, AppointmentStatus
from ..models.user import User
from ..schemas.appointment import (
    AppointmentCreate, AppointmentRequest, PatientAppointmentRequest, AppointmentUpdate
)
from ..models.queue import QueueStatus
from .queue_service import QueueService

logger = logging.getLogger(__name__)

FINAL_STATUSES = [AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW]

STATUS_TRANSITIONS = {
    AppointmentStatus.PENDING_APPROVAL: {AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED},
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS, AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW, AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.SCHEDULED, AppointmentStatus.IN_PROGRESS, AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW, AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.IN_PROGRESS: {AppointmentStatus.COMPLETED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.NO_SHOW: set(),
}

# Queue token outcome when the desk closes an appointment directly
TOKEN_STATUS_FOR = {
    AppointmentStatus.COMPLETED: QueueStatus.COMPLETED,
    AppointmentStatus.NO_SHOW: QueueStatus.MISSED,
}

class AppointmentService:
    def __init__(self, db: Session):
        self.db = db

    # Lookups and access

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()
        if not appointment:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Appointment not found"
            )
        return appointment

    def get_for_user(self, appointment_id: int, user: User) -> Appointment:
        appointment = self.get_appointment(appointment_id)
        self.check_access(appointment, user)
        return appointment

    @staticmethod
    def check_access(appointment: Appointment, user: User) -> None:
        if is_platform_admin(user):
            return
        if user.role == UserRole.PATIENT:
            allowed = appointment.patient_id == user.id
        elif user.role == UserRole.DOCTOR:
            allowed = appointment.doctor_id == user.id
        else:
            allowed = user.clinic_id is not None and appointment.clinic_id == user.clinic_id
        if not allowed:
            raise AuthorizationError("You do not have access to this appointment")

    def _get_doctor(self, doctor_id: int) -> User:
        return QueueService(self.db).get_doctor(doctor_id)

    @staticmethod
    def _future_time(value: datetime) -> datetime:
        value = to_utc_naive(value)
        if value <= utcnow():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Appointment time must be in the future"
            )
        return value

    # Booking

    def create_appointment(self, current_user: User, data: AppointmentCreate) -> Appointment:
        """Book a confirmed slot; patients book for themselves, staff for anyone."""
        doctor = self._get_doctor(data.doctor_id)

        if current_user.role == UserRole.PATIENT:
            patient_id = current_user.id
        elif current_user.role in CLINIC_STAFF_ROLES:
            if data.patient_id is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="patient_id is required when booking for a patient"
                )
            patient = self.db.query(User).filter(
                User.id == data.patient_id,
                User.role == UserRole.PATIENT
            ).first()
            if not patient:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Patient not found"
                )
            if current_user.clinic_id != doctor.clinic_id:
                raise AuthorizationError("Doctor belongs to another clinic")
            patient_id = patient.id
        else:
            raise AuthorizationError("Not allowed to book appointments")

        appointment = Appointment(
            clinic_id=doctor.clinic_id,
            patient_id=patient_id,
            doctor_id=doctor.id,
            appointment_date=self._future_time(data.appointment_date),
            duration=data.duration,
            type=data.type,
            location=data.location,
            notes=data.notes,
            symptoms=data.symptoms,
            status=AppointmentStatus.SCHEDULED,
        )
        self.db.add(appointment)
        self.db.commit()
        self.db.refresh(appointment)

        logger.info(f"Appointment {appointment.id} booked with doctor {doctor.id}")
        return appointment

    def request_appointment(self, data: AppointmentRequest) -> Tuple[Appointment, User]:
        """Public booking request, matched to a patient by phone number."""
        doctor = self._get_doctor(data.doctor_id)
        appointment_date = self._future_time(data.appointment_date)

        patient = self.db.query(User).filter(User.phone_number == data.phone_number).first()
        if patient and patient.role != UserRole.PATIENT:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="This phone number belongs to a staff account"
            )
        if not patient:
            email = data.email
            if email and self.db.query(User).filter(User.email == email).first():
                email = None
            patient = User(
                phone_number=data.phone_number,
                email=email,
                first_name=data.first_name,
                last_name=data.last_name,
                clinic_id=doctor.clinic_id,
                role=UserRole.PATIENT,
                is_active=True,
                is_approved=False,
            )
            self.db.add(patient)
            self.db.flush()

        appointment = self._pending_request(patient, doctor, appointment_date, data)
        return appointment, patient

    def request_for_patient(self, patient: User, data: PatientAppointmentRequest) -> Appointment:
        doctor = self._get_doctor(data.doctor_id)
        return self._pending_request(patient, doctor, self._future_time(data.appointment_date), data)

    def _pending_request(self, patient: User, doctor: User, appointment_date: datetime, data) -> Appointment:
        appointment = Appointment(
            clinic_id=doctor.clinic_id,
            patient_id=patient.id,
            doctor_id=doctor.id,
            appointment_date=appointment_date,
            type=data.type,
            symptoms=data.symptoms,
            notes=data.notes,
            status=AppointmentStatus.PENDING_APPROVAL,
        )
        self.db.add(appointment)
        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    # Approval workflow

    def list_pending(self, clinic_id: int) -> List[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.clinic_id == clinic_id,
            Appointment.status == AppointmentStatus.PENDING_APPROVAL
        ).order_by(Appointment.appointment_date).all()

    def approve(self, appointment_id: int, actor: User, confirmed_date: Optional[datetime] = None) -> Appointment:
        appointment = self.get_for_user(appointment_id, actor)
        if appointment.status != AppointmentStatus.PENDING_APPROVAL:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only pending requests can be approved"
            )

        if confirmed_date is not None:
            appointment.appointment_date = self._future_time(confirmed_date)
        appointment.status = AppointmentStatus.SCHEDULED
        appointment.patient.is_approved = True

        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    def reject(self, appointment_id: int, actor: User, reason: str) -> Appointment:
        appointment = self.get_for_user(appointment_id, actor)
        if appointment.status != AppointmentStatus.PENDING_APPROVAL:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only pending requests can be rejected"
            )
        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancellation_reason = reason
        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    # Listing

    def list_for_user(
        self,
        user: User,
        day: Optional[date] = None,
        doctor_id: Optional[int] = None,
        status_filter: Optional[AppointmentStatus] = None,
    ) -> List[Appointment]:
        query = self.db.query(Appointment)

        if user.role == UserRole.PATIENT:
            query = query.filter(Appointment.patient_id == user.id)
        elif user.role == UserRole.DOCTOR:
            query = query.filter(Appointment.doctor_id == user.id)
        elif not is_platform_admin(user):
            query = query.filter(Appointment.clinic_id == user.clinic_id)

        if day is not None:
            start, end = day_bounds(day)
            query = query.filter(
                Appointment.appointment_date >= start,
                Appointment.appointment_date < end
            )
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if status_filter is not None:
            query = query.filter(Appointment.status == status_filter)

        return query.order_by(Appointment.appointment_date).all()

    # Changes

    def update(self, appointment_id: int, user: User, data: AppointmentUpdate) -> Tuple[Appointment, Optional[datetime]]:
        """Apply edits; returns the appointment and its previous time if it moved."""
        appointment = self.get_for_user(appointment_id, user)
        if appointment.status in FINAL_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot edit a {appointment.status.value} appointment"
            )

        values = data.model_dump(exclude_unset=True)
        if user.role == UserRole.PATIENT:
            # Clinical notes are written by the care team
            for field in ("diagnosis", "treatment_plan"):
                values.pop(field, None)

        previous_date = None
        if values.get("appointment_date") is not None:
            new_date = self._future_time(values.pop("appointment_date"))
            if new_date != appointment.appointment_date:
                previous_date = appointment.appointment_date
                appointment.appointment_date = new_date
                appointment.reminder_sent = False

        for field, value in values.items():
            setattr(appointment, field, value)

        self.db.commit()
        self.db.refresh(appointment)
        return appointment, previous_date

    def update_status(self, appointment_id: int, user: User, new_status: AppointmentStatus) -> Tuple[Appointment, Optional[int]]:
        if user.role == UserRole.PATIENT:
            raise AuthorizationError("Patients can only cancel appointments")
        appointment = self.get_for_user(appointment_id, user)
        if new_status not in STATUS_TRANSITIONS[appointment.status]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot move appointment from {appointment.status.value} to {new_status.value}"
            )
        if new_status == AppointmentStatus.CANCELLED:
            return self.cancel(appointment_id, user, None)

        appointment.status = new_status
        self.db.commit()

        queue_doctor_id = None
        if new_status in TOKEN_STATUS_FOR:
            queue_doctor_id = QueueService(self.db).close_appointment_token(
                appointment.id, TOKEN_STATUS_FOR[new_status]
            )
        self.db.refresh(appointment)
        return appointment, queue_doctor_id

    def cancel(self, appointment_id: int, user: User, reason: Optional[str]) -> Tuple[Appointment, Optional[int]]:
        """Cancel and free the patient's place in today's queue.

        Returns the appointment and the doctor whose queue changed, if any.
        """
        appointment = self.get_for_user(appointment_id, user)
        if appointment.status in FINAL_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Appointment is already {appointment.status.value}"
            )

        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancellation_reason = reason
        self.db.commit()

        queue_doctor_id = QueueService(self.db).remove_appointment_token(appointment.id)
        self.db.refresh(appointment)

        logger.info(f"Appointment {appointment.id} cancelled by user {user.id}")
        return appointment, queue_doctor_id
