from sqlalchemy.orm import Session
from fastapi import HTTPException, status
from datetime import datetime
from typing import List, Optional, Tuple
import logging

from ..core.clock import day_bounds, utcnow
from ..core.security import UserRole, AuthorizationError
from ..models.appointment import Appointment, UPCOMING_STATUSES
from ..models.delay import DelayNotification
from ..models.user import User
from ..schemas.delay import DelayCreate
from .queue_service import QueueService

logger = logging.getLogger(__name__)

class DelayService:
    def __init__(self, db: Session):
        self.db = db

    def _todays_appointments(self, doctor_id: int):
        start, end = day_bounds()
        return self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date >= start,
            Appointment.appointment_date < end,
            Appointment.status.in_(UPCOMING_STATUSES)
        )

    def report_delay(self, actor: User, data: DelayCreate) -> Tuple[DelayNotification, List[str]]:
        """Record a delay and flag today's appointments.

        Returns the notification and the phone numbers to alert.
        """
        if actor.role == UserRole.DOCTOR:
            doctor_id = actor.id
        elif data.doctor_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="doctor_id is required"
            )
        else:
            doctor_id = data.doctor_id

        doctor = QueueService(self.db).get_doctor(doctor_id)
        if actor.role != UserRole.DOCTOR and doctor.clinic_id != actor.clinic_id:
            raise AuthorizationError("Doctor belongs to another clinic")

        appointments = self._todays_appointments(doctor_id).all()
        phone_numbers = []
        for appointment in appointments:
            appointment.is_delayed = True
            appointment.delay_minutes = data.delay_minutes
            appointment.delay_reason = data.reason
            if appointment.patient and appointment.patient.phone_number:
                phone_numbers.append(appointment.patient.phone_number)

        delay = DelayNotification(
            clinic_id=doctor.clinic_id,
            doctor_id=doctor_id,
            delay_minutes=data.delay_minutes,
            reason=data.reason,
            affected_patients_count=len(appointments),
            notifications_sent=len(phone_numbers),
            is_resolved=False,
        )
        self.db.add(delay)
        self.db.flush()

        QueueService(self.db).recalculate_wait_times(doctor_id)
        self.db.commit()
        self.db.refresh(delay)

        logger.info(
            f"Doctor {doctor_id} delayed by {data.delay_minutes} minutes; "
            f"{len(appointments)} appointments affected"
        )
        return delay, phone_numbers

    def list_active(self, doctor_id: Optional[int] = None, clinic_id: Optional[int] = None) -> List[DelayNotification]:
        query = self.db.query(DelayNotification).filter(DelayNotification.is_resolved == False)
        if doctor_id is not None:
            query = query.filter(DelayNotification.doctor_id == doctor_id)
        if clinic_id is not None:
            query = query.filter(DelayNotification.clinic_id == clinic_id)
        return query.order_by(DelayNotification.created_at.desc()).all()

    def resolve(self, delay_id: int, actor: User) -> DelayNotification:
        delay = self.db.query(DelayNotification).filter(DelayNotification.id == delay_id).first()
        if not delay:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Delay notification not found"
            )
        if actor.role == UserRole.DOCTOR and delay.doctor_id != actor.id:
            raise AuthorizationError("You can only resolve your own delays")
        if actor.role != UserRole.DOCTOR and delay.clinic_id != actor.clinic_id:
            raise AuthorizationError("Delay belongs to another clinic")

        delay.is_resolved = True
        delay.resolved_at = utcnow()

        self.db.flush()
        # Appointments keep showing the latest delay still in force
        remaining = self.db.query(DelayNotification).filter(
            DelayNotification.doctor_id == delay.doctor_id,
            DelayNotification.is_resolved == False
        ).order_by(DelayNotification.created_at.desc(), DelayNotification.id.desc()).first()

        for appointment in self._todays_appointments(delay.doctor_id).filter(
            Appointment.is_delayed == True
        ).all():
            if remaining:
                appointment.delay_minutes = remaining.delay_minutes
                appointment.delay_reason = remaining.reason
            else:
                appointment.is_delayed = False
                appointment.delay_minutes = 0
                appointment.delay_reason = None

        self.db.flush()
        QueueService(self.db).recalculate_wait_times(delay.doctor_id)
        self.db.commit()
        self.db.refresh(delay)
        return delay
