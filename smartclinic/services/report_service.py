from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import date
from typing import Optional

from ..core.clock import day_bounds, local_today
from ..core.config import settings
from ..core.security import UserRole, CLINIC_STAFF_ROLES
from ..models.appointment import Appointment, AppointmentStatus
from ..models.queue import QueueToken
from ..models.user import User

class ReportService:
    def __init__(self, db: Session):
        self.db = db

    def _appointments_on(self, clinic_id: int, day: date):
        start, end = day_bounds(day)
        return self.db.query(Appointment).filter(
            Appointment.clinic_id == clinic_id,
            Appointment.appointment_date >= start,
            Appointment.appointment_date < end
        )

    def dashboard_stats(self, clinic_id: int, day: Optional[date] = None) -> dict:
        day = day or local_today()
        appointments = self._appointments_on(clinic_id, day)

        patients_today = appointments.filter(
            Appointment.status != AppointmentStatus.CANCELLED
        ).with_entities(func.count(func.distinct(Appointment.patient_id))).scalar() or 0
        completed = appointments.filter(
            Appointment.status == AppointmentStatus.COMPLETED
        ).count()
        active_staff = self.db.query(User).filter(
            User.clinic_id == clinic_id,
            User.role.in_(CLINIC_STAFF_ROLES),
            User.is_active == True
        ).count()

        return {
            "patients_today": patients_today,
            "completed_appointments": completed,
            "revenue": completed * settings.CONSULTATION_FEE,
            "active_staff": active_staff,
        }

    def daily_report(self, clinic_id: int, day: Optional[date] = None) -> dict:
        day = day or local_today()
        start, end = day_bounds(day)
        appointments = self._appointments_on(clinic_id, day).all()

        by_status = {}
        by_doctor = {}
        for appointment in appointments:
            by_status[appointment.status.value] = by_status.get(appointment.status.value, 0) + 1
            name = appointment.doctor.full_name if appointment.doctor else str(appointment.doctor_id)
            by_doctor[name] = by_doctor.get(name, 0) + 1

        new_patients = self.db.query(User).filter(
            User.clinic_id == clinic_id,
            User.role == UserRole.PATIENT,
            User.created_at >= start,
            User.created_at < end
        ).count()

        tokens = self.db.query(QueueToken).filter(
            QueueToken.clinic_id == clinic_id,
            QueueToken.created_at >= start,
            QueueToken.created_at < end
        ).all()
        tokens_by_status = {}
        waits = []
        for token in tokens:
            tokens_by_status[token.status.value] = tokens_by_status.get(token.status.value, 0) + 1
            if token.started_at:
                waits.append((token.started_at - token.created_at).total_seconds() / 60)

        completed = by_status.get(AppointmentStatus.COMPLETED.value, 0)
        return {
            "date": day,
            "clinic_id": clinic_id,
            "appointments_by_status": by_status,
            "appointments_by_doctor": by_doctor,
            "new_patients": new_patients,
            "queue_tokens_by_status": tokens_by_status,
            "average_wait_minutes": round(sum(waits) / len(waits), 1) if waits else 0.0,
            "revenue": completed * settings.CONSULTATION_FEE,
        }
