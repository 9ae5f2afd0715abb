"""Clinic queue engine.

Each doctor has one queue per clinic-local day. Tokens are served in this
order: tokens already called, then higher priority, then earlier slot time
(the appointment time, or the arrival time for walk-ins), then arrival
order. Token numbers are labels handed to patients; they are reassigned
only when someone joins, so a patient's number never changes while the
doctor works through the queue.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from ..core.clock import day_bounds, utcnow
from ..core.config import settings
from ..core.security import UserRole
from ..models.appointment import Appointment, AppointmentStatus
from ..models.delay import DelayNotification
from ..models.queue import QueueToken, QueueStatus, QueuePriority, ACTIVE_STATUSES, PENDING_STATUSES
from ..models.user import User

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    QueueStatus.WAITING: {QueueStatus.CALLED, QueueStatus.IN_PROGRESS, QueueStatus.MISSED},
    QueueStatus.CALLED: {QueueStatus.WAITING, QueueStatus.IN_PROGRESS, QueueStatus.MISSED},
    QueueStatus.IN_PROGRESS: {QueueStatus.COMPLETED},
    QueueStatus.MISSED: {QueueStatus.WAITING},
    QueueStatus.COMPLETED: set(),
}

# Appointment status that follows a token status change
APPOINTMENT_STATUS_FOR = {
    QueueStatus.IN_PROGRESS: AppointmentStatus.IN_PROGRESS,
    QueueStatus.COMPLETED: AppointmentStatus.COMPLETED,
    QueueStatus.MISSED: AppointmentStatus.NO_SHOW,
}

CLOSED_APPOINTMENT_STATUSES = [
    AppointmentStatus.CANCELLED,
    AppointmentStatus.COMPLETED,
    AppointmentStatus.NO_SHOW,
]

def serving_order(token: QueueToken):
    """Sort key for pending tokens."""
    slot_time = token.appointment.appointment_date if token.appointment else token.created_at
    return (
        0 if token.status == QueueStatus.CALLED else 1,
        -(token.priority or QueuePriority.NORMAL.value),
        slot_time or datetime.max,
        token.created_at or datetime.max,
        token.id or 0,
    )

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None

class QueueService:
    def __init__(self, db: Session, now: Optional[datetime] = None):
        self.db = db
        self._fixed_now = now

    @property
    def now(self) -> datetime:
        return self._fixed_now or utcnow()

    # Queries

    def _todays_tokens(self):
        start, end = day_bounds(now=self.now)
        return self.db.query(QueueToken).filter(
            QueueToken.created_at >= start,
            QueueToken.created_at < end
        )

    def doctor_tokens(self, doctor_id: int) -> List[QueueToken]:
        """All of today's tokens for a doctor, by token number."""
        return self._todays_tokens().filter(
            QueueToken.doctor_id == doctor_id
        ).order_by(QueueToken.token_number, QueueToken.id).all()

    def get_token(self, token_id: int) -> QueueToken:
        token = self.db.query(QueueToken).filter(QueueToken.id == token_id).first()
        if not token:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Queue token not found"
            )
        return token

    def get_doctor(self, doctor_id: int) -> User:
        doctor = self.db.query(User).filter(
            User.id == doctor_id,
            User.role == UserRole.DOCTOR,
            User.is_active == True
        ).first()
        if not doctor:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Doctor not found"
            )
        return doctor

    @staticmethod
    def pending_in_order(tokens: List[QueueToken]) -> List[QueueToken]:
        return sorted(
            (t for t in tokens if t.status in PENDING_STATUSES),
            key=serving_order
        )

    @staticmethod
    def serving_token(tokens: List[QueueToken]) -> Optional[QueueToken]:
        return next((t for t in tokens if t.status == QueueStatus.IN_PROGRESS), None)

    # Joining and ordering

    def join_queue(
        self,
        patient_id: int,
        doctor_id: int,
        appointment_id: Optional[int] = None,
        priority: int = QueuePriority.NORMAL.value,
    ) -> QueueToken:
        """Give the patient a token in today's queue, or return the one they hold."""
        doctor = self.get_doctor(doctor_id)

        if appointment_id is not None:
            appointment = self.db.query(Appointment).filter(
                Appointment.id == appointment_id
            ).first()
            if not appointment:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Appointment not found"
                )
            if appointment.patient_id != patient_id or appointment.doctor_id != doctor_id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Appointment does not match this patient and doctor"
                )
            if appointment.status in CLOSED_APPOINTMENT_STATUSES:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Cannot join the queue for a {appointment.status.value} appointment"
                )

        existing = self._todays_tokens().filter(
            QueueToken.doctor_id == doctor_id,
            QueueToken.patient_id == patient_id,
            QueueToken.status.in_(ACTIVE_STATUSES)
        ).order_by(QueueToken.token_number).first()
        if existing:
            return existing

        token = QueueToken(
            clinic_id=doctor.clinic_id,
            doctor_id=doctor_id,
            patient_id=patient_id,
            appointment_id=appointment_id,
            priority=priority,
            status=QueueStatus.WAITING,
            token_number=0,
            created_at=self.now,
        )
        self.db.add(token)
        self.db.flush()

        self.reorder_queue(doctor_id)
        self.recalculate_wait_times(doctor_id)
        self.db.commit()
        self.db.refresh(token)

        logger.info(f"Patient {patient_id} joined queue of doctor {doctor_id} as token {token.token_number}")
        return token

    def reorder_queue(self, doctor_id: int) -> List[QueueToken]:
        """Renumber pending tokens in serving order after the last served number."""
        tokens = self.doctor_tokens(doctor_id)
        pending = self.pending_in_order(tokens)
        done = [t for t in tokens if t.status not in PENDING_STATUSES]

        next_number = max((t.token_number for t in done), default=0) + 1
        for offset, token in enumerate(pending):
            token.token_number = next_number + offset

        self.db.flush()
        return pending

    # Wait times

    def current_delay_minutes(self, doctor_id: int) -> int:
        start, end = day_bounds(now=self.now)
        delay = self.db.query(DelayNotification).filter(
            DelayNotification.doctor_id == doctor_id,
            DelayNotification.is_resolved == False,
            DelayNotification.created_at >= start,
            DelayNotification.created_at < end
        ).order_by(DelayNotification.created_at.desc(), DelayNotification.id.desc()).first()
        return delay.delay_minutes if delay else 0

    def compute_wait_times(self, doctor_id: int, tokens: Optional[List[QueueToken]] = None) -> Dict[int, int]:
        """Estimated minutes until each of today's tokens is seen."""
        tokens = tokens if tokens is not None else self.doctor_tokens(doctor_id)
        average = settings.AVERAGE_CONSULTATION_MINUTES

        remaining = 0
        serving = self.serving_token(tokens)
        if serving:
            started = serving.started_at or serving.called_at
            elapsed = (self.now - started).total_seconds() / 60 if started else 0
            remaining = max(int(round(average - elapsed)), 0)

        base = self.current_delay_minutes(doctor_id) + remaining
        waits = {t.id: 0 for t in tokens}
        for index, token in enumerate(self.pending_in_order(tokens)):
            waits[token.id] = base + index * average
        return waits

    def recalculate_wait_times(self, doctor_id: int) -> None:
        self.db.flush()
        tokens = self.doctor_tokens(doctor_id)
        waits = self.compute_wait_times(doctor_id, tokens)
        for token in tokens:
            token.estimated_wait_time = waits[token.id]
        self.db.flush()

    # Status changes

    def update_status(self, token_id: int, new_status: QueueStatus) -> QueueToken:
        token = self.get_token(token_id)
        if token.status == new_status:
            return token

        if new_status not in ALLOWED_TRANSITIONS[token.status]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot move token from {token.status.value} to {new_status.value}"
            )

        now = self.now
        if new_status == QueueStatus.IN_PROGRESS:
            # One patient with the doctor at a time
            others = self._todays_tokens().filter(
                QueueToken.doctor_id == token.doctor_id,
                QueueToken.status == QueueStatus.IN_PROGRESS,
                QueueToken.id != token.id
            ).all()
            for other in others:
                self._apply_status(other, QueueStatus.COMPLETED, now)

        self._apply_status(token, new_status, now)
        self.recalculate_wait_times(token.doctor_id)
        self.db.commit()
        self.db.refresh(token)

        logger.info(f"Queue token {token.id} (doctor {token.doctor_id}) is now {new_status.value}")
        return token

    def _apply_status(self, token: QueueToken, new_status: QueueStatus, now: datetime) -> None:
        token.status = new_status
        if new_status == QueueStatus.CALLED:
            token.called_at = now
        elif new_status == QueueStatus.IN_PROGRESS:
            token.called_at = token.called_at or now
            token.started_at = now
        elif new_status == QueueStatus.COMPLETED:
            token.completed_at = now
        elif new_status == QueueStatus.WAITING:
            token.called_at = None

        appointment_status = APPOINTMENT_STATUS_FOR.get(new_status)
        if appointment_status and token.appointment and token.appointment.status != AppointmentStatus.CANCELLED:
            token.appointment.status = appointment_status

    def call_next(self, doctor_id: int) -> Optional[QueueToken]:
        """Finish the current patient and bring in the next one."""
        self.get_doctor(doctor_id)
        tokens = self.doctor_tokens(doctor_id)
        now = self.now

        serving = self.serving_token(tokens)
        if serving:
            self._apply_status(serving, QueueStatus.COMPLETED, now)

        pending = self.pending_in_order(tokens)
        next_token = pending[0] if pending else None
        if next_token:
            self._apply_status(next_token, QueueStatus.IN_PROGRESS, now)

        self.recalculate_wait_times(doctor_id)
        self.db.commit()
        if next_token:
            self.db.refresh(next_token)
        return next_token

    # Housekeeping

    def cleanup_duplicates(self, clinic_id: Optional[int] = None) -> Dict[int, int]:
        """Delete extra active tokens a patient holds with the same doctor today.

        Returns the number of removed tokens per doctor.
        """
        query = self._todays_tokens().filter(QueueToken.status.in_(ACTIVE_STATUSES))
        if clinic_id is not None:
            query = query.filter(QueueToken.clinic_id == clinic_id)

        seen = set()
        removed: Dict[int, int] = {}
        for token in query.order_by(QueueToken.token_number, QueueToken.id).all():
            key = (token.doctor_id, token.patient_id)
            if key in seen:
                self.db.delete(token)
                removed[token.doctor_id] = removed.get(token.doctor_id, 0) + 1
            else:
                seen.add(key)

        self.db.flush()
        for doctor_id in removed:
            self.recalculate_wait_times(doctor_id)
        self.db.commit()
        return removed

    def remove_appointment_token(self, appointment_id: int) -> Optional[int]:
        """Drop the active token of a cancelled appointment; returns its doctor."""
        token = self.db.query(QueueToken).filter(
            QueueToken.appointment_id == appointment_id,
            QueueToken.status.in_(ACTIVE_STATUSES)
        ).first()
        if not token:
            return None

        doctor_id = token.doctor_id
        self.db.delete(token)
        self.db.flush()
        self.recalculate_wait_times(doctor_id)
        self.db.commit()
        return doctor_id

    def close_appointment_token(self, appointment_id: int, token_status: QueueStatus) -> Optional[int]:
        """Finish the active token of an appointment closed at the desk; returns its doctor."""
        token = self.db.query(QueueToken).filter(
            QueueToken.appointment_id == appointment_id,
            QueueToken.status.in_(ACTIVE_STATUSES)
        ).first()
        if not token:
            return None

        self._apply_status(token, token_status, self.now)
        self.db.flush()
        self.recalculate_wait_times(token.doctor_id)
        self.db.commit()
        return token.doctor_id

    # Read models

    def get_position(
        self,
        patient_id: int,
        doctor_id: Optional[int] = None,
        clinic_id: Optional[int] = None
    ) -> dict:
        query = self._todays_tokens().filter(
            QueueToken.patient_id == patient_id,
            QueueToken.status.in_(ACTIVE_STATUSES)
        )
        if doctor_id is not None:
            query = query.filter(QueueToken.doctor_id == doctor_id)
        if clinic_id is not None:
            query = query.filter(QueueToken.clinic_id == clinic_id)
        token = query.order_by(QueueToken.created_at, QueueToken.id).first()

        if not token:
            return {
                "token_id": None,
                "token_number": None,
                "doctor_id": doctor_id,
                "status": None,
                "position": None,
                "estimated_wait_time": 0,
            }

        tokens = self.doctor_tokens(token.doctor_id)
        waits = self.compute_wait_times(token.doctor_id, tokens)
        if token.status == QueueStatus.IN_PROGRESS:
            position = 0
        else:
            position = [t.id for t in self.pending_in_order(tokens)].index(token.id) + 1

        return {
            "token_id": token.id,
            "token_number": token.token_number,
            "doctor_id": token.doctor_id,
            "status": token.status,
            "position": position,
            "estimated_wait_time": waits[token.id],
        }

    def _entry(self, token: QueueToken, position: Optional[int], wait: int) -> dict:
        return {
            "id": token.id,
            "token_number": token.token_number,
            "patient_id": token.patient_id,
            "patient_name": token.patient.full_name if token.patient else None,
            "doctor_id": token.doctor_id,
            "appointment_id": token.appointment_id,
            "status": token.status.value,
            "priority": token.priority,
            "position": position,
            "estimated_wait_time": wait,
            "created_at": _iso(token.created_at),
        }

    def snapshot(self, doctor_id: int) -> dict:
        """Live view of a doctor's queue as pushed to displays and patients."""
        tokens = self.doctor_tokens(doctor_id)
        waits = self.compute_wait_times(doctor_id, tokens)
        serving = self.serving_token(tokens)

        queue = []
        if serving:
            queue.append(self._entry(serving, 0, 0))
        for index, token in enumerate(self.pending_in_order(tokens)):
            queue.append(self._entry(token, index + 1, waits[token.id]))

        doctor = self.db.query(User).filter(User.id == doctor_id).first()
        return {
            "doctor_id": doctor_id,
            "clinic_id": doctor.clinic_id if doctor else None,
            "queue": queue,
            "current_serving": {
                "id": serving.id,
                "token_number": serving.token_number,
                "patient_name": serving.patient.full_name if serving.patient else None,
                "called_at": _iso(serving.called_at),
                "started_at": _iso(serving.started_at),
            } if serving else None,
            "delay_minutes": self.current_delay_minutes(doctor_id),
            "timestamp": self.now.isoformat(),
        }

    def clinic_queue(self, clinic_id: int) -> List[dict]:
        """Every token issued today in the clinic, for the front desk."""
        tokens = self._todays_tokens().filter(
            QueueToken.clinic_id == clinic_id
        ).order_by(QueueToken.doctor_id, QueueToken.token_number).all()

        entries = []
        for token in tokens:
            entry = self._entry(token, None, token.estimated_wait_time or 0)
            entry["doctor_name"] = token.doctor.full_name if token.doctor else None
            entries.append(entry)
        return entries

    def patient_ids_for_doctor(self, doctor_id: int) -> set:
        return {t.patient_id for t in self.doctor_tokens(doctor_id)}

    def patient_clinic_ids(self, patient_id: int) -> set:
        """Clinics where the patient holds an active token today."""
        tokens = self._todays_tokens().filter(
            QueueToken.patient_id == patient_id,
            QueueToken.status.in_(ACTIVE_STATUSES)
        ).all()
        return {t.clinic_id for t in tokens}
