from sqlalchemy.orm import Session
from fastapi import HTTPException, status
from typing import List
import logging

from ..core.clock import utcnow
from ..core.security import UserRole, AuthorizationError, is_platform_admin
from ..models.emergency import EmergencyRequest, EmergencyStatus, UrgencyLevel
from ..models.clinic import Clinic
from ..models.user import User
from ..schemas.emergency import EmergencyCreate

logger = logging.getLogger(__name__)

RESPONSE_TIMES = {
    UrgencyLevel.CRITICAL: "5-10 minutes",
    UrgencyLevel.HIGH: "15-30 minutes",
    UrgencyLevel.MEDIUM: "1-2 hours",
    UrgencyLevel.LOW: "2-4 hours",
}

OPEN_STATUSES = [EmergencyStatus.PENDING, EmergencyStatus.ACKNOWLEDGED, EmergencyStatus.IN_PROGRESS]

# Forward-only progression for staff updates
NEXT_STATUSES = {
    EmergencyStatus.PENDING: {EmergencyStatus.ACKNOWLEDGED, EmergencyStatus.IN_PROGRESS,
                              EmergencyStatus.RESOLVED, EmergencyStatus.CANCELLED},
    EmergencyStatus.ACKNOWLEDGED: {EmergencyStatus.IN_PROGRESS, EmergencyStatus.RESOLVED,
                                   EmergencyStatus.CANCELLED},
    EmergencyStatus.IN_PROGRESS: {EmergencyStatus.RESOLVED},
    EmergencyStatus.RESOLVED: set(),
    EmergencyStatus.CANCELLED: set(),
}

class EmergencyService:
    def __init__(self, db: Session):
        self.db = db

    def submit(self, patient: User, data: EmergencyCreate) -> EmergencyRequest:
        clinic_id = data.clinic_id or patient.clinic_id
        if data.doctor_id is not None:
            doctor = self.db.query(User).filter(
                User.id == data.doctor_id,
                User.role == UserRole.DOCTOR
            ).first()
            if not doctor:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Doctor not found"
                )
            clinic_id = clinic_id or doctor.clinic_id

        request = EmergencyRequest(
            clinic_id=clinic_id,
            patient_id=patient.id,
            doctor_id=data.doctor_id,
            urgency_level=data.urgency_level,
            symptoms=data.symptoms,
            contact_method=data.contact_method,
            location=data.location,
            notes=data.notes,
            status=EmergencyStatus.PENDING,
        )
        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)
        return request

    @staticmethod
    def response_time(urgency: UrgencyLevel) -> str:
        return RESPONSE_TIMES[urgency]

    def clinic_email(self, clinic_id) -> str:
        clinic = self.db.query(Clinic).filter(Clinic.id == clinic_id).first() if clinic_id else None
        return clinic.email if clinic else None

    def list_for_user(self, user: User, open_only: bool = False) -> List[EmergencyRequest]:
        query = self.db.query(EmergencyRequest)
        if user.role == UserRole.PATIENT:
            query = query.filter(EmergencyRequest.patient_id == user.id)
        elif not is_platform_admin(user):
            query = query.filter(EmergencyRequest.clinic_id == user.clinic_id)
        if open_only:
            query = query.filter(EmergencyRequest.status.in_(OPEN_STATUSES))
        return query.order_by(EmergencyRequest.created_at.desc(), EmergencyRequest.id.desc()).all()

    def update_status(self, request_id: int, actor: User, new_status: EmergencyStatus,
                      notes: str = None) -> EmergencyRequest:
        request = self.db.query(EmergencyRequest).filter(EmergencyRequest.id == request_id).first()
        if not request:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Emergency request not found"
            )
        if not is_platform_admin(actor) and request.clinic_id != actor.clinic_id:
            raise AuthorizationError("Emergency request belongs to another clinic")
        if new_status not in NEXT_STATUSES[request.status]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot move request from {request.status.value} to {new_status.value}"
            )

        now = utcnow()
        request.status = new_status
        request.handled_by = actor.id
        if new_status in (EmergencyStatus.ACKNOWLEDGED, EmergencyStatus.IN_PROGRESS):
            request.acknowledged_at = request.acknowledged_at or now
        if new_status == EmergencyStatus.RESOLVED:
            request.acknowledged_at = request.acknowledged_at or now
            request.resolved_at = now
        if notes:
            request.notes = f"{request.notes}\n{notes}" if request.notes else notes

        self.db.commit()
        self.db.refresh(request)
        logger.info(f"Emergency request {request.id} is now {new_status.value}")
        return request
