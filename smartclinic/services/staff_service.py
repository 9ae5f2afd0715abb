from sqlalchemy.orm import Session
from fastapi import HTTPException, status
from datetime import date
from typing import List, Optional
import logging

from ..core.clock import day_bounds, utcnow
from ..models.clinic import Clinic
from ..models.staff import StaffVerification
from ..models.user import User
from ..schemas.staff import CheckIn
from .geofence import within_radius

logger = logging.getLogger(__name__)

class StaffService:
    def __init__(self, db: Session):
        self.db = db

    def _open_checkin(self, staff_id: int) -> Optional[StaffVerification]:
        return self.db.query(StaffVerification).filter(
            StaffVerification.staff_id == staff_id,
            StaffVerification.checked_out_at.is_(None)
        ).order_by(StaffVerification.checked_in_at.desc()).first()

    def check_in(self, staff: User, data: CheckIn) -> StaffVerification:
        clinic = self.db.query(Clinic).filter(Clinic.id == staff.clinic_id).first()
        if not clinic or clinic.latitude is None or clinic.longitude is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Clinic location is not configured"
            )

        if self._open_checkin(staff.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Already checked in. Please check out first."
            )

        radius = clinic.checkin_radius_meters
        inside, distance = within_radius(
            data.latitude, data.longitude, clinic.latitude, clinic.longitude, radius
        )
        if not inside:
            logger.info(f"Rejected check-in for staff {staff.id}: {distance:.0f}m from clinic {clinic.id}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=(
                    f"You must be within {radius}m of {clinic.name} to check in. "
                    f"Current distance: {round(distance)}m"
                )
            )

        verification = StaffVerification(
            staff_id=staff.id,
            clinic_id=clinic.id,
            latitude=data.latitude,
            longitude=data.longitude,
            distance_meters=round(distance, 1),
            work_location=data.work_location,
            checked_in_at=utcnow(),
            is_valid=True,
        )
        self.db.add(verification)
        self.db.commit()
        self.db.refresh(verification)
        return verification

    def check_out(self, staff: User) -> StaffVerification:
        verification = self._open_checkin(staff.id)
        if not verification:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No active check-in found"
            )
        verification.checked_out_at = utcnow()
        self.db.commit()
        self.db.refresh(verification)
        return verification

    def history(self, staff_id: int, day: Optional[date] = None) -> List[StaffVerification]:
        query = self.db.query(StaffVerification).filter(StaffVerification.staff_id == staff_id)
        if day is not None:
            start, end = day_bounds(day)
            query = query.filter(
                StaffVerification.checked_in_at >= start,
                StaffVerification.checked_in_at < end
            )
        return query.order_by(StaffVerification.checked_in_at.desc()).all()

    def clinic_checkins(self, clinic_id: int, day: Optional[date] = None) -> List[StaffVerification]:
        start, end = day_bounds(day)
        return self.db.query(StaffVerification).filter(
            StaffVerification.clinic_id == clinic_id,
            StaffVerification.checked_in_at >= start,
            StaffVerification.checked_in_at < end
        ).order_by(StaffVerification.checked_in_at).all()
