from sqlalchemy.orm import Session
from sqlalchemy import func
from fastapi import HTTPException, status
from typing import List, Tuple
import logging

from ..core.config import settings
from ..core.security import UserRole
from ..models.clinic import Clinic
from ..models.user import User
from ..models.appointment import Appointment
from ..models.medicine import Medicine
from ..schemas.clinic import ClinicCreate, ClinicUpdate, ClinicRegistration

logger = logging.getLogger(__name__)

class ClinicService:
    def __init__(self, db: Session):
        self.db = db

    def register_clinic(self, registration: ClinicRegistration) -> Tuple[Clinic, User]:
        """Self-registration: the clinic and its admin wait for platform approval."""
        admin_data = registration.admin
        if self.db.query(User).filter(User.phone_number == admin_data.phone_number).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Phone number already registered"
            )
        if self.db.query(User).filter(User.email == admin_data.email).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        clinic = self._build_clinic(registration.clinic)
        clinic.is_approved = False
        self.db.add(clinic)
        self.db.flush()

        admin = User(
            clinic_id=clinic.id,
            role=UserRole.ADMIN,
            first_name=admin_data.first_name,
            last_name=admin_data.last_name,
            phone_number=admin_data.phone_number,
            email=admin_data.email,
            is_active=True,
            is_approved=False,
        )
        self.db.add(admin)
        self.db.commit()
        self.db.refresh(clinic)
        self.db.refresh(admin)

        logger.info(f"Clinic '{clinic.name}' registered and waiting for approval")
        return clinic, admin

    def create_clinic(self, data: ClinicCreate) -> Clinic:
        clinic = self._build_clinic(data)
        clinic.is_approved = True
        self.db.add(clinic)
        self.db.commit()
        self.db.refresh(clinic)
        return clinic

    def list_clinics(self, approved: bool = None) -> List[Clinic]:
        query = self.db.query(Clinic)
        if approved is not None:
            query = query.filter(Clinic.is_approved == approved)
        return query.order_by(Clinic.name).all()

    def get_clinic(self, clinic_id: int) -> Clinic:
        clinic = self.db.query(Clinic).filter(Clinic.id == clinic_id).first()
        if not clinic:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Clinic not found"
            )
        return clinic

    def update_clinic(self, clinic_id: int, data: ClinicUpdate) -> Clinic:
        clinic = self.get_clinic(clinic_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(clinic, field, value)
        self.db.commit()
        self.db.refresh(clinic)
        return clinic

    def approve_clinic(self, clinic_id: int) -> Tuple[Clinic, List[User]]:
        clinic = self.get_clinic(clinic_id)
        clinic.is_approved = True
        clinic.is_active = True

        admins = self.db.query(User).filter(
            User.clinic_id == clinic_id,
            User.role == UserRole.ADMIN
        ).all()
        for admin in admins:
            admin.is_approved = True

        self.db.commit()
        self.db.refresh(clinic)
        logger.info(f"Clinic {clinic_id} approved with {len(admins)} admin(s)")
        return clinic, admins

    def delete_clinic(self, clinic_id: int) -> None:
        clinic = self.get_clinic(clinic_id)
        user_count = self.db.query(User).filter(User.clinic_id == clinic_id).count()
        if user_count:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot delete clinic with {user_count} associated users"
            )
        self.db.delete(clinic)
        self.db.commit()

    def clinic_stats(self, clinic_id: int) -> dict:
        self.get_clinic(clinic_id)
        rows = self.db.query(User.role, func.count(User.id)).filter(
            User.clinic_id == clinic_id
        ).group_by(User.role).all()

        return {
            "clinic_id": clinic_id,
            "users_by_role": {role.value: count for role, count in rows},
            "appointments": self.db.query(Appointment).filter(
                Appointment.clinic_id == clinic_id
            ).count(),
            "medicines": self.db.query(Medicine).filter(
                Medicine.clinic_id == clinic_id,
                Medicine.is_custom == False
            ).count(),
        }

    def _build_clinic(self, data: ClinicCreate) -> Clinic:
        values = data.model_dump()
        if values.get("checkin_radius_meters") is None:
            values["checkin_radius_meters"] = settings.DEFAULT_CHECKIN_RADIUS_METERS
        return Clinic(**values)
