from sqlalchemy.orm import Session
from sqlalchemy import or_
from fastapi import HTTPException, status
from typing import List, Optional

from ..core.security import UserRole, CLINIC_STAFF_ROLES
from ..models.appointment import Appointment
from ..models.user import User
from ..schemas.user import UserUpdate, StaffCreate
from .auth_service import AuthService

class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User not found"
            )
        return user

    def update_profile(self, user: User, data: UserUpdate) -> User:
        values = data.model_dump(exclude_unset=True)
        if values.get("email") and values["email"] != user.email:
            taken = self.db.query(User).filter(
                User.email == values["email"],
                User.id != user.id
            ).first()
            if taken:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Email already registered"
                )
        if "specialization" in values and user.role != UserRole.DOCTOR:
            values.pop("specialization")

        for field, value in values.items():
            setattr(user, field, value)
        self.db.commit()
        self.db.refresh(user)
        return user

    def deactivate(self, user: User) -> User:
        """Deactivate an account and sign it out everywhere."""
        user.is_active = False
        self.db.commit()
        AuthService(self.db).revoke_all_sessions(user.id)
        self.db.refresh(user)
        return user

    def set_active(self, user: User, is_active: bool) -> User:
        if not is_active:
            return self.deactivate(user)
        user.is_active = True
        self.db.commit()
        self.db.refresh(user)
        return user

    def approve(self, user: User) -> User:
        user.is_approved = True
        self.db.commit()
        self.db.refresh(user)
        return user

    def list_users(
        self,
        role: Optional[UserRole] = None,
        clinic_id: Optional[int] = None,
        active_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> List[User]:
        query = self.db.query(User)
        if role is not None:
            query = query.filter(User.role == role)
        if clinic_id is not None:
            query = query.filter(User.clinic_id == clinic_id)
        if active_only:
            query = query.filter(User.is_active == True)
        return query.order_by(User.id).offset(skip).limit(limit).all()

    def list_public_doctors(self, clinic_id: Optional[int] = None) -> List[User]:
        query = self.db.query(User).filter(
            User.role == UserRole.DOCTOR,
            User.is_active == True,
            User.is_approved == True
        )
        if clinic_id is not None:
            query = query.filter(User.clinic_id == clinic_id)
        return query.order_by(User.last_name, User.first_name).all()

    def create_staff(self, clinic_id: int, data: StaffCreate) -> User:
        if data.role not in CLINIC_STAFF_ROLES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Role must be one of admin, staff, doctor or nurse"
            )
        if not data.phone_number and not data.email:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A phone number or email is required"
            )
        if data.phone_number and self.db.query(User).filter(User.phone_number == data.phone_number).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Phone number already registered"
            )
        if data.email and self.db.query(User).filter(User.email == data.email).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        user = User(
            clinic_id=clinic_id,
            role=data.role,
            first_name=data.first_name,
            last_name=data.last_name,
            phone_number=data.phone_number,
            email=data.email,
            specialization=data.specialization if data.role == UserRole.DOCTOR else None,
            is_active=True,
            is_approved=True,  # Added by the clinic admin directly
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def list_clinic_patients(self, clinic_id: int) -> List[User]:
        """Patients registered with the clinic or booked with one of its doctors."""
        booked = self.db.query(Appointment.patient_id).filter(
            Appointment.clinic_id == clinic_id
        )
        return self.db.query(User).filter(
            User.role == UserRole.PATIENT,
            or_(User.clinic_id == clinic_id, User.id.in_(booked))
        ).order_by(User.last_name, User.first_name, User.id).all()
