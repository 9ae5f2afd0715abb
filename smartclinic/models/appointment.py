from datetime import datetime

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING_APPROVAL = "pending_approval"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

class AppointmentType(str, enum.Enum):
    CLINIC = "clinic"
    HOME_VISIT = "home_visit"
    TELEHEALTH = "telehealth"

# Appointments that still hold a slot in the doctor's day
UPCOMING_STATUSES = [AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED]

class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Appointment details
    appointment_date = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, default=30)  # minutes
    type = Column(SQLEnum(AppointmentType), default=AppointmentType.CLINIC)
    status = Column(SQLEnum(AppointmentStatus), default=AppointmentStatus.SCHEDULED)
    location = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    symptoms = Column(Text, nullable=True)
    diagnosis = Column(Text, nullable=True)
    treatment_plan = Column(Text, nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    # Doctor running late
    is_delayed = Column(Boolean, default=False)
    delay_minutes = Column(Integer, default=0)
    delay_reason = Column(String(255), nullable=True)

    reminder_sent = Column(Boolean, default=False)

    # Tracking
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    patient = relationship("User", foreign_keys=[patient_id])
    doctor = relationship("User", foreign_keys=[doctor_id])

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, date='{self.appointment_date}')>"
