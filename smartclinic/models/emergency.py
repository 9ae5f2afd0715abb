from datetime import datetime

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class UrgencyLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

class ContactMethod(str, enum.Enum):
    PHONE = "phone"
    EMAIL = "email"
    SMS = "sms"

class EmergencyStatus(str, enum.Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"

class EmergencyRequest(Base):
    __tablename__ = "emergency_requests"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    urgency_level = Column(SQLEnum(UrgencyLevel), nullable=False)
    symptoms = Column(Text, nullable=False)
    contact_method = Column(SQLEnum(ContactMethod), default=ContactMethod.PHONE)
    location = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(SQLEnum(EmergencyStatus), default=EmergencyStatus.PENDING)
    handled_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    patient = relationship("User", foreign_keys=[patient_id])

    def __repr__(self):
        return f"<EmergencyRequest(id={self.id}, patient_id={self.patient_id}, urgency='{self.urgency_level}')>"
