from datetime import datetime

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean
from sqlalchemy.orm import relationship

from ..core.database import Base

class DelayNotification(Base):
    __tablename__ = "delay_notifications"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    delay_minutes = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=True)
    affected_patients_count = Column(Integer, default=0)
    notifications_sent = Column(Integer, default=0)
    is_resolved = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    resolved_at = Column(DateTime, nullable=True)

    doctor = relationship("User")

    def __repr__(self):
        return f"<DelayNotification(id={self.id}, doctor_id={self.doctor_id}, minutes={self.delay_minutes})>"
