from datetime import datetime

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class QueueStatus(str, enum.Enum):
    WAITING = "waiting"
    CALLED = "called"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MISSED = "missed"

class QueuePriority(int, enum.Enum):
    NORMAL = 1
    URGENT = 2
    EMERGENCY = 3

# Tokens still waiting to be seen
PENDING_STATUSES = [QueueStatus.WAITING, QueueStatus.CALLED]
# Tokens that occupy a place in today's queue
ACTIVE_STATUSES = PENDING_STATUSES + [QueueStatus.IN_PROGRESS]

class QueueToken(Base):
    __tablename__ = "queue_tokens"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=True, index=True)
    token_number = Column(Integer, nullable=False)

    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    status = Column(SQLEnum(QueueStatus), default=QueueStatus.WAITING, nullable=False)
    estimated_wait_time = Column(Integer, default=0)  # minutes
    priority = Column(Integer, default=QueuePriority.NORMAL.value)

    called_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    patient = relationship("User", foreign_keys=[patient_id])
    doctor = relationship("User", foreign_keys=[doctor_id])
    appointment = relationship("Appointment")

    def __repr__(self):
        return f"<QueueToken(id={self.id}, doctor_id={self.doctor_id}, number={self.token_number}, status='{self.status}')>"
