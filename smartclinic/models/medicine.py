from datetime import datetime

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Boolean, Text, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class Frequency(str, enum.Enum):
    ONCE_DAILY = "once_daily"
    TWICE_DAILY = "twice_daily"
    THREE_TIMES_DAILY = "three_times_daily"
    FOUR_TIMES_DAILY = "four_times_daily"
    AS_NEEDED = "as_needed"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

class PrescriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PAUSED = "paused"

class Medicine(Base):
    __tablename__ = "medicines"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)
    dosage_form = Column(String(50), nullable=True)  # tablet, syrup, injection
    strength = Column(String(50), nullable=True)
    manufacturer = Column(String(200), nullable=True)
    stock = Column(Integer, default=0)
    is_custom = Column(Boolean, default=False)  # Added by a patient for self-tracking
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Medicine(id={self.id}, name='{self.name}', stock={self.stock})>"

class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # Null for self-added medicines
    medicine_id = Column(Integer, ForeignKey("medicines.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    dosage = Column(String(100), nullable=False)
    frequency = Column(SQLEnum(Frequency), nullable=False)
    instructions = Column(Text, nullable=True)
    timings = Column(JSON, nullable=True)  # ["08:00", "20:00"] in clinic time
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    total_doses = Column(Integer, nullable=True)
    completed_doses = Column(Integer, default=0)
    status = Column(SQLEnum(PrescriptionStatus), default=PrescriptionStatus.ACTIVE)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    medicine = relationship("Medicine")
    patient = relationship("User", foreign_keys=[patient_id])
    doctor = relationship("User", foreign_keys=[doctor_id])
    reminders = relationship(
        "MedicineReminder",
        back_populates="prescription",
        cascade="all, delete-orphan",
    )

    @property
    def medicine_name(self):
        return self.medicine.name if self.medicine else None

    def __repr__(self):
        return f"<Prescription(id={self.id}, patient_id={self.patient_id}, medicine_id={self.medicine_id})>"

class MedicineReminder(Base):
    __tablename__ = "medicine_reminders"

    id = Column(Integer, primary_key=True, index=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id"), nullable=False, index=True)
    scheduled_at = Column(DateTime, nullable=False, index=True)  # UTC
    taken_at = Column(DateTime, nullable=True)
    skipped_at = Column(DateTime, nullable=True)
    is_taken = Column(Boolean, default=False)
    is_skipped = Column(Boolean, default=False)
    reminder_sent = Column(Boolean, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    prescription = relationship("Prescription", back_populates="reminders")

    @property
    def medicine_name(self):
        return self.prescription.medicine_name if self.prescription else None

    @property
    def dosage(self):
        return self.prescription.dosage if self.prescription else None

    def __repr__(self):
        return f"<MedicineReminder(id={self.id}, prescription_id={self.prescription_id}, at='{self.scheduled_at}')>"
