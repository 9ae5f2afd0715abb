from datetime import datetime

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Float
from sqlalchemy.orm import relationship

from ..core.database import Base

class StaffVerification(Base):
    __tablename__ = "staff_verifications"

    id = Column(Integer, primary_key=True, index=True)
    staff_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    distance_meters = Column(Float, nullable=False)
    work_location = Column(String(100), default="clinic")
    checked_in_at = Column(DateTime, default=datetime.utcnow, index=True)
    checked_out_at = Column(DateTime, nullable=True)
    is_valid = Column(Boolean, default=True)

    staff = relationship("User")

    def __repr__(self):
        return f"<StaffVerification(id={self.id}, staff_id={self.staff_id}, in='{self.checked_in_at}')>"
