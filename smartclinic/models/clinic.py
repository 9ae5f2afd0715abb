from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, Text
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..core.config import settings

class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    address = Column(Text, nullable=True)
    phone_number = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)

    # Geofence for staff check-in
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    checkin_radius_meters = Column(Integer, default=settings.DEFAULT_CHECKIN_RADIUS_METERS)

    is_active = Column(Boolean, default=True)
    is_approved = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    users = relationship("User", back_populates="clinic")

    def __repr__(self):
        return f"<Clinic(id={self.id}, name='{self.name}')>"
