from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime

from ..models.emergency import UrgencyLevel, ContactMethod, EmergencyStatus

class EmergencyCreate(BaseModel):
    urgency_level: UrgencyLevel
    symptoms: str = Field(..., min_length=3)
    contact_method: ContactMethod = ContactMethod.PHONE
    location: Optional[str] = None
    notes: Optional[str] = None
    doctor_id: Optional[int] = None
    clinic_id: Optional[int] = None

class EmergencyStatusUpdate(BaseModel):
    status: EmergencyStatus
    notes: Optional[str] = None

class EmergencyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: Optional[int] = None
    patient_id: int
    doctor_id: Optional[int] = None
    urgency_level: UrgencyLevel
    symptoms: str
    contact_method: ContactMethod
    location: Optional[str] = None
    notes: Optional[str] = None
    status: EmergencyStatus
    handled_by: Optional[int] = None
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

class EmergencySubmitted(BaseModel):
    request: EmergencyResponse
    estimated_response_time: str
