from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime

class DelayCreate(BaseModel):
    delay_minutes: int = Field(..., gt=0, le=480)
    reason: Optional[str] = Field(None, max_length=255)
    doctor_id: Optional[int] = None  # Required when staff report on a doctor's behalf

class DelayResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: Optional[int] = None
    doctor_id: int
    delay_minutes: int
    reason: Optional[str] = None
    affected_patients_count: int
    notifications_sent: int
    is_resolved: bool
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
