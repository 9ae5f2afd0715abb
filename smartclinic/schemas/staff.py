from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime

class CheckIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    work_location: str = "clinic"

class VerificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    staff_id: int
    clinic_id: int
    latitude: float
    longitude: float
    distance_meters: float
    work_location: Optional[str] = None
    checked_in_at: datetime
    checked_out_at: Optional[datetime] = None
    is_valid: bool
