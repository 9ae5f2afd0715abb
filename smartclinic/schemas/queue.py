from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime

from ..models.queue import QueueStatus

class QueueJoin(BaseModel):
    doctor_id: int
    appointment_id: Optional[int] = None
    priority: int = Field(1, ge=1, le=3)

class QueueAdd(QueueJoin):
    patient_id: int

class QueueStatusUpdate(BaseModel):
    status: QueueStatus

class QueueTokenResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: Optional[int] = None
    token_number: int
    patient_id: int
    doctor_id: int
    appointment_id: Optional[int] = None
    status: QueueStatus
    estimated_wait_time: int
    priority: int
    called_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

class QueuePosition(BaseModel):
    token_id: Optional[int] = None
    token_number: Optional[int] = None
    doctor_id: Optional[int] = None
    status: Optional[QueueStatus] = None
    position: Optional[int] = None
    estimated_wait_time: int = 0
