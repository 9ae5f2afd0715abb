from pydantic import BaseModel, ConfigDict
from typing import Optional, Literal
from datetime import datetime

class ReminderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    prescription_id: int
    scheduled_at: datetime
    taken_at: Optional[datetime] = None
    skipped_at: Optional[datetime] = None
    is_taken: bool
    is_skipped: bool
    reminder_sent: bool
    notes: Optional[str] = None
    medicine_name: Optional[str] = None
    dosage: Optional[str] = None

class ReminderStatusUpdate(BaseModel):
    status: Literal["taken", "skipped", "not_taken"]
    notes: Optional[str] = None

class MissedDoseSummary(BaseModel):
    prescription_id: int
    medicine_name: str
    total_reminders: int
    missed_doses: int
    overdue: int
