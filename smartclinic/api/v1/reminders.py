from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from ...core.database import get_db
from ...api.deps import get_patient_user
from ...models.user import User
from ...services.reminder_service import ReminderService
from ...schemas.reminder import ReminderResponse, ReminderStatusUpdate, MissedDoseSummary

router = APIRouter(prefix="/reminders", tags=["Medicine Reminders"])

@router.get("", response_model=List[ReminderResponse])
async def reminders_for_day(
    date: Optional[date] = Query(None, description="Clinic-local day, defaults to today"),
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    """The patient's doses for one day."""
    reminders = ReminderService(db).reminders_for_day(current_user.id, date)
    return [ReminderResponse.model_validate(r) for r in reminders]

@router.get("/upcoming", response_model=List[ReminderResponse])
async def upcoming_reminders(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    reminders = ReminderService(db).upcoming(current_user.id, limit)
    return [ReminderResponse.model_validate(r) for r in reminders]

@router.get("/missed", response_model=List[MissedDoseSummary])
async def missed_doses(
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    return ReminderService(db).missed_dose_summary(current_user.id)

@router.patch("/{reminder_id}/status", response_model=ReminderResponse)
async def update_reminder_status(
    reminder_id: int,
    data: ReminderStatusUpdate,
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    """Mark a dose as taken, skipped, or reset it to not taken."""
    reminder = ReminderService(db).update_status(reminder_id, current_user, data.status, data.notes)
    return ReminderResponse.model_validate(reminder)
