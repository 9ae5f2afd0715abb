from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.database import get_db
from ...api.deps import get_clinic_member
from ...models.user import User
from ...services.delay_service import DelayService
from ...services.notification_service import send_delay_alerts
from ...services.queue_broadcaster import queue_broadcaster
from ...schemas.delay import DelayCreate, DelayResponse

router = APIRouter(prefix="/delays", tags=["Delay Notifications"])

@router.post("", response_model=DelayResponse, status_code=201)
async def report_delay(
    data: DelayCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    """Tell today's patients that a doctor is running late."""
    delay, phone_numbers = DelayService(db).report_delay(current_user, data)
    doctor_name = delay.doctor.full_name if delay.doctor else "your doctor"
    background_tasks.add_task(
        send_delay_alerts, phone_numbers, doctor_name, delay.delay_minutes, delay.reason
    )
    await queue_broadcaster.broadcast(delay.doctor_id, db)
    return DelayResponse.model_validate(delay)

@router.get("/active", response_model=List[DelayResponse])
async def active_delays(
    doctor_id: Optional[int] = Query(None),
    clinic_id: Optional[int] = Query(None),
    db: Session = Depends(get_db)
):
    """Unresolved delays; public so waiting-room screens can show them."""
    delays = DelayService(db).list_active(doctor_id, clinic_id)
    return [DelayResponse.model_validate(d) for d in delays]

@router.post("/{delay_id}/resolve", response_model=DelayResponse)
async def resolve_delay(
    delay_id: int,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    delay = DelayService(db).resolve(delay_id, current_user)
    await queue_broadcaster.broadcast(delay.doctor_id, db)
    return DelayResponse.model_validate(delay)
