from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date

from ...core.database import get_db
from ...api.deps import get_clinic_manager
from ...models.user import User
from ...services.report_service import ReportService
from ...schemas.report import DashboardStats, DailyReport

router = APIRouter(prefix="/reports", tags=["Reports"])

@router.get("/dashboard", response_model=DashboardStats)
async def dashboard_stats(
    date: Optional[date] = Query(None),
    current_user: User = Depends(get_clinic_manager),
    db: Session = Depends(get_db)
):
    """Headline numbers for the clinic dashboard."""
    return ReportService(db).dashboard_stats(current_user.clinic_id, date)

@router.get("/daily", response_model=DailyReport)
async def daily_report(
    date: Optional[date] = Query(None),
    current_user: User = Depends(get_clinic_manager),
    db: Session = Depends(get_db)
):
    return ReportService(db).daily_report(current_user.clinic_id, date)
