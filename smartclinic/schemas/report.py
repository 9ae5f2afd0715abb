from pydantic import BaseModel
from typing import Dict
from datetime import date

class DashboardStats(BaseModel):
    patients_today: int
    completed_appointments: int
    revenue: int
    active_staff: int

class DailyReport(BaseModel):
    date: date
    clinic_id: int
    appointments_by_status: Dict[str, int]
    appointments_by_doctor: Dict[str, int]
    new_patients: int
    queue_tokens_by_status: Dict[str, int]
    average_wait_minutes: float
    revenue: int
