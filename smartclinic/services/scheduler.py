"""Cron jobs for patient reminders.

The ``process_*`` functions take a session and an optional clock so they can
be run directly; the ``run_*`` wrappers are what APScheduler calls.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..core.config import settings
from ..core.database import SessionLocal
from ..models.appointment import Appointment, UPCOMING_STATUSES
from .auth_service import AuthService
from .notification_service import send_appointment_reminder, send_medicine_reminder
from .reminder_service import ReminderService

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(
    timezone=settings.CLINIC_TIMEZONE,
    job_defaults={"coalesce": True, "max_instances": 1},
)

def process_due_medicine_reminders(db: Session, now: Optional[datetime] = None) -> int:
    """Send every medicine reminder that just came due; returns how many were handled."""
    reminders = ReminderService(db, now=now).due_reminders()
    for reminder in reminders:
        prescription = reminder.prescription
        patient = prescription.patient
        send_medicine_reminder(
            patient.phone_number if patient else None,
            patient.email if patient else None,
            prescription.medicine_name or "medicine",
            prescription.dosage,
            reminder.scheduled_at,
        )
        reminder.reminder_sent = True

    db.commit()
    if reminders:
        logger.info(f"Processed {len(reminders)} medicine reminders")
    return len(reminders)

def process_appointment_reminders(db: Session, now: Optional[datetime] = None) -> int:
    """Remind patients of appointments starting around the configured lead time."""
    now = now or utcnow()
    lead = timedelta(minutes=settings.APPOINTMENT_REMINDER_LEAD_MINUTES)
    window = timedelta(minutes=settings.APPOINTMENT_REMINDER_WINDOW_MINUTES)

    appointments = db.query(Appointment).filter(
        Appointment.appointment_date >= now + lead - window,
        Appointment.appointment_date <= now + lead + window,
        Appointment.status.in_(UPCOMING_STATUSES),
        Appointment.reminder_sent == False
    ).all()

    for appointment in appointments:
        patient = appointment.patient
        send_appointment_reminder(
            patient.phone_number,
            patient.email,
            appointment.doctor.full_name if appointment.doctor else "your doctor",
            appointment.appointment_date,
            appointment.location,
        )
        appointment.reminder_sent = True

    db.commit()
    if appointments:
        logger.info(f"Sent {len(appointments)} appointment reminders")
    return len(appointments)

def _run(job, name: str) -> None:
    db = SessionLocal()
    try:
        job(db)
    except Exception as e:
        db.rollback()
        logger.error(f"Scheduled job '{name}' failed: {str(e)}")
    finally:
        db.close()

def run_medicine_reminders() -> None:
    _run(process_due_medicine_reminders, "medicine reminders")

def run_appointment_reminders() -> None:
    _run(process_appointment_reminders, "appointment reminders")

def run_session_cleanup() -> None:
    _run(lambda db: AuthService(db).cleanup_expired(), "session cleanup")

def start_scheduler() -> None:
    scheduler.add_job(
        run_medicine_reminders, CronTrigger(minute="*"),
        id="medicine_reminders", replace_existing=True
    )
    scheduler.add_job(
        run_appointment_reminders, CronTrigger(minute="*/30"),
        id="appointment_reminders", replace_existing=True
    )
    scheduler.add_job(
        run_session_cleanup, CronTrigger(minute=15),
        id="session_cleanup", replace_existing=True
    )
    scheduler.start()
    logger.info("Reminder scheduler started")

def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Reminder scheduler stopped")
