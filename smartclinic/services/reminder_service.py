"""Medicine reminder generation and dose tracking."""
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from ..core.clock import day_bounds, local_to_utc, local_today, utcnow
from ..core.config import settings
from ..models.medicine import Frequency, MedicineReminder, Prescription, PrescriptionStatus
from ..models.user import User

logger = logging.getLogger(__name__)

# Clinic-local dose times used when a prescription has no custom timings
DEFAULT_TIMINGS = {
    Frequency.ONCE_DAILY: ["09:00"],
    Frequency.TWICE_DAILY: ["09:00", "21:00"],
    Frequency.THREE_TIMES_DAILY: ["08:00", "14:00", "20:00"],
    Frequency.FOUR_TIMES_DAILY: ["08:00", "12:00", "16:00", "20:00"],
    Frequency.WEEKLY: ["09:00"],
    Frequency.MONTHLY: ["09:00"],
    Frequency.AS_NEEDED: [],
}

def dose_times(prescription: Prescription) -> List[time]:
    timings = prescription.timings or DEFAULT_TIMINGS[prescription.frequency]
    result = []
    for value in timings:
        hours, minutes = value.split(":")
        result.append(time(int(hours), int(minutes)))
    return sorted(result)

def schedule_days(frequency: Frequency, start: date, end: date) -> List[date]:
    """Calendar days on which doses fall, inclusive of both ends."""
    if end < start:
        return []

    if frequency == Frequency.WEEKLY:
        step = timedelta(days=7)
        days, current = [], start
        while current <= end:
            days.append(current)
            current += step
        return days

    if frequency == Frequency.MONTHLY:
        days = []
        year, month = start.year, start.month
        while True:
            try:
                current = date(year, month, start.day)
            except ValueError:
                current = None  # Month too short for this day
            if current is not None:
                if current > end:
                    break
                days.append(current)
            month += 1
            if month > 12:
                year, month = year + 1, 1
            if date(year, month, 1) > end:
                break
        return days

    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]

class ReminderService:
    def __init__(self, db: Session, now: Optional[datetime] = None):
        self.db = db
        self._fixed_now = now

    @property
    def now(self) -> datetime:
        return self._fixed_now or utcnow()

    # Generation

    def generate_reminders(self, prescription: Prescription, keep_earlier_today: bool = True) -> int:
        """Create reminder rows for a prescription; returns how many were added."""
        times = dose_times(prescription)
        if not times:
            return 0

        now = self.now
        today = local_today(now)
        start = prescription.start_date or today
        end = prescription.end_date or (today + timedelta(days=settings.REMINDER_HORIZON_DAYS))

        existing = {
            r.scheduled_at for r in self.db.query(MedicineReminder.scheduled_at).filter(
                MedicineReminder.prescription_id == prescription.id
            )
        }

        created = 0
        for day in schedule_days(prescription.frequency, start, end):
            if day < today:
                continue
            for at in times:
                scheduled_at = local_to_utc(day, at)
                if scheduled_at < now and not (keep_earlier_today and day == today):
                    continue
                if scheduled_at in existing:
                    continue
                self.db.add(MedicineReminder(
                    prescription_id=prescription.id,
                    scheduled_at=scheduled_at,
                ))
                created += 1

        self.db.flush()
        logger.info(f"Generated {created} reminders for prescription {prescription.id}")
        return created

    def regenerate_future_reminders(self, prescription: Prescription) -> int:
        """Replace open reminders after a schedule change."""
        self.db.query(MedicineReminder).filter(
            MedicineReminder.prescription_id == prescription.id,
            MedicineReminder.scheduled_at >= self.now,
            MedicineReminder.is_taken == False,
            MedicineReminder.is_skipped == False
        ).delete(synchronize_session="fetch")
        if prescription.status != PrescriptionStatus.ACTIVE:
            self.db.flush()
            return 0
        return self.generate_reminders(prescription, keep_earlier_today=False)

    # Patient views

    def _patient_query(self, patient_id: int):
        return self.db.query(MedicineReminder).join(Prescription).filter(
            Prescription.patient_id == patient_id
        )

    def reminders_for_day(self, patient_id: int, day: Optional[date] = None) -> List[MedicineReminder]:
        start, end = day_bounds(day, now=self.now)
        return self._patient_query(patient_id).filter(
            MedicineReminder.scheduled_at >= start,
            MedicineReminder.scheduled_at < end,
            Prescription.status != PrescriptionStatus.CANCELLED
        ).order_by(MedicineReminder.scheduled_at).all()

    def upcoming(self, patient_id: int, limit: int = 20) -> List[MedicineReminder]:
        return self._patient_query(patient_id).filter(
            MedicineReminder.scheduled_at >= self.now,
            MedicineReminder.is_taken == False,
            MedicineReminder.is_skipped == False,
            Prescription.status == PrescriptionStatus.ACTIVE
        ).order_by(MedicineReminder.scheduled_at).limit(limit).all()

    def get_reminder(self, reminder_id: int, patient: User) -> MedicineReminder:
        reminder = self._patient_query(patient.id).filter(
            MedicineReminder.id == reminder_id
        ).first()
        if not reminder:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Reminder not found"
            )
        return reminder

    def update_status(self, reminder_id: int, patient: User, new_status: str,
                      notes: Optional[str] = None) -> MedicineReminder:
        """Mark a dose taken, skipped or not taken, keeping dose counts in step."""
        reminder = self.get_reminder(reminder_id, patient)
        prescription = reminder.prescription
        was_taken = reminder.is_taken
        now = self.now

        if new_status == "taken":
            reminder.is_taken, reminder.taken_at = True, now
            reminder.is_skipped, reminder.skipped_at = False, None
        elif new_status == "skipped":
            reminder.is_taken, reminder.taken_at = False, None
            reminder.is_skipped, reminder.skipped_at = True, now
        else:
            reminder.is_taken, reminder.taken_at = False, None
            reminder.is_skipped, reminder.skipped_at = False, None

        if notes is not None:
            reminder.notes = notes

        if reminder.is_taken and not was_taken:
            prescription.completed_doses = (prescription.completed_doses or 0) + 1
        elif was_taken and not reminder.is_taken:
            prescription.completed_doses = max((prescription.completed_doses or 0) - 1, 0)

        if prescription.total_doses:
            if prescription.completed_doses >= prescription.total_doses:
                prescription.status = PrescriptionStatus.COMPLETED
            elif prescription.status == PrescriptionStatus.COMPLETED:
                prescription.status = PrescriptionStatus.ACTIVE

        self.db.commit()
        self.db.refresh(reminder)
        return reminder

    def missed_dose_summary(self, patient_id: int) -> List[dict]:
        """Per active prescription: doses so far, missed doses and today's overdue ones."""
        now = self.now
        today_start, _ = day_bounds(now=now)

        prescriptions = self.db.query(Prescription).filter(
            Prescription.patient_id == patient_id,
            Prescription.status == PrescriptionStatus.ACTIVE
        ).order_by(Prescription.id).all()

        summary = []
        for prescription in prescriptions:
            past = [r for r in prescription.reminders if r.scheduled_at <= now]
            missed = [
                r for r in past
                if r.is_skipped or (not r.is_taken and r.scheduled_at < today_start)
            ]
            overdue = [
                r for r in past
                if r.scheduled_at >= today_start and not r.is_taken and not r.is_skipped
            ]
            summary.append({
                "prescription_id": prescription.id,
                "medicine_name": prescription.medicine_name or "Unknown",
                "total_reminders": len(past),
                "missed_doses": len(missed),
                "overdue": len(overdue),
            })
        return summary

    # Scheduler support

    def due_reminders(self) -> List[MedicineReminder]:
        """Reminders that came due within the delivery window and were not handled."""
        now = self.now
        window_start = now - timedelta(minutes=settings.DUE_REMINDER_WINDOW_MINUTES)
        return self.db.query(MedicineReminder).join(Prescription).filter(
            MedicineReminder.scheduled_at >= window_start,
            MedicineReminder.scheduled_at <= now,
            MedicineReminder.is_taken == False,
            MedicineReminder.is_skipped == False,
            MedicineReminder.reminder_sent == False,
            Prescription.status == PrescriptionStatus.ACTIVE
        ).order_by(MedicineReminder.scheduled_at).all()