from datetime import date, datetime, timedelta

import pytest

from smartclinic.core.config import settings
from smartclinic.models.appointment import Appointment, AppointmentStatus
from smartclinic.models.medicine import Frequency, Medicine, MedicineReminder, Prescription, PrescriptionStatus
from smartclinic.services import scheduler
from smartclinic.services.notification_service import medicine_reminder_text

NOW = datetime(2026, 3, 10, 5, 0)

@pytest.fixture
def outbox(monkeypatch):
    """Capture reminders instead of sending them."""
    sent = []

    def record(*args):
        sent.append(args)
        return True

    monkeypatch.setattr(scheduler, "send_medicine_reminder", record)
    monkeypatch.setattr(scheduler, "send_appointment_reminder", record)
    return sent

@pytest.fixture
def prescription(db, patient):
    medicine = Medicine(clinic_id=patient.clinic_id, name="Metformin", stock=10)
    db.add(medicine)
    db.flush()
    prescription = Prescription(
        patient_id=patient.id,
        medicine_id=medicine.id,
        dosage="500mg",
        frequency=Frequency.TWICE_DAILY,
        start_date=date(2026, 3, 10),
        status=PrescriptionStatus.ACTIVE,
    )
    db.add(prescription)
    db.commit()
    return prescription

def test_due_medicine_reminders_sent_once(db, patient, prescription, outbox):
    due = MedicineReminder(prescription_id=prescription.id, scheduled_at=NOW - timedelta(minutes=1))
    later = MedicineReminder(prescription_id=prescription.id, scheduled_at=NOW + timedelta(hours=1))
    db.add_all([due, later])
    db.commit()

    assert scheduler.process_due_medicine_reminders(db, now=NOW) == 1
    assert outbox == [(patient.phone_number, patient.email, "Metformin", "500mg", due.scheduled_at)]

    db.refresh(due)
    assert due.reminder_sent is True
    assert scheduler.process_due_medicine_reminders(db, now=NOW) == 0

def test_paused_prescription_not_reminded(db, prescription, outbox):
    db.add(MedicineReminder(prescription_id=prescription.id, scheduled_at=NOW))
    prescription.status = PrescriptionStatus.PAUSED
    db.commit()

    assert scheduler.process_due_medicine_reminders(db, now=NOW) == 0
    assert outbox == []

def test_appointment_reminders(db, clinic, doctor, patient, outbox):
    lead = timedelta(minutes=settings.APPOINTMENT_REMINDER_LEAD_MINUTES)
    soon = Appointment(
        clinic_id=clinic.id, patient_id=patient.id, doctor_id=doctor.id,
        appointment_date=NOW + lead, status=AppointmentStatus.SCHEDULED, location="Room 2",
    )
    tomorrow = Appointment(
        clinic_id=clinic.id, patient_id=patient.id, doctor_id=doctor.id,
        appointment_date=NOW + timedelta(days=1), status=AppointmentStatus.SCHEDULED,
    )
    cancelled = Appointment(
        clinic_id=clinic.id, patient_id=patient.id, doctor_id=doctor.id,
        appointment_date=NOW + lead, status=AppointmentStatus.CANCELLED,
    )
    db.add_all([soon, tomorrow, cancelled])
    db.commit()

    assert scheduler.process_appointment_reminders(db, now=NOW) == 1
    assert outbox == [(patient.phone_number, patient.email, "Asha Rao", NOW + lead, "Room 2")]

    db.refresh(soon)
    assert soon.reminder_sent is True
    assert scheduler.process_appointment_reminders(db, now=NOW) == 0

def test_reminder_text_uses_clinic_time():
    text = medicine_reminder_text("Metformin", "500mg", datetime(2026, 3, 10, 3, 30))
    assert "Metformin (500mg)" in text
    assert "09:00 AM" in text

def test_scheduler_registers_jobs(monkeypatch):
    monkeypatch.setattr(scheduler.scheduler, "start", lambda: None)
    scheduler.start_scheduler()
    try:
        job_ids = {job.id for job in scheduler.scheduler.get_jobs()}
        assert job_ids == {"medicine_reminders", "appointment_reminders", "session_cleanup"}
    finally:
        for job in scheduler.scheduler.get_jobs():
            job.remove()
