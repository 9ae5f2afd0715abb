from datetime import date, datetime, timedelta

import pytest
from fastapi import HTTPException

from smartclinic.core.clock import local_today
from smartclinic.core.security import UserRole
from smartclinic.models.medicine import (
    Frequency, Medicine, MedicineReminder, Prescription, PrescriptionStatus
)
from smartclinic.services.reminder_service import ReminderService, schedule_days

from .conftest import auth_headers, make_user

# 10:30 on 10 March in the clinic's timezone (UTC+05:30)
NOW = datetime(2026, 3, 10, 5, 0)
TODAY = date(2026, 3, 10)

def make_prescription(db, patient, frequency=Frequency.TWICE_DAILY, **overrides):
    medicine = Medicine(clinic_id=patient.clinic_id, name="Amlodipine", stock=10)
    db.add(medicine)
    db.flush()
    values = {
        "patient_id": patient.id,
        "medicine_id": medicine.id,
        "dosage": "5mg",
        "frequency": frequency,
        "start_date": TODAY,
        "end_date": TODAY + timedelta(days=1),
        "completed_doses": 0,
        "status": PrescriptionStatus.ACTIVE,
    }
    values.update(overrides)
    prescription = Prescription(**values)
    db.add(prescription)
    db.commit()
    db.refresh(prescription)
    return prescription

def add_reminder(db, prescription, scheduled_at, **flags):
    reminder = MedicineReminder(prescription_id=prescription.id, scheduled_at=scheduled_at, **flags)
    db.add(reminder)
    db.commit()
    db.refresh(reminder)
    return reminder

class TestScheduleDays:

    def test_daily(self):
        assert schedule_days(Frequency.THREE_TIMES_DAILY, date(2026, 3, 1), date(2026, 3, 3)) == [
            date(2026, 3, 1), date(2026, 3, 2), date(2026, 3, 3)
        ]

    def test_weekly(self):
        assert schedule_days(Frequency.WEEKLY, date(2026, 3, 1), date(2026, 3, 20)) == [
            date(2026, 3, 1), date(2026, 3, 8), date(2026, 3, 15)
        ]

    def test_monthly_skips_short_months(self):
        assert schedule_days(Frequency.MONTHLY, date(2026, 1, 31), date(2026, 5, 31)) == [
            date(2026, 1, 31), date(2026, 3, 31), date(2026, 5, 31)
        ]

    def test_end_before_start(self):
        assert schedule_days(Frequency.ONCE_DAILY, date(2026, 3, 5), date(2026, 3, 1)) == []

class TestGeneration:

    def test_twice_daily_in_clinic_time(self, db, patient):
        prescription = make_prescription(db, patient)
        created = ReminderService(db, now=NOW).generate_reminders(prescription)
        db.commit()

        assert created == 4
        times = [r.scheduled_at for r in db.query(MedicineReminder).order_by(MedicineReminder.scheduled_at)]
        # 09:00 and 21:00 local
        assert times == [
            datetime(2026, 3, 10, 3, 30),
            datetime(2026, 3, 10, 15, 30),
            datetime(2026, 3, 11, 3, 30),
            datetime(2026, 3, 11, 15, 30),
        ]

    def test_regeneration_drops_past_doses(self, db, patient):
        prescription = make_prescription(db, patient)
        service = ReminderService(db, now=NOW)
        service.generate_reminders(prescription)
        db.commit()

        prescription.timings = ["08:00", "13:00"]
        created = service.regenerate_future_reminders(prescription)
        db.commit()

        # Today's 08:00 has passed; the unhandled 09:00 from before stays
        assert created == 3
        assert db.query(MedicineReminder).count() == 4

    def test_regeneration_keeps_handled_slots(self, db, patient):
        prescription = make_prescription(db, patient, frequency=Frequency.ONCE_DAILY)
        service = ReminderService(db, now=NOW)
        service.generate_reminders(prescription)
        db.commit()

        tomorrow = db.query(MedicineReminder).filter(
            MedicineReminder.scheduled_at == datetime(2026, 3, 11, 3, 30)
        ).one()
        tomorrow.is_taken = True
        tomorrow.taken_at = NOW
        db.commit()

        assert service.regenerate_future_reminders(prescription) == 0
        db.commit()

        slots = [r.scheduled_at for r in db.query(MedicineReminder).order_by(MedicineReminder.scheduled_at)]
        assert slots == [datetime(2026, 3, 10, 3, 30), datetime(2026, 3, 11, 3, 30)]

    def test_as_needed_has_no_reminders(self, db, patient):
        prescription = make_prescription(db, patient, frequency=Frequency.AS_NEEDED)
        assert ReminderService(db, now=NOW).generate_reminders(prescription) == 0

    def test_open_ended_uses_horizon(self, db, patient):
        prescription = make_prescription(db, patient, frequency=Frequency.ONCE_DAILY, end_date=None)
        created = ReminderService(db, now=NOW).generate_reminders(prescription)
        assert created == 31

    def test_past_start_begins_today(self, db, patient):
        prescription = make_prescription(
            db, patient, frequency=Frequency.ONCE_DAILY, start_date=TODAY - timedelta(days=5)
        )
        assert ReminderService(db, now=NOW).generate_reminders(prescription) == 2

class TestDoseTracking:

    def test_taken_counts_and_completes(self, db, patient):
        prescription = make_prescription(db, patient, total_doses=2)
        first = add_reminder(db, prescription, NOW - timedelta(hours=1))
        second = add_reminder(db, prescription, NOW + timedelta(hours=1))
        service = ReminderService(db, now=NOW)

        reminder = service.update_status(first.id, patient, "taken", notes="with breakfast")
        assert reminder.is_taken is True
        assert reminder.taken_at == NOW
        assert reminder.notes == "with breakfast"
        assert prescription.completed_doses == 1

        service.update_status(second.id, patient, "taken")
        db.refresh(prescription)
        assert prescription.status == PrescriptionStatus.COMPLETED

        service.update_status(second.id, patient, "not_taken")
        db.refresh(prescription)
        assert prescription.completed_doses == 1
        assert prescription.status == PrescriptionStatus.ACTIVE

    def test_skip_after_taken(self, db, patient):
        prescription = make_prescription(db, patient)
        reminder = add_reminder(db, prescription, NOW)
        service = ReminderService(db, now=NOW)

        service.update_status(reminder.id, patient, "taken")
        reminder = service.update_status(reminder.id, patient, "skipped")
        assert reminder.is_taken is False
        assert reminder.is_skipped is True
        assert reminder.taken_at is None
        assert prescription.completed_doses == 0

    def test_other_patients_reminder(self, db, clinic, patient):
        reminder = add_reminder(db, make_prescription(db, patient), NOW)
        stranger = make_user(db, UserRole.PATIENT, clinic)
        with pytest.raises(HTTPException) as exc:
            ReminderService(db, now=NOW).update_status(reminder.id, stranger, "taken")
        assert exc.value.status_code == 404

    def test_missed_dose_summary(self, db, patient):
        prescription = make_prescription(db, patient)
        add_reminder(db, prescription, NOW - timedelta(days=1))
        add_reminder(db, prescription, NOW - timedelta(days=1, hours=2), is_taken=True)
        add_reminder(db, prescription, NOW - timedelta(hours=1), is_skipped=True)
        add_reminder(db, prescription, NOW - timedelta(hours=1, minutes=30))
        add_reminder(db, prescription, NOW + timedelta(hours=4))

        summary = ReminderService(db, now=NOW).missed_dose_summary(patient.id)
        assert summary == [{
            "prescription_id": prescription.id,
            "medicine_name": "Amlodipine",
            "total_reminders": 4,
            "missed_doses": 2,
            "overdue": 1,
        }]

    def test_due_reminders_window(self, db, patient):
        prescription = make_prescription(db, patient)
        due = add_reminder(db, prescription, NOW - timedelta(minutes=2))
        add_reminder(db, prescription, NOW - timedelta(minutes=20))
        add_reminder(db, prescription, NOW - timedelta(minutes=1), reminder_sent=True)
        add_reminder(db, prescription, NOW + timedelta(minutes=1))

        assert [r.id for r in ReminderService(db, now=NOW).due_reminders()] == [due.id]

class TestReminderRoutes:

    def test_day_view_and_mark_taken(self, client, db, patient):
        today = local_today()
        prescription = make_prescription(
            db, patient, frequency=Frequency.ONCE_DAILY, timings=["00:00", "23:59"],
            start_date=today, end_date=today,
        )
        ReminderService(db).generate_reminders(prescription)
        db.commit()
        headers = auth_headers(db, patient)

        response = client.get("/api/v1/reminders", headers=headers)
        assert response.status_code == 200
        reminders = response.json()
        assert len(reminders) == 2
        assert reminders[0]["medicine_name"] == "Amlodipine"
        assert reminders[0]["dosage"] == "5mg"

        response = client.patch(
            f"/api/v1/reminders/{reminders[0]['id']}/status", json={"status": "taken"}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["is_taken"] is True

        response = client.patch(
            f"/api/v1/reminders/{reminders[0]['id']}/status", json={"status": "forgotten"}, headers=headers
        )
        assert response.status_code == 422

    def test_other_day_empty(self, client, db, patient):
        response = client.get("/api/v1/reminders?date=2020-01-01", headers=auth_headers(db, patient))
        assert response.status_code == 200
        assert response.json() == []

    def test_missed_route(self, client, db, patient):
        make_prescription(db, patient)
        response = client.get("/api/v1/reminders/missed", headers=auth_headers(db, patient))
        assert response.status_code == 200
        assert response.json()[0]["missed_doses"] == 0

    def test_staff_cannot_use_patient_routes(self, client, db, staff_member):
        response = client.get("/api/v1/reminders", headers=auth_headers(db, staff_member))
        assert response.status_code == 403
