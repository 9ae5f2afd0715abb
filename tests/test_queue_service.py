from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from smartclinic.core.config import settings
from smartclinic.core.security import UserRole
from smartclinic.models.appointment import Appointment, AppointmentStatus
from smartclinic.models.delay import DelayNotification
from smartclinic.models.queue import QueueToken, QueueStatus, QueuePriority
from smartclinic.services.queue_service import QueueService

from .conftest import make_user

# 10:30 in the clinic's timezone
NOW = datetime(2026, 3, 10, 5, 0)
AVG = settings.AVERAGE_CONSULTATION_MINUTES

def at(minutes):
    return NOW + timedelta(minutes=minutes)

@pytest.fixture
def patients(db, clinic):
    return [make_user(db, UserRole.PATIENT, clinic) for _ in range(3)]

def join(db, patient, doctor, minutes=0, **kwargs):
    return QueueService(db, now=at(minutes)).join_queue(patient.id, doctor.id, **kwargs)

class TestJoining:

    def test_tokens_numbered_in_arrival_order(self, db, doctor, patients):
        tokens = [join(db, p, doctor, minutes=i) for i, p in enumerate(patients)]
        assert [t.token_number for t in tokens] == [1, 2, 3]
        assert all(t.status == QueueStatus.WAITING for t in tokens)
        assert tokens[0].clinic_id == doctor.clinic_id

    def test_join_is_idempotent(self, db, doctor, patients):
        first = join(db, patients[0], doctor)
        again = join(db, patients[0], doctor, minutes=5)
        assert again.id == first.id
        assert db.query(QueueToken).count() == 1

    def test_priority_jumps_ahead(self, db, doctor, patients):
        normal_a = join(db, patients[0], doctor, minutes=0)
        normal_b = join(db, patients[1], doctor, minutes=1)
        urgent = join(db, patients[2], doctor, minutes=2, priority=QueuePriority.URGENT.value)

        db.expire_all()
        assert urgent.token_number == 1
        assert normal_a.token_number == 2
        assert normal_b.token_number == 3

    def test_appointment_slot_beats_walk_in(self, db, clinic, doctor, patients):
        """A booked patient arriving late for an early slot goes before walk-ins."""
        walk_in = join(db, patients[0], doctor, minutes=0)
        appointment = Appointment(
            clinic_id=clinic.id,
            patient_id=patients[1].id,
            doctor_id=doctor.id,
            appointment_date=at(-30),
            status=AppointmentStatus.SCHEDULED,
        )
        db.add(appointment)
        db.commit()

        booked = join(db, patients[1], doctor, minutes=10, appointment_id=appointment.id)
        db.expire_all()
        assert booked.token_number == 1
        assert walk_in.token_number == 2

    def test_appointment_must_match(self, db, clinic, doctor, patients):
        appointment = Appointment(
            clinic_id=clinic.id,
            patient_id=patients[1].id,
            doctor_id=doctor.id,
            appointment_date=at(30),
            status=AppointmentStatus.SCHEDULED,
        )
        db.add(appointment)
        db.commit()

        with pytest.raises(HTTPException) as exc:
            join(db, patients[0], doctor, appointment_id=appointment.id)
        assert exc.value.status_code == 400

    def test_cancelled_appointment_cannot_join(self, db, clinic, doctor, patients):
        appointment = Appointment(
            clinic_id=clinic.id,
            patient_id=patients[0].id,
            doctor_id=doctor.id,
            appointment_date=at(30),
            status=AppointmentStatus.CANCELLED,
        )
        db.add(appointment)
        db.commit()

        with pytest.raises(HTTPException) as exc:
            join(db, patients[0], doctor, appointment_id=appointment.id)
        assert exc.value.status_code == 400

    def test_unknown_doctor(self, db, staff_member, patients):
        with pytest.raises(HTTPException) as exc:
            join(db, patients[0], staff_member)
        assert exc.value.status_code == 404

    def test_yesterdays_tokens_ignored(self, db, doctor, patients):
        join(db, patients[0], doctor, minutes=-24 * 60)
        token = join(db, patients[0], doctor)
        assert token.token_number == 1
        assert db.query(QueueToken).count() == 2

class TestWaitTimes:

    def test_waits_grow_by_average(self, db, doctor, patients):
        for i, p in enumerate(patients):
            join(db, p, doctor, minutes=i)

        waits = [t.estimated_wait_time for t in QueueService(db, now=at(3)).doctor_tokens(doctor.id)]
        assert waits == [0, AVG, 2 * AVG]

    def test_active_delay_added(self, db, clinic, doctor, patients):
        db.add(DelayNotification(
            clinic_id=clinic.id, doctor_id=doctor.id, delay_minutes=20, created_at=at(-5)
        ))
        db.commit()
        join(db, patients[0], doctor)
        join(db, patients[1], doctor, minutes=1)

        waits = QueueService(db, now=at(2)).compute_wait_times(doctor.id)
        assert sorted(waits.values()) == [20, 20 + AVG]

    def test_resolved_delay_ignored(self, db, clinic, doctor, patients):
        db.add(DelayNotification(
            clinic_id=clinic.id, doctor_id=doctor.id, delay_minutes=20, created_at=at(-5), is_resolved=True
        ))
        db.commit()
        assert QueueService(db, now=NOW).current_delay_minutes(doctor.id) == 0

    def test_remaining_consultation_counted(self, db, doctor, patients):
        first = join(db, patients[0], doctor)
        second = join(db, patients[1], doctor, minutes=1)
        QueueService(db, now=at(2)).update_status(first.id, QueueStatus.IN_PROGRESS)

        waits = QueueService(db, now=at(7)).compute_wait_times(doctor.id)
        assert waits[first.id] == 0
        assert waits[second.id] == AVG - 5

class TestStatusChanges:

    def test_call_next_serves_in_order(self, db, doctor, patients):
        tokens = [join(db, p, doctor, minutes=i) for i, p in enumerate(patients)]

        service = QueueService(db, now=at(10))
        serving = service.call_next(doctor.id)
        assert serving.id == tokens[0].id
        assert serving.status == QueueStatus.IN_PROGRESS
        assert serving.started_at == at(10)

        serving = QueueService(db, now=at(25)).call_next(doctor.id)
        assert serving.id == tokens[1].id

        db.expire_all()
        first = db.query(QueueToken).get(tokens[0].id)
        assert first.status == QueueStatus.COMPLETED
        assert first.completed_at == at(25)
        # Numbers stay put while the doctor works through the queue
        assert [t.token_number for t in tokens] == [1, 2, 3]

    def test_call_next_on_empty_queue(self, db, doctor):
        assert QueueService(db, now=NOW).call_next(doctor.id) is None

    def test_one_patient_in_progress(self, db, doctor, patients):
        first = join(db, patients[0], doctor)
        second = join(db, patients[1], doctor, minutes=1)

        service = QueueService(db, now=at(5))
        service.update_status(first.id, QueueStatus.IN_PROGRESS)
        service.update_status(second.id, QueueStatus.IN_PROGRESS)

        db.expire_all()
        assert db.query(QueueToken).get(first.id).status == QueueStatus.COMPLETED

    def test_called_token_served_first(self, db, doctor, patients):
        join(db, patients[0], doctor)
        second = join(db, patients[1], doctor, minutes=1)
        QueueService(db, now=at(2)).update_status(second.id, QueueStatus.CALLED)

        service = QueueService(db, now=at(3))
        assert service.get_position(patients[1].id)["position"] == 1
        assert service.get_position(patients[0].id)["position"] == 2

    def test_invalid_transition(self, db, doctor, patients):
        token = join(db, patients[0], doctor)
        service = QueueService(db, now=at(1))
        service.update_status(token.id, QueueStatus.IN_PROGRESS)
        service.update_status(token.id, QueueStatus.COMPLETED)

        with pytest.raises(HTTPException) as exc:
            service.update_status(token.id, QueueStatus.WAITING)
        assert exc.value.status_code == 400

    def test_missed_marks_no_show(self, db, clinic, doctor, patients):
        appointment = Appointment(
            clinic_id=clinic.id,
            patient_id=patients[0].id,
            doctor_id=doctor.id,
            appointment_date=at(15),
            status=AppointmentStatus.SCHEDULED,
        )
        db.add(appointment)
        db.commit()
        token = join(db, patients[0], doctor, appointment_id=appointment.id)

        QueueService(db, now=at(30)).update_status(token.id, QueueStatus.MISSED)
        db.expire_all()
        assert db.query(Appointment).get(appointment.id).status == AppointmentStatus.NO_SHOW

    def test_missing_token(self, db):
        with pytest.raises(HTTPException) as exc:
            QueueService(db, now=NOW).update_status(999, QueueStatus.CALLED)
        assert exc.value.status_code == 404

class TestHousekeeping:

    def test_cleanup_removes_duplicates(self, db, clinic, doctor, patients):
        join(db, patients[0], doctor)
        join(db, patients[1], doctor, minutes=1)
        db.add(QueueToken(
            clinic_id=clinic.id, doctor_id=doctor.id, patient_id=patients[0].id,
            token_number=3, status=QueueStatus.WAITING, created_at=at(2)
        ))
        db.commit()

        removed = QueueService(db, now=at(3)).cleanup_duplicates(clinic.id)
        assert removed == {doctor.id: 1}
        assert db.query(QueueToken).count() == 2

    def test_cleanup_nothing_to_do(self, db, clinic, doctor, patients):
        join(db, patients[0], doctor)
        assert QueueService(db, now=at(1)).cleanup_duplicates(clinic.id) == {}

    def test_reorder_skips_served_numbers(self, db, doctor, patients):
        tokens = [join(db, p, doctor, minutes=i) for i, p in enumerate(patients)]
        service = QueueService(db, now=at(5))
        service.call_next(doctor.id)
        service.update_status(tokens[0].id, QueueStatus.COMPLETED)

        pending = service.reorder_queue(doctor.id)
        assert [t.token_number for t in pending] == [2, 3]

class TestReadModels:

    def test_position_for_patient(self, db, doctor, patients):
        for i, p in enumerate(patients):
            join(db, p, doctor, minutes=i)

        position = QueueService(db, now=at(3)).get_position(patients[2].id)
        assert position["position"] == 3
        assert position["token_number"] == 3
        assert position["estimated_wait_time"] == 2 * AVG
        assert position["status"] == QueueStatus.WAITING

    def test_position_zero_while_served(self, db, doctor, patients):
        join(db, patients[0], doctor)
        QueueService(db, now=at(1)).call_next(doctor.id)

        position = QueueService(db, now=at(2)).get_position(patients[0].id)
        assert position["position"] == 0
        assert position["estimated_wait_time"] == 0

    def test_position_not_in_queue(self, db, patients):
        position = QueueService(db, now=NOW).get_position(patients[0].id)
        assert position["token_id"] is None
        assert position["position"] is None

    def test_snapshot(self, db, doctor, patients):
        for i, p in enumerate(patients):
            join(db, p, doctor, minutes=i)
        QueueService(db, now=at(5)).call_next(doctor.id)

        snapshot = QueueService(db, now=at(6)).snapshot(doctor.id)
        assert snapshot["doctor_id"] == doctor.id
        assert snapshot["clinic_id"] == doctor.clinic_id
        assert snapshot["current_serving"]["token_number"] == 1
        assert [e["position"] for e in snapshot["queue"]] == [0, 1, 2]
        assert snapshot["queue"][0]["status"] == "in_progress"
        assert snapshot["delay_minutes"] == 0

    def test_clinic_queue(self, db, clinic, doctor, patients):
        other_doctor = make_user(db, UserRole.DOCTOR, clinic)
        join(db, patients[0], doctor)
        join(db, patients[1], other_doctor, minutes=1)

        entries = QueueService(db, now=at(2)).clinic_queue(clinic.id)
        assert len(entries) == 2
        assert entries[0]["doctor_name"] == "Asha Rao"
