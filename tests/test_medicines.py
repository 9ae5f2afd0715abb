from datetime import timedelta

import pytest

from smartclinic.core.clock import local_today
from smartclinic.core.security import UserRole
from smartclinic.models.medicine import Frequency, Medicine, MedicineReminder
from smartclinic.services.medicine_service import normalize_frequency, parse_medicine_line

from .conftest import auth_headers, make_clinic, make_user

@pytest.fixture
def medicine(db, clinic):
    medicine = Medicine(clinic_id=clinic.id, name="Paracetamol", strength="500mg", stock=40)
    db.add(medicine)
    db.commit()
    db.refresh(medicine)
    return medicine

class TestInventory:

    def test_create_and_search(self, client, db, staff_member):
        headers = auth_headers(db, staff_member)
        for name in ("Amoxicillin", "Azithromycin", "Cetirizine"):
            response = client.post("/api/v1/medicines", json={"name": name, "stock": 5}, headers=headers)
            assert response.status_code == 201

        response = client.get("/api/v1/medicines?search=ZITH", headers=headers)
        assert [m["name"] for m in response.json()] == ["Azithromycin"]
        assert len(client.get("/api/v1/medicines", headers=headers).json()) == 3

    def test_low_stock_and_restock(self, client, db, doctor, medicine):
        headers = auth_headers(db, doctor)
        assert client.get("/api/v1/medicines/low-stock", headers=headers).json() == []

        low = client.get("/api/v1/medicines/low-stock?threshold=50", headers=headers).json()
        assert [m["id"] for m in low] == [medicine.id]

        response = client.post(f"/api/v1/medicines/{medicine.id}/restock", json={"amount": 60}, headers=headers)
        assert response.status_code == 200
        assert response.json()["stock"] == 100

    def test_restock_needs_positive_amount(self, client, db, staff_member, medicine):
        response = client.post(
            f"/api/v1/medicines/{medicine.id}/restock", json={"amount": 0}, headers=auth_headers(db, staff_member)
        )
        assert response.status_code == 422

    def test_update(self, client, db, staff_member, medicine):
        response = client.put(
            f"/api/v1/medicines/{medicine.id}", json={"dosage_form": "tablet"}, headers=auth_headers(db, staff_member)
        )
        assert response.status_code == 200
        assert response.json()["dosage_form"] == "tablet"
        assert response.json()["name"] == "Paracetamol"

    def test_other_clinic_cannot_see(self, client, db, medicine):
        other = make_clinic(db, name="Other Clinic")
        outsider = make_user(db, UserRole.STAFF, other)
        response = client.get(f"/api/v1/medicines/{medicine.id}", headers=auth_headers(db, outsider))
        assert response.status_code == 404

    def test_patients_have_no_access(self, client, db, patient):
        response = client.get("/api/v1/medicines", headers=auth_headers(db, patient))
        assert response.status_code == 403

class TestPrescriptions:

    def prescribe(self, client, db, doctor, patient, medicine, **extra):
        payload = {
            "patient_id": patient.id,
            "medicine_id": medicine.id,
            "dosage": "1 tablet",
            "frequency": "twice_daily",
        }
        payload.update(extra)
        return client.post("/api/v1/prescriptions", json=payload, headers=auth_headers(db, doctor))

    def test_prescribe_schedules_reminders(self, client, db, doctor, patient, medicine):
        today = local_today()
        response = self.prescribe(
            client, db, doctor, patient, medicine,
            start_date=today.isoformat(),
            end_date=(today + timedelta(days=2)).isoformat(),
        )
        assert response.status_code == 201
        data = response.json()
        assert data["medicine_name"] == "Paracetamol"
        assert data["status"] == "active"
        # Three days of twice-daily doses, today's included
        assert data["total_doses"] == 6
        assert db.query(MedicineReminder).count() == 6

    def test_custom_timings(self, client, db, doctor, patient, medicine):
        today = local_today()
        response = self.prescribe(
            client, db, doctor, patient, medicine,
            timings=["22:00", "07:30", "07:30"],
            start_date=today.isoformat(),
            end_date=today.isoformat(),
        )
        assert response.status_code == 201
        assert response.json()["timings"] == ["07:30", "22:00"]

    def test_invalid_timing(self, client, db, doctor, patient, medicine):
        response = self.prescribe(client, db, doctor, patient, medicine, timings=["25:00"])
        assert response.status_code == 422

    def test_end_before_start(self, client, db, doctor, patient, medicine):
        today = local_today()
        response = self.prescribe(
            client, db, doctor, patient, medicine,
            start_date=today.isoformat(),
            end_date=(today - timedelta(days=1)).isoformat(),
        )
        assert response.status_code == 422

    def test_only_doctors_prescribe(self, client, db, staff_member, patient, medicine):
        response = self.prescribe(client, db, staff_member, patient, medicine)
        assert response.status_code == 403

    def test_medicine_from_other_clinic(self, client, db, patient, medicine):
        other = make_clinic(db, name="Other Clinic")
        other_doctor = make_user(db, UserRole.DOCTOR, other)
        response = self.prescribe(client, db, other_doctor, patient, medicine)
        assert response.status_code == 404

    def test_patient_views(self, client, db, clinic, doctor, patient, medicine):
        prescription_id = self.prescribe(client, db, doctor, patient, medicine).json()["id"]

        headers = auth_headers(db, patient)
        assert [p["id"] for p in client.get("/api/v1/prescriptions", headers=headers).json()] == [prescription_id]
        assert len(client.get("/api/v1/prescriptions/active", headers=headers).json()) == 1
        assert client.get(f"/api/v1/prescriptions/{prescription_id}", headers=headers).status_code == 200

        other_patient = make_user(db, UserRole.PATIENT, clinic)
        other_headers = auth_headers(db, other_patient)
        assert client.get(f"/api/v1/prescriptions/{prescription_id}", headers=other_headers).status_code == 403
        assert client.get(f"/api/v1/prescriptions/patient/{patient.id}", headers=other_headers).status_code == 403

    def test_staff_view_patient(self, client, db, doctor, patient, medicine, staff_member):
        self.prescribe(client, db, doctor, patient, medicine)
        response = client.get(
            f"/api/v1/prescriptions/patient/{patient.id}", headers=auth_headers(db, staff_member)
        )
        assert response.status_code == 200
        assert len(response.json()) == 1

    def test_pause_clears_upcoming_reminders(self, client, db, doctor, patient, medicine):
        today = local_today()
        prescription_id = self.prescribe(
            client, db, doctor, patient, medicine,
            start_date=(today + timedelta(days=1)).isoformat(),
            end_date=(today + timedelta(days=3)).isoformat(),
        ).json()["id"]
        headers = auth_headers(db, patient)
        assert len(client.get("/api/v1/reminders/upcoming", headers=headers).json()) == 6

        response = client.patch(
            f"/api/v1/prescriptions/{prescription_id}/status", json={"status": "paused"}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["status"] == "paused"
        assert client.get("/api/v1/reminders/upcoming", headers=headers).json() == []

        client.patch(
            f"/api/v1/prescriptions/{prescription_id}/status", json={"status": "active"}, headers=headers
        )
        assert len(client.get("/api/v1/reminders/upcoming", headers=headers).json()) == 6

class TestCustomMedicines:

    def test_add_update_delete(self, client, db, patient):
        headers = auth_headers(db, patient)
        response = client.post(
            "/api/v1/prescriptions/custom-medicines",
            json={"name": "Vitamin D", "dosage": "1 capsule", "frequency": "weekly"},
            headers=headers,
        )
        assert response.status_code == 201
        prescription_id = response.json()["id"]
        assert response.json()["doctor_id"] is None

        listed = client.get("/api/v1/prescriptions/custom-medicines", headers=headers).json()
        assert [p["medicine_name"] for p in listed] == ["Vitamin D"]

        response = client.put(
            f"/api/v1/prescriptions/custom-medicines/{prescription_id}",
            json={"name": "Vitamin D3", "frequency": "once_daily"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["medicine_name"] == "Vitamin D3"
        assert response.json()["frequency"] == "once_daily"

        response = client.delete(f"/api/v1/prescriptions/custom-medicines/{prescription_id}", headers=headers)
        assert response.json() == {"message": "Custom medicine deleted"}
        assert db.query(Medicine).filter(Medicine.is_custom == True).count() == 0
        assert db.query(MedicineReminder).count() == 0

    def test_custom_medicines_are_private(self, client, db, clinic, patient):
        prescription_id = client.post(
            "/api/v1/prescriptions/custom-medicines",
            json={"name": "Vitamin D", "dosage": "1 capsule", "frequency": "weekly"},
            headers=auth_headers(db, patient),
        ).json()["id"]

        other_patient = make_user(db, UserRole.PATIENT, clinic)
        response = client.delete(
            f"/api/v1/prescriptions/custom-medicines/{prescription_id}", headers=auth_headers(db, other_patient)
        )
        assert response.status_code == 404

    def test_custom_not_in_clinic_inventory(self, client, db, patient, staff_member):
        client.post(
            "/api/v1/prescriptions/custom-medicines",
            json={"name": "Vitamin D", "dosage": "1 capsule", "frequency": "weekly"},
            headers=auth_headers(db, patient),
        )
        assert client.get("/api/v1/medicines", headers=auth_headers(db, staff_member)).json() == []

    def test_upload(self, client, db, patient):
        text = "\n".join([
            "# from my old prescription",
            "Paracetamol - 500mg - twice a day - after food",
            "Metformin - 850mg - BD",
            "",
            "just a name",
            "Aspirin - 75mg",
        ])
        response = client.post(
            "/api/v1/prescriptions/custom-medicines/upload", json={"text": text}, headers=auth_headers(db, patient)
        )
        assert response.status_code == 200
        data = response.json()
        assert [p["medicine_name"] for p in data["created"]] == ["Paracetamol", "Metformin", "Aspirin"]
        assert data["created"][0]["instructions"] == "after food"
        assert data["created"][1]["frequency"] == "twice_daily"
        assert data["created"][2]["frequency"] == "once_daily"
        assert len(data["errors"]) == 1
        assert data["errors"][0].startswith("Line 5:")

@pytest.mark.parametrize("text,expected", [
    ("twice_daily", Frequency.TWICE_DAILY),
    ("Twice a day", Frequency.TWICE_DAILY),
    ("TID", Frequency.THREE_TIMES_DAILY),
    ("4 times daily", Frequency.FOUR_TIMES_DAILY),
    ("as needed", Frequency.AS_NEEDED),
    ("SOS", Frequency.AS_NEEDED),
    ("once a week", Frequency.WEEKLY),
    ("monthly", Frequency.MONTHLY),
    ("whenever", Frequency.ONCE_DAILY),
])
def test_normalize_frequency(text, expected):
    assert normalize_frequency(text) == expected

def test_parse_medicine_line():
    assert parse_medicine_line("Ibuprofen - 400mg - thrice daily - with milk - not on empty stomach") == (
        "Ibuprofen", "400mg", Frequency.THREE_TIMES_DAILY, "with milk - not on empty stomach"
    )
    with pytest.raises(ValueError):
        parse_medicine_line("Ibuprofen")
