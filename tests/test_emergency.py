from smartclinic.core.security import UserRole
from smartclinic.models.emergency import EmergencyRequest

from .conftest import auth_headers, make_clinic, make_user

def submit(client, db, patient, **extra):
    payload = {"urgency_level": "high", "symptoms": "Severe chest pain since morning"}
    payload.update(extra)
    return client.post("/api/v1/emergency", json=payload, headers=auth_headers(db, patient))

class TestEmergencyRequests:

    def test_submit(self, client, db, patient, clinic):
        response = submit(client, db, patient)
        assert response.status_code == 201
        data = response.json()
        assert data["estimated_response_time"] == "15-30 minutes"
        assert data["request"]["status"] == "pending"
        assert data["request"]["clinic_id"] == clinic.id
        assert data["request"]["contact_method"] == "phone"

    def test_critical_response_time(self, client, db, patient):
        response = submit(client, db, patient, urgency_level="critical")
        assert response.json()["estimated_response_time"] == "5-10 minutes"

    def test_unknown_doctor(self, client, db, patient):
        response = submit(client, db, patient, doctor_id=999)
        assert response.status_code == 404

    def test_symptoms_required(self, client, db, patient):
        response = submit(client, db, patient, symptoms="")
        assert response.status_code == 422

    def test_staff_cannot_submit(self, client, db, staff_member):
        response = submit(client, db, staff_member)
        assert response.status_code == 403

    def test_listing_scopes(self, client, db, clinic, patient, staff_member):
        submit(client, db, patient)
        other_patient = make_user(db, UserRole.PATIENT, clinic)
        submit(client, db, other_patient, urgency_level="low")

        other = make_clinic(db, name="Other Clinic")
        outsider = make_user(db, UserRole.STAFF, other)

        assert len(client.get("/api/v1/emergency", headers=auth_headers(db, patient)).json()) == 1
        assert len(client.get("/api/v1/emergency", headers=auth_headers(db, staff_member)).json()) == 2
        assert client.get("/api/v1/emergency", headers=auth_headers(db, outsider)).json() == []

    def test_status_progression(self, client, db, patient, doctor):
        request_id = submit(client, db, patient).json()["request"]["id"]
        headers = auth_headers(db, doctor)

        response = client.patch(
            f"/api/v1/emergency/{request_id}/status",
            json={"status": "acknowledged", "notes": "Calling patient"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["handled_by"] == doctor.id
        assert response.json()["acknowledged_at"] is not None
        assert response.json()["notes"] == "Calling patient"

        response = client.patch(
            f"/api/v1/emergency/{request_id}/status", json={"status": "resolved"}, headers=headers
        )
        assert response.json()["status"] == "resolved"
        assert response.json()["resolved_at"] is not None

        open_requests = client.get("/api/v1/emergency?open_only=true", headers=headers).json()
        assert open_requests == []

        response = client.patch(
            f"/api/v1/emergency/{request_id}/status", json={"status": "in_progress"}, headers=headers
        )
        assert response.status_code == 400

    def test_other_clinic_cannot_update(self, client, db, patient):
        request_id = submit(client, db, patient).json()["request"]["id"]
        other = make_clinic(db, name="Other Clinic")
        outsider = make_user(db, UserRole.NURSE, other)

        response = client.patch(
            f"/api/v1/emergency/{request_id}/status",
            json={"status": "acknowledged"},
            headers=auth_headers(db, outsider),
        )
        assert response.status_code == 403
        db.expire_all()
        assert db.query(EmergencyRequest).get(request_id).status.value == "pending"
