import pytest

from smartclinic.core.security import UserRole
from smartclinic.services.geofence import haversine_distance, within_radius

from .conftest import auth_headers, make_clinic, make_user

NEARBY = {"latitude": 12.9720, "longitude": 77.5950}
FAR_AWAY = {"latitude": 12.9816, "longitude": 77.5946}

def test_haversine_one_degree_of_latitude():
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111195, abs=1)
    assert haversine_distance(12.9716, 77.5946, 12.9716, 77.5946) == 0

def test_within_radius():
    inside, distance = within_radius(12.9720, 77.5950, 12.9716, 77.5946, 200)
    assert inside is True
    assert 50 < distance < 70

    inside, distance = within_radius(12.9816, 77.5946, 12.9716, 77.5946, 200)
    assert inside is False
    assert distance == pytest.approx(1112, abs=1)

class TestCheckIn:

    def test_check_in_and_out(self, client, db, staff_member, clinic):
        headers = auth_headers(db, staff_member)
        response = client.post("/api/v1/staff/checkin", json=NEARBY, headers=headers)
        assert response.status_code == 201
        data = response.json()
        assert data["clinic_id"] == clinic.id
        assert data["is_valid"] is True
        assert data["checked_out_at"] is None
        assert 50 < data["distance_meters"] < 70

        response = client.post("/api/v1/staff/checkout", headers=headers)
        assert response.status_code == 200
        assert response.json()["checked_out_at"] is not None

    def test_outside_fence_rejected(self, client, db, doctor):
        response = client.post("/api/v1/staff/checkin", json=FAR_AWAY, headers=auth_headers(db, doctor))
        assert response.status_code == 403
        assert "within 200m of Sunrise Clinic" in response.json()["detail"]
        assert "1112m" in response.json()["detail"]

    def test_clinic_radius_respected(self, client, db, clinic, doctor):
        clinic.checkin_radius_meters = 1500
        db.commit()
        response = client.post("/api/v1/staff/checkin", json=FAR_AWAY, headers=auth_headers(db, doctor))
        assert response.status_code == 201

    def test_double_check_in(self, client, db, staff_member):
        headers = auth_headers(db, staff_member)
        client.post("/api/v1/staff/checkin", json=NEARBY, headers=headers)
        response = client.post("/api/v1/staff/checkin", json=NEARBY, headers=headers)
        assert response.status_code == 409

    def test_check_out_without_check_in(self, client, db, staff_member):
        response = client.post("/api/v1/staff/checkout", headers=auth_headers(db, staff_member))
        assert response.status_code == 400

    def test_clinic_without_location(self, client, db):
        nowhere = make_clinic(db, name="Mobile Clinic", latitude=None, longitude=None)
        nurse = make_user(db, UserRole.NURSE, nowhere)
        response = client.post("/api/v1/staff/checkin", json=NEARBY, headers=auth_headers(db, nurse))
        assert response.status_code == 400

    def test_patients_cannot_check_in(self, client, db, patient):
        response = client.post("/api/v1/staff/checkin", json=NEARBY, headers=auth_headers(db, patient))
        assert response.status_code == 403

    def test_coordinates_validated(self, client, db, staff_member):
        response = client.post(
            "/api/v1/staff/checkin", json={"latitude": 95, "longitude": 10}, headers=auth_headers(db, staff_member)
        )
        assert response.status_code == 422

class TestAttendanceViews:

    def test_own_history(self, client, db, staff_member):
        headers = auth_headers(db, staff_member)
        client.post("/api/v1/staff/checkin", json=NEARBY, headers=headers)

        response = client.get("/api/v1/staff/verifications", headers=headers)
        assert response.status_code == 200
        assert len(response.json()) == 1

        response = client.get("/api/v1/staff/verifications?date=2020-01-01", headers=headers)
        assert response.json() == []

    def test_admin_views_colleague(self, client, db, admin, staff_member):
        client.post("/api/v1/staff/checkin", json=NEARBY, headers=auth_headers(db, staff_member))

        response = client.get(
            f"/api/v1/staff/verifications?staff_id={staff_member.id}", headers=auth_headers(db, admin)
        )
        assert response.status_code == 200
        assert response.json()[0]["staff_id"] == staff_member.id

    def test_staff_cannot_view_colleague(self, client, db, staff_member, doctor):
        response = client.get(
            f"/api/v1/staff/verifications?staff_id={doctor.id}", headers=auth_headers(db, staff_member)
        )
        assert response.status_code == 403

    def test_admin_cannot_view_other_clinic(self, client, db, admin):
        other = make_clinic(db, name="Other Clinic")
        outsider = make_user(db, UserRole.STAFF, other)
        response = client.get(
            f"/api/v1/staff/verifications?staff_id={outsider.id}", headers=auth_headers(db, admin)
        )
        assert response.status_code == 403

    def test_todays_checkins(self, client, db, admin, staff_member, doctor):
        client.post("/api/v1/staff/checkin", json=NEARBY, headers=auth_headers(db, staff_member))
        client.post("/api/v1/staff/checkin", json=NEARBY, headers=auth_headers(db, doctor))

        response = client.get("/api/v1/staff/checkins", headers=auth_headers(db, admin))
        assert response.status_code == 200
        assert {v["staff_id"] for v in response.json()} == {staff_member.id, doctor.id}

        response = client.get("/api/v1/staff/checkins", headers=auth_headers(db, doctor))
        assert response.status_code == 403
