import os

# Settings are read at import time, so configure the environment first
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"
os.environ["EXPOSE_DEV_OTP"] = "1"
os.environ["SCHEDULER_ENABLED"] = "0"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from smartclinic.main import app
from smartclinic.core.database import get_db, get_redis, Base
from smartclinic.core.security import UserRole
from smartclinic.models.clinic import Clinic
from smartclinic.models.user import User
from smartclinic.services.auth_service import AuthService

# Create test database
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

class FakeRedis:
    """In-memory stand-in for the few Redis commands the app uses."""

    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = str(value)
        return True

    def incr(self, key):
        self.store[key] = str(int(self.store.get(key, 0)) + 1)
        return int(self.store[key])

    def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0

fake_redis = FakeRedis()

def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_redis] = lambda: fake_redis

@pytest.fixture(autouse=True)
def reset_redis():
    fake_redis.store.clear()
    yield

@pytest.fixture(scope="function")
def test_db():
    # Create tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db(test_db):
    session = TestingSessionLocal()
    yield session
    session.close()

@pytest.fixture
def client(test_db):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

# Factories

def make_clinic(db, **overrides) -> Clinic:
    values = {
        "name": "Sunrise Clinic",
        "address": "12 MG Road, Bengaluru",
        "phone_number": "+918000000001",
        "email": "desk@sunrise.example.com",
        "latitude": 12.9716,
        "longitude": 77.5946,
        "checkin_radius_meters": 200,
        "is_active": True,
        "is_approved": True,
    }
    values.update(overrides)
    clinic = Clinic(**values)
    db.add(clinic)
    db.commit()
    db.refresh(clinic)
    return clinic

_phone_counter = [9000000000]

def make_user(db, role: UserRole, clinic=None, **overrides) -> User:
    _phone_counter[0] += 1
    values = {
        "role": role,
        "clinic_id": clinic.id if clinic else None,
        "phone_number": f"+91{_phone_counter[0]}",
        "first_name": role.value.title(),
        "last_name": str(_phone_counter[0])[-4:],
        "is_active": True,
        "is_approved": True,
    }
    if role == UserRole.DOCTOR:
        values["specialization"] = "General Medicine"
    values.update(overrides)
    user = User(**values)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user

def auth_headers(db, user: User) -> dict:
    token = AuthService(db).issue_session(user).token
    return {"Authorization": f"Bearer {token}"}

def token_for(db, user: User) -> str:
    return AuthService(db).issue_session(user).token

# Common cast of a clinic

@pytest.fixture
def clinic(db):
    return make_clinic(db)

@pytest.fixture
def admin(db, clinic):
    return make_user(db, UserRole.ADMIN, clinic, email="admin@sunrise.example.com")

@pytest.fixture
def staff_member(db, clinic):
    return make_user(db, UserRole.STAFF, clinic)

@pytest.fixture
def doctor(db, clinic):
    return make_user(db, UserRole.DOCTOR, clinic, first_name="Asha", last_name="Rao")

@pytest.fixture
def patient(db, clinic):
    return make_user(db, UserRole.PATIENT, clinic, email="patient@example.com")

@pytest.fixture
def platform_admin(db):
    return make_user(db, UserRole.SUPER_ADMIN, None, email="admin@smartclinic.in")
