from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings, get_settings
from database import get_db
from main import app
from mongodb_manager import MongoDBManager
from security import create_access_token, get_password_hash, session_payload


@pytest.fixture
def settings():
    return Settings(app_env="development", secret_key="test-secret", mongo_db_name="school_test")


@pytest.fixture
def db():
    return MongoDBManager(db_name="school_test", client=mongomock.MongoClient())


@pytest.fixture
def client(db, settings):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(settings):
    """Build a bearer header for a stored user"""
    def _headers(user):
        token = create_access_token(session_payload(user), settings.secret_key, timedelta(hours=1), settings.algorithm)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def admin(db):
    return db.create_user({
        "name": "Head Admin",
        "email": "admin@school.org",
        "username": "admin",
        "password": get_password_hash("adminpass"),
        "role": "admin",
    })


@pytest.fixture
def admin_headers(admin, auth_headers):
    return auth_headers(admin)


@pytest.fixture
def make_member(db, admin):
    """Store a registered non-admin user directly"""
    def _make(role, email, password="secret123", **fields):
        data = {
            "name": email.split("@")[0].title(),
            "email": email,
            "username": email.split("@")[0],
            "password": get_password_hash(password) if password else "",
            "role": role,
            "addedBy": admin["id"],
        }
        data.update(fields)
        return db.create_user(data)
    return _make


@pytest.fixture
def teacher_payload():
    return {
        "name": "Jane Doe",
        "email": "jane.doe@school.org",
        "phone": "9876543210",
        "educationalQualifications": ["M.Sc Physics", "B.Ed"],
        "designation": "Senior Teacher",
        "dateOfAppointment": "2020-06-01",
        "subject": "Physics",
        "bio": "Loves optics",
    }


@pytest.fixture
def student_payload():
    return {
        "name": "Sam Student",
        "email": "sam@school.org",
        "rollNumber": "101",
        "dateOfBirth": "2010-04-12",
        "gender": "Male",
        "parentName": "Pat Student",
        "parentPhone": "9123456780",
        "parentEmail": "pat@home.org",
        "address": "12 Elm Street",
        "class": "8",
        "section": "B",
        "admissionDate": "2022-04-01",
    }
