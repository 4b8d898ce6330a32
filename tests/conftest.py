from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_token
from database import get_db, utcnow
from main import app

WEEK_HOURS = {
    day: {"open": "08:00", "close": "20:00"}
    for day in ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
}


@pytest.fixture
def db():
    return mongomock.MongoClient()["pharmatch_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(name="user", role="user", blood_type=None, eligible_since=None):
        user = {"name": name, "email": f"{name}@example.com", "role": role, "createdAt": utcnow()}
        if blood_type:
            user["bloodDonor"] = {
                "bloodType": blood_type,
                "lastDonationDate": None,
                "eligibleSince": eligible_since or utcnow() - timedelta(days=1),
            }
        db["user"].insert_one(user)
        return user
    return _make


@pytest.fixture
def auth():
    def _headers(user):
        return {"Authorization": f"Bearer {create_token(user['_id'])}"}
    return _headers


@pytest.fixture
def make_pharmacy(db):
    def _make(name="Pharmacie Centrale", owner=None, city="Rabat", region="Rabat-Sale"):
        pharmacy = {
            "name": name,
            "city": city,
            "region": region,
            "phone": "",
            "hours": WEEK_HOURS,
            "permanence": {"isOnDuty": False, "days": []},
            "status": "closed",
            "owner": owner["_id"] if owner else None,
            "createdAt": utcnow(),
        }
        db["pharmacy"].insert_one(pharmacy)
        return pharmacy
    return _make


@pytest.fixture
def make_medication(db):
    def _make(name="Paracetamol", category="Analgesic", prescription=False, stock=()):
        medication = {
            "name": {"en": name, "ar": None, "fr": name},
            "description": {"en": f"{name} tablets", "ar": None, "fr": None},
            "category": {"en": category, "ar": None, "fr": None},
            "prescription": prescription,
            "imageUrl": None,
            "pharmacies": [{"pharmacy": p["_id"], "inStock": in_stock, "price": price} for p, in_stock, price in stock],
            "createdAt": utcnow(),
        }
        db["medication"].insert_one(medication)
        return medication
    return _make
