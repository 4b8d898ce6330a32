from datetime import datetime, timedelta

import jwt

import config
from database import utcnow


def test_list_users_is_admin_only(client, make_user, auth):
    make_user("alice")
    admin = make_user("admin", role="admin")

    assert client.get("/users", headers=auth(make_user("bob"))).status_code == 403
    body = client.get("/users", headers=auth(admin)).json()
    assert body["count"] == 3
    assert set(body["data"][0]) == {"id", "name", "email", "role", "bloodDonor", "createdAt"}


def test_get_user(client, make_user, auth):
    alice, bob = make_user("alice"), make_user("bob")
    data = client.get(f"/users/{alice['_id']}", headers=auth(alice)).json()["data"]
    assert data["email"] == "alice@example.com"

    resp = client.get(f"/users/{alice['_id']}", headers=auth(bob))
    assert resp.status_code == 403
    assert resp.json() == {"success": False, "message": "Not authorized to access this user profile"}

    admin = make_user("admin", role="admin")
    assert client.get(f"/users/{alice['_id']}", headers=auth(admin)).status_code == 200
    assert client.get("/users/5f1d7f0c2b3c4a5d6e7f8091", headers=auth(admin)).status_code == 404


def test_update_user_role_is_admin_only(client, db, make_user, auth):
    alice = make_user("alice")
    resp = client.put(f"/users/{alice['_id']}", json={"name": "Alice", "role": "admin"}, headers=auth(alice))
    assert resp.status_code == 200
    stored = db["user"].find_one({"_id": alice["_id"]})
    assert stored["name"] == "Alice"
    assert stored["role"] == "user"

    admin = make_user("admin", role="admin")
    resp = client.put(f"/users/{alice['_id']}", json={"role": "pharmacy"}, headers=auth(admin))
    assert resp.json()["data"]["role"] == "pharmacy"

    assert client.put(f"/users/{alice['_id']}", json={"email": "not-an-email"}, headers=auth(alice)).status_code == 400
    assert client.put(f"/users/{admin['_id']}", json={"name": "x"}, headers=auth(alice)).status_code == 403


def test_delete_user_removes_notifications(client, db, make_user, auth):
    admin, alice = make_user("admin", role="admin"), make_user("alice")
    db["notification"].insert_many([
        {"type": "system", "title": "t", "message": "m", "read": False, "user": alice["_id"]},
        {"type": "system", "title": "t", "message": "m", "read": False, "user": admin["_id"]},
    ])

    assert client.delete(f"/users/{alice['_id']}", headers=auth(alice)).status_code == 403
    assert client.delete(f"/users/{alice['_id']}", headers=auth(admin)).status_code == 200
    assert db["user"].find_one({"_id": alice["_id"]}) is None
    assert db["notification"].count_documents({}) == 1


def test_blood_donor_profile(client, db, make_user, auth):
    alice = make_user("alice")
    path = f"/users/{alice['_id']}/blood-donor"

    resp = client.get(path, headers=auth(alice))
    assert resp.status_code == 404
    assert resp.json()["message"] == "Blood donor information not found for this user"

    resp = client.put(path, json={"bloodType": "O-", "lastDonationDate": "2024-01-10T09:00:00Z"}, headers=auth(alice))
    assert resp.status_code == 200
    profile = db["user"].find_one({"_id": alice["_id"]})["bloodDonor"]
    assert profile["bloodType"] == "O-"
    assert profile["lastDonationDate"] == datetime(2024, 1, 10, 9, 0)
    assert profile["eligibleSince"] == datetime(2024, 1, 10, 9, 0) + timedelta(days=config.DONATION_RECOVERY_DAYS)

    assert client.get(path, headers=auth(alice)).json()["data"]["bloodType"] == "O-"


def test_blood_donor_profile_defaults_and_validation(client, db, make_user, auth):
    alice, bob = make_user("alice"), make_user("bob")
    path = f"/users/{alice['_id']}/blood-donor"

    before = utcnow() - timedelta(seconds=1)
    assert client.put(path, json={"bloodType": "AB+"}, headers=auth(alice)).status_code == 200
    assert db["user"].find_one({"_id": alice["_id"]})["bloodDonor"]["eligibleSince"] >= before

    assert client.put(path, json={"bloodType": "C+"}, headers=auth(alice)).status_code == 400
    assert client.put(path, json={"bloodType": "A+"}, headers=auth(bob)).status_code == 403
    assert client.get(path, headers=auth(bob)).status_code == 403


def test_rejects_bad_tokens(client, db, make_user):
    ghost = jwt.encode({"id": "5f1d7f0c2b3c4a5d6e7f8091"}, config.SECRET_KEY, algorithm=config.JWT_ALGORITHM)
    forged = jwt.encode({"id": str(make_user()["_id"])}, "other-secret", algorithm=config.JWT_ALGORITHM)
    for token in (ghost, forged, "garbage"):
        resp = client.get("/users", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Not authorized to access this route"


def test_health(client):
    assert client.get("/").json() == {"message": "PharMatch API running"}
    body = client.get("/test").json()
    assert body["database"] == "✅ Connected & Working"
    assert body["database_name"] == "pharmatch_test"
