from datetime import datetime

import pharmacies
from conftest import WEEK_HOURS


def pharmacy_body(**overrides):
    body = {"name": "Pharmacie Atlas", "city": "Rabat", "region": "Rabat-Sale", "hours": WEEK_HOURS}
    body.update(overrides)
    return body


def test_calculate_status():
    hours = dict(WEEK_HOURS, Sunday={"open": "10:00", "close": "12:00"})
    # 2024-06-03 is a Monday, 2024-06-09 a Sunday
    assert pharmacies.calculate_status(hours, datetime(2024, 6, 3, 8, 0)) == "open"
    assert pharmacies.calculate_status(hours, datetime(2024, 6, 3, 20, 0)) == "closed"
    assert pharmacies.calculate_status(hours, datetime(2024, 6, 3, 7, 59)) == "closed"
    assert pharmacies.calculate_status(hours, datetime(2024, 6, 9, 11, 30)) == "open"
    assert pharmacies.calculate_status({}, datetime(2024, 6, 9, 11, 30)) == "closed"


def test_create_pharmacy(client, db, make_user, auth):
    owner = make_user("owner", role="pharmacy")
    resp = client.post("/pharmacies", json=pharmacy_body(nameAr="صيدلية"), headers=auth(owner))
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["owner"] == str(owner["_id"])
    assert data["nameAr"] == "صيدلية"
    assert data["status"] in ("open", "closed")

    stored = db["pharmacy"].find_one({})
    assert stored["hours"]["Monday"] == {"open": "08:00", "close": "20:00"}
    assert stored["permanence"] == {"isOnDuty": False, "days": []}


def test_create_pharmacy_rules(client, make_user, auth):
    owner = make_user("owner", role="pharmacy")
    assert client.post("/pharmacies", json=pharmacy_body(), headers=auth(owner)).status_code == 201
    resp = client.post("/pharmacies", json=pharmacy_body(name="Second"), headers=auth(owner))
    assert resp.status_code == 400
    assert resp.json()["message"] == "You already own a pharmacy"

    assert client.post("/pharmacies", json=pharmacy_body(), headers=auth(make_user("plain"))).status_code == 403

    admin = make_user("admin", role="admin")
    assert client.post("/pharmacies", json=pharmacy_body(name="A"), headers=auth(admin)).status_code == 201
    assert client.post("/pharmacies", json=pharmacy_body(name="B"), headers=auth(admin)).status_code == 201

    bad_hours = dict(WEEK_HOURS, Friday={"open": "25:00", "close": "20:00"})
    assert client.post("/pharmacies", json=pharmacy_body(hours=bad_hours), headers=auth(admin)).status_code == 400


def test_update_pharmacy(client, db, make_user, make_pharmacy, auth):
    owner, rival = make_user("owner", role="pharmacy"), make_user("rival", role="pharmacy")
    pharmacy = make_pharmacy(owner=owner)

    assert client.put(f"/pharmacies/{pharmacy['_id']}", json={"phone": "1"}, headers=auth(rival)).status_code == 403

    resp = client.put(f"/pharmacies/{pharmacy['_id']}", json={"phone": "0537", "owner": str(rival["_id"])}, headers=auth(owner))
    assert resp.status_code == 200
    stored = db["pharmacy"].find_one({"_id": pharmacy["_id"]})
    assert stored["phone"] == "0537"
    assert stored["owner"] == owner["_id"]


def test_unowned_pharmacy_is_admin_only(client, make_user, make_pharmacy, auth):
    pharmacy = make_pharmacy()
    assert client.put(f"/pharmacies/{pharmacy['_id']}", json={"phone": "1"}, headers=auth(make_user("p", role="pharmacy"))).status_code == 403
    assert client.put(f"/pharmacies/{pharmacy['_id']}", json={"phone": "1"}, headers=auth(make_user("a", role="admin"))).status_code == 200


def test_delete_pharmacy_detaches_from_medications(client, db, make_user, make_pharmacy, make_medication, auth):
    owner = make_user("owner", role="pharmacy")
    gone, kept = make_pharmacy("Gone", owner=owner), make_pharmacy("Kept")
    medication = make_medication(stock=[(gone, True, 10), (kept, True, 12)])

    resp = client.delete(f"/pharmacies/{gone['_id']}", headers=auth(owner))
    assert resp.status_code == 200
    assert db["pharmacy"].find_one({"_id": gone["_id"]}) is None
    entries = db["medication"].find_one({"_id": medication["_id"]})["pharmacies"]
    assert [e["pharmacy"] for e in entries] == [kept["_id"]]


def test_list_and_search(client, make_pharmacy):
    make_pharmacy("Pharmacie Atlas", city="Rabat", region="Rabat-Sale")
    make_pharmacy("Pharmacie du Port", city="Casablanca", region="Casablanca-Settat")
    make_pharmacy("Annahda", city="Rabat", region="Rabat-Sale")

    body = client.get("/pharmacies", params={"city": "Rabat"}).json()
    assert [p["name"] for p in body["data"]] == ["Annahda", "Pharmacie Atlas"]
    assert body["pagination"]["total"] == 2

    body = client.get("/pharmacies", params={"search": "casa"}).json()
    assert [p["name"] for p in body["data"]] == ["Pharmacie du Port"]

    body = client.get("/pharmacies/search", params={"region": "settat"}).json()
    assert body["count"] == 1

    body = client.get("/pharmacies/search", params={"city": "rab"}).json()
    assert body["count"] == 2


def test_pharmacy_detail_lists_medications(client, make_pharmacy, make_medication):
    pharmacy = make_pharmacy()
    make_medication("Ibuprofen", stock=[(pharmacy, False, 25)])
    make_medication("Amoxicillin", stock=[(pharmacy, True, 40)])
    make_medication("Other")

    data = client.get(f"/pharmacies/{pharmacy['_id']}").json()["data"]
    assert data["id"] == str(pharmacy["_id"])
    assert [(m["name"]["en"], m["inStock"], m["price"]) for m in data["medications"]] == [
        ("Amoxicillin", True, 40),
        ("Ibuprofen", False, 25),
    ]
    assert client.get("/pharmacies/5f1d7f0c2b3c4a5d6e7f8091").status_code == 404


def test_pharmacies_by_medication(client, make_pharmacy, make_medication):
    stocked, empty = make_pharmacy("Stocked"), make_pharmacy("Empty")
    medication = make_medication(stock=[(stocked, True, 15.5), (empty, False, 10)])

    for path in (f"/pharmacies/medication/{medication['_id']}", f"/medications/{medication['_id']}/pharmacies"):
        body = client.get(path).json()
        assert body["count"] == 1
        assert body["data"][0]["name"] == "Stocked"
        assert body["data"][0]["price"] == 15.5

    assert client.get("/pharmacies/medication/5f1d7f0c2b3c4a5d6e7f8091").status_code == 404
