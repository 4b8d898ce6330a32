import logging
import re
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from pymongo.database import Database

import config
from auth import ensure_owner_or_admin
from database import create_document, get_documents, oid, paginate, serialize
from errors import NotFoundError, StateConflictError
from schemas import PharmacyCreate, PharmacyUpdate

logger = logging.getLogger(__name__)

COLLECTION = "pharmacy"
WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
SEARCH_FIELDS = ["name", "nameAr", "city", "region", "regionAr"]


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def calculate_status(hours: Optional[dict], now: Optional[datetime] = None) -> str:
    """`open` while today's opening window contains `now`, else `closed`."""
    now = now or datetime.now(ZoneInfo(config.TIMEZONE))
    today = (hours or {}).get(WEEKDAYS[now.weekday()])
    if not today:
        return "closed"
    current = now.hour * 60 + now.minute
    return "open" if _minutes(today["open"]) <= current < _minutes(today["close"]) else "closed"


def to_public(pharmacy: dict) -> dict:
    data = serialize(pharmacy)
    data["status"] = calculate_status(pharmacy.get("hours"))
    return data


def stock_entry(medication: dict, pharmacy_id) -> Optional[dict]:
    return next((p for p in medication.get("pharmacies", []) if p.get("pharmacy") == pharmacy_id), None)


# ---------------- Queries -----------------

def get_pharmacy(db: Database, pharmacy_id: str) -> dict:
    pharmacy = db[COLLECTION].find_one({"_id": oid(pharmacy_id)})
    if not pharmacy:
        raise NotFoundError("Pharmacy not found")
    return pharmacy


def pharmacy_detail(db: Database, pharmacy: dict) -> dict:
    data = to_public(pharmacy)
    data["medications"] = []
    for medication in db["medication"].find({"pharmacies.pharmacy": pharmacy["_id"]}).sort("name.en", 1):
        entry = stock_entry(medication, pharmacy["_id"]) or {}
        data["medications"].append({
            "id": str(medication["_id"]),
            "name": medication.get("name"),
            "inStock": entry.get("inStock", False),
            "price": entry.get("price"),
        })
    return data


def list_pharmacies(db: Database, search: Optional[str] = None, city: Optional[str] = None, page: int = 1, limit: int = 10):
    query = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{field: pattern} for field in SEARCH_FIELDS]
    if city:
        query["city"] = city
    return paginate(db[COLLECTION], query, [("name", 1), ("_id", 1)], page, limit)


def search_pharmacies(db: Database, city: Optional[str] = None, region: Optional[str] = None) -> list:
    query = {}
    if city:
        query["city"] = {"$regex": re.escape(city), "$options": "i"}
    if region:
        query["region"] = {"$regex": re.escape(region), "$options": "i"}
    return get_documents(db, COLLECTION, query, sort=[("name", 1)])


def pharmacies_by_medication(db: Database, medication_id: str) -> list:
    medication = db["medication"].find_one({"_id": oid(medication_id)})
    if not medication:
        raise NotFoundError("Medication not found")

    in_stock = [entry for entry in medication.get("pharmacies", []) if entry.get("inStock")]
    found = {p["_id"]: p for p in db[COLLECTION].find({"_id": {"$in": [e["pharmacy"] for e in in_stock]}})}
    results = []
    for entry in in_stock:
        pharmacy = found.get(entry["pharmacy"])
        if pharmacy is None:
            continue
        data = to_public(pharmacy)
        data["price"] = entry.get("price", 0)
        results.append(data)
    return results


# ---------------- Mutations -----------------

def create_pharmacy(db: Database, payload: PharmacyCreate, principal: dict) -> dict:
    if principal.get("role") == "pharmacy" and db[COLLECTION].find_one({"owner": principal["_id"]}):
        raise StateConflictError("You already own a pharmacy")

    pharmacy = payload.model_dump(by_alias=True)
    pharmacy["owner"] = principal["_id"]
    pharmacy["status"] = calculate_status(pharmacy["hours"])
    pharmacy = create_document(db, COLLECTION, pharmacy)
    logger.info("Pharmacy %s created by %s", pharmacy["_id"], principal["_id"])
    return pharmacy


def update_pharmacy(db: Database, pharmacy_id: str, payload: PharmacyUpdate, principal: dict) -> dict:
    pharmacy = get_pharmacy(db, pharmacy_id)
    ensure_owner_or_admin(principal, pharmacy.get("owner"), "Not authorized to update this pharmacy")

    changes = payload.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    if changes:
        pharmacy.update(changes)
        changes["status"] = pharmacy["status"] = calculate_status(pharmacy.get("hours"))
        db[COLLECTION].update_one({"_id": pharmacy["_id"]}, {"$set": changes})
    return pharmacy


def delete_pharmacy(db: Database, pharmacy_id: str, principal: dict) -> None:
    pharmacy = get_pharmacy(db, pharmacy_id)
    ensure_owner_or_admin(principal, pharmacy.get("owner"), "Not authorized to delete this pharmacy")

    result = db["medication"].update_many(
        {"pharmacies.pharmacy": pharmacy["_id"]},
        {"$pull": {"pharmacies": {"pharmacy": pharmacy["_id"]}}},
    )
    db[COLLECTION].delete_one({"_id": pharmacy["_id"]})
    logger.info("Pharmacy %s deleted, detached from %d medication(s)", pharmacy["_id"], result.modified_count)
