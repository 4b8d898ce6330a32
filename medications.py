"""
Medications and per-pharmacy stock

Each medication embeds `pharmacies: [{pharmacy, inStock, price}]` with at
most one entry per pharmacy.
"""

import logging
import re
from typing import Iterable, List, Optional

from bson import ObjectId
from pymongo.database import Database

import pharmacies
from auth import is_admin
from database import create_document, oid, paginate, serialize
from errors import NotFoundError, ValidationError
from schemas import MedicationCreate, MedicationUpdate, StockUpdate

logger = logging.getLogger(__name__)

COLLECTION = "medication"
LANGUAGES = ("en", "ar", "fr")
SEARCH_FIELDS = [f"{field}.{lang}" for field in ("name", "description", "category") for lang in LANGUAGES]


# ---------------- Serialization -----------------

def describe(db: Database, medications: Iterable[dict]) -> List[dict]:
    """Public view of medications with the details of the pharmacies stocking them."""
    medications = list(medications)
    ids = {entry["pharmacy"] for med in medications for entry in med.get("pharmacies", [])}
    found = {p["_id"]: p for p in db["pharmacy"].find({"_id": {"$in": list(ids)}})}

    results = []
    for medication in medications:
        data = serialize(medication)
        data["pharmacies"] = []
        for entry in medication.get("pharmacies", []):
            pharmacy = found.get(entry["pharmacy"])
            data["pharmacies"].append({
                "id": str(entry["pharmacy"]),
                "name": {"en": pharmacy.get("name"), "ar": pharmacy.get("nameAr")} if pharmacy else None,
                "inStock": entry.get("inStock", False),
                "price": entry.get("price") or 0,
            })
        results.append(data)
    return results


# ---------------- Queries -----------------

def get_medication(db: Database, medication_id: str) -> dict:
    medication = db[COLLECTION].find_one({"_id": oid(medication_id)})
    if not medication:
        raise NotFoundError("Medication not found")
    return medication


def list_medications(
    db: Database,
    search: Optional[str] = None,
    category: Optional[str] = None,
    prescription: Optional[bool] = None,
    page: int = 1,
    limit: int = 10,
):
    clauses = []
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        clauses.append({"$or": [{field: pattern} for field in SEARCH_FIELDS]})
    if category:
        clauses.append({"$or": [{f"category.{lang}": category} for lang in LANGUAGES]})
    query = {"$and": clauses} if clauses else {}
    if prescription is not None:
        query["prescription"] = prescription
    return paginate(db[COLLECTION], query, [("name.en", 1), ("_id", 1)], page, limit)


def medications_by_pharmacy(db: Database, pharmacy_id: str) -> List[dict]:
    pharmacy = pharmacies.get_pharmacy(db, pharmacy_id)
    results = []
    for medication in db[COLLECTION].find({"pharmacies.pharmacy": pharmacy["_id"]}).sort("name.en", 1):
        entry = pharmacies.stock_entry(medication, pharmacy["_id"])
        results.append({
            "id": str(medication["_id"]),
            "name": medication.get("name"),
            "description": medication.get("description"),
            "category": medication.get("category"),
            "prescription": medication.get("prescription", False),
            "inStock": entry["inStock"] if entry else False,
            "price": entry.get("price") if entry else None,
        })
    return results


# ---------------- Mutations -----------------

def _stock_entries(db: Database, stocks) -> List[dict]:
    entries, seen = [], set()
    for stock in stocks:
        pharmacy_id = oid(stock.pharmacy)
        if pharmacy_id in seen:
            raise ValidationError("A pharmacy can only be listed once per medication")
        seen.add(pharmacy_id)
        entries.append({"pharmacy": pharmacy_id, "inStock": stock.in_stock, "price": stock.price})

    if seen:
        existing = {p["_id"] for p in db["pharmacy"].find({"_id": {"$in": list(seen)}}, {"_id": 1})}
        missing = seen - existing
        if missing:
            raise ValidationError(f"Pharmacy not found: {', '.join(sorted(str(m) for m in missing))}")
    return entries


def create_medication(db: Database, payload: MedicationCreate) -> dict:
    medication = payload.model_dump(by_alias=True, exclude={"pharmacies"})
    medication["pharmacies"] = _stock_entries(db, payload.pharmacies)
    medication = create_document(db, COLLECTION, medication)
    logger.info("Medication %s created", medication["_id"])
    return medication


def update_medication(db: Database, medication_id: str, payload: MedicationUpdate) -> dict:
    medication = get_medication(db, medication_id)
    changes = payload.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    if changes:
        db[COLLECTION].update_one({"_id": medication["_id"]}, {"$set": changes})
        medication.update(changes)
    return medication


def delete_medication(db: Database, medication_id: str) -> None:
    medication = get_medication(db, medication_id)
    db[COLLECTION].delete_one({"_id": medication["_id"]})


def upsert_stock(db: Database, medication_id: ObjectId, pharmacy_id: ObjectId, in_stock: bool, price: Optional[float] = None) -> None:
    """Set the pharmacy's entry on the medication, adding it when absent."""
    collection = db[COLLECTION]
    fields = {"pharmacies.$.inStock": in_stock}
    if price is not None:
        fields["pharmacies.$.price"] = price

    # A concurrent upsert can slip in between the two writes; one more pass then hits the positional update
    for _ in range(2):
        result = collection.update_one({"_id": medication_id, "pharmacies.pharmacy": pharmacy_id}, {"$set": fields})
        if result.matched_count:
            return
        result = collection.update_one(
            {"_id": medication_id, "pharmacies.pharmacy": {"$ne": pharmacy_id}},
            {"$push": {"pharmacies": {"pharmacy": pharmacy_id, "inStock": in_stock, "price": price or 0}}},
        )
        if result.matched_count:
            return
    raise NotFoundError("Medication not found")


def update_stock(db: Database, medication_id: str, payload: StockUpdate, principal: dict) -> dict:
    medication = get_medication(db, medication_id)

    if is_admin(principal) and payload.pharmacy_id:
        pharmacy = pharmacies.get_pharmacy(db, payload.pharmacy_id)
    else:
        pharmacy = db["pharmacy"].find_one({"owner": principal["_id"]})
        if not pharmacy:
            raise ValidationError("You must have a registered pharmacy to update stock")

    upsert_stock(db, medication["_id"], pharmacy["_id"], payload.in_stock, payload.price)
    entry = pharmacies.stock_entry(get_medication(db, medication_id), pharmacy["_id"]) or {}
    logger.info("Stock of medication %s at pharmacy %s set to %s", medication["_id"], pharmacy["_id"], payload.in_stock)
    return {
        "id": str(medication["_id"]),
        "name": medication.get("name"),
        "pharmacy": str(pharmacy["_id"]),
        "inStock": entry.get("inStock", payload.in_stock),
        "price": entry.get("price"),
    }
