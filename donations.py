"""
Blood donation requests

Creation fans out alerts to donor-eligible users, responses append a donor
and may fulfil the request, deletion removes the request's notifications.

A stored `active` request whose `expiresAt` has passed is reported as
`expired`; nothing rewrites it in the database.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Optional

from pymongo.database import Database

import notifications
from auth import ensure_owner_or_admin
from database import as_utc, oid, paginate, serialize, utcnow
from errors import (
    DuplicateResponseError,
    IncompatibleBloodTypeError,
    InvalidStateError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from schemas import BLOOD_TYPES, BloodDonationCreate, BloodDonationUpdate

logger = logging.getLogger(__name__)

COLLECTION = "blooddonation"
REQUEST_TTL = timedelta(days=7)
URGENCY_RANK = {"high": 3, "medium": 2, "low": 1}
URGENCY_SORT = [("urgencyRank", -1), ("createdAt", -1), ("_id", -1)]
MAX_RESPONSE_ATTEMPTS = 5


# ---------------- Guards -----------------

def ensure_blood_type(value: str) -> str:
    if value not in BLOOD_TYPES:
        raise ValidationError("Invalid blood type")
    return value


def ensure_urgency(value: str) -> str:
    if value not in URGENCY_RANK:
        raise ValidationError("Invalid urgency")
    return value


def effective_status(request: dict, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    if request["status"] == "active" and request["expiresAt"] < now:
        return "expired"
    return request["status"]


def status_query(status: str, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    if status == "active":
        return {"status": "active", "expiresAt": {"$gte": now}}
    if status == "expired":
        return {"$or": [{"status": "expired"}, {"status": "active", "expiresAt": {"$lt": now}}]}
    if status == "fulfilled":
        return {"status": "fulfilled"}
    raise ValidationError("Invalid status")


# ---------------- Serialization -----------------

def to_summary(request: dict) -> dict:
    data = serialize(request)
    return {
        "id": data["id"],
        "bloodType": data["bloodType"],
        "hospital": data["hospital"],
        "urgency": data["urgency"],
        "contactInfo": data["contactInfo"],
        "createdAt": data["createdAt"],
        "expiresAt": data["expiresAt"],
        "status": effective_status(request),
    }


def to_detail(request: dict) -> dict:
    data = to_summary(request)
    data["donors"] = serialize(request.get("donors", []))
    data["createdBy"] = serialize(request.get("createdBy"))
    return data


# ---------------- Operations -----------------

def create_request(db: Database, payload: BloodDonationCreate, requester: dict) -> dict:
    now = utcnow()
    request = payload.model_dump(by_alias=True)
    request["expiresAt"] = as_utc(request.get("expiresAt")) or now + REQUEST_TTL
    request.update({
        "createdAt": now,
        "createdBy": requester["_id"],
        "status": "active",
        "donors": [],
        "urgencyRank": URGENCY_RANK[request["urgency"]],
        "version": 0,
    })
    db[COLLECTION].insert_one(request)
    logger.info("Blood request %s created by %s (%s, %s)", request["_id"], requester["_id"], request["bloodType"], request["urgency"])

    try:
        notifications.dispatch_blood_request_alerts(db, request)
    except Exception:
        logger.exception("Donor alerts failed for blood request %s", request["_id"])
    return request


def get_request(db: Database, request_id: str) -> dict:
    request = db[COLLECTION].find_one({"_id": oid(request_id)})
    if not request:
        raise NotFoundError("Blood donation request not found")
    return request


def list_requests(
    db: Database,
    blood_type: Optional[str] = None,
    urgency: Optional[str] = None,
    hospital: Optional[str] = None,
    status: str = "active",
    page: int = 1,
    limit: int = 10,
):
    query = status_query(status)
    if blood_type:
        query["bloodType"] = ensure_blood_type(blood_type)
    if urgency:
        query["urgency"] = ensure_urgency(urgency)
    if hospital:
        query["hospital"] = {"$regex": re.escape(hospital), "$options": "i"}
    return paginate(db[COLLECTION], query, URGENCY_SORT, page, limit)


def requests_by_blood_type(db: Database, blood_type: str) -> list:
    ensure_blood_type(blood_type)
    query = {"bloodType": blood_type, "status": "active", "expiresAt": {"$gte": utcnow()}}
    return list(db[COLLECTION].find(query).sort(URGENCY_SORT))


def update_request(db: Database, request_id: str, payload: BloodDonationUpdate, principal: dict) -> dict:
    request = get_request(db, request_id)
    ensure_owner_or_admin(principal, request.get("createdBy"), "Not authorized to update this request")

    changes = payload.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    if "expiresAt" in changes:
        changes["expiresAt"] = as_utc(changes["expiresAt"])
    if "urgency" in changes:
        changes["urgencyRank"] = URGENCY_RANK[changes["urgency"]]
    if changes:
        changes["updatedAt"] = utcnow()
        # In-flight donor responses are guarded on version
        db[COLLECTION].update_one({"_id": request["_id"]}, {"$set": changes, "$inc": {"version": 1}})
        request.update(changes)
        request["version"] = request.get("version", 0) + 1
    return request


def delete_request(db: Database, request_id: str, principal: dict) -> None:
    request = get_request(db, request_id)
    ensure_owner_or_admin(principal, request.get("createdBy"), "Not authorized to delete this request")

    removed = notifications.delete_related(db, request["_id"])
    db[COLLECTION].delete_one({"_id": request["_id"]})
    logger.info("Blood request %s deleted with %d notification(s)", request["_id"], removed)


def _check_can_respond(request: dict, responder: dict) -> None:
    status = effective_status(request)
    if status != "active":
        raise InvalidStateError(f"This request is {status} and no longer accepting donors")
    if any(donor.get("user") == responder["_id"] for donor in request.get("donors", [])):
        raise DuplicateResponseError("You have already responded to this request")
    profile = responder.get("bloodDonor") or {}
    if profile.get("bloodType") != request["bloodType"]:
        raise IncompatibleBloodTypeError("Your blood type does not match the requested type")


def respond_to_request(db: Database, request_id: str, responder: dict, donation_date: Optional[datetime] = None) -> dict:
    """Register `responder` as a donor for the request.

    The donor append and the fulfilment flip are written together, guarded by
    the request's version. Losing the race to another writer re-reads the
    request and re-checks every precondition.
    """
    rid = oid(request_id)
    entry = {
        "user": responder["_id"],
        "donationDate": as_utc(donation_date) or utcnow(),
        "status": "pending",
    }

    for _ in range(MAX_RESPONSE_ATTEMPTS):
        request = db[COLLECTION].find_one({"_id": rid})
        if not request:
            raise NotFoundError("Blood donation request not found")
        _check_can_respond(request, responder)

        donor_count = len(request.get("donors", [])) + 1
        status = request["status"]
        # Only the first donor of a high urgency request fulfils it
        if donor_count == 1 and request["urgency"] == "high":
            status = "fulfilled"

        if "version" in request:
            guard = {"_id": rid, "version": request["version"]}
        else:
            guard = {"_id": rid, "version": {"$exists": False}}
        result = db[COLLECTION].update_one(guard, {
            "$push": {"donors": entry},
            "$set": {"status": status, "updatedAt": utcnow()},
            "$inc": {"version": 1},
        })
        if result.modified_count:
            break
        logger.debug("Blood request %s changed while responding, retrying", rid)
    else:
        raise StateConflictError("This request is receiving many responses, please try again")

    request["status"] = status
    request.setdefault("donors", []).append(entry)
    logger.info("User %s responded to blood request %s (status %s)", responder["_id"], rid, status)

    try:
        notifications.notify_donor_found(db, request)
    except Exception:
        logger.exception("Requester notification failed for blood request %s", rid)

    return {
        "id": str(rid),
        "status": status,
        "message": "You have successfully responded to this blood donation request",
    }
