import logging
from datetime import timedelta
from typing import Optional

from bson import ObjectId
from pymongo.database import Database

from database import oid, paginate, serialize, utcnow
from errors import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

NOTIFICATION_TTL = timedelta(days=7)
BLOOD_DONATION_ITEM = "BloodDonation"


def _blood_notification(user_id: ObjectId, request: dict, title: str, message: str, expires_at) -> dict:
    return {
        "type": "blood",
        "title": title,
        "message": message,
        "read": False,
        "user": user_id,
        "relatedItem": {"itemId": request["_id"], "itemType": BLOOD_DONATION_ITEM},
        "createdAt": utcnow(),
        "expiresAt": expires_at,
    }


def find_eligible_donors(db: Database, blood_type: str, now=None) -> list:
    now = now or utcnow()
    return list(db["user"].find(
        {"bloodDonor.bloodType": blood_type, "bloodDonor.eligibleSince": {"$lte": now}},
        {"_id": 1},
    ))


def dispatch_blood_request_alerts(db: Database, request: dict) -> int:
    """Alert every donor-eligible user about a new request. Returns the number of notifications inserted."""
    donors = find_eligible_donors(db, request["bloodType"])
    notifications = [
        _blood_notification(
            donor["_id"],
            request,
            title=f"Urgent {request['bloodType']} Blood Needed",
            message=f"{request['hospital']} needs {request['bloodType']} blood donation. Urgency: {request['urgency']}",
            expires_at=request["expiresAt"],
        )
        for donor in donors
    ]
    if notifications:
        db["notification"].insert_many(notifications, ordered=False)
    logger.info("Blood request %s: alerted %d donor(s)", request["_id"], len(notifications))
    return len(notifications)


def notify_donor_found(db: Database, request: dict) -> dict:
    notification = _blood_notification(
        request["createdBy"],
        request,
        title="Donor Found",
        message=f"A donor has responded to your {request['bloodType']} blood request for {request['hospital']}",
        expires_at=utcnow() + NOTIFICATION_TTL,
    )
    db["notification"].insert_one(notification)
    return notification


def delete_related(db: Database, item_id: ObjectId, item_type: str = BLOOD_DONATION_ITEM) -> int:
    result = db["notification"].delete_many({"relatedItem.itemId": item_id, "relatedItem.itemType": item_type})
    return result.deleted_count


# ---------------- Recipient operations -----------------

def to_public(notification: dict) -> dict:
    data = serialize(notification)
    return {
        "id": data["id"],
        "type": data["type"],
        "title": data["title"],
        "message": data["message"],
        "read": data.get("read", False),
        "createdAt": data.get("createdAt"),
        "expiresAt": data.get("expiresAt"),
        "relatedItem": data.get("relatedItem"),
    }


def list_notifications(db: Database, user: dict, read: Optional[bool] = None, notification_type: Optional[str] = None, page: int = 1, limit: int = 10):
    query = {"user": user["_id"]}
    if read is not None:
        query["read"] = read
    if notification_type:
        query["type"] = notification_type
    docs, pagination = paginate(db["notification"], query, [("createdAt", -1), ("_id", -1)], page, limit)
    unread = db["notification"].count_documents({"user": user["_id"], "read": False})
    return docs, pagination, unread


def _owned(db: Database, notification_id: str, user: dict, action: str) -> dict:
    notification = db["notification"].find_one({"_id": oid(notification_id)})
    if not notification:
        raise NotFoundError("Notification not found")
    if notification["user"] != user["_id"]:
        raise ForbiddenError(f"Not authorized to {action} this notification")
    return notification


def get_notification(db: Database, notification_id: str, user: dict) -> dict:
    return _owned(db, notification_id, user, "access")


def mark_read(db: Database, notification_id: str, user: dict) -> dict:
    notification = _owned(db, notification_id, user, "update")
    db["notification"].update_one({"_id": notification["_id"]}, {"$set": {"read": True}})
    notification["read"] = True
    return notification


def delete_notification(db: Database, notification_id: str, user: dict) -> None:
    notification = _owned(db, notification_id, user, "delete")
    db["notification"].delete_one({"_id": notification["_id"]})


def delete_all(db: Database, user: dict) -> int:
    return db["notification"].delete_many({"user": user["_id"]}).deleted_count
