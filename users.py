import logging
from datetime import timedelta

from pymongo.database import Database

import config
from auth import ensure_owner_or_admin, is_admin
from database import as_utc, get_documents, oid, serialize, utcnow
from errors import NotFoundError
from schemas import BloodDonorProfile, UserUpdate

logger = logging.getLogger(__name__)

COLLECTION = "user"
PUBLIC_FIELDS = ("id", "name", "email", "role", "bloodDonor", "createdAt")


def to_public(user: dict) -> dict:
    data = serialize(user)
    return {field: data.get(field) for field in PUBLIC_FIELDS}


def get_user(db: Database, user_id: str) -> dict:
    user = db[COLLECTION].find_one({"_id": oid(user_id)})
    if not user:
        raise NotFoundError("User not found")
    return user


def list_users(db: Database) -> list:
    return get_documents(db, COLLECTION, sort=[("createdAt", -1)])


def get_profile(db: Database, user_id: str, principal: dict) -> dict:
    user = get_user(db, user_id)
    ensure_owner_or_admin(principal, user["_id"], "Not authorized to access this user profile")
    return user


def update_user(db: Database, user_id: str, payload: UserUpdate, principal: dict) -> dict:
    user = get_user(db, user_id)
    ensure_owner_or_admin(principal, user["_id"], "Not authorized to update this user profile")

    changes = payload.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    # Only admins may change roles
    if not is_admin(principal):
        changes.pop("role", None)
    if changes:
        db[COLLECTION].update_one({"_id": user["_id"]}, {"$set": changes})
        user.update(changes)
    return user


def delete_user(db: Database, user_id: str) -> None:
    user = get_user(db, user_id)
    removed = db["notification"].delete_many({"user": user["_id"]}).deleted_count
    db[COLLECTION].delete_one({"_id": user["_id"]})
    logger.info("User %s deleted with %d notification(s)", user["_id"], removed)


def get_blood_donor_info(db: Database, user_id: str, principal: dict) -> dict:
    user = get_user(db, user_id)
    ensure_owner_or_admin(principal, user["_id"], "Not authorized to access this blood donor information")
    if not user.get("bloodDonor"):
        raise NotFoundError("Blood donor information not found for this user")
    return user["bloodDonor"]


def update_blood_donor_info(db: Database, user_id: str, payload: BloodDonorProfile, principal: dict) -> dict:
    """Replace the user's donor profile.

    Without an explicit `eligibleSince` the user becomes eligible
    DONATION_RECOVERY_DAYS after their last donation, or right away when no
    donation is on record.
    """
    user = get_user(db, user_id)
    ensure_owner_or_admin(principal, user["_id"], "Not authorized to update this blood donor information")

    last_donation = as_utc(payload.last_donation_date)
    eligible_since = as_utc(payload.eligible_since)
    if eligible_since is None:
        if last_donation is not None:
            eligible_since = last_donation + timedelta(days=config.DONATION_RECOVERY_DAYS)
        else:
            eligible_since = utcnow()

    profile = {
        "bloodType": payload.blood_type,
        "lastDonationDate": last_donation,
        "eligibleSince": eligible_since,
    }
    db[COLLECTION].update_one({"_id": user["_id"]}, {"$set": {"bloodDonor": profile}})
    return profile
