import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
import database
import donations
import medications
import notifications
import pharmacies
import users
from auth import get_current_user, require_roles
from database import get_db, serialize
from errors import AppError
from schemas import (
    BloodDonationCreate,
    BloodDonationUpdate,
    BloodDonorProfile,
    DonorResponse,
    MedicationCreate,
    MedicationUpdate,
    NotificationType,
    PharmacyCreate,
    PharmacyUpdate,
    RequestStatus,
    StockUpdate,
    UserUpdate,
)

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        database.ensure_indexes(database.db)
    except PyMongoError as e:
        logger.warning("Could not ensure indexes: %s", e)
    yield


app = FastAPI(title="PharMatch API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

pharmacy_staff = require_roles("pharmacy", "admin")
admin_only = require_roles("admin")

# ---------------- Utility -----------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, elapsed)
    return response


@app.exception_handler(AppError)
async def handle_app_error(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0])
        errors.append(f"{field}: {err['msg']}")
    return JSONResponse(status_code=400, content={"success": False, "message": "Validation Error", "errors": errors})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = str(exc) if config.DEBUG else "Internal Server Error"
    return JSONResponse(status_code=500, content={"success": False, "message": message})


def paginated(items, pagination, **extra):
    return {"success": True, "count": pagination["total"], **extra, "pagination": pagination, "data": items}

# ---------------- Blood Donation Endpoints -----------------

@app.get("/blood-donation")
def list_blood_donation_requests(
    blood_type: Optional[str] = Query(None, alias="bloodType"),
    urgency: Optional[str] = None,
    hospital: Optional[str] = None,
    status: RequestStatus = "active",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    docs, pagination = donations.list_requests(db, blood_type, urgency, hospital, status, page, limit)
    return paginated([donations.to_summary(d) for d in docs], pagination)


@app.get("/blood-donation/bloodtype/{blood_type}")
def blood_donation_requests_by_type(blood_type: str, db: Database = Depends(get_db)):
    docs = donations.requests_by_blood_type(db, blood_type)
    return {"success": True, "count": len(docs), "data": [donations.to_summary(d) for d in docs]}


@app.get("/blood-donation/{request_id}")
def get_blood_donation_request(request_id: str, db: Database = Depends(get_db)):
    return {"success": True, "data": donations.to_detail(donations.get_request(db, request_id))}


@app.post("/blood-donation", status_code=201)
def create_blood_donation_request(
    payload: BloodDonationCreate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    request = donations.create_request(db, payload, user)
    return {"success": True, "data": donations.to_summary(request)}


@app.put("/blood-donation/{request_id}")
def update_blood_donation_request(
    request_id: str,
    payload: BloodDonationUpdate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    request = donations.update_request(db, request_id, payload, user)
    return {"success": True, "data": donations.to_summary(request)}


@app.delete("/blood-donation/{request_id}")
def delete_blood_donation_request(request_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    donations.delete_request(db, request_id, user)
    return {"success": True, "data": {}}


@app.post("/blood-donation/{request_id}/respond")
def respond_to_blood_donation_request(
    request_id: str,
    payload: Optional[DonorResponse] = None,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    donation_date = payload.donation_date if payload else None
    return {"success": True, "data": donations.respond_to_request(db, request_id, user, donation_date)}

# ---------------- Notification Endpoints -----------------

@app.get("/notifications")
def list_notifications(
    read: Optional[bool] = None,
    notification_type: Optional[NotificationType] = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    docs, pagination, unread = notifications.list_notifications(db, user, read, notification_type, page, limit)
    return paginated([notifications.to_public(n) for n in docs], pagination, unreadCount=unread)


@app.delete("/notifications")
def delete_all_notifications(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    removed = notifications.delete_all(db, user)
    return {"success": True, "data": {}, "count": removed, "message": "All notifications deleted"}


@app.get("/notifications/{notification_id}")
def get_notification(notification_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": notifications.to_public(notifications.get_notification(db, notification_id, user))}


@app.put("/notifications/{notification_id}")
def mark_notification_read(notification_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": notifications.to_public(notifications.mark_read(db, notification_id, user))}


@app.delete("/notifications/{notification_id}")
def delete_notification(notification_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    notifications.delete_notification(db, notification_id, user)
    return {"success": True, "data": {}}

# ---------------- Pharmacy Endpoints -----------------

@app.get("/pharmacies")
def list_pharmacies(
    search: Optional[str] = None,
    city: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    docs, pagination = pharmacies.list_pharmacies(db, search, city, page, limit)
    return paginated([pharmacies.to_public(p) for p in docs], pagination)


@app.get("/pharmacies/search")
def search_pharmacies(city: Optional[str] = None, region: Optional[str] = None, db: Database = Depends(get_db)):
    docs = pharmacies.search_pharmacies(db, city, region)
    return {"success": True, "count": len(docs), "data": [pharmacies.to_public(p) for p in docs]}


@app.get("/pharmacies/medication/{medication_id}")
def pharmacies_by_medication(medication_id: str, db: Database = Depends(get_db)):
    items = pharmacies.pharmacies_by_medication(db, medication_id)
    return {"success": True, "count": len(items), "data": items}


@app.get("/pharmacies/{pharmacy_id}")
def get_pharmacy(pharmacy_id: str, db: Database = Depends(get_db)):
    pharmacy = pharmacies.get_pharmacy(db, pharmacy_id)
    return {"success": True, "data": pharmacies.pharmacy_detail(db, pharmacy)}


@app.post("/pharmacies", status_code=201)
def create_pharmacy(payload: PharmacyCreate, user: dict = Depends(pharmacy_staff), db: Database = Depends(get_db)):
    return {"success": True, "data": pharmacies.to_public(pharmacies.create_pharmacy(db, payload, user))}


@app.put("/pharmacies/{pharmacy_id}")
def update_pharmacy(
    pharmacy_id: str,
    payload: PharmacyUpdate,
    user: dict = Depends(pharmacy_staff),
    db: Database = Depends(get_db),
):
    return {"success": True, "data": pharmacies.to_public(pharmacies.update_pharmacy(db, pharmacy_id, payload, user))}


@app.delete("/pharmacies/{pharmacy_id}")
def delete_pharmacy(pharmacy_id: str, user: dict = Depends(pharmacy_staff), db: Database = Depends(get_db)):
    pharmacies.delete_pharmacy(db, pharmacy_id, user)
    return {"success": True, "data": {}}

# ---------------- Medication Endpoints -----------------

@app.get("/medications")
def list_medications(
    search: Optional[str] = None,
    category: Optional[str] = None,
    prescription: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    docs, pagination = medications.list_medications(db, search, category, prescription, page, limit)
    return paginated(medications.describe(db, docs), pagination)


@app.get("/medications/pharmacy/{pharmacy_id}")
def medications_by_pharmacy(pharmacy_id: str, db: Database = Depends(get_db)):
    items = medications.medications_by_pharmacy(db, pharmacy_id)
    return {"success": True, "count": len(items), "data": items}


@app.get("/medications/{medication_id}")
def get_medication(medication_id: str, db: Database = Depends(get_db)):
    medication = medications.get_medication(db, medication_id)
    return {"success": True, "data": medications.describe(db, [medication])[0]}


@app.get("/medications/{medication_id}/pharmacies")
def medication_pharmacies(medication_id: str, db: Database = Depends(get_db)):
    items = pharmacies.pharmacies_by_medication(db, medication_id)
    return {"success": True, "count": len(items), "data": items}


@app.post("/medications", status_code=201)
def create_medication(payload: MedicationCreate, user: dict = Depends(pharmacy_staff), db: Database = Depends(get_db)):
    return {"success": True, "data": serialize(medications.create_medication(db, payload))}


@app.put("/medications/{medication_id}")
def update_medication(
    medication_id: str,
    payload: MedicationUpdate,
    user: dict = Depends(pharmacy_staff),
    db: Database = Depends(get_db),
):
    return {"success": True, "data": serialize(medications.update_medication(db, medication_id, payload))}


@app.delete("/medications/{medication_id}")
def delete_medication(medication_id: str, user: dict = Depends(pharmacy_staff), db: Database = Depends(get_db)):
    medications.delete_medication(db, medication_id)
    return {"success": True, "data": {}}


@app.put("/medications/{medication_id}/stock")
def update_medication_stock(
    medication_id: str,
    payload: StockUpdate,
    user: dict = Depends(pharmacy_staff),
    db: Database = Depends(get_db),
):
    return {"success": True, "data": medications.update_stock(db, medication_id, payload, user)}

# ---------------- User Endpoints -----------------

@app.get("/users")
def list_users(user: dict = Depends(admin_only), db: Database = Depends(get_db)):
    docs = users.list_users(db)
    return {"success": True, "count": len(docs), "data": [users.to_public(u) for u in docs]}


@app.get("/users/{user_id}")
def get_user(user_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": users.to_public(users.get_profile(db, user_id, user))}


@app.put("/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": users.to_public(users.update_user(db, user_id, payload, user))}


@app.delete("/users/{user_id}")
def delete_user(user_id: str, user: dict = Depends(admin_only), db: Database = Depends(get_db)):
    users.delete_user(db, user_id)
    return {"success": True, "data": {}}


@app.get("/users/{user_id}/blood-donor")
def get_blood_donor_info(user_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": users.get_blood_donor_info(db, user_id, user)}


@app.put("/users/{user_id}/blood-donor")
def update_blood_donor_info(
    user_id: str,
    payload: BloodDonorProfile,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return {"success": True, "data": users.update_blood_donor_info(db, user_id, payload, user)}

# ---------------- Health -----------------

@app.get("/")
def read_root():
    return {"message": "PharMatch API running"}

@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        collections = db.list_collection_names()
        response["database"] = "✅ Connected & Working"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        response["collections"] = collections[:10]
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
