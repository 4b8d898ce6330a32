"""
Database Schemas

Pydantic models for every request body the API accepts.
Field names are snake_case in Python and camelCase on the wire and in the
database (blood_type <-> "bloodType"); dump with `by_alias=True` before
writing.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

BloodType = Literal[
    "A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"
]
BLOOD_TYPES = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")

Urgency = Literal["low", "medium", "high"]
RequestStatus = Literal["active", "fulfilled", "expired"]
DonorStatus = Literal["pending", "completed", "cancelled"]
NotificationType = Literal["blood", "medication", "system"]
Role = Literal["user", "pharmacy", "admin"]

HHMM = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ---------------- Blood Donation -----------------

class BloodDonationCreate(CamelModel):
    blood_type: BloodType
    hospital: str = Field(..., min_length=1, description="Hospital name")
    urgency: Urgency = "medium"
    contact_info: str = Field(..., min_length=1, description="Phone or email to reach the requester")
    expires_at: Optional[datetime] = Field(None, description="Defaults to 7 days after creation")


class BloodDonationUpdate(CamelModel):
    blood_type: Optional[BloodType] = None
    hospital: Optional[str] = Field(None, min_length=1)
    urgency: Optional[Urgency] = None
    contact_info: Optional[str] = Field(None, min_length=1)
    expires_at: Optional[datetime] = None
    status: Optional[RequestStatus] = None


class DonorResponse(CamelModel):
    donation_date: Optional[datetime] = Field(None, description="Planned donation date, defaults to now")


# ---------------- Users -----------------

class BloodDonorProfile(CamelModel):
    blood_type: BloodType
    last_donation_date: Optional[datetime] = None
    eligible_since: Optional[datetime] = None


class UserUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None


# ---------------- Pharmacies -----------------

class HoursDay(CamelModel):
    open: str = Field(..., pattern=HHMM, description="HH:MM, 24-hour")
    close: str = Field(..., pattern=HHMM, description="HH:MM, 24-hour")


class WeeklyHours(CamelModel):
    monday: HoursDay = Field(..., alias="Monday")
    tuesday: HoursDay = Field(..., alias="Tuesday")
    wednesday: HoursDay = Field(..., alias="Wednesday")
    thursday: HoursDay = Field(..., alias="Thursday")
    friday: HoursDay = Field(..., alias="Friday")
    saturday: HoursDay = Field(..., alias="Saturday")
    sunday: HoursDay = Field(..., alias="Sunday")


class Permanence(CamelModel):
    is_on_duty: bool = False
    days: List[str] = Field(default_factory=list)


class PharmacyCreate(CamelModel):
    name: str = Field(..., min_length=1)
    name_ar: Optional[str] = None
    city: str = Field(..., min_length=1)
    region: str = Field(..., min_length=1)
    region_ar: Optional[str] = None
    address: Optional[str] = None
    phone: str = ""
    hours: WeeklyHours
    permanence: Permanence = Field(default_factory=Permanence)


class PharmacyUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    name_ar: Optional[str] = None
    city: Optional[str] = Field(None, min_length=1)
    region: Optional[str] = Field(None, min_length=1)
    region_ar: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    hours: Optional[WeeklyHours] = None
    permanence: Optional[Permanence] = None


# ---------------- Medications -----------------

class LocalizedText(CamelModel):
    en: str = Field(..., min_length=1)
    ar: Optional[str] = None
    fr: Optional[str] = None


class PharmacyStock(CamelModel):
    pharmacy: str = Field(..., description="Pharmacy ObjectId as string")
    in_stock: bool = True
    price: float = Field(0, ge=0)


class MedicationCreate(CamelModel):
    name: LocalizedText
    description: LocalizedText
    category: LocalizedText
    prescription: bool = False
    image_url: Optional[str] = None
    pharmacies: List[PharmacyStock] = Field(default_factory=list)


class MedicationUpdate(CamelModel):
    name: Optional[LocalizedText] = None
    description: Optional[LocalizedText] = None
    category: Optional[LocalizedText] = None
    prescription: Optional[bool] = None
    image_url: Optional[str] = None


class StockUpdate(CamelModel):
    in_stock: bool
    price: Optional[float] = Field(None, ge=0, description="Price must be a non-negative number")
    pharmacy_id: Optional[str] = Field(None, description="Only honoured for admins")
