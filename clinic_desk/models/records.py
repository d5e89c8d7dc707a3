from __future__ import annotations

import copy
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytz


STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
APPOINTMENT_STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_CANCELLED)

THEME_PRESETS = ("light", "dark", "pastel", "glass", "neo")
DEFAULT_THEME = "dark"

DEFAULT_PROFILE: Dict[str, Any] = {
    "appName": "Onestop AI",
    "name": "Dr. John Smith",
    "qualification": "MBBS, MD",
    "specialization": "General Physician",
    "clinic": "HealthCare Clinic",
    "phone": "+1234567890",
    "address": "123 Medical Street, City",
    "autoSendWhatsAppOnSchedule": True,
}

APPOINTMENT_FILTERS = ("all", "today", "upcoming", "overdue")

DEFAULT_UI: Dict[str, Any] = {
    "currentView": "dashboard",
    "search": "",
    "apptFilter": "all",
}

DEFAULT_FLAGS: Dict[str, bool] = {
    "showInstall": False,
}

DEFAULT_TEMPLATES: Dict[str, str] = {
    "nextVisit": (
        "Hi {{patientName}}, this is a reminder for your next visit on {{date}} at {{time}} "
        "with {{doctorName}} at {{clinicName}}. Reply YES to confirm."
    ),
    "medicationReminder": (
        "Hello {{patientName}}, please remember to take your medication {{medicine}} "
        "({{dosage}}) at {{timing}}. — {{doctorName}}"
    ),
    "intakeReminder": (
        "Dear {{patientName}}, it’s time to take {{medicine}} ({{dosage}}). "
        "Stay consistent for best results. — {{doctorName}}"
    ),
    "custom": "Hi {{patientName}}, {{customMessage}} — {{doctorName}}",
    "appointmentConfirmation": (
        "Hi {{patientName}}, your appointment is scheduled with {{doctorName}}.\n\n"
        "📆 {{date}}\n🕒 {{time}}\n🏥 {{clinicName}}\n\nReply to confirm."
    ),
    "appointmentReminder": (
        "Hi {{patientName}}, reminder for your appointment with {{doctorName}}.\n\n"
        "📆 {{date}}\n🕒 {{time}}\n🏥 {{clinicName}}\n\nReply to confirm."
    ),
}

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def generate_id(prefix: str = "ID") -> str:
    """Opaque id: prefix, base36 millisecond clock and a random suffix."""
    millis = int(time.time() * 1000)
    suffix = "".join(random.choices(_BASE36, k=6))
    return f"{prefix}-{_to_base36(millis)}-{suffix}"


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def parse_timestamp(value: Any, tz=pytz.UTC) -> datetime:
    """
    Parse an ISO-8601 string (or pass through a datetime).
    Naive values are interpreted in `tz`; the result is always tz-aware.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        parsed = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"Not a timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = tz.localize(parsed)
    return parsed


def to_iso(value: datetime) -> str:
    return value.astimezone(pytz.UTC).isoformat()


@dataclass
class Patient:
    id: str
    name: str
    phone: str = ""
    whatsapp: str = ""
    dob: str = ""
    gender: str = "Other"
    blood_group: str = ""
    allergies: str = ""
    address: str = ""
    emergency_contact: str = ""
    registration_date: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "dob": self.dob,
            "gender": self.gender,
            "phone": self.phone,
            "whatsapp": self.whatsapp,
            "bloodGroup": self.blood_group,
            "allergies": self.allergies,
            "address": self.address,
            "emergencyContact": self.emergency_contact,
            "registrationDate": self.registration_date,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Patient":
        if not isinstance(data, dict):
            raise TypeError(f"Patient record must be an object, got {type(data).__name__}")
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            phone=str(data.get("phone") or ""),
            whatsapp=str(data.get("whatsapp") or ""),
            dob=str(data.get("dob") or ""),
            gender=str(data.get("gender") or "Other"),
            blood_group=str(data.get("bloodGroup") or ""),
            allergies=str(data.get("allergies") or ""),
            address=str(data.get("address") or ""),
            emergency_contact=str(data.get("emergencyContact") or ""),
            registration_date=str(data.get("registrationDate") or ""),
        )


@dataclass
class Appointment:
    id: str
    patient_id: str
    date: datetime
    reason: str = ""
    status: str = STATUS_PENDING
    created_at: str = ""

    @property
    def timestamp(self) -> float:
        return self.date.timestamp()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "patientId": self.patient_id,
            "date": to_iso(self.date),
            "reason": self.reason,
            "status": self.status,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], tz=pytz.UTC) -> "Appointment":
        if not isinstance(data, dict):
            raise TypeError(f"Appointment record must be an object, got {type(data).__name__}")
        return cls(
            id=str(data.get("id") or ""),
            patient_id=str(data.get("patientId") or ""),
            date=parse_timestamp(data.get("date"), tz),
            reason=str(data.get("reason") or ""),
            status=str(data.get("status") or STATUS_PENDING),
            created_at=str(data.get("createdAt") or ""),
        )


@dataclass
class RecordSet:
    """Everything the store persists, one field per storage key."""
    patients: List[Patient] = field(default_factory=list)
    appointments: List[Appointment] = field(default_factory=list)
    visits: List[Dict[str, Any]] = field(default_factory=list)
    profile: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_PROFILE))
    ui: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_UI))
    flags: Dict[str, bool] = field(default_factory=lambda: copy.deepcopy(DEFAULT_FLAGS))
    theme: str = DEFAULT_THEME
    templates: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TEMPLATES))

    def find_patient(self, patient_id: str) -> Optional[Patient]:
        return next((p for p in self.patients if p.id == patient_id), None)

    def find_appointment(self, appointment_id: str) -> Optional[Appointment]:
        return next((a for a in self.appointments if a.id == appointment_id), None)
