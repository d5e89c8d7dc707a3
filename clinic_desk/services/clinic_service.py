from datetime import date, datetime
from typing import List, Optional

import pytz

from clinic_desk.models.records import Patient, RecordSet, STATUS_PENDING
from clinic_desk.services.scheduler import filter_appointments


# -------------------------------
# PATIENT HELPERS
# -------------------------------

def search_patients(patients: List[Patient], query: Optional[str]) -> List[Patient]:
    """Name / id match case-insensitively, phone by substring."""
    q = (query or "").strip()
    if not q:
        return list(patients)
    lowered = q.lower()
    return [
        p for p in patients
        if lowered in (p.name or "").lower()
        or q in (p.phone or "")
        or lowered in (p.id or "").lower()
    ]


def age_from_dob(dob: Optional[str], today: Optional[date] = None) -> Optional[int]:
    if not dob:
        return None
    try:
        birth = date.fromisoformat(dob[:10])
    except ValueError:
        return None
    today = today or date.today()
    age = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        age -= 1
    return age


# -------------------------------
# DASHBOARD
# -------------------------------

def get_dashboard_snapshot(records: RecordSet, now: datetime, tz=pytz.UTC):
    """
    Aggregate data for the dashboard:
    - Today's appointments (with patient info)
    - High-level stats
    """
    local_now = now.astimezone(tz)

    today_payload = []
    for appt in filter_appointments(records.appointments, "today", now, tz):
        patient = records.find_patient(appt.patient_id)
        if patient is None:
            continue
        today_payload.append(
            {
                "id": appt.id,
                "date": appt.to_dict()["date"],
                "time": appt.date.astimezone(tz).strftime("%H:%M"),
                "status": appt.status,
                "reason": appt.reason,
                "patient": {
                    "id": patient.id,
                    "name": patient.name,
                    "phone": patient.phone,
                    "whatsapp": patient.whatsapp,
                },
            }
        )

    stats = {
        "total_patients": len(records.patients),
        "today_total": len(today_payload),
        "pending_reminders": sum(1 for a in records.appointments if a.status == STATUS_PENDING),
        "total_visits": len(records.visits),
        "timezone": str(tz),
        "today_label": local_now.strftime("%A, %b %d"),
    }

    return {
        "stats": stats,
        "today_appointments": today_payload,
    }
