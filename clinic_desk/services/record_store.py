"""
The record store: the only component that reads or writes persisted data.

Each field of a RecordSet lives under its own storage key as one JSON
document. Loading is per-key tolerant (a bad key falls back to its default
and is logged); saving is key-by-key with no transaction, so a backend
failure part way through leaves the earlier keys written.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import pytz
from pydantic import ValidationError

from clinic_desk.exceptions import InvalidImportFile, InvalidPayload, MalformedData, MissingRequiredField
from clinic_desk.models.inputs import AppointmentInput, PatientInput
from clinic_desk.models.records import (
    Appointment,
    DEFAULT_FLAGS,
    DEFAULT_PROFILE,
    DEFAULT_TEMPLATES,
    DEFAULT_THEME,
    DEFAULT_UI,
    Patient,
    RecordSet,
    STATUS_PENDING,
    THEME_PRESETS,
    generate_id,
    parse_timestamp,
    to_iso,
    utcnow,
)
from clinic_desk.services import events
from clinic_desk.services.outbound import OutboundMessage, destination_for
from clinic_desk.services.scheduler import sort_ascending
from clinic_desk.services.storage import StorageBackend
from clinic_desk.services.templates import MessageContext, render


logger = logging.getLogger("clinic_desk.record_store")

# RecordSet field -> storage key suffix, in save order
STORAGE_KEYS: Dict[str, str] = {
    "patients": "patients",
    "appointments": "appointments",
    "visits": "visits",
    "profile": "doctor_profile",
    "ui": "ui",
    "flags": "flags",
    "theme": "theme",
    "templates": "templates",
}

CONFIRMATION_TEMPLATE = "appointmentConfirmation"


def _fields(payload: Any, operation: str) -> Dict[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise InvalidPayload(operation, payload)
    return dict(payload)


def _merged(defaults: Mapping[str, Any], value: Any, key: str) -> Dict[str, Any]:
    if value is None:
        return copy.deepcopy(dict(defaults))
    if not isinstance(value, dict):
        raise MalformedData(key, f"expected an object, got {type(value).__name__}")
    return {**copy.deepcopy(dict(defaults)), **value}


def _as_list(value: Any, key: str) -> list:
    if not isinstance(value, list):
        raise MalformedData(key, f"expected an array, got {type(value).__name__}")
    return value


class RecordStore:
    def __init__(
        self,
        backend: StorageBackend,
        tz=pytz.UTC,
        key_prefix: str = "os_",
        clock: Callable[[], Any] = utcnow,
    ):
        self.backend = backend
        self.tz = tz
        self.key_prefix = key_prefix
        self.clock = clock
        self.events = events.EventBus()
        self.records = RecordSet()

    # -------------------------------
    # subscriptions
    # -------------------------------

    def subscribe(self, event: str, handler) -> None:
        self.events.subscribe(event, handler)

    def unsubscribe(self, event: str, handler) -> None:
        self.events.unsubscribe(event, handler)

    # -------------------------------
    # encode / decode
    # -------------------------------

    def storage_key(self, field_name: str) -> str:
        return f"{self.key_prefix}{STORAGE_KEYS[field_name]}"

    def _decode(self, field_name: str, raw: str) -> Any:
        key = self.storage_key(field_name)
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MalformedData(key, str(e)) from e

        try:
            if field_name == "patients":
                return [Patient.from_dict(p) for p in _as_list(value, key)]
            if field_name == "appointments":
                return sort_ascending(Appointment.from_dict(a, self.tz) for a in _as_list(value, key))
            if field_name == "visits":
                return list(_as_list(value, key))
            if field_name == "profile":
                return _merged(DEFAULT_PROFILE, value, key)
            if field_name == "ui":
                return _merged(DEFAULT_UI, value, key)
            if field_name == "flags":
                return _merged(DEFAULT_FLAGS, value, key)
            if field_name == "templates":
                merged = _merged(DEFAULT_TEMPLATES, value, key)
                return {k: str(v) for k, v in merged.items()}
            if field_name == "theme":
                if not isinstance(value, str):
                    raise MalformedData(key, "theme must be a string")
                return value if value in THEME_PRESETS else DEFAULT_THEME
        except (TypeError, ValueError, KeyError) as e:
            raise MalformedData(key, str(e)) from e
        raise KeyError(field_name)

    def _encode(self, records: RecordSet, field_name: str) -> str:
        value = getattr(records, field_name)
        if field_name in ("patients", "appointments"):
            value = [item.to_dict() for item in value]
        return json.dumps(value, ensure_ascii=False)

    # -------------------------------
    # load / save
    # -------------------------------

    def load(self) -> RecordSet:
        """Read every key; a missing or unreadable key gets its default."""
        loaded = RecordSet()
        for field_name in STORAGE_KEYS:
            key = self.storage_key(field_name)
            try:
                raw = self.backend.get(key)
            except Exception as e:
                logger.exception(f"[load] Backend read failed for key={key}: {e}")
                continue
            if raw is None:
                continue
            try:
                setattr(loaded, field_name, self._decode(field_name, raw))
            except MalformedData as e:
                logger.warning(f"[load] {e}; using default")

        self.records = loaded
        return loaded

    def save(self, records: Optional[RecordSet] = None) -> None:
        """Write all keys in order. Backend errors propagate after a partial write."""
        if records is not None:
            self.records = records
        self._persist(*STORAGE_KEYS)

    def _persist(self, *field_names: str) -> None:
        for field_name in field_names:
            self.backend.set(self.storage_key(field_name), self._encode(self.records, field_name))

    # -------------------------------
    # patients
    # -------------------------------

    @property
    def patients(self) -> List[Patient]:
        return self.records.patients

    @property
    def appointments(self) -> List[Appointment]:
        return self.records.appointments

    @property
    def visits(self) -> List[Dict[str, Any]]:
        return self.records.visits

    @property
    def profile(self) -> Dict[str, Any]:
        return self.records.profile

    @property
    def templates(self) -> Dict[str, str]:
        return self.records.templates

    def find_patient(self, patient_id: str) -> Optional[Patient]:
        return self.records.find_patient(patient_id)

    def add_patient(self, payload: Union[PatientInput, Mapping[str, Any], None] = None) -> Patient:
        data = payload if isinstance(payload, PatientInput) else PatientInput.model_validate(_fields(payload, "patient"))

        phone = data.phone or ""
        patient = Patient(
            id=generate_id("PAT"),
            name=data.name or "Unknown",
            dob=data.dob or "",
            gender=data.gender or "Other",
            phone=phone,
            whatsapp=data.whatsapp or phone,
            blood_group=data.blood_group or "",
            allergies=data.allergies or "",
            address=data.address or "",
            emergency_contact=data.emergency_contact or "",
            registration_date=to_iso(self.clock()),
        )
        self.records.patients.append(patient)
        self._persist("patients")

        logger.info(f"[add_patient] Added patient id={patient.id}")
        self.events.emit(events.PATIENT_ADDED, patient=patient)
        return patient

    # -------------------------------
    # appointments
    # -------------------------------

    def add_appointment(self, payload: Union[AppointmentInput, Mapping[str, Any], None] = None) -> Appointment:
        try:
            data = payload if isinstance(payload, AppointmentInput) else AppointmentInput.model_validate(_fields(payload, "appointment"))
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise MissingRequiredField(fields, f"Invalid appointment: {fields}") from e

        appt = Appointment(
            id=generate_id("APT"),
            patient_id=data.patient_id,
            date=parse_timestamp(data.date, self.tz),
            reason=data.reason or "",
            status=STATUS_PENDING,
            created_at=to_iso(self.clock()),
        )
        self.records.appointments = sort_ascending(self.records.appointments + [appt])
        self._persist("appointments")

        logger.info(f"[add_appointment] Added appointment id={appt.id} patient_id={appt.patient_id}")
        self.events.emit(events.APPOINTMENT_ADDED, appointment=appt)

        if self.profile.get("autoSendWhatsAppOnSchedule"):
            self._request_confirmation(appt)

        return appt

    def _request_confirmation(self, appt: Appointment) -> Optional[OutboundMessage]:
        patient = self.find_patient(appt.patient_id)
        if patient is None:
            logger.info(f"[add_appointment] No patient for id={appt.patient_id}; confirmation not requested")
            return None

        ctx = MessageContext.for_appointment(patient, self.profile, appt)
        message = OutboundMessage(
            destination=destination_for(patient),
            text=render(self.templates.get(CONFIRMATION_TEMPLATE, ""), ctx, self.tz),
            patient_id=patient.id,
            appointment_id=appt.id,
        )
        self.events.emit(events.DISPATCH_REQUESTED, message=message)
        return message

    # -------------------------------
    # profile / preferences
    # -------------------------------

    def update_profile(self, patch: Mapping[str, Any]) -> Dict[str, Any]:
        self.records.profile = {**self.records.profile, **_fields(patch, "profile")}
        self._persist("profile")
        self.events.emit(events.PROFILE_UPDATED, profile=self.records.profile)
        return self.records.profile

    def update_ui(self, patch: Mapping[str, Any]) -> Dict[str, Any]:
        self.records.ui = {**self.records.ui, **_fields(patch, "ui preferences")}
        self._persist("ui")
        self.events.emit(events.UI_UPDATED, ui=self.records.ui)
        return self.records.ui

    def set_flags(self, patch: Mapping[str, Any]) -> Dict[str, bool]:
        self.records.flags = {**self.records.flags, **{k: bool(v) for k, v in _fields(patch, "flags").items()}}
        self._persist("flags")
        self.events.emit(events.FLAGS_UPDATED, flags=self.records.flags)
        return self.records.flags

    def set_theme(self, preset: str) -> str:
        safe = preset if preset in THEME_PRESETS else DEFAULT_THEME
        self.records.theme = safe
        self._persist("theme")
        self.events.emit(events.THEME_CHANGED, theme=safe)
        return safe

    def update_templates(self, patch: Mapping[str, Any]) -> Dict[str, str]:
        # keys are not checked against a known list
        self.records.templates = {**self.records.templates, **{k: str(v) for k, v in _fields(patch, "templates").items()}}
        self._persist("templates")
        self.events.emit(events.TEMPLATES_UPDATED, templates=self.records.templates)
        return self.records.templates

    def clear_all(self) -> RecordSet:
        """Back to a fresh install."""
        self.records = RecordSet()
        self.save()
        logger.info("[clear_all] All records reset")
        self.events.emit(events.STORE_CLEARED)
        return self.records

    # -------------------------------
    # export / import
    # -------------------------------

    def export_document(self, now=None) -> Dict[str, Any]:
        now = now or self.clock()
        return {
            "patients": [p.to_dict() for p in self.records.patients],
            "appointments": [a.to_dict() for a in self.records.appointments],
            "visits": copy.deepcopy(self.records.visits),
            "profile": copy.deepcopy(self.records.profile),
            "exportedAt": to_iso(now),
        }

    def export_json(self, now=None) -> str:
        return json.dumps(self.export_document(now), indent=2, ensure_ascii=False)

    def import_json(self, text: Union[str, bytes]) -> Dict[str, int]:
        """
        Replace patients/appointments/visits with the document's arrays and
        merge its profile onto the defaults. Fields that are absent or not
        arrays leave the current data alone. Nothing changes on a bad file.
        """
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise InvalidImportFile("Import failed: invalid JSON") from e
        if not isinstance(data, dict):
            raise InvalidImportFile("Import failed: expected a JSON object")

        try:
            patients = (
                [Patient.from_dict(p) for p in data["patients"]]
                if isinstance(data.get("patients"), list) else None
            )
            appointments = (
                sort_ascending(Appointment.from_dict(a, self.tz) for a in data["appointments"])
                if isinstance(data.get("appointments"), list) else None
            )
        except (TypeError, ValueError) as e:
            raise InvalidImportFile(f"Import failed: {e}") from e
        visits = list(data["visits"]) if isinstance(data.get("visits"), list) else None
        profile = data.get("profile")

        if patients is not None:
            self.records.patients = patients
        if appointments is not None:
            self.records.appointments = appointments
        if visits is not None:
            self.records.visits = visits
        if isinstance(profile, dict):
            self.records.profile = {**copy.deepcopy(DEFAULT_PROFILE), **profile}

        self._persist("patients", "appointments", "visits", "profile")

        summary = {
            "patients": len(self.records.patients),
            "appointments": len(self.records.appointments),
            "visits": len(self.records.visits),
        }
        logger.info(f"[import_json] Data imported: {summary}")
        self.events.emit(events.DATA_IMPORTED, summary=summary)
        return summary
