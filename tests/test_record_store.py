import json
import logging
from datetime import datetime, timedelta

import pytest
import pytz

from clinic_desk.exceptions import InvalidImportFile, InvalidPayload, MissingRequiredField
from clinic_desk.models.records import DEFAULT_PROFILE, RecordSet
from clinic_desk.services import events
from clinic_desk.services.record_store import RecordStore
from clinic_desk.services.storage import MemoryBackend


def _reopen(backend, now):
    s = RecordStore(backend, clock=lambda: now)
    s.load()
    return s


def _collect(store, event):
    seen = []
    store.subscribe(event, lambda name, payload: seen.append(payload))
    return seen


# -------------------------------
# patients
# -------------------------------

def test_add_patient_applies_defaults(store, now):
    p = store.add_patient({"name": "  Asha Rao  ", "phone": "98450 12345"})

    assert p.name == "Asha Rao"
    assert p.gender == "Other"
    assert p.whatsapp == "98450 12345"
    assert p.registration_date == now.isoformat()
    assert p.id.startswith("PAT-")


def test_add_patient_blank_name_becomes_unknown(store):
    assert store.add_patient({"name": "   ", "phone": "1"}).name == "Unknown"
    assert store.add_patient({}).name == "Unknown"


def test_add_patient_ids_are_unique(store):
    ids = {store.add_patient({"name": f"P{i}", "phone": str(i)}).id for i in range(50)}
    assert len(ids) == 50


def test_add_patient_round_trips_through_load(store, backend, now):
    added = store.add_patient({
        "name": "Asha",
        "phone": "111",
        "whatsapp": "222",
        "dob": "1990-02-03",
        "gender": "Female",
        "bloodGroup": "O+",
        "allergies": "penicillin",
        "address": "Warangal",
        "emergencyContact": "333",
    })

    reloaded = _reopen(backend, now)

    assert reloaded.patients == [added]
    assert reloaded.patients[0].blood_group == "O+"
    assert reloaded.patients[0].emergency_contact == "333"


def test_add_patient_emits_event(store):
    seen = _collect(store, events.PATIENT_ADDED)
    p = store.add_patient({"name": "Asha", "phone": "1"})
    assert seen == [{"patient": p}]


def test_failing_listener_does_not_break_mutation(store, backend):
    def boom(name, payload):
        raise RuntimeError("listener down")

    store.subscribe(events.PATIENT_ADDED, boom)
    store.add_patient({"name": "Asha", "phone": "1"})
    assert len(json.loads(backend.get("os_patients"))) == 1


# -------------------------------
# load / save
# -------------------------------

def test_load_empty_backend_gives_defaults(store):
    assert store.patients == []
    assert store.appointments == []
    assert store.visits == []
    assert store.profile == DEFAULT_PROFILE
    assert store.records.ui["apptFilter"] == "all"
    assert store.records.theme == "dark"


def test_malformed_key_falls_back_alone(backend, now, caplog):
    backend.set("os_patients", "{not json")
    backend.set("os_appointments", json.dumps([
        {"id": "A1", "patientId": "P1", "date": "2024-05-02T10:00:00Z", "status": "pending"},
    ]))
    backend.set("os_visits", json.dumps({"oops": True}))

    with caplog.at_level(logging.WARNING, logger="clinic_desk.record_store"):
        s = _reopen(backend, now)

    assert s.patients == []
    assert s.visits == []
    assert [a.id for a in s.appointments] == ["A1"]
    assert "os_patients" in caplog.text
    assert "os_visits" in caplog.text


def test_appointment_without_date_marks_key_malformed(backend, now):
    backend.set("os_appointments", json.dumps([{"id": "A1", "patientId": "P1"}]))
    assert _reopen(backend, now).appointments == []


def test_profile_is_merged_onto_defaults(backend, now):
    backend.set("os_doctor_profile", json.dumps({"name": "Dr. Meera"}))
    s = _reopen(backend, now)
    assert s.profile["name"] == "Dr. Meera"
    assert s.profile["clinic"] == DEFAULT_PROFILE["clinic"]


def test_loaded_appointments_are_sorted(backend, now):
    backend.set("os_appointments", json.dumps([
        {"id": "late", "patientId": "P", "date": "2024-05-03T10:00:00Z"},
        {"id": "early", "patientId": "P", "date": "2024-05-02T10:00:00Z"},
    ]))
    assert [a.id for a in _reopen(backend, now).appointments] == ["early", "late"]


class _FlakyBackend(MemoryBackend):
    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = fail_on

    def set(self, key, value):
        if key == self.fail_on:
            raise IOError("disk full")
        super().set(key, value)


def test_save_is_not_atomic(now):
    backend = _FlakyBackend(fail_on="os_visits")
    s = RecordStore(backend, clock=lambda: now)
    records = RecordSet()

    with pytest.raises(IOError):
        s.save(records)

    assert backend.get("os_patients") == "[]"
    assert backend.get("os_appointments") == "[]"
    assert backend.get("os_visits") is None
    assert backend.get("os_doctor_profile") is None


# -------------------------------
# appointments
# -------------------------------

@pytest.mark.parametrize("offsets", [
    [3, 1, 2],
    [1, 2, 3],
    [3, 2, 1],
    [5, -1, 0, 2],
])
def test_appointments_stay_sorted(store, now, offsets):
    store.update_profile({"autoSendWhatsAppOnSchedule": False})
    for hours in offsets:
        store.add_appointment({"patientId": "P1", "date": now + timedelta(hours=hours)})
        stamps = [a.timestamp for a in store.appointments]
        assert stamps == sorted(stamps)


def test_equal_dates_keep_insertion_order(store, now):
    store.update_profile({"autoSendWhatsAppOnSchedule": False})
    when = now + timedelta(days=1)
    first = store.add_appointment({"patientId": "P1", "date": when})
    second = store.add_appointment({"patientId": "P2", "date": when})
    assert [a.id for a in store.appointments] == [first.id, second.id]


def test_add_appointment_defaults(store, now):
    appt = store.add_appointment({"patientId": "P1", "date": "2024-05-02T10:00:00"})

    assert appt.status == "pending"
    assert appt.reason == ""
    assert appt.created_at == now.isoformat()
    assert appt.date == datetime(2024, 5, 2, 10, 0, tzinfo=pytz.UTC)


@pytest.mark.parametrize("payload", [
    {"date": "2024-05-02T10:00:00"},
    {"patientId": "P1"},
    {"patientId": "", "date": "2024-05-02T10:00:00"},
    {"patientId": "P1", "date": "next tuesday"},
])
def test_add_appointment_requires_patient_and_date(store, payload):
    with pytest.raises(MissingRequiredField):
        store.add_appointment(payload)
    assert store.appointments == []


def test_auto_send_requests_confirmation(store):
    patient = store.add_patient({"name": "Asha", "phone": "98450 12345"})
    seen = _collect(store, events.DISPATCH_REQUESTED)

    appt = store.add_appointment({"patientId": patient.id, "date": "2024-05-02T10:30:00Z"})

    assert len(seen) == 1
    message = seen[0]["message"]
    assert message.destination == "9845012345"
    assert message.appointment_id == appt.id
    assert "Asha" in message.text
    assert "02 May 2024" in message.text
    assert "10:30" in message.text
    assert DEFAULT_PROFILE["clinic"] in message.text


def test_auto_send_disabled_requests_nothing(store):
    patient = store.add_patient({"name": "Asha", "phone": "1"})
    store.update_profile({"autoSendWhatsAppOnSchedule": False})
    seen = _collect(store, events.DISPATCH_REQUESTED)

    store.add_appointment({"patientId": patient.id, "date": "2024-05-02T10:30:00Z"})

    assert seen == []


def test_auto_send_tolerates_dangling_patient(store):
    seen = _collect(store, events.DISPATCH_REQUESTED)
    appt = store.add_appointment({"patientId": "PAT-missing", "date": "2024-05-02T10:30:00Z"})
    assert seen == []
    assert store.appointments == [appt]


# -------------------------------
# profile / preferences / wipe
# -------------------------------

def test_update_profile_shallow_merges_and_persists(store, backend, now):
    store.update_profile({"name": "Dr. Meera", "extra": 1})

    reloaded = _reopen(backend, now)
    assert reloaded.profile["name"] == "Dr. Meera"
    assert reloaded.profile["extra"] == 1
    assert reloaded.profile["clinic"] == DEFAULT_PROFILE["clinic"]


@pytest.mark.parametrize("method", ["add_patient", "add_appointment", "update_profile", "update_ui", "set_flags", "update_templates"])
def test_non_mapping_payload_is_rejected(store, method):
    before = store.export_json()
    with pytest.raises(InvalidPayload):
        getattr(store, method)(["x"])
    assert store.export_json() == before


def test_set_theme_rejects_unknown_preset(store):
    assert store.set_theme("neo") == "neo"
    assert store.set_theme("hotpink") == "dark"


def test_update_templates_keeps_defaults(store, backend, now):
    store.update_templates({"followUp": "See you {{date}}"})
    reloaded = _reopen(backend, now)
    assert reloaded.templates["followUp"] == "See you {{date}}"
    assert "nextVisit" in reloaded.templates


def test_clear_all_resets_everything(store, backend, now):
    store.add_patient({"name": "Asha", "phone": "1"})
    store.add_appointment({"patientId": "P1", "date": now + timedelta(days=1)})
    store.update_profile({"name": "Dr. Meera"})
    store.update_ui({"search": "asha"})
    seen = _collect(store, events.STORE_CLEARED)

    store.clear_all()

    reloaded = _reopen(backend, now)
    assert reloaded.patients == []
    assert reloaded.appointments == []
    assert reloaded.profile == DEFAULT_PROFILE
    assert reloaded.records.ui["search"] == ""
    assert seen == [{}]


# -------------------------------
# export / import
# -------------------------------

def _strip_stamp(text):
    doc = json.loads(text)
    doc.pop("exportedAt")
    return doc


def test_export_document_shape(store, now):
    doc = json.loads(store.export_json())
    assert set(doc) == {"patients", "appointments", "visits", "profile", "exportedAt"}
    assert doc["exportedAt"] == now.isoformat()


def test_export_then_import_on_empty_store_is_noop(store):
    before = store.export_json()
    store.import_json(before)
    assert store.export_json() == before


def test_export_import_export_is_idempotent(store, now):
    p = store.add_patient({"name": "Asha", "phone": "1"})
    store.add_appointment({"patientId": p.id, "date": now + timedelta(days=2), "reason": "checkup"})
    store.records.visits.append({"id": "V1", "notes": "fever"})
    first = store.export_json()

    other = RecordStore(MemoryBackend(), clock=lambda: now)
    other.load()
    other.import_json(first)

    assert _strip_stamp(other.export_json()) == _strip_stamp(first)


def test_import_ignores_non_array_fields(store):
    p = store.add_patient({"name": "Asha", "phone": "1"})
    store.import_json(json.dumps({"patients": {"not": "a list"}, "visits": [{"id": "V1"}]}))
    assert store.patients == [p]
    assert store.visits == [{"id": "V1"}]


def test_import_sorts_appointments_and_merges_profile(store, backend, now):
    store.import_json(json.dumps({
        "appointments": [
            {"id": "b", "patientId": "P", "date": "2024-05-05T09:00:00Z"},
            {"id": "a", "patientId": "P", "date": "2024-05-04T09:00:00Z"},
        ],
        "profile": {"clinic": "Sunrise Clinic"},
    }))

    reloaded = _reopen(backend, now)
    assert [a.id for a in reloaded.appointments] == ["a", "b"]
    assert reloaded.profile["clinic"] == "Sunrise Clinic"
    assert reloaded.profile["name"] == DEFAULT_PROFILE["name"]


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"text"', ""])
def test_import_rejects_invalid_file(store, raw):
    p = store.add_patient({"name": "Asha", "phone": "1"})
    with pytest.raises(InvalidImportFile):
        store.import_json(raw)
    assert store.patients == [p]


def test_import_with_bad_appointment_changes_nothing(store):
    p = store.add_patient({"name": "Asha", "phone": "1"})
    with pytest.raises(InvalidImportFile):
        store.import_json(json.dumps({"patients": [], "appointments": [{"id": "x"}]}))
    assert store.patients == [p]


def test_import_empty_profile_resets_to_defaults(store, backend, now):
    store.update_profile({"name": "Dr. Meera"})

    store.import_json(json.dumps({"profile": {}}))

    assert store.profile == DEFAULT_PROFILE
    assert _reopen(backend, now).profile == DEFAULT_PROFILE
