from flask import Blueprint, current_app, jsonify, request

from clinic_desk.exceptions import InvalidImportFile, InvalidPayload, MissingRequiredField


api_bp = Blueprint("api", __name__, url_prefix="/api")


def _store():
    from clinic_desk.app_factory import get_store  # local import to avoid cycles
    return get_store()


def _error(message: str, status: int = 400):
    return jsonify({"error": message}), status


@api_bp.errorhandler(InvalidPayload)
def _invalid_payload(e):
    return _error(str(e))


def _json_object(operation: str) -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidPayload(operation, data)
    return data


def _appointment_payload(store, appt):
    patient = store.find_patient(appt.patient_id)
    if patient is None:
        return None
    data = appt.to_dict()
    data["patient"] = {"id": patient.id, "name": patient.name, "whatsapp": patient.whatsapp}
    return data


@api_bp.route("/dashboard", methods=["GET"])
def dashboard():
    """
    Overview counters and today's schedule.
    """
    from clinic_desk.services.clinic_service import get_dashboard_snapshot

    store = _store()
    return jsonify(get_dashboard_snapshot(store.records, store.clock(), store.tz))


@api_bp.route("/patients", methods=["GET"])
def list_patients():
    from clinic_desk.services.clinic_service import age_from_dob, search_patients

    store = _store()
    query = request.args.get("search")
    if query is None:
        query = store.records.ui.get("search", "")
    items = []
    for p in search_patients(store.patients, query):
        data = p.to_dict()
        data["age"] = age_from_dob(p.dob)
        items.append(data)
    return jsonify({"patients": items})


@api_bp.route("/patients", methods=["POST"])
def create_patient():
    patient = _store().add_patient(request.get_json(silent=True))
    return jsonify(patient.to_dict()), 201


@api_bp.route("/patients/import-csv", methods=["POST"])
def import_patients_csv():
    """
    Accepts either an uploaded `file` or the raw CSV as request body.
    """
    from clinic_desk.services.csv_importer import import_patients

    upload = request.files.get("file")
    raw = upload.read().decode("utf-8-sig") if upload else request.get_data(as_text=True)

    try:
        result = import_patients(_store(), raw)
    except InvalidImportFile as e:
        return _error(str(e))
    return jsonify(result.to_dict())


@api_bp.route("/appointments", methods=["GET"])
def list_appointments():
    from clinic_desk.services.scheduler import filter_appointments

    store = _store()
    mode = request.args.get("filter") or store.records.ui.get("apptFilter", "all")
    items = []
    for appt in filter_appointments(store.appointments, mode, store.clock(), store.tz):
        payload = _appointment_payload(store, appt)
        if payload is not None:
            items.append(payload)
    return jsonify({"filter": mode, "appointments": items})


@api_bp.route("/appointments", methods=["POST"])
def create_appointment():
    from clinic_desk.services import events

    store = _store()
    requested = []

    def collect(event, payload):
        requested.append(payload["message"].to_dict())

    store.subscribe(events.DISPATCH_REQUESTED, collect)
    try:
        appt = store.add_appointment(request.get_json(silent=True))
    except MissingRequiredField as e:
        return _error(str(e))
    finally:
        store.unsubscribe(events.DISPATCH_REQUESTED, collect)

    return jsonify({"appointment": appt.to_dict(), "dispatch": requested[0] if requested else None}), 201


@api_bp.route("/reminders", methods=["GET"])
def reminders():
    """
    Pending reminders in the window, in send order.
    """
    from clinic_desk.services.reminders import build_reminder_batch, pending_reminders

    store = _store()
    hours = request.args.get("hours", type=float)
    if hours is None:
        hours = current_app.config.get("REMINDER_HOURS_AHEAD", 48)
    now = store.clock()
    slots = {s.appointment.id: s for s in pending_reminders(store.records, now, hours, store.tz)}
    batch = build_reminder_batch(store.records, now, hours, tz=store.tz)

    items = []
    for message in batch:
        data = message.to_dict()
        data["left"] = slots[message.appointment_id].label
        items.append(data)
    return jsonify({
        "hoursAhead": hours,
        "staggerMs": current_app.config.get("DISPATCH_STAGGER_MS", 800),
        "messages": items,
    })


@api_bp.route("/profile", methods=["GET", "PATCH"])
def profile():
    store = _store()
    if request.method == "PATCH":
        return jsonify(store.update_profile(request.get_json(silent=True)))
    return jsonify(store.profile)


@api_bp.route("/ui", methods=["PATCH"])
def ui_preferences():
    return jsonify(_store().update_ui(request.get_json(silent=True)))


@api_bp.route("/theme", methods=["PUT"])
def theme():
    data = _json_object("theme")
    return jsonify({"theme": _store().set_theme(data.get("theme", ""))})


@api_bp.route("/templates", methods=["GET", "PATCH"])
def templates():
    store = _store()
    if request.method == "PATCH":
        return jsonify(store.update_templates(request.get_json(silent=True)))
    return jsonify(store.templates)


@api_bp.route("/templates/preview", methods=["POST"])
def preview_template():
    """
    Render one template for a patient (and optional appointment) with an
    optional bold / italic / plain modifier.
    """
    from clinic_desk.services.reminders import build_message
    from clinic_desk.services.templates import apply_format

    store = _store()
    data = _json_object("template preview")
    patient = store.find_patient(data.get("patientId", ""))
    if patient is None:
        return _error("Select patient", 404)

    appointment = store.records.find_appointment(data.get("appointmentId", ""))
    template_text = data.get("text") or store.templates.get(data.get("key", "nextVisit"), "")
    message = build_message(
        patient,
        template_text,
        store.profile,
        appointment,
        tz=store.tz,
        medicine=data.get("medicine"),
        dosage=data.get("dosage"),
        timing=data.get("timing"),
        custom_message=data.get("customMessage"),
    )
    message.text = apply_format(message.text, data.get("format"))
    return jsonify(message.to_dict())


@api_bp.route("/messages/custom", methods=["POST"])
def custom_message():
    from clinic_desk.services.outbound import OutboundMessage, destination_for
    from clinic_desk.services.reminders import compose_custom

    store = _store()
    data = _json_object("message")
    patient = store.find_patient(data.get("patientId", ""))
    if patient is None:
        return _error("Select patient", 404)
    if not (data.get("text") or "").strip():
        return _error("Write a message")

    message = OutboundMessage(
        destination=destination_for(patient),
        text=compose_custom(data["text"], store.profile),
        patient_id=patient.id,
    )
    return jsonify(message.to_dict())


@api_bp.route("/export", methods=["GET"])
def export_data():
    store = _store()
    response = current_app.response_class(store.export_json(), mimetype="application/json")
    stamp = store.clock().strftime("%Y-%m-%d")
    response.headers["Content-Disposition"] = f"attachment; filename=clinic-desk-backup-{stamp}.json"
    return response


@api_bp.route("/import", methods=["POST"])
def import_data():
    upload = request.files.get("file")
    raw = upload.read() if upload else request.get_data(as_text=True)
    try:
        summary = _store().import_json(raw)
    except InvalidImportFile as e:
        return _error(str(e))
    return jsonify(summary)


@api_bp.route("/clear", methods=["POST"])
def clear_all():
    _store().clear_all()
    return jsonify({"cleared": True})
