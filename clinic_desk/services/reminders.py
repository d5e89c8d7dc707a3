"""
Reminder selection: turn the reminder window into ordered outbound messages.

The batch is in ascending appointment time and every message carries its
send-order index. Spacing the actual dispatches out (e.g. index * stagger)
is left to the caller.
"""

import logging
from typing import Any, List, Mapping, Optional

import pytz

from clinic_desk.models.records import Patient, RecordSet
from clinic_desk.services.outbound import OutboundMessage, destination_for
from clinic_desk.services.scheduler import DEFAULT_HOURS_AHEAD, ReminderSlot, reminder_window
from clinic_desk.services.templates import MessageContext, render


logger = logging.getLogger("clinic_desk.reminders")

REMINDER_TEMPLATE = "appointmentReminder"


def pending_reminders(
    records: RecordSet,
    now,
    hours_ahead: Optional[float] = DEFAULT_HOURS_AHEAD,
    tz=pytz.UTC,
) -> List[ReminderSlot]:
    """Reminder window with dangling patient references dropped."""
    return [
        slot for slot in reminder_window(records.appointments, now, hours_ahead, tz)
        if records.find_patient(slot.appointment.patient_id) is not None
    ]


def build_reminder_batch(
    records: RecordSet,
    now,
    hours_ahead: Optional[float] = DEFAULT_HOURS_AHEAD,
    template_key: str = REMINDER_TEMPLATE,
    tz=pytz.UTC,
) -> List[OutboundMessage]:
    template_text = records.templates.get(template_key, "")
    batch = []
    for slot in pending_reminders(records, now, hours_ahead, tz):
        appt = slot.appointment
        patient = records.find_patient(appt.patient_id)
        ctx = MessageContext.for_appointment(patient, records.profile, appt)
        batch.append(
            OutboundMessage(
                destination=destination_for(patient),
                text=render(template_text, ctx, tz),
                index=len(batch),
                patient_id=patient.id,
                appointment_id=appt.id,
            )
        )

    logger.info(f"[build_reminder_batch] {len(batch)} reminder(s) within {hours_ahead}h")
    return batch


def compose_custom(text: str, profile: Mapping[str, Any]) -> str:
    """Free-text message signed with the doctor and clinic names."""
    return f"{(text or '').strip()}\n\n— {profile.get('name', '')}, {profile.get('clinic', '')}"


def build_message(
    patient: Patient,
    template_text: str,
    profile: Mapping[str, Any],
    appointment=None,
    tz=pytz.UTC,
    **extra: Any,
) -> OutboundMessage:
    """Single message for one patient, e.g. a medication reminder."""
    ctx = MessageContext.for_appointment(patient, profile, appointment, **extra)
    return OutboundMessage(
        destination=destination_for(patient),
        text=render(template_text, ctx, tz),
        patient_id=patient.id,
        appointment_id=appointment.id if appointment else None,
    )
