"""
Message template rendering.

Templates are plain strings with ``{{token}}`` placeholders drawn from a
closed set. Rendering is one substitution pass over a token -> value
mapping; unknown tokens and stray braces are copied through untouched and
rendering never raises.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Mapping, Optional, Union

import pytz

from clinic_desk.models.records import Appointment, Patient, parse_timestamp


DATE_FORMAT = "%d %b %Y"
TIME_FORMAT = "%H:%M"

BOLD = "bold"
ITALIC = "italic"
PLAIN = "plain"

FORMAT_MARKERS = {
    BOLD: ("*", "*"),
    ITALIC: ("_", "_"),
}

_TOKEN_RE = re.compile(r"\{\{(\w+)\}\}")


def _text(key: str) -> Callable[[Mapping[str, Any], Any], str]:
    def read(ctx: Mapping[str, Any], tz) -> str:
        value = ctx.get(key)
        return "" if value is None else str(value)
    return read


def _moment(ctx: Mapping[str, Any], tz) -> Union[datetime, date, str, None]:
    """The single timestamp both `date` and `time` derive from."""
    value = ctx.get("when")
    if value is None:
        value = ctx.get("date")
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return parse_timestamp(value, tz).astimezone(tz)
    if isinstance(value, date):
        return value
    raw = str(value)
    try:
        return parse_timestamp(raw, tz).astimezone(tz)
    except ValueError:
        pass
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return raw


def _format_date(ctx: Mapping[str, Any], tz) -> str:
    moment = _moment(ctx, tz)
    if moment is None:
        return ""
    if isinstance(moment, str):
        return moment
    return moment.strftime(DATE_FORMAT)


def _format_time(ctx: Mapping[str, Any], tz) -> str:
    moment = _moment(ctx, tz)
    if isinstance(moment, datetime):
        return moment.strftime(TIME_FORMAT)
    return ""


# token -> reader(context, tz); adding a placeholder is one entry here
TOKENS: Dict[str, Callable[[Mapping[str, Any], Any], str]] = {
    "patientName": _text("patientName"),
    "date": _format_date,
    "time": _format_time,
    "doctorName": _text("doctorName"),
    "clinicName": _text("clinicName"),
    "medicine": _text("medicine"),
    "dosage": _text("dosage"),
    "timing": _text("timing"),
    "customMessage": _text("customMessage"),
}


@dataclass
class MessageContext:
    patient_name: Optional[str] = None
    when: Optional[datetime] = None
    doctor_name: Optional[str] = None
    clinic_name: Optional[str] = None
    medicine: Optional[str] = None
    dosage: Optional[str] = None
    timing: Optional[str] = None
    custom_message: Optional[str] = None

    def as_mapping(self) -> Dict[str, Any]:
        return {
            "patientName": self.patient_name,
            "when": self.when,
            "doctorName": self.doctor_name,
            "clinicName": self.clinic_name,
            "medicine": self.medicine,
            "dosage": self.dosage,
            "timing": self.timing,
            "customMessage": self.custom_message,
        }

    @classmethod
    def for_appointment(
        cls,
        patient: Patient,
        profile: Mapping[str, Any],
        appointment: Optional[Appointment] = None,
        **extra: Any,
    ) -> "MessageContext":
        return cls(
            patient_name=patient.name,
            when=appointment.date if appointment else None,
            doctor_name=profile.get("name"),
            clinic_name=profile.get("clinic"),
            **extra,
        )


def render(template_text: str, context: Union[MessageContext, Mapping[str, Any], None] = None, tz=pytz.UTC) -> str:
    if not template_text:
        return ""
    if isinstance(context, MessageContext):
        ctx = context.as_mapping()
    else:
        ctx = dict(context or {})

    def substitute(match: "re.Match[str]") -> str:
        reader = TOKENS.get(match.group(1))
        if reader is None:
            return match.group(0)
        return reader(ctx, tz)

    return _TOKEN_RE.sub(substitute, str(template_text))


def apply_format(text: str, modifier: Optional[str] = None) -> str:
    """Wrap already-rendered text; `plain` and unknown modifiers return it as is."""
    markers = FORMAT_MARKERS.get((modifier or PLAIN).lower())
    if markers is None:
        return text
    left, right = markers
    return f"{left}{text}{right}"


def render_formatted(template_text: str, context=None, modifier: Optional[str] = None, tz=pytz.UTC) -> str:
    """Always starts from a fresh render, so modifiers never stack."""
    return apply_format(render(template_text, context, tz), modifier)
