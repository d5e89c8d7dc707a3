import re
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

from clinic_desk.models.records import Patient


WHATSAPP_BASE_URL = "https://wa.me"

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_destination(number: Optional[str]) -> str:
    """Phone string with all whitespace removed."""
    return _WHITESPACE_RE.sub("", number or "")


def encode_text(text: str) -> str:
    """Percent-encode message text the same way a browser encodes a URI component."""
    return quote(text or "", safe="-_.!~*'()")


def whatsapp_link(destination: str, text: str) -> str:
    dest = encode_text(normalize_destination(destination))
    return f"{WHATSAPP_BASE_URL}/{dest}?text={encode_text(text)}"


def destination_for(patient: Patient) -> str:
    return normalize_destination(patient.whatsapp or patient.phone)


@dataclass
class OutboundMessage:
    """A ready-to-send (destination, text) pair; dispatch happens elsewhere."""
    destination: str
    text: str
    index: int = 0
    patient_id: Optional[str] = None
    appointment_id: Optional[str] = None

    @property
    def encoded_text(self) -> str:
        return encode_text(self.text)

    @property
    def link(self) -> str:
        return whatsapp_link(self.destination, self.text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "patientId": self.patient_id,
            "appointmentId": self.appointment_id,
            "destination": self.destination,
            "text": self.text,
            "encodedText": self.encoded_text,
            "link": self.link,
        }
