"""
Bulk patient import from spreadsheet exports.

Parsing is deliberately simple: one record per line, fields split on a bare
comma, no quoting. A cell that itself contains a comma will shift the
columns of its row.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from clinic_desk.exceptions import InvalidImportFile


logger = logging.getLogger("clinic_desk.csv_importer")

DELIMITER = ","

# logical field -> accepted (lower-case) header names
HEADER_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "phone": ("phone", "mobile", "contact", "phone number"),
    "name": ("name", "patient name", "full name"),
    "dob": ("dob", "date of birth", "birthdate"),
    "gender": ("gender", "sex"),
    "whatsapp": ("whatsapp", "whatsapp number"),
    "bloodGroup": ("bloodgroup", "blood group", "blood"),
    "allergies": ("allergies", "allergy"),
    "address": ("address", "location"),
    "emergencyContact": ("emergency", "emergency contact", "emergency number"),
}

DEFAULT_GENDER = "Male"

_LINE_BREAK_RE = re.compile(r"\r?\n|\r")


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"imported": self.imported, "skipped": self.skipped}


def parse_csv(text: str) -> Tuple[List[str], List[List[str]]]:
    """Return (lower-cased headers, rows of trimmed cells)."""
    lines = [line.strip() for line in _LINE_BREAK_RE.split(text or "")]
    lines = [line for line in lines if line]
    # a header line alone is not a usable file
    if len(lines) < 2:
        return [], []
    headers = [h.strip().lower() for h in lines[0].split(DELIMITER)]
    rows = [[cell.strip() for cell in line.split(DELIMITER)] for line in lines[1:]]
    return headers, rows


def match_headers(headers: Sequence[str]) -> Dict[str, int]:
    """Column index per logical field; -1 when no header matches."""
    indexes = {}
    for field_name, synonyms in HEADER_SYNONYMS.items():
        indexes[field_name] = next(
            (i for i, h in enumerate(headers) if h in synonyms),
            -1,
        )
    return indexes


def _cell(cols: Sequence[str], idx: int) -> str:
    if 0 <= idx < len(cols):
        return cols[idx]
    return ""


def import_patients(store, raw_text: str) -> ImportResult:
    """
    Add every usable row as a patient through the store.

    - empty phone or name: skipped, not counted
    - phone already registered: skipped and counted
    """
    headers, rows = parse_csv(raw_text)
    if not headers or not any(headers):
        raise InvalidImportFile("Empty/invalid CSV")

    idx = match_headers(headers)
    if idx["phone"] < 0 or idx["name"] < 0:
        logger.warning(f"[import_patients] Required column missing; headers={headers}")

    result = ImportResult()
    for cols in rows:
        phone = _cell(cols, idx["phone"])
        name = _cell(cols, idx["name"])
        if not phone or not name:
            continue

        if any((p.phone or "") == phone for p in store.patients):
            result.skipped += 1
            continue

        store.add_patient({
            "name": name,
            "phone": phone,
            "dob": _cell(cols, idx["dob"]),
            "gender": _cell(cols, idx["gender"]) or DEFAULT_GENDER,
            "whatsapp": _cell(cols, idx["whatsapp"]) or phone,
            "bloodGroup": _cell(cols, idx["bloodGroup"]),
            "allergies": _cell(cols, idx["allergies"]),
            "address": _cell(cols, idx["address"]),
            "emergencyContact": _cell(cols, idx["emergencyContact"]),
        })
        result.imported += 1

    logger.info(f"[import_patients] CSV import done imported={result.imported} skipped={result.skipped}")
    return result
