from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PatientInput(BaseModel):
    """Raw patient fields as typed into the form or read from a CSV row."""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, description="Patient full name")
    phone: Optional[str] = Field(None, description="Primary phone number")
    whatsapp: Optional[str] = Field(None, description="WhatsApp number, falls back to phone")
    dob: Optional[str] = Field(None, description="Date of birth, free-form")
    gender: Optional[str] = None
    blood_group: Optional[str] = Field(None, alias="bloodGroup")
    allergies: Optional[str] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = Field(None, alias="emergencyContact")

    @field_validator("*", mode="before")
    @classmethod
    def coerce_text(cls, v):
        if v is None:
            return None
        return str(v)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if v is not None else None


class AppointmentInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    patient_id: str = Field(..., alias="patientId", min_length=1)
    date: datetime
    reason: Optional[str] = None

    @field_validator("patient_id", mode="before")
    @classmethod
    def strip_patient_id(cls, v):
        if v is None:
            return v
        return str(v).strip()
