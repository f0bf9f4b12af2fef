# FILE: reassignment_billing/schemas/patient.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ReassignIn(BaseModel):
    new_doctor_id: int
    reason: str = Field(min_length=1, max_length=255)
    notes: Optional[str] = None
    # patient left unseen outside 7 AM - 8 PM: viewed check is skipped
    working_hours_violation: bool = False


class ReassignmentEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    from_doctor_id: Optional[int] = None
    to_doctor_id: int
    reason: Optional[str] = None
    notes: Optional[str] = None
    consultation_viewed: bool
    viewed_at: Optional[datetime] = None
    timestamp: Optional[datetime] = None


class EligibilityOut(BaseModel):
    patient_id: int
    eligible: bool
    eligible_for_billing: bool
    reassignment_count: int


class PatientStatusOut(BaseModel):
    patient_id: int
    assigned_doctor_id: Optional[int] = None
    current_doctor_id: Optional[int] = None
    reassignment_count: int
    consultation_viewed: Optional[bool] = None
    status: str
