# reassignment_billing/models/patient.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    Text,
    Index,
    ForeignKey,
)
from sqlalchemy.orm import relationship

from reassignment_billing.db.base import Base


class Patient(Base):
    """
    Billing-side view of a patient.
    Registration data lives in the patient module; we only keep identity
    and the doctor assignment fields the reassignment flow reads/moves.
    """
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    uh_id = Column(String(32), unique=True, index=True, nullable=True)
    name = Column(String(120), nullable=False)

    # Doctor the patient was registered with (never moved by reassignment)
    assigned_doctor_id = Column(Integer, nullable=True)
    # Doctor currently responsible (moved by every reassignment)
    current_doctor_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    reassignments = relationship(
        "ReassignmentEvent",
        back_populates="patient",
        cascade="all, delete-orphan",
        order_by="ReassignmentEvent.id",
    )
    # chronological: original consultation bills + reassignment bills
    invoices = relationship(
        "Invoice",
        back_populates="patient",
        order_by="[Invoice.created_at, Invoice.id]",
    )

    @property
    def reassignment_history(self):
        return list(self.reassignments or [])

    @property
    def billing_history(self):
        return list(self.invoices or [])


class ReassignmentEvent(Base):
    __tablename__ = "patient_reassignments"
    __table_args__ = (Index("ix_patient_reassignments_patient",
                            "patient_id"), )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(
        Integer,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    )

    from_doctor_id = Column(Integer, nullable=True)
    to_doctor_id = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    # flipped only by the explicit "mark as viewed" action
    consultation_viewed = Column(Boolean, default=False, nullable=False)
    viewed_at = Column(DateTime, nullable=True)

    created_by = Column(Integer, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow)

    patient = relationship("Patient", back_populates="reassignments")
