"""
HRMS Funding Allocation Service
Probation record ledger.

Append-only history of probation lifecycle events per employment. Exactly
one row per employment carries ``is_active = True``; its ``event_type`` is the
current probation state.

State machine (PROBATION_TRANSITIONS):
    initial   -> extension | passed | failed
    extension -> extension | passed | failed
    passed    -> (terminal)
    failed    -> (terminal)
"""

from datetime import datetime, timezone

from hrms.models import db

EVENT_INITIAL = "initial"
EVENT_EXTENSION = "extension"
EVENT_PASSED = "passed"
EVENT_FAILED = "failed"

# Events meaning "still on probation"
ONGOING_EVENTS = {EVENT_INITIAL, EVENT_EXTENSION}

PROBATION_TRANSITIONS = {
    EVENT_INITIAL:   [EVENT_EXTENSION, EVENT_PASSED, EVENT_FAILED],
    EVENT_EXTENSION: [EVENT_EXTENSION, EVENT_PASSED, EVENT_FAILED],
    EVENT_PASSED:    [],
    EVENT_FAILED:    [],
}


def validate_probation_transition(old_event, new_event):
    """Return True if moving the active record from old_event to new_event is allowed."""
    return new_event in PROBATION_TRANSITIONS.get(old_event, [])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProbationRecord(db.Model):
    __tablename__ = "probation_records"
    __table_args__ = (
        db.Index("idx_probation_employment_active", "employment_id", "is_active"),
        db.Index("idx_probation_event", "event_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    employment_id = db.Column(
        db.Integer,
        db.ForeignKey("employments.id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id = db.Column(
        db.Integer,
        db.ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type = db.Column(
        db.String(20), nullable=False,
        comment="initial | extension | passed | failed",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    effective_date = db.Column(db.Date, nullable=False)
    probation_start_date = db.Column(db.Date, nullable=True)
    probation_end_date = db.Column(db.Date, nullable=True)
    previous_end_date = db.Column(db.Date, nullable=True)
    extension_number = db.Column(db.Integer, nullable=False, default=0)
    decision_reason = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(150), nullable=True, default="system")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    employment = db.relationship("Employment", back_populates="probation_records")

    @property
    def is_ongoing(self) -> bool:
        return self.event_type in ONGOING_EVENTS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employment_id": self.employment_id,
            "employee_id": self.employee_id,
            "event_type": self.event_type,
            "is_active": self.is_active,
            "effective_date": self.effective_date.isoformat() if self.effective_date else None,
            "probation_start_date": (
                self.probation_start_date.isoformat() if self.probation_start_date else None
            ),
            "probation_end_date": (
                self.probation_end_date.isoformat() if self.probation_end_date else None
            ),
            "previous_end_date": (
                self.previous_end_date.isoformat() if self.previous_end_date else None
            ),
            "extension_number": self.extension_number,
            "decision_reason": self.decision_reason,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        flag = "*" if self.is_active else ""
        return f"<ProbationRecord {self.id}: {self.event_type}{flag} employment={self.employment_id}>"
