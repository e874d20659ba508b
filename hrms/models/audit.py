"""
HRMS Funding Allocation Service
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for allocation and
      probation lifecycle events.

Audit rows are written by explicit ``write_audit`` calls inside the same
transaction as the business write. There are no ORM event listeners.
"""

import json
from datetime import UTC, datetime

from hrms.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "employment", "funding_allocation", "probation_record",
    "grant", "grant_item", "employee",
}

AUDIT_ACTIONS = {
    # Funding allocation lifecycle
    "allocation.create_set",
    "allocation.replace_set",
    "allocation.correct",
    "allocation.deactivate",
    "allocation.reprice",
    "allocation.terminate",
    "allocation.delete",
    # Probation lifecycle
    "probation.initial",
    "probation.extension",
    "probation.passed",
    "probation.failed",
    # Employment
    "employment.create",
    "employment.update",
    "employment.terminate",
    # Generic
    "create",
    "update",
    "delete",
}


class AuditLog(db.Model):
    """
    One row per action. ``diff_json`` carries an old→new snapshot for
    field-level changes, or the affected ids for set operations.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="employment | funding_allocation | probation_record | …",
    )
    entity_id = db.Column(db.String(36), nullable=False)

    action = db.Column(
        db.String(60), nullable=False,
        comment="allocation.replace_set | probation.passed | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def current_actor() -> str:
    """Return the authenticated user's name, or 'system' outside a request."""
    from flask import g, has_request_context

    if has_request_context():
        name = getattr(g, "jwt_user_name", None) or getattr(g, "jwt_user_id", None)
        if name is not None:
            return str(name)
    return "system"


def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Raises ValueError for an entity type or action outside
    AUDIT_ENTITY_TYPES / AUDIT_ACTIONS.

    Returns the (flushed) AuditLog instance.
    """
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type!r}")
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or current_actor(),
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
