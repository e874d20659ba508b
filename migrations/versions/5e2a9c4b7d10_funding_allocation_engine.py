"""funding_allocation_engine

Creates the funding allocation engine tables:
  - grants, grant_items             funding source registry
  - employees, employments          personnel records the engine prices against
  - probation_records               probation event ledger (one active row)
  - employee_funding_allocations    fte split per employment
  - audit_logs                      append-only audit trail

Tables created conditionally (IF NOT EXISTS semantics) so the revision can
run against a development database that already received them via
db.create_all().

Revision ID: 5e2a9c4b7d10
Revises:
Create Date: 2026-10-19 09:12:44.518203
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e2a9c4b7d10'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Grant registry ───────────────────────────────────────────────────
    if "grants" not in existing:
        op.create_table(
            "grants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("organization", sa.String(length=100), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_grants_code", "grants", ["code"], unique=True)

    if "grant_items" not in existing:
        op.create_table(
            "grant_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("grant_id", sa.Integer(), nullable=False),
            sa.Column("grant_position", sa.String(length=255), nullable=True, comment="Position label"),
            sa.Column("grant_salary", sa.Numeric(12, 2), nullable=True),
            sa.Column("grant_benefit", sa.Numeric(12, 2), nullable=True),
            sa.Column("grant_level_of_effort", sa.Numeric(5, 4), nullable=True),
            sa.Column(
                "grant_position_number", sa.Integer(), nullable=False, server_default="1",
                comment="Number of concurrently active allocations allowed",
            ),
            sa.Column("budgetline_code", sa.String(length=50), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("grant_position_number >= 1", name="ck_grant_items_capacity"),
            sa.ForeignKeyConstraint(["grant_id"], ["grants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_grant_items_grant_id", "grant_items", ["grant_id"])

    # ── Personnel ────────────────────────────────────────────────────────
    if "employees" not in existing:
        op.create_table(
            "employees",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("staff_id", sa.String(length=50), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=False),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("organization", sa.String(length=100), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_employees_staff_id", "employees", ["staff_id"], unique=True)

    if "employments" not in existing:
        op.create_table(
            "employments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("employee_id", sa.Integer(), nullable=False),
            sa.Column("department_id", sa.Integer(), nullable=True),
            sa.Column("position_id", sa.Integer(), nullable=True),
            sa.Column("site_id", sa.Integer(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("pass_probation_date", sa.Date(), nullable=True),
            sa.Column("probation_salary", sa.Numeric(12, 2), nullable=True),
            sa.Column("pass_probation_salary", sa.Numeric(12, 2), nullable=True),
            sa.Column("status", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            sa.Column("updated_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_employment_employee", "employments", ["employee_id"])

    # ── Probation ledger ─────────────────────────────────────────────────
    if "probation_records" not in existing:
        op.create_table(
            "probation_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("employment_id", sa.Integer(), nullable=False),
            sa.Column("employee_id", sa.Integer(), nullable=False),
            sa.Column(
                "event_type", sa.String(length=20), nullable=False,
                comment="initial | extension | passed | failed",
            ),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("effective_date", sa.Date(), nullable=False),
            sa.Column("probation_start_date", sa.Date(), nullable=True),
            sa.Column("probation_end_date", sa.Date(), nullable=True),
            sa.Column("previous_end_date", sa.Date(), nullable=True),
            sa.Column("extension_number", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("decision_reason", sa.String(length=500), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["employment_id"], ["employments.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_probation_employment_active", "probation_records", ["employment_id", "is_active"])
        op.create_index("idx_probation_event", "probation_records", ["event_type"])
        op.create_index("ix_probation_records_employee_id", "probation_records", ["employee_id"])

    # ── Funding allocations ──────────────────────────────────────────────
    if "employee_funding_allocations" not in existing:
        op.create_table(
            "employee_funding_allocations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("employee_id", sa.Integer(), nullable=False),
            sa.Column("employment_id", sa.Integer(), nullable=False),
            sa.Column("allocation_type", sa.String(length=20), nullable=False, comment="grant | org_funded"),
            sa.Column("grant_item_id", sa.Integer(), nullable=True),
            sa.Column("grant_id", sa.Integer(), nullable=True),
            sa.Column("fte", sa.Numeric(5, 4), nullable=False, comment="Fraction 0 < fte <= 1"),
            sa.Column("allocated_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column(
                "salary_type", sa.String(length=30), nullable=False,
                comment="probation_salary | pass_probation_salary",
            ),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=True, comment="NULL = currently active"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            sa.Column("updated_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.CheckConstraint(
                "(allocation_type = 'grant' AND grant_item_id IS NOT NULL AND grant_id IS NULL)"
                " OR (allocation_type = 'org_funded' AND grant_id IS NOT NULL AND grant_item_id IS NULL)",
                name="ck_efa_funding_source",
            ),
            sa.CheckConstraint("fte > 0 AND fte <= 1", name="ck_efa_fte_range"),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["employment_id"], ["employments.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["grant_item_id"], ["grant_items.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["grant_id"], ["grants.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_efa_employment_end", "employee_funding_allocations", ["employment_id", "end_date"])
        op.create_index("idx_efa_grant_item_end", "employee_funding_allocations", ["grant_item_id", "end_date"])
        op.create_index("idx_efa_employee", "employee_funding_allocations", ["employee_id"])
        op.create_index("ix_employee_funding_allocations_grant_id", "employee_funding_allocations", ["grant_id"])

    # ── Audit ────────────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    for table in (
        "audit_logs",
        "employee_funding_allocations",
        "probation_records",
        "employments",
        "employees",
        "grant_items",
        "grants",
    ):
        op.drop_table(table)
