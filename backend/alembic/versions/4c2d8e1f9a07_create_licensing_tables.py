"""create licensing tables

Revision ID: 4c2d8e1f9a07
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4c2d8e1f9a07"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create tenants, courses, members, licenses, assignments and the webhook event claim table."""
    op.create_table(
        "tenants",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("settings", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_tenants_slug"), "tenants", ["slug"], unique=True)
    op.create_index(op.f("ix_tenants_stripe_customer_id"), "tenants", ["stripe_customer_id"], unique=True)

    op.create_table(
        "courses",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("status", sa.String(length=50), nullable=False, server_default="draft"),
        sa.Column("is_free", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_courses_slug"), "courses", ["slug"], unique=True)

    op.create_table(
        "tenant_members",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="learner"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members_tenant_user"),
    )
    op.create_index(op.f("ix_tenant_members_tenant_id"), "tenant_members", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_tenant_members_user_id"), "tenant_members", ["user_id"], unique=False)

    op.create_table(
        "tenant_course_licenses",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("purchased_by_id", sa.String(length=255), nullable=False),
        sa.Column("license_type", sa.String(length=20), nullable=False),
        sa.Column("seats_total", sa.Integer(), nullable=True),
        sa.Column("seats_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("stripe_checkout_session_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_invoice_id", sa.String(length=255), nullable=True),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("renewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("renewal_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_renewal_session_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_refund_id", sa.String(length=255), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_reason", sa.String(length=500), nullable=True),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_partial_refund", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("seats_used >= 0", name="ck_tenant_course_licenses_seats_used_nonneg"),
        sa.CheckConstraint(
            "seats_total IS NULL OR seats_used <= seats_total",
            name="ck_tenant_course_licenses_seats_within_total",
        ),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_checkout_session_id"),
    )
    op.create_index(op.f("ix_tenant_course_licenses_tenant_id"), "tenant_course_licenses", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_tenant_course_licenses_course_id"), "tenant_course_licenses", ["course_id"], unique=False)
    op.create_index(
        op.f("ix_tenant_course_licenses_stripe_payment_intent_id"),
        "tenant_course_licenses",
        ["stripe_payment_intent_id"],
        unique=False,
    )
    op.create_index(op.f("ix_tenant_course_licenses_expires_at"), "tenant_course_licenses", ["expires_at"], unique=False)
    op.create_index(
        "ix_tenant_course_licenses_tenant_course", "tenant_course_licenses", ["tenant_id", "course_id"], unique=False
    )

    op.create_table(
        "tenant_course_license_assignments",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("license_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("assigned_by_id", sa.String(length=255), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["license_id"], ["tenant_course_licenses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("license_id", "user_id", name="uq_license_assignments_license_user"),
    )
    op.create_index(
        op.f("ix_tenant_course_license_assignments_license_id"),
        "tenant_course_license_assignments",
        ["license_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_tenant_course_license_assignments_user_id"),
        "tenant_course_license_assignments",
        ["user_id"],
        unique=False,
    )

    op.create_table(
        "stripe_webhook_events",
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("event_id"),
    )


def downgrade() -> None:
    """Drop the licensing tables."""
    op.drop_table("stripe_webhook_events")
    op.drop_index(op.f("ix_tenant_course_license_assignments_user_id"), table_name="tenant_course_license_assignments")
    op.drop_index(
        op.f("ix_tenant_course_license_assignments_license_id"), table_name="tenant_course_license_assignments"
    )
    op.drop_table("tenant_course_license_assignments")
    op.drop_index("ix_tenant_course_licenses_tenant_course", table_name="tenant_course_licenses")
    op.drop_index(op.f("ix_tenant_course_licenses_expires_at"), table_name="tenant_course_licenses")
    op.drop_index(op.f("ix_tenant_course_licenses_stripe_payment_intent_id"), table_name="tenant_course_licenses")
    op.drop_index(op.f("ix_tenant_course_licenses_course_id"), table_name="tenant_course_licenses")
    op.drop_index(op.f("ix_tenant_course_licenses_tenant_id"), table_name="tenant_course_licenses")
    op.drop_table("tenant_course_licenses")
    op.drop_index(op.f("ix_tenant_members_user_id"), table_name="tenant_members")
    op.drop_index(op.f("ix_tenant_members_tenant_id"), table_name="tenant_members")
    op.drop_table("tenant_members")
    op.drop_index(op.f("ix_courses_slug"), table_name="courses")
    op.drop_table("courses")
    op.drop_index(op.f("ix_tenants_stripe_customer_id"), table_name="tenants")
    op.drop_index(op.f("ix_tenants_slug"), table_name="tenants")
    op.drop_table("tenants")
