"""TenantCourseLicense and LicenseAssignment models.

A license is bought by a tenant for one course:
- unlimited: every tenant member has access, no assignments
- seats: ``seats_total`` named users, tracked as assignment rows
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)

from tenant_licensing.db.base import Base


class TenantCourseLicense(Base):
    __tablename__ = "tenant_course_licenses"
    __table_args__ = (
        CheckConstraint("seats_used >= 0", name="ck_tenant_course_licenses_seats_used_nonneg"),
        CheckConstraint(
            "seats_total IS NULL OR seats_used <= seats_total",
            name="ck_tenant_course_licenses_seats_within_total",
        ),
        Index("ix_tenant_course_licenses_tenant_course", "tenant_id", "course_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, index=True)
    course_id = Column(Uuid, ForeignKey("courses.id"), nullable=False, index=True)
    purchased_by_id = Column(String(255), nullable=False)

    license_type = Column(String(20), nullable=False)  # unlimited, seats
    seats_total = Column(Integer, nullable=True)  # NULL for unlimited
    seats_used = Column(Integer, nullable=False, default=0)

    # Payment
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    status = Column(String(20), nullable=False, default="pending")  # LicenseStatus values
    stripe_checkout_session_id = Column(String(255), unique=True, nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    stripe_invoice_id = Column(String(255), nullable=True)  # Bank transfer invoices
    purchased_at = Column(DateTime(timezone=True), nullable=True)

    # Expiry and renewal
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    renewed_at = Column(DateTime(timezone=True), nullable=True)
    renewal_count = Column(Integer, nullable=False, default=0)
    last_renewal_session_id = Column(String(255), nullable=True)

    # Refund
    stripe_refund_id = Column(String(255), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    refund_reason = Column(String(500), nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)
    is_partial_refund = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))


class LicenseAssignment(Base):
    __tablename__ = "tenant_course_license_assignments"
    __table_args__ = (UniqueConstraint("license_id", "user_id", name="uq_license_assignments_license_user"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    license_id = Column(Uuid, ForeignKey("tenant_course_licenses.id"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    assigned_by_id = Column(String(255), nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
