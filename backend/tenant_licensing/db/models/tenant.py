"""Tenant and TenantMember models for organizations and their users."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid

from tenant_licensing.db.base import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)

    # Stripe
    stripe_customer_id = Column(String(255), unique=True, nullable=True, index=True)

    # {"volume_discount_tiers": [{"min_seats": 10, "discount_percent": 10}, ...], ...}
    settings = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))


class TenantMember(Base):
    __tablename__ = "tenant_members"
    __table_args__ = (UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members_tenant_user"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    email = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, default="learner")  # learner, manager, tenant_admin

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
