"""Course model: the purchasable catalog entry a license is bought for."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, Numeric, String, Uuid

from tenant_licensing.db.base import Base


class Course(Base):
    __tablename__ = "courses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)

    price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="EUR")
    status = Column(String(50), nullable=False, default="draft")  # draft, published, archived
    is_free = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
