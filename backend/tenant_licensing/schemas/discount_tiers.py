"""Discount tier admin schemas."""

from pydantic import BaseModel

from tenant_licensing.schemas.licenses import TierSchema


class DiscountTiersRequest(BaseModel):
    # Items are validated by the domain so bad bounds come back as VALIDATION_ERROR
    tiers: list[dict]


class DiscountTiersResponse(BaseModel):
    tenant_id: str
    tiers: list[TierSchema]
    warnings: list[str] = []
    is_default: bool = False
