from fastapi import APIRouter

from tenant_licensing.api.routes import discount_tiers, health, licenses, webhooks

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(licenses.router, prefix="/tenant/licenses", tags=["licenses"])
api_router.include_router(discount_tiers.router, prefix="/admin/tenants", tags=["admin"])
api_router.include_router(webhooks.router, tags=["webhooks"])
