"""Re-export all models so Base.metadata sees them."""

from tenant_licensing.db.models.course import Course
from tenant_licensing.db.models.license import LicenseAssignment, TenantCourseLicense
from tenant_licensing.db.models.stripe_event import StripeWebhookEvent
from tenant_licensing.db.models.tenant import Tenant, TenantMember

__all__ = [
    "Course",
    "LicenseAssignment",
    "StripeWebhookEvent",
    "Tenant",
    "TenantCourseLicense",
    "TenantMember",
]
