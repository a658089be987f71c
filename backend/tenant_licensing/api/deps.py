"""Service providers for the API routes.

Each provider builds its service from the process-wide session factory and
settings. Override these dependencies in tests via ``app.dependency_overrides``.
"""

from fastapi import Depends

from tenant_licensing.billing.gateway import PaymentGateway, StripeGateway
from tenant_licensing.checkout.orchestrator import CheckoutOrchestrator
from tenant_licensing.core.config import get_settings
from tenant_licensing.db.base import get_session_factory
from tenant_licensing.domain.discounts import DiscountTierTable
from tenant_licensing.ledger.ledger import LicenseLedger
from tenant_licensing.ledger.sql_store import (
    SqlAlchemyLicenseStore,
    SqlAlchemyTenantDirectory,
    SqlAlchemyWebhookEventRegistry,
)
from tenant_licensing.ledger.store import LicenseStore, TenantDirectory, WebhookEventRegistry
from tenant_licensing.notifications.sink import LogNotificationSink, NotificationSink
from tenant_licensing.services.discount_tier_service import DiscountTierService


def get_license_store() -> LicenseStore:
    return SqlAlchemyLicenseStore(get_session_factory())


def get_tenant_directory() -> TenantDirectory:
    return SqlAlchemyTenantDirectory(get_session_factory())


def get_event_registry() -> WebhookEventRegistry:
    return SqlAlchemyWebhookEventRegistry(get_session_factory())


def get_gateway() -> StripeGateway:
    settings = get_settings()
    return StripeGateway(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        timeout_seconds=settings.stripe_timeout_seconds,
    )


def get_notifier() -> NotificationSink:
    return LogNotificationSink()


def get_tier_table() -> DiscountTierTable:
    return DiscountTierTable.from_config(get_settings().default_discount_tiers)


def get_ledger(
    store: LicenseStore = Depends(get_license_store),
    directory: TenantDirectory = Depends(get_tenant_directory),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: NotificationSink = Depends(get_notifier),
) -> LicenseLedger:
    return LicenseLedger(
        store,
        directory,
        gateway,
        notifier,
        license_duration_days=get_settings().license_duration_days,
    )


def get_orchestrator(
    ledger: LicenseLedger = Depends(get_ledger),
    directory: TenantDirectory = Depends(get_tenant_directory),
    gateway: PaymentGateway = Depends(get_gateway),
    tier_table: DiscountTierTable = Depends(get_tier_table),
    events: WebhookEventRegistry = Depends(get_event_registry),
) -> CheckoutOrchestrator:
    settings = get_settings()
    return CheckoutOrchestrator(
        ledger,
        directory,
        gateway,
        tier_table,
        frontend_url=settings.frontend_url,
        events=events,
        unlimited_multiplier=settings.unlimited_multiplier,
    )


def get_discount_tier_service(
    directory: TenantDirectory = Depends(get_tenant_directory),
    tier_table: DiscountTierTable = Depends(get_tier_table),
) -> DiscountTierService:
    return DiscountTierService(directory, tier_table)
