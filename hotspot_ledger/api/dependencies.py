"""
FastAPI Dependencies - Service construction per request.

Collaborators that talk to the outside world (device clients, notification
delivery) are separate dependencies so they can be overridden.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hotspot_ledger.db.session import get_read_db, get_write_db
from hotspot_ledger.services.device_client import DeviceClientFactory, build_device_client
from hotspot_ledger.services.device_registry import DeviceRegistry
from hotspot_ledger.services.ledger import LedgerService
from hotspot_ledger.services.notifications import NotificationSink, build_notification_sink
from hotspot_ledger.services.pricing import PricingService
from hotspot_ledger.services.reconciliation import ReconciliationService
from hotspot_ledger.services.traders import TraderService
from hotspot_ledger.services.vouchers import VoucherService


def get_device_client_factory() -> DeviceClientFactory:
    """Factory turning a device snapshot into a RouterOS client."""
    return build_device_client


def get_notification_sink() -> NotificationSink:
    """Sink selected by NOTIFICATION_WEBHOOK_URL."""
    return build_notification_sink()


def get_ledger_service(
    db: AsyncSession = Depends(get_write_db),
    notifier: NotificationSink = Depends(get_notification_sink),
) -> LedgerService:
    return LedgerService(db, notifier)


def get_ledger_reader(db: AsyncSession = Depends(get_read_db)) -> LedgerService:
    return LedgerService(db)


def get_trader_service(db: AsyncSession = Depends(get_write_db)) -> TraderService:
    return TraderService(db)


def get_pricing_service(db: AsyncSession = Depends(get_write_db)) -> PricingService:
    return PricingService(db)


def get_device_registry(db: AsyncSession = Depends(get_write_db)) -> DeviceRegistry:
    return DeviceRegistry(db)


def get_reconciliation_service(
    db: AsyncSession = Depends(get_read_db),
    client_factory: DeviceClientFactory = Depends(get_device_client_factory),
) -> ReconciliationService:
    return ReconciliationService(db, client_factory=client_factory)


def get_voucher_service(
    db: AsyncSession = Depends(get_write_db),
    client_factory: DeviceClientFactory = Depends(get_device_client_factory),
    notifier: NotificationSink = Depends(get_notification_sink),
) -> VoucherService:
    return VoucherService(db, client_factory=client_factory, notifier=notifier)
