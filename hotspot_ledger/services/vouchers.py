"""
Voucher Service - Sell hotspot access against a trader's ledger balance.
"""

import asyncio
import secrets
import string

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hotspot_ledger.config import settings
from hotspot_ledger.db.models import VoucherUser
from hotspot_ledger.exceptions import (
    DeviceConfigurationError,
    DeviceError,
    InsufficientCreditsError,
    ValidationError,
)
from hotspot_ledger.models.api import PricingCategory, TransactionKind
from hotspot_ledger.models.domain import DeviceData, VoucherData, VoucherUserData
from hotspot_ledger.money import format_money
from hotspot_ledger.observability.logging import get_logger
from hotspot_ledger.observability.tracing import trace_operation
from hotspot_ledger.services.device_client import DeviceClientFactory, build_device_client
from hotspot_ledger.services.device_registry import DeviceRegistry
from hotspot_ledger.services.ledger import LedgerService, require_trader
from hotspot_ledger.services.notifications import (
    NotificationSink,
    NullNotificationSink,
    notify_best_effort,
)
from hotspot_ledger.services.pricing import PricingService, parse_category

logger = get_logger(__name__)


def generate_voucher_code() -> str:
    """Four random digits with one lowercase letter inserted at a random position."""
    digits = [secrets.choice(string.digits) for _ in range(4)]
    digits.insert(secrets.randbelow(5), secrets.choice(string.ascii_lowercase))
    return "".join(digits)


def voucher_user_to_domain(row: VoucherUser) -> VoucherUserData:
    return VoucherUserData(
        user_id=row.id,
        trader_key=row.trader_key,
        username=row.username,
        profile=row.profile,
        category=PricingCategory(row.category),
        quantity=row.quantity,
        limit_uptime_seconds=row.limit_uptime_seconds,
        device_user_created=row.device_user_created,
        created_at=row.created_at,
    )


async def load_voucher_users(session: AsyncSession, trader_key: str) -> list[VoucherUserData]:
    """Voucher users of a trader, newest first."""
    stmt = (
        select(VoucherUser)
        .where(VoucherUser.trader_key == trader_key)
        .order_by(VoucherUser.created_at.desc(), VoucherUser.id.asc())
    )
    result = await session.execute(stmt)
    return [voucher_user_to_domain(row) for row in result.scalars().all()]


class VoucherService:
    """
    Voucher purchase.

    The trader row is locked from the balance check until the charge commits,
    so two purchases for the same trader cannot both pass the check. The
    device is only contacted after that commit.
    """

    def __init__(
        self,
        session: AsyncSession,
        client_factory: DeviceClientFactory | None = None,
        notifier: NotificationSink | None = None,
        pricing: PricingService | None = None,
    ) -> None:
        self.session = session
        self.client_factory = client_factory or build_device_client
        self.notifier = notifier or NullNotificationSink()
        self.ledger = LedgerService(session)
        self.pricing = pricing or PricingService(session)
        self.registry = DeviceRegistry(session)

    async def purchase_voucher(
        self,
        trader_key: str,
        category: PricingCategory | str,
        quantity: int = 1,
    ) -> VoucherData:
        """
        Charge the trader for `quantity` vouchers and provision a hotspot user.

        The charge and the local voucher user are committed together before
        the device is asked to create the hotspot user. Device provisioning is
        best-effort; the charge stands even when no device accepts the user.

        Raises:
            TraderNotFoundError: no trader with this key
            ValidationError: inactive trader, bad category or quantity
            InsufficientCreditsError: balance below the quoted price
        """
        parsed_category = parse_category(category)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")

        trader = await require_trader(self.session, trader_key, lock=True)
        if not trader.is_active:
            raise ValidationError(f"Trader {trader_key} is inactive")

        quote = await self.pricing.quote(trader_key, parsed_category, quantity)
        balance = await self.ledger.balance_of(trader_key)
        if balance < quote.total:
            logger.info(
                "voucher_purchase_rejected",
                trader_key=trader_key,
                balance=str(balance),
                required=str(quote.total),
            )
            raise InsufficientCreditsError(trader_key, balance, quote.total)

        code = generate_voucher_code()
        uptime_seconds = parsed_category.seconds * quantity
        user = VoucherUser(
            trader_key=trader_key,
            username=code,
            profile="default",
            category=parsed_category,
            quantity=quantity,
            limit_uptime_seconds=uptime_seconds,
            device_user_created=False,
        )
        self.session.add(user)

        plural = "s" if quantity > 1 else ""
        transaction = await self.ledger.append(
            trader_key,
            TransactionKind.VOUCHER_PURCHASE,
            quote.total,
            f"Voucher created: {quantity} {parsed_category.value}{plural} - "
            f"{format_money(quote.total, settings.currency)}",
            reference=code,
        )

        device_user_created = await self._provision_user(trader_key, code, uptime_seconds)
        if device_user_created:
            await self._mark_provisioned(user)

        new_balance = await self.ledger.balance_of(trader_key)

        await notify_best_effort(
            self.notifier,
            trader_key,
            f"Charged {format_money(quote.total, settings.currency)} for "
            f"{quantity} {parsed_category.value}{plural}. Code: {code}. "
            f"Current balance: {format_money(new_balance, settings.currency)}",
        )

        logger.info(
            "voucher_purchased",
            trader_key=trader_key,
            category=parsed_category.value,
            quantity=quantity,
            price=str(quote.total),
            device_user_created=device_user_created,
        )
        return VoucherData(
            code=code,
            category=parsed_category,
            quantity=quantity,
            price=quote.total,
            balance=new_balance,
            device_user_created=device_user_created,
            transaction=transaction,
        )

    async def _mark_provisioned(self, user: VoucherUser) -> None:
        # The voucher is already sold; a failed flag update only leaves it False
        try:
            user.device_user_created = True
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.warning(
                "voucher_user_flag_update_failed",
                trader_key=user.trader_key,
                username=user.username,
                error_type=type(e).__name__,
            )

    async def _provision_user(self, trader_key: str, code: str, uptime_seconds: int) -> bool:
        device = await self.registry.select_default()
        if device is None:
            logger.warning("voucher_device_skipped", trader_key=trader_key, reason="no_active_device")
            return False
        return await self._create_device_user(device, trader_key, code, uptime_seconds)

    async def _create_device_user(
        self, device: DeviceData, trader_key: str, code: str, uptime_seconds: int
    ) -> bool:
        try:
            client = self.client_factory(device.to_config())
        except DeviceConfigurationError:
            logger.warning("voucher_device_skipped", trader_key=trader_key, reason="misconfigured")
            return False

        try:
            with trace_operation("device_create_user", host=device.host):
                await asyncio.wait_for(
                    client.create_user(
                        name=code,
                        limit_uptime_seconds=uptime_seconds,
                        server=trader_key,
                        comment=trader_key,
                    ),
                    timeout=settings.device_request_deadline,
                )
        except (DeviceError, TimeoutError) as e:
            logger.warning(
                "voucher_device_user_failed",
                trader_key=trader_key,
                host=device.host,
                error_type=type(e).__name__,
            )
            return False
        finally:
            await client.aclose()

        return True
