"""
API Routes - FastAPI endpoints for the hotspot ledger.

NO DICTIONARIES - All requests/responses use Pydantic models.
Routes are thin: domain errors propagate to the handler in main.py, which
renders them as error envelopes.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from hotspot_ledger.api.dependencies import (
    get_device_client_factory,
    get_device_registry,
    get_ledger_reader,
    get_ledger_service,
    get_pricing_service,
    get_reconciliation_service,
    get_trader_service,
    get_voucher_service,
)
from hotspot_ledger.config import settings
from hotspot_ledger.db.session import get_read_db
from hotspot_ledger.models.api import (
    AddCreditRequest,
    AppendTransactionRequest,
    BalanceResponse,
    ClientResponse,
    ConnectionTestResponse,
    CreateClientRequest,
    CreateDiscountRequest,
    CreateTraderRequest,
    CreditResponse,
    DeviceRequest,
    DeviceResponse,
    DiscountResponse,
    Envelope,
    HealthResponse,
    HotspotUserResponse,
    InterfaceResponse,
    PriceQuoteRequest,
    PriceQuoteResponse,
    PricingRequest,
    PricingResponse,
    PurchaseVoucherRequest,
    ReconciledClientResponse,
    ReconciledClientsResponse,
    SessionListResponse,
    SessionResponse,
    TraderResponse,
    TransactionListResponse,
    TransactionResponse,
    TransactionKind,
    UpdateDiscountRequest,
    UpdateTraderRequest,
    VoucherResponse,
    VoucherUserListResponse,
    VoucherUserResponse,
)
from hotspot_ledger.models.domain import (
    ClientData,
    DeviceData,
    DiscountData,
    PriceQuote,
    PricingData,
    SessionData,
    TraderData,
    TransactionData,
)
from hotspot_ledger.services.device_client import DeviceClientFactory
from hotspot_ledger.services.device_registry import DeviceRegistry
from hotspot_ledger.services.ledger import LedgerService
from hotspot_ledger.services.pricing import PricingService
from hotspot_ledger.services.reconciliation import ReconciliationService
from hotspot_ledger.services.traders import TraderService
from hotspot_ledger.services.vouchers import VoucherService

router = APIRouter()


# ============================================================================
# Converters
# ============================================================================


def _trader_response(trader: TraderData, balance: Decimal | int) -> TraderResponse:
    return TraderResponse(
        trader_key=trader.trader_key,
        display_name=trader.display_name,
        is_active=trader.is_active,
        balance=balance,
        created_at=trader.created_at,
        updated_at=trader.updated_at,
    )


def _transaction_response(tx: TransactionData) -> TransactionResponse:
    return TransactionResponse(
        transaction_id=tx.transaction_id,
        trader_key=tx.trader_key,
        kind=tx.kind,
        amount=tx.amount,
        description=tx.description,
        reference=tx.reference,
        created_at=tx.created_at,
    )


def _client_response(client: ClientData) -> ClientResponse:
    return ClientResponse(
        client_id=client.client_id,
        trader_key=client.trader_key,
        phone=client.phone,
        mac_address=client.mac_address,
        rewarded=client.rewarded,
        created_at=client.created_at,
    )


def _session_response(session: SessionData) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        mac_address=session.mac_address,
        username=session.username,
        address=session.address,
        uptime=session.uptime,
        uptime_seconds=session.uptime_seconds,
        bytes_in=session.bytes_in,
        bytes_out=session.bytes_out,
        server_tag=session.server_tag,
    )


def _pricing_response(pricing: PricingData) -> PricingResponse:
    return PricingResponse(
        trader_key=pricing.trader_key,
        hour=pricing.hour,
        day=pricing.day,
        week=pricing.week,
        month=pricing.month,
    )


def _quote_response(quote: PriceQuote) -> PriceQuoteResponse:
    return PriceQuoteResponse(
        base_price=quote.base_price,
        discount_applied=quote.discount_applied,
        final_price=quote.final_price,
        discount_id=quote.discount.discount_id if quote.discount else None,
        discount_name=quote.discount.name if quote.discount else None,
    )


def _discount_response(discount: DiscountData) -> DiscountResponse:
    return DiscountResponse(
        discount_id=discount.discount_id,
        trader_key=discount.trader_key,
        name=discount.name,
        description=discount.description,
        discount_type=discount.discount_type,
        discount_value=discount.discount_value,
        category=discount.category,
        threshold=discount.threshold,
        starts_at=discount.starts_at,
        ends_at=discount.ends_at,
        is_active=discount.is_active,
        created_at=discount.created_at,
    )


def _device_response(device: DeviceData) -> DeviceResponse:
    return DeviceResponse(
        device_id=device.device_id,
        display_name=device.display_name,
        host=device.host,
        port=device.port,
        username=device.username,
        is_active=device.is_active,
        created_at=device.created_at or datetime.now(UTC),
    )


# ============================================================================
# Traders
# ============================================================================


@router.post(
    "/v1/traders",
    response_model=Envelope[TraderResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_trader(
    request: CreateTraderRequest,
    traders: TraderService = Depends(get_trader_service),
) -> Envelope[TraderResponse]:
    """Register a trader. New traders have a zero balance."""
    trader = await traders.create_trader(request.trader_key, request.display_name)
    return Envelope(data=_trader_response(trader, 0))


@router.get("/v1/traders", response_model=Envelope[list[TraderResponse]])
async def list_traders(
    include_inactive: bool = Query(False),
    traders: TraderService = Depends(get_trader_service),
    ledger: LedgerService = Depends(get_ledger_reader),
) -> Envelope[list[TraderResponse]]:
    result = []
    for trader in await traders.list_traders(include_inactive=include_inactive):
        result.append(_trader_response(trader, await ledger.balance_of(trader.trader_key)))
    return Envelope(data=result)


@router.get("/v1/traders/{trader_key}", response_model=Envelope[TraderResponse])
async def get_trader(
    trader_key: str,
    traders: TraderService = Depends(get_trader_service),
    ledger: LedgerService = Depends(get_ledger_reader),
) -> Envelope[TraderResponse]:
    trader = await traders.get_trader(trader_key)
    return Envelope(data=_trader_response(trader, await ledger.balance_of(trader_key)))


@router.patch("/v1/traders/{trader_key}", response_model=Envelope[TraderResponse])
async def update_trader(
    trader_key: str,
    request: UpdateTraderRequest,
    traders: TraderService = Depends(get_trader_service),
    ledger: LedgerService = Depends(get_ledger_reader),
) -> Envelope[TraderResponse]:
    trader = await traders.update_trader(
        trader_key, display_name=request.display_name, is_active=request.is_active
    )
    return Envelope(data=_trader_response(trader, await ledger.balance_of(trader_key)))


@router.delete("/v1/traders/{trader_key}", response_model=Envelope[TraderResponse])
async def deactivate_trader(
    trader_key: str,
    traders: TraderService = Depends(get_trader_service),
    ledger: LedgerService = Depends(get_ledger_reader),
) -> Envelope[TraderResponse]:
    """Deactivate a trader. Traders are never deleted."""
    trader = await traders.deactivate_trader(trader_key)
    return Envelope(
        data=_trader_response(trader, await ledger.balance_of(trader_key)),
        message="Trader deactivated",
    )


# ============================================================================
# Ledger
# ============================================================================


@router.get("/v1/traders/{trader_key}/balance", response_model=Envelope[BalanceResponse])
async def get_balance(
    trader_key: str,
    ledger: LedgerService = Depends(get_ledger_reader),
) -> Envelope[BalanceResponse]:
    """Balance folded from the trader's transactions at read time."""
    await ledger.require_trader(trader_key)
    balance = await ledger.balance_of(trader_key)
    return Envelope(
        data=BalanceResponse(trader_key=trader_key, balance=balance, currency=settings.currency)
    )


@router.get(
    "/v1/traders/{trader_key}/transactions",
    response_model=Envelope[TransactionListResponse],
)
async def list_transactions(
    trader_key: str,
    limit: int | None = Query(None, ge=0, le=10000),
    offset: int = Query(0, ge=0),
    kind: TransactionKind | None = Query(None),
    ledger: LedgerService = Depends(get_ledger_reader),
) -> Envelope[TransactionListResponse]:
    """Most recent first, optionally one kind only and paged with limit/offset."""
    await ledger.require_trader(trader_key)
    transactions = await ledger.list_for(trader_key, limit=limit, offset=offset, kind=kind)
    return Envelope(
        data=TransactionListResponse(
            transactions=[_transaction_response(t) for t in transactions],
            count=len(transactions),
        )
    )


@router.post(
    "/v1/traders/{trader_key}/transactions",
    response_model=Envelope[TransactionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def append_transaction(
    trader_key: str,
    request: AppendTransactionRequest,
    ledger: LedgerService = Depends(get_ledger_service),
) -> Envelope[TransactionResponse]:
    """Append one transaction to the trader's ledger."""
    transaction = await ledger.append(
        trader_key, request.kind, request.amount, request.description or ""
    )
    return Envelope(data=_transaction_response(transaction))


@router.post(
    "/v1/credits",
    response_model=Envelope[CreditResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_credit(
    request: AddCreditRequest,
    ledger: LedgerService = Depends(get_ledger_service),
) -> Envelope[CreditResponse]:
    """Top up a trader. The returned balance is re-read after the append."""
    result = await ledger.add_credit(request.trader_key, request.amount, request.description)
    return Envelope(
        data=CreditResponse(
            transaction=_transaction_response(result.transaction), balance=result.balance
        )
    )


# ============================================================================
# Clients and live sessions
# ============================================================================


@router.get(
    "/v1/traders/{trader_key}/clients",
    response_model=Envelope[ReconciledClientsResponse],
)
async def reconcile_clients(
    trader_key: str,
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
) -> Envelope[ReconciledClientsResponse]:
    """
    Clients with live session state.

    Device failures do not fail this call: the response is served from local
    data with source="local" and a warning.
    """
    result = await reconciliation.reconcile_clients(trader_key)
    clients = [
        ReconciledClientResponse(
            **_client_response(rc.client).model_dump(),
            is_active=rc.is_active,
            session_data=_session_response(rc.session_data) if rc.session_data else None,
        )
        for rc in result.clients
    ]
    return Envelope(
        data=ReconciledClientsResponse(
            source=result.source,
            warning=result.warning,
            clients=clients,
            active_sessions=result.active_sessions,
            total_clients=result.total_clients,
        ),
        message=result.warning,
    )


@router.get(
    "/v1/traders/{trader_key}/users",
    response_model=Envelope[VoucherUserListResponse],
)
async def reconcile_users(
    trader_key: str,
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
) -> Envelope[VoucherUserListResponse]:
    """Voucher users with live session state, falling back to local data like /clients."""
    result = await reconciliation.reconcile_users(trader_key)
    users = [
        VoucherUserResponse(
            user_id=ru.user.user_id,
            trader_key=ru.user.trader_key,
            username=ru.user.username,
            profile=ru.user.profile,
            category=ru.user.category,
            quantity=ru.user.quantity,
            limit_uptime_seconds=ru.user.limit_uptime_seconds,
            device_user_created=ru.user.device_user_created,
            created_at=ru.user.created_at,
            is_active=ru.is_active,
            session_data=_session_response(ru.session_data) if ru.session_data else None,
        )
        for ru in result.users
    ]
    return Envelope(
        data=VoucherUserListResponse(
            source=result.source,
            warning=result.warning,
            users=users,
            active_sessions=result.active_sessions,
            total_users=result.total_users,
        ),
        message=result.warning,
    )


@router.post(
    "/v1/traders/{trader_key}/clients",
    response_model=Envelope[ClientResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_client(
    trader_key: str,
    request: CreateClientRequest,
    traders: TraderService = Depends(get_trader_service),
) -> Envelope[ClientResponse]:
    client = await traders.create_client(
        trader_key, request.phone, request.mac_address, rewarded=request.rewarded
    )
    return Envelope(data=_client_response(client))


@router.get(
    "/v1/traders/{trader_key}/sessions",
    response_model=Envelope[SessionListResponse],
)
async def list_sessions(
    trader_key: str,
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
) -> Envelope[SessionListResponse]:
    live = await reconciliation.list_trader_sessions(trader_key)
    return Envelope(
        data=SessionListResponse(
            source=live.source,
            warning=live.warning,
            sessions=[_session_response(s) for s in live.sessions],
        ),
        message=live.warning,
    )


@router.delete(
    "/v1/traders/{trader_key}/sessions/{session_id}",
    response_model=Envelope[None],
)
async def disconnect_session(
    trader_key: str,
    session_id: str,
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
) -> Envelope[None]:
    await reconciliation.disconnect_trader_session(trader_key, session_id)
    return Envelope(message="Session disconnected")


# ============================================================================
# Pricing
# ============================================================================


@router.get("/v1/traders/{trader_key}/pricing", response_model=Envelope[PricingResponse])
async def get_pricing(
    trader_key: str,
    pricing: PricingService = Depends(get_pricing_service),
) -> Envelope[PricingResponse]:
    return Envelope(data=_pricing_response(await pricing.get_pricing(trader_key)))


@router.put("/v1/traders/{trader_key}/pricing", response_model=Envelope[PricingResponse])
async def set_pricing(
    trader_key: str,
    request: PricingRequest,
    pricing: PricingService = Depends(get_pricing_service),
) -> Envelope[PricingResponse]:
    updated = await pricing.set_pricing(
        trader_key, request.hour, request.day, request.week, request.month
    )
    return Envelope(data=_pricing_response(updated))


@router.post(
    "/v1/traders/{trader_key}/pricing/quote",
    response_model=Envelope[PriceQuoteResponse],
)
async def price_for(
    trader_key: str,
    request: PriceQuoteRequest,
    pricing: PricingService = Depends(get_pricing_service),
) -> Envelope[PriceQuoteResponse]:
    """Apply the trader's discount schedule to a base price."""
    # Unknown traders are a 404 here even though quoting itself accepts any key
    await pricing.get_pricing(trader_key)
    quote = await pricing.price_for(trader_key, request.category, request.base_price)
    return Envelope(data=_quote_response(quote))


# ============================================================================
# Discounts
# ============================================================================


@router.get(
    "/v1/traders/{trader_key}/discounts",
    response_model=Envelope[list[DiscountResponse]],
)
async def list_discounts(
    trader_key: str,
    pricing: PricingService = Depends(get_pricing_service),
) -> Envelope[list[DiscountResponse]]:
    discounts = await pricing.list_discounts(trader_key)
    return Envelope(data=[_discount_response(d) for d in discounts])


@router.post(
    "/v1/traders/{trader_key}/discounts",
    response_model=Envelope[DiscountResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_discount(
    trader_key: str,
    request: CreateDiscountRequest,
    pricing: PricingService = Depends(get_pricing_service),
) -> Envelope[DiscountResponse]:
    return Envelope(data=_discount_response(await pricing.create_discount(trader_key, request)))


@router.get(
    "/v1/traders/{trader_key}/discounts/{discount_id}",
    response_model=Envelope[DiscountResponse],
)
async def get_discount(
    trader_key: str,
    discount_id: UUID,
    pricing: PricingService = Depends(get_pricing_service),
) -> Envelope[DiscountResponse]:
    return Envelope(data=_discount_response(await pricing.get_discount(trader_key, discount_id)))


@router.put(
    "/v1/traders/{trader_key}/discounts/{discount_id}",
    response_model=Envelope[DiscountResponse],
)
async def update_discount(
    trader_key: str,
    discount_id: UUID,
    request: UpdateDiscountRequest,
    pricing: PricingService = Depends(get_pricing_service),
) -> Envelope[DiscountResponse]:
    updated = await pricing.update_discount(trader_key, discount_id, request)
    return Envelope(data=_discount_response(updated))


@router.delete(
    "/v1/traders/{trader_key}/discounts/{discount_id}",
    response_model=Envelope[None],
)
async def delete_discount(
    trader_key: str,
    discount_id: UUID,
    pricing: PricingService = Depends(get_pricing_service),
) -> Envelope[None]:
    await pricing.delete_discount(trader_key, discount_id)
    return Envelope(message="Discount deleted")


# ============================================================================
# Vouchers
# ============================================================================


@router.post(
    "/v1/vouchers",
    response_model=Envelope[VoucherResponse],
    status_code=status.HTTP_201_CREATED,
)
async def purchase_voucher(
    request: PurchaseVoucherRequest,
    vouchers: VoucherService = Depends(get_voucher_service),
) -> Envelope[VoucherResponse]:
    """Charge the trader and provision a hotspot user on the default device."""
    voucher = await vouchers.purchase_voucher(
        request.trader_key, request.category, request.quantity
    )
    return Envelope(
        data=VoucherResponse(
            code=voucher.code,
            category=voucher.category,
            quantity=voucher.quantity,
            price=voucher.price,
            balance=voucher.balance,
            device_user_created=voucher.device_user_created,
            transaction=_transaction_response(voucher.transaction),
        ),
        message=None if voucher.device_user_created else "Voucher recorded; device user not created",
    )


# ============================================================================
# Devices
# ============================================================================


@router.get("/v1/devices", response_model=Envelope[list[DeviceResponse]])
async def list_devices(
    active_only: bool = Query(False),
    registry: DeviceRegistry = Depends(get_device_registry),
) -> Envelope[list[DeviceResponse]]:
    devices = await (registry.list_active() if active_only else registry.list_all())
    return Envelope(data=[_device_response(d) for d in devices])


@router.post(
    "/v1/devices",
    response_model=Envelope[DeviceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_device(
    request: DeviceRequest,
    registry: DeviceRegistry = Depends(get_device_registry),
) -> Envelope[DeviceResponse]:
    return Envelope(data=_device_response(await registry.upsert(request)))


@router.get("/v1/devices/{device_id}", response_model=Envelope[DeviceResponse])
async def get_device(
    device_id: UUID,
    registry: DeviceRegistry = Depends(get_device_registry),
) -> Envelope[DeviceResponse]:
    return Envelope(data=_device_response(await registry.get(device_id)))


@router.put("/v1/devices/{device_id}", response_model=Envelope[DeviceResponse])
async def update_device(
    device_id: UUID,
    request: DeviceRequest,
    registry: DeviceRegistry = Depends(get_device_registry),
) -> Envelope[DeviceResponse]:
    return Envelope(data=_device_response(await registry.upsert(request, device_id=device_id)))


@router.delete("/v1/devices/{device_id}", response_model=Envelope[None])
async def delete_device(
    device_id: UUID,
    registry: DeviceRegistry = Depends(get_device_registry),
) -> Envelope[None]:
    await registry.remove(device_id)
    return Envelope(message="Device removed")


@router.post("/v1/devices/{device_id}/test", response_model=Envelope[ConnectionTestResponse])
async def test_device(
    device_id: UUID,
    registry: DeviceRegistry = Depends(get_device_registry),
    client_factory: DeviceClientFactory = Depends(get_device_client_factory),
) -> Envelope[ConnectionTestResponse]:
    device = await registry.get(device_id)
    client = client_factory(device.to_config())
    try:
        connected = await client.test_connection()
    finally:
        await client.aclose()
    return Envelope(data=ConnectionTestResponse(device_id=device_id, connected=connected))


@router.get("/v1/devices/{device_id}/users", response_model=Envelope[list[HotspotUserResponse]])
async def list_device_users(
    device_id: UUID,
    registry: DeviceRegistry = Depends(get_device_registry),
    client_factory: DeviceClientFactory = Depends(get_device_client_factory),
) -> Envelope[list[HotspotUserResponse]]:
    device = await registry.get(device_id)
    client = client_factory(device.to_config())
    try:
        users = await client.list_users()
    finally:
        await client.aclose()
    return Envelope(
        data=[
            HotspotUserResponse(
                user_id=u.user_id,
                name=u.name,
                profile=u.profile,
                mac_address=u.mac_address,
                limit_uptime=u.limit_uptime,
                uptime=u.uptime,
                bytes_in=u.bytes_in,
                bytes_out=u.bytes_out,
                disabled=u.disabled,
                comment=u.comment,
            )
            for u in users
        ]
    )


@router.get(
    "/v1/devices/{device_id}/interfaces",
    response_model=Envelope[list[InterfaceResponse]],
)
async def list_device_interfaces(
    device_id: UUID,
    registry: DeviceRegistry = Depends(get_device_registry),
    client_factory: DeviceClientFactory = Depends(get_device_client_factory),
) -> Envelope[list[InterfaceResponse]]:
    """Free ethernet ports: not bridged, not running, not disabled."""
    device = await registry.get(device_id)
    client = client_factory(device.to_config())
    try:
        interfaces = await client.list_available_interfaces()
    finally:
        await client.aclose()
    return Envelope(
        data=[
            InterfaceResponse(
                interface_id=i.interface_id,
                name=i.name,
                type=i.type,
                mac_address=i.mac_address,
                default_name=i.default_name,
                comment=i.comment,
            )
            for i in interfaces
        ]
    )


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc

    return HealthResponse(status="healthy", database="connected", timestamp=datetime.now(UTC))
