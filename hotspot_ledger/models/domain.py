"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from hotspot_ledger.models.api import (
    DiscountType,
    FallbackReason,
    PricingCategory,
    ReconciliationSource,
    TransactionKind,
)


@dataclass(frozen=True)
class TraderData:
    """Immutable trader snapshot. Balance is never stored here."""

    trader_key: str
    display_name: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class TransactionData:
    """Immutable ledger transaction after persistence."""

    transaction_id: UUID
    trader_key: str
    kind: TransactionKind
    amount: Decimal
    description: str
    reference: str | None
    created_at: datetime

    def __post_init__(self) -> None:
        """Validate transaction constraints."""
        if not self.amount.is_finite():
            raise ValueError(f"Transaction amount must be finite: {self.amount}")


@dataclass(frozen=True)
class ClientData:
    """Immutable locally stored hotspot subscriber."""

    client_id: UUID
    trader_key: str
    phone: str
    mac_address: str
    rewarded: bool
    created_at: datetime


@dataclass(frozen=True)
class SessionData:
    """Live hotspot session reported by a device. Never persisted."""

    session_id: str
    mac_address: str
    username: str
    address: str
    uptime: str
    uptime_seconds: int
    bytes_in: int
    bytes_out: int
    server_tag: str

    def __post_init__(self) -> None:
        """Validate counters."""
        if self.bytes_in < 0 or self.bytes_out < 0:
            raise ValueError("Byte counters cannot be negative")


@dataclass(frozen=True)
class HotspotUserData:
    """Hotspot user configured on a device."""

    user_id: str
    name: str
    profile: str
    mac_address: str | None
    limit_uptime: str
    uptime: str
    bytes_in: int
    bytes_out: int
    disabled: bool
    comment: str


@dataclass(frozen=True)
class InterfaceData:
    """Network interface on a device."""

    interface_id: str
    name: str
    type: str
    mac_address: str
    default_name: str
    comment: str


@dataclass(frozen=True)
class DeviceConfig:
    """
    Connection parameters copied out of a device record.

    Device clients hold one of these for their whole lifetime, so later edits
    to the stored record never change an in-flight call.
    """

    device_id: UUID
    host: str
    port: int
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class DeviceData:
    """Immutable device record snapshot."""

    device_id: UUID
    display_name: str
    host: str
    port: int
    username: str
    password: str = field(repr=False)
    is_active: bool = True
    created_at: datetime | None = None

    def to_config(self) -> DeviceConfig:
        """Convert to DeviceConfig."""
        return DeviceConfig(
            device_id=self.device_id,
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
        )


@dataclass(frozen=True)
class PricingData:
    """Base voucher prices for a trader."""

    trader_key: str
    hour: Decimal
    day: Decimal
    week: Decimal
    month: Decimal

    def base_price(self, category: PricingCategory) -> Decimal:
        """Base price for one voucher of the category."""
        return getattr(self, category.value)


@dataclass(frozen=True)
class DiscountData:
    """Immutable discount rule snapshot."""

    discount_id: UUID
    trader_key: str
    name: str
    description: str | None
    discount_type: DiscountType
    discount_value: Decimal
    category: PricingCategory
    threshold: Decimal
    starts_at: datetime | None
    ends_at: datetime | None
    is_active: bool
    created_at: datetime

    def __post_init__(self) -> None:
        """Validate discount constraints."""
        if self.discount_value < 0:
            raise ValueError(f"Discount value cannot be negative: {self.discount_value}")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError(f"Percentage discount above 100: {self.discount_value}")
        if self.threshold < 0:
            raise ValueError(f"Discount threshold cannot be negative: {self.threshold}")

    def in_window(self, at: datetime) -> bool:
        """True when the rule's optional active window contains `at`."""
        if self.starts_at is not None and at < self.starts_at:
            return False
        if self.ends_at is not None and at > self.ends_at:
            return False
        return True


@dataclass(frozen=True)
class PriceQuote:
    """Outcome of pricing one voucher."""

    base_price: Decimal
    discount_applied: Decimal
    final_price: Decimal
    discount: DiscountData | None = None


@dataclass(frozen=True)
class VoucherQuote:
    """Price of `quantity` vouchers of one category at the trader's base price."""

    category: PricingCategory
    quantity: int
    unit: PriceQuote
    total: Decimal


@dataclass(frozen=True)
class ReconciledClient:
    """Local client enriched with live session state."""

    client: ClientData
    is_active: bool
    session_data: SessionData | None


@dataclass(frozen=True)
class Reconciled:
    """
    Tagged reconciliation result.

    `source` says which side answered; `warning` and `fallback_reason` are set
    only when the local replica was served.
    """

    source: ReconciliationSource
    clients: tuple[ReconciledClient, ...]
    warning: str | None = None
    fallback_reason: FallbackReason | None = None

    @property
    def active_sessions(self) -> int:
        """Number of clients matched to a live session."""
        return sum(1 for c in self.clients if c.is_active)

    @property
    def total_clients(self) -> int:
        """Number of local clients considered."""
        return len(self.clients)


@dataclass(frozen=True)
class LiveSessions:
    """Sessions for one trader with the same provenance tagging as Reconciled."""

    source: ReconciliationSource
    sessions: tuple[SessionData, ...]
    warning: str | None = None
    fallback_reason: FallbackReason | None = None


@dataclass(frozen=True)
class VoucherUserData:
    """Hotspot user recorded locally when a voucher was sold."""

    user_id: UUID
    trader_key: str
    username: str
    profile: str
    category: PricingCategory
    quantity: int
    limit_uptime_seconds: int
    device_user_created: bool
    created_at: datetime


@dataclass(frozen=True)
class ReconciledUser:
    """Voucher user enriched with the live session logged in under its name."""

    user: VoucherUserData
    is_active: bool
    session_data: SessionData | None


@dataclass(frozen=True)
class ReconciledUsers:
    """Voucher users of one trader, tagged like Reconciled."""

    source: ReconciliationSource
    users: tuple[ReconciledUser, ...]
    warning: str | None = None
    fallback_reason: FallbackReason | None = None

    @property
    def active_sessions(self) -> int:
        return sum(1 for u in self.users if u.is_active)

    @property
    def total_users(self) -> int:
        return len(self.users)


@dataclass(frozen=True)
class CreditResult:
    """Credit transaction plus the balance re-read after it was committed."""

    transaction: TransactionData
    balance: Decimal


@dataclass(frozen=True)
class VoucherData:
    """Result of a voucher purchase."""

    code: str
    category: PricingCategory
    quantity: int
    price: Decimal
    balance: Decimal
    device_user_created: bool
    transaction: TransactionData
