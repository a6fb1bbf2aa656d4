"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, Field, field_validator, model_validator


class TransactionKind(str, Enum):
    """Ledger transaction kind enumeration."""

    CREDIT_ADD = "credit_add"
    VOUCHER_PURCHASE = "voucher_purchase"


class PricingCategory(str, Enum):
    """Voucher duration category."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @property
    def seconds(self) -> int:
        """Uptime granted by one voucher of this category."""
        return _CATEGORY_SECONDS[self]


_CATEGORY_SECONDS = {
    PricingCategory.HOUR: 3600,
    PricingCategory.DAY: 86400,
    PricingCategory.WEEK: 604800,
    PricingCategory.MONTH: 2592000,
}


class DiscountType(str, Enum):
    """Discount rule type."""

    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class ReconciliationSource(str, Enum):
    """Which source served a reconciliation response."""

    DEVICE = "device"
    LOCAL = "local"


class FallbackReason(str, Enum):
    """Why a reconciliation fell back to local data."""

    NO_ACTIVE_DEVICE = "no_active_device"
    DEVICE_MISCONFIGURED = "device_misconfigured"
    DEVICE_UNAVAILABLE = "device_unavailable"
    DEVICE_PROTOCOL_ERROR = "device_protocol_error"


# ============================================================================
# Envelope
# ============================================================================

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """Result/error pair returned by every endpoint."""

    success: bool = True
    data: T | None = None
    message: str | None = None


class ErrorResponse(BaseModel):
    """Error half of the envelope."""

    success: bool = False
    error: str
    error_type: str


# ============================================================================
# Trader Models
# ============================================================================


class CreateTraderRequest(BaseModel):
    """POST /v1/traders request body."""

    trader_key: str = Field(..., min_length=6, max_length=16, description="Phone number")
    display_name: str = Field(..., min_length=1, max_length=255)


class UpdateTraderRequest(BaseModel):
    """PATCH /v1/traders/{trader_key} request body."""

    display_name: str | None = Field(None, min_length=1, max_length=255)
    is_active: bool | None = None


class TraderResponse(BaseModel):
    """Trader with balance computed from the ledger at read time."""

    trader_key: str
    display_name: str
    is_active: bool
    balance: Decimal
    created_at: datetime
    updated_at: datetime


class BalanceResponse(BaseModel):
    """GET /v1/traders/{trader_key}/balance response."""

    trader_key: str
    balance: Decimal
    currency: str


# ============================================================================
# Ledger Models
# ============================================================================


class AppendTransactionRequest(BaseModel):
    """POST /v1/traders/{trader_key}/transactions request body."""

    kind: TransactionKind
    amount: Decimal = Field(..., ge=0, allow_inf_nan=False)
    description: str | None = Field(None, max_length=500)


class AddCreditRequest(BaseModel):
    """POST /v1/credits request body."""

    trader_key: str = Field(..., min_length=1, max_length=16)
    amount: Decimal = Field(..., gt=0, allow_inf_nan=False)
    description: str | None = Field(None, max_length=500)


class TransactionResponse(BaseModel):
    """Single ledger transaction."""

    transaction_id: UUID
    trader_key: str
    kind: TransactionKind
    amount: Decimal
    description: str
    reference: str | None = None
    created_at: datetime


class TransactionListResponse(BaseModel):
    """GET /v1/traders/{trader_key}/transactions response."""

    transactions: list[TransactionResponse]
    count: int


class CreditResponse(BaseModel):
    """POST /v1/credits response."""

    transaction: TransactionResponse
    balance: Decimal


# ============================================================================
# Client / Reconciliation Models
# ============================================================================


class CreateClientRequest(BaseModel):
    """POST /v1/traders/{trader_key}/clients request body."""

    phone: str = Field(..., min_length=1, max_length=32)
    mac_address: str = Field(..., min_length=12, max_length=17)
    rewarded: bool = False


class ClientResponse(BaseModel):
    """Locally stored hotspot subscriber."""

    client_id: UUID
    trader_key: str
    phone: str
    mac_address: str
    rewarded: bool
    created_at: datetime


class SessionResponse(BaseModel):
    """Live hotspot session as reported by the device."""

    session_id: str
    mac_address: str
    username: str
    address: str
    uptime: str
    uptime_seconds: int
    bytes_in: int
    bytes_out: int
    server_tag: str


class ReconciledClientResponse(ClientResponse):
    """Client enriched with live session state."""

    is_active: bool
    session_data: SessionResponse | None = None


class ReconciledClientsResponse(BaseModel):
    """GET /v1/traders/{trader_key}/clients response."""

    source: ReconciliationSource
    warning: str | None = None
    clients: list[ReconciledClientResponse]
    active_sessions: int
    total_clients: int


class SessionListResponse(BaseModel):
    """GET /v1/traders/{trader_key}/sessions response."""

    source: ReconciliationSource
    warning: str | None = None
    sessions: list[SessionResponse]


class VoucherUserResponse(BaseModel):
    """Hotspot user sold as a voucher, with live session state."""

    user_id: UUID
    trader_key: str
    username: str
    profile: str
    category: PricingCategory
    quantity: int
    limit_uptime_seconds: int
    device_user_created: bool
    created_at: datetime
    is_active: bool
    session_data: SessionResponse | None = None


class VoucherUserListResponse(BaseModel):
    """GET /v1/traders/{trader_key}/users response."""

    source: ReconciliationSource
    warning: str | None = None
    users: list[VoucherUserResponse]
    active_sessions: int
    total_users: int


# ============================================================================
# Pricing Models
# ============================================================================


class PricingRequest(BaseModel):
    """PUT /v1/traders/{trader_key}/pricing request body."""

    hour: Decimal = Field(..., ge=0, allow_inf_nan=False)
    day: Decimal = Field(..., ge=0, allow_inf_nan=False)
    week: Decimal = Field(..., ge=0, allow_inf_nan=False)
    month: Decimal = Field(..., ge=0, allow_inf_nan=False)


class PricingResponse(BaseModel):
    """Base prices per category."""

    trader_key: str
    hour: Decimal
    day: Decimal
    week: Decimal
    month: Decimal


class PriceQuoteRequest(BaseModel):
    """POST /v1/traders/{trader_key}/pricing/quote request body."""

    category: str
    base_price: Decimal = Field(..., allow_inf_nan=False)


class PriceQuoteResponse(BaseModel):
    """Result of applying the trader's discount schedule."""

    base_price: Decimal
    discount_applied: Decimal
    final_price: Decimal
    discount_id: UUID | None = None
    discount_name: str | None = None


class CreateDiscountRequest(BaseModel):
    """POST /v1/traders/{trader_key}/discounts request body."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=1000)
    discount_type: DiscountType
    discount_value: Decimal = Field(..., ge=0, allow_inf_nan=False)
    category: PricingCategory
    threshold: Decimal = Field(Decimal("0"), ge=0, allow_inf_nan=False)
    starts_at: AwareDatetime | None = None
    ends_at: AwareDatetime | None = None

    @model_validator(mode="after")
    def validate_rule(self) -> "CreateDiscountRequest":
        """Percentages stay within 0-100 and windows run forwards."""
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount must be between 0 and 100")
        if self.starts_at and self.ends_at and self.starts_at >= self.ends_at:
            raise ValueError("starts_at must be before ends_at")
        return self


class UpdateDiscountRequest(BaseModel):
    """PUT /v1/traders/{trader_key}/discounts/{discount_id} request body."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=1000)
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = Field(None, ge=0, allow_inf_nan=False)
    category: PricingCategory | None = None
    threshold: Decimal | None = Field(None, ge=0, allow_inf_nan=False)
    starts_at: AwareDatetime | None = None
    ends_at: AwareDatetime | None = None
    is_active: bool | None = None


class DiscountResponse(BaseModel):
    """Discount rule."""

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


# ============================================================================
# Voucher Models
# ============================================================================


class PurchaseVoucherRequest(BaseModel):
    """POST /v1/vouchers request body."""

    trader_key: str = Field(..., min_length=1, max_length=16)
    category: PricingCategory
    quantity: int = Field(1, ge=1, le=1000)


class VoucherResponse(BaseModel):
    """POST /v1/vouchers response."""

    code: str
    category: PricingCategory
    quantity: int
    price: Decimal
    balance: Decimal
    device_user_created: bool
    transaction: TransactionResponse


# ============================================================================
# Device Models
# ============================================================================


class DeviceRequest(BaseModel):
    """POST/PUT /v1/devices request body."""

    display_name: str = Field(..., min_length=1, max_length=255)
    host: str = Field(..., min_length=1, max_length=255)
    port: int = Field(80, ge=1, le=65535)
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)
    is_active: bool = True

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Reject hosts that carry a scheme or path."""
        if "/" in v or " " in v:
            raise ValueError("host must be a bare hostname or IP address")
        return v


class DeviceResponse(BaseModel):
    """Device record without credentials."""

    device_id: UUID
    display_name: str
    host: str
    port: int
    username: str
    is_active: bool
    created_at: datetime


class ConnectionTestResponse(BaseModel):
    """POST /v1/devices/{device_id}/test response."""

    device_id: UUID
    connected: bool


class HotspotUserResponse(BaseModel):
    """Hotspot user configured on the device."""

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


class InterfaceResponse(BaseModel):
    """Free ethernet interface on the device."""

    interface_id: str
    name: str
    type: str
    mac_address: str
    default_name: str
    comment: str


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: datetime
