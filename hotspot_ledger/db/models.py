"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Identity,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from hotspot_ledger.models.api import DiscountType, PricingCategory, TransactionKind


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _enum_column(enum_cls: type, name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda x: [e.value for e in x],
    )


class Trader(Base):
    """
    ORM model for traders table.

    A trader owns clients, pricing and a ledger. There is no balance column:
    balances are folded from the transactions table on every read.
    """

    __tablename__ = "traders"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    trader_key: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("idx_traders_is_active", "is_active"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Trader(trader_key={self.trader_key}, is_active={self.is_active})>"


class Transaction(Base):
    """
    ORM model for transactions table.

    Append-only ledger. Rows are never updated or deleted. `seq` breaks ties
    between rows sharing a created_at timestamp.
    """

    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    seq: Mapped[int] = mapped_column(BigInteger, Identity(), nullable=False, unique=True)

    trader_key: Mapped[str] = mapped_column(
        String(16), ForeignKey("traders.trader_key"), nullable=False
    )
    kind: Mapped[TransactionKind] = mapped_column(
        _enum_column(TransactionKind, "transaction_kind"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)

    # Voucher code for purchases
    reference: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transaction_amount_non_negative"),
        Index("idx_transactions_trader_created", "trader_key", "created_at", "seq"),
        Index("idx_transactions_kind", "kind"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Transaction(id={self.id}, trader_key={self.trader_key}, "
            f"kind={self.kind}, amount={self.amount})>"
        )


class Client(Base):
    """
    ORM model for clients table.

    Local replica of a trader's hotspot subscribers.
    """

    __tablename__ = "clients"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    trader_key: Mapped[str] = mapped_column(
        String(16), ForeignKey("traders.trader_key"), nullable=False
    )
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    mac_address: Mapped[str] = mapped_column(String(17), nullable=False)
    rewarded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("trader_key", "phone", name="uq_client_trader_phone"),
        UniqueConstraint("trader_key", "mac_address", name="uq_client_trader_mac"),
        Index("idx_clients_trader_created", "trader_key", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Client(id={self.id}, trader_key={self.trader_key}, mac={self.mac_address})>"


class TraderPricing(Base):
    """ORM model for trader_pricing table. One row per trader."""

    __tablename__ = "trader_pricing"

    trader_key: Mapped[str] = mapped_column(
        String(16), ForeignKey("traders.trader_key"), primary_key=True
    )
    hour_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    day_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    week_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    month_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "hour_price >= 0 AND day_price >= 0 AND week_price >= 0 AND month_price >= 0",
            name="ck_pricing_non_negative",
        ),
    )


class TraderDiscount(Base):
    """
    ORM model for trader_discounts table.

    Discount rules applied by the pricing engine.
    """

    __tablename__ = "trader_discounts"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    trader_key: Mapped[str] = mapped_column(
        String(16), ForeignKey("traders.trader_key"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    discount_type: Mapped[DiscountType] = mapped_column(
        _enum_column(DiscountType, "discount_type"), nullable=False
    )
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category: Mapped[PricingCategory] = mapped_column(
        _enum_column(PricingCategory, "pricing_category"), nullable=False
    )
    threshold: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("discount_value >= 0", name="ck_discount_value_non_negative"),
        CheckConstraint(
            "discount_type <> 'percentage' OR discount_value <= 100",
            name="ck_discount_percentage_range",
        ),
        CheckConstraint("threshold >= 0", name="ck_discount_threshold_non_negative"),
        CheckConstraint(
            "starts_at IS NULL OR ends_at IS NULL OR starts_at < ends_at",
            name="ck_discount_window_order",
        ),
        Index("idx_discounts_trader_category", "trader_key", "category"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<TraderDiscount(id={self.id}, trader_key={self.trader_key}, "
            f"type={self.discount_type}, value={self.discount_value})>"
        )


class Device(Base):
    """
    ORM model for devices table.

    Configured hotspot controllers. The first active device by creation
    order serves reconciliation.
    """

    __tablename__ = "devices"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    host: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    port: Mapped[int] = mapped_column(Integer, nullable=False, default=80)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("port > 0 AND port < 65536", name="ck_device_port_range"),
        Index("idx_devices_active_created", "is_active", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Device(id={self.id}, host={self.host}, is_active={self.is_active})>"


class VoucherUser(Base):
    """
    ORM model for voucher_users table.

    Local record of a hotspot user sold as a voucher. Written in the same
    commit as the purchase transaction, whose `reference` is the username.
    """

    __tablename__ = "voucher_users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    trader_key: Mapped[str] = mapped_column(
        String(16), ForeignKey("traders.trader_key"), nullable=False
    )
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    profile: Mapped[str] = mapped_column(String(64), nullable=False, default="default")
    category: Mapped[PricingCategory] = mapped_column(
        _enum_column(PricingCategory, "pricing_category"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    limit_uptime_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False)
    device_user_created: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_voucher_user_quantity_positive"),
        CheckConstraint("limit_uptime_seconds > 0", name="ck_voucher_user_uptime_positive"),
        Index("idx_voucher_users_trader_created", "trader_key", "created_at"),
        Index("idx_voucher_users_username", "username"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<VoucherUser(id={self.id}, trader_key={self.trader_key}, username={self.username})>"
