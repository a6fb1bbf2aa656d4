"""
Ledger Service - Append-only transaction log with write verification.

NO DICTIONARIES - All operations use strongly typed domain models.
NO STORED BALANCE - Balances are folded from the log on every read.
"""

from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hotspot_ledger.config import settings
from hotspot_ledger.db.models import Trader, Transaction
from hotspot_ledger.exceptions import (
    PersistenceError,
    TraderNotFoundError,
    ValidationError,
    WriteVerificationError,
)
from hotspot_ledger.models.api import TransactionKind
from hotspot_ledger.models.domain import CreditResult, TransactionData
from hotspot_ledger.money import ZERO, format_money, to_money
from hotspot_ledger.observability.logging import get_logger
from hotspot_ledger.observability.metrics import metrics
from hotspot_ledger.services.notifications import (
    NotificationSink,
    NullNotificationSink,
    notify_best_effort,
)

logger = get_logger(__name__)

MAX_DESCRIPTION_LENGTH = 500


def fold_balance(entries: Iterable[tuple[TransactionKind | str, Decimal]]) -> Decimal:
    """
    Fold (kind, amount) pairs into a balance.

    The sign comes from the kind, never from the stored amount, so a
    negative legacy row still counts as its magnitude.
    """
    balance = ZERO
    for kind, amount in entries:
        magnitude = abs(Decimal(amount))
        if TransactionKind(kind) == TransactionKind.CREDIT_ADD:
            balance += magnitude
        else:
            balance -= magnitude
    return to_money(balance)


def _parse_kind(kind: TransactionKind | str) -> TransactionKind:
    try:
        return TransactionKind(kind)
    except ValueError as e:
        raise ValidationError(f"Unknown transaction kind: {kind!r}") from e


def _parse_amount(amount: Decimal | int | float | str) -> Decimal:
    try:
        value = to_money(amount)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    if value < 0:
        raise ValidationError(f"Amount cannot be negative: {value}")
    return value


def transaction_to_domain(row: Transaction) -> TransactionData:
    """Convert ORM transaction to domain model."""
    return TransactionData(
        transaction_id=row.id,
        trader_key=row.trader_key,
        kind=TransactionKind(row.kind),
        amount=to_money(row.amount),
        description=row.description,
        reference=row.reference,
        created_at=row.created_at,
    )


class LedgerService:
    """
    Ledger service with write verification.

    Appends follow the pattern:
    1. Validate input and trader existence
    2. Add and flush
    3. Read back and verify
    4. Commit
    """

    def __init__(self, session: AsyncSession, notifier: NotificationSink | None = None) -> None:
        self.session = session
        self.notifier = notifier or NullNotificationSink()

    async def append(
        self,
        trader_key: str,
        kind: TransactionKind | str,
        amount: Decimal | int | float | str,
        description: str,
        reference: str | None = None,
    ) -> TransactionData:
        """
        Append one immutable transaction.

        Raises:
            ValidationError: amount not finite or negative, unknown kind,
                description too long, or trader does not exist
            PersistenceError: the write failed or could not be verified
        """
        parsed_kind = _parse_kind(kind)
        try:
            value = _parse_amount(amount)
            if len(description) > MAX_DESCRIPTION_LENGTH:
                raise ValidationError(
                    f"Description longer than {MAX_DESCRIPTION_LENGTH} characters"
                )
            await self.require_trader(trader_key)
        except ValidationError:
            metrics.record_append(parsed_kind.value, success=False)
            raise

        row = Transaction(
            trader_key=trader_key,
            kind=parsed_kind,
            amount=value,
            description=description,
            reference=reference,
        )

        try:
            self.session.add(row)
            await self.session.flush()

            verified = await self.session.get(Transaction, row.id)
            if verified is None:
                raise WriteVerificationError(f"Transaction {row.id} not found after insert")
            if to_money(verified.amount) != value:
                raise WriteVerificationError(
                    f"Transaction amount mismatch: expected {value}, got {verified.amount}"
                )

            await self.session.commit()

        except WriteVerificationError:
            await self.session.rollback()
            metrics.record_append(parsed_kind.value, success=False)
            metrics.record_error("WriteVerificationError", "ledger_append")
            raise

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "ledger_append_failed",
                trader_key=trader_key,
                kind=parsed_kind.value,
                error=str(e),
            )
            metrics.record_append(parsed_kind.value, success=False)
            metrics.record_error(type(e).__name__, "ledger_append")
            raise PersistenceError(f"Failed to append transaction: {type(e).__name__}") from e

        metrics.record_append(parsed_kind.value, success=True, amount=value)
        logger.info(
            "ledger_transaction_appended",
            trader_key=trader_key,
            transaction_id=str(verified.id),
            kind=parsed_kind.value,
            amount=str(value),
        )
        return transaction_to_domain(verified)

    async def balance_of(self, trader_key: str) -> Decimal:
        """
        Balance folded from every transaction of the trader, oldest first.

        Zero for a trader with no transactions. Always reads the store.
        """
        stmt = (
            select(Transaction.kind, Transaction.amount)
            .where(Transaction.trader_key == trader_key)
            .order_by(Transaction.created_at.asc(), Transaction.seq.asc())
        )
        result = await self.session.execute(stmt)
        balance = fold_balance((kind, amount) for kind, amount in result.all())
        metrics.record_balance_read()
        return balance

    async def list_for(
        self,
        trader_key: str,
        limit: int | None = None,
        offset: int = 0,
        kind: TransactionKind | str | None = None,
    ) -> list[TransactionData]:
        """
        Transactions of the trader, most recent first.

        `offset` skips that many rows of the ordered history; `kind` keeps
        only transactions of one kind.

        Raises:
            ValidationError: limit or offset is negative, or kind is unknown
        """
        if limit is not None and limit < 0:
            raise ValidationError(f"limit cannot be negative: {limit}")
        if offset < 0:
            raise ValidationError(f"offset cannot be negative: {offset}")

        stmt = select(Transaction).where(Transaction.trader_key == trader_key)
        if kind is not None:
            stmt = stmt.where(Transaction.kind == _parse_kind(kind))
        stmt = stmt.order_by(Transaction.created_at.desc(), Transaction.seq.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return [transaction_to_domain(row) for row in result.scalars().all()]

    async def total_spent(self, trader_key: str) -> Decimal:
        """Sum of voucher purchase magnitudes for the trader."""
        stmt = select(func.coalesce(func.sum(func.abs(Transaction.amount)), 0)).where(
            Transaction.trader_key == trader_key,
            Transaction.kind == TransactionKind.VOUCHER_PURCHASE,
        )
        result = await self.session.execute(stmt)
        return to_money(result.scalar_one())

    async def add_credit(
        self,
        trader_key: str,
        amount: Decimal | int | float | str,
        description: str | None = None,
    ) -> CreditResult:
        """
        Top up a trader and notify them.

        The reported balance is re-read from the ledger after the append
        commits. Notification failure never undoes the credit.

        Raises:
            ValidationError: amount not positive or trader does not exist
        """
        value = _parse_amount(amount)
        if value == 0:
            raise ValidationError("Credit amount must be positive")

        transaction = await self.append(
            trader_key,
            TransactionKind.CREDIT_ADD,
            value,
            description or f"Credit added: {format_money(value, settings.currency)}",
        )
        balance = await self.balance_of(trader_key)

        await notify_best_effort(
            self.notifier,
            trader_key,
            f"Credit added: {format_money(transaction.amount, settings.currency)}. "
            f"New balance: {format_money(balance, settings.currency)}",
        )
        return CreditResult(transaction=transaction, balance=balance)

    async def require_trader(self, trader_key: str) -> Trader:
        return await require_trader(self.session, trader_key)


async def require_trader(session: AsyncSession, trader_key: str, lock: bool = False) -> Trader:
    """
    Load the trader row, optionally with SELECT FOR UPDATE.

    Raises:
        TraderNotFoundError: no trader with this key
    """
    stmt = select(Trader).where(Trader.trader_key == trader_key)
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    trader = result.scalar_one_or_none()
    if trader is None:
        raise TraderNotFoundError(trader_key)
    return trader
