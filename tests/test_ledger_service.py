"""
Tests for LedgerService.

Unit tests for appends, balance folding, listing and credit top-ups.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from conftest import (
    TRADER_KEY,
    RecordingSink,
    create_mock_trader,
    create_mock_transaction,
    make_result,
)
from hotspot_ledger.db.models import Transaction
from hotspot_ledger.exceptions import (
    PersistenceError,
    TraderNotFoundError,
    ValidationError,
    WriteVerificationError,
)
from hotspot_ledger.models.api import TransactionKind
from hotspot_ledger.services.ledger import LedgerService, fold_balance, require_trader


class TestFoldBalance:
    """Tests for the pure balance fold."""

    def test_credits_minus_purchases(self) -> None:
        entries = [
            (TransactionKind.CREDIT_ADD, Decimal("100")),
            (TransactionKind.VOUCHER_PURCHASE, Decimal("30")),
            (TransactionKind.CREDIT_ADD, Decimal("5.50")),
        ]
        assert fold_balance(entries) == Decimal("75.50")

    def test_empty_is_zero(self) -> None:
        assert fold_balance([]) == Decimal("0")

    def test_sign_comes_from_kind(self) -> None:
        """A legacy negative purchase row still subtracts its magnitude."""
        entries = [
            (TransactionKind.CREDIT_ADD, Decimal("20")),
            (TransactionKind.VOUCHER_PURCHASE, Decimal("-5")),
        ]
        assert fold_balance(entries) == Decimal("15.00")

    def test_accepts_raw_kind_strings(self) -> None:
        assert fold_balance([("credit_add", Decimal("1")), ("voucher_purchase", 1)]) == 0

    def test_balance_can_go_negative(self) -> None:
        assert fold_balance([(TransactionKind.VOUCHER_PURCHASE, Decimal("3"))]) == Decimal(
            "-3.00"
        )


class TestAppend:
    """Tests for LedgerService.append."""

    async def test_append_verifies_and_commits(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(one=create_mock_trader())
        db_session.get.return_value = create_mock_transaction(amount="25.50")

        service = LedgerService(db_session)
        tx = await service.append(TRADER_KEY, "credit_add", Decimal("25.5"), "Top up")

        assert tx.amount == Decimal("25.50")
        assert tx.kind == TransactionKind.CREDIT_ADD
        db_session.add.assert_called_once()
        added = db_session.add.call_args[0][0]
        assert isinstance(added, Transaction)
        assert added.amount == Decimal("25.50")
        db_session.flush.assert_awaited_once()
        db_session.commit.assert_awaited_once()
        db_session.rollback.assert_not_awaited()

    async def test_float_amount_rounds_half_up(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(one=create_mock_trader())
        db_session.get.return_value = create_mock_transaction(amount="10.01")

        service = LedgerService(db_session)
        await service.append(TRADER_KEY, TransactionKind.CREDIT_ADD, 10.005, "Top up")

        assert db_session.add.call_args[0][0].amount == Decimal("10.01")

    async def test_reference_is_stored(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(one=create_mock_trader())
        db_session.get.return_value = create_mock_transaction(
            kind=TransactionKind.VOUCHER_PURCHASE, amount="10.00", reference="12a34"
        )

        service = LedgerService(db_session)
        tx = await service.append(
            TRADER_KEY, "voucher_purchase", 10, "Voucher", reference="12a34"
        )

        assert db_session.add.call_args[0][0].reference == "12a34"
        assert tx.reference == "12a34"

    @pytest.mark.parametrize("amount", [Decimal("-0.01"), -5, "-1"])
    async def test_negative_amount_rejected(self, db_session: AsyncMock, amount) -> None:
        service = LedgerService(db_session)

        with pytest.raises(ValidationError):
            await service.append(TRADER_KEY, "credit_add", amount, "bad")

        db_session.add.assert_not_called()
        db_session.commit.assert_not_awaited()

    @pytest.mark.parametrize(
        "amount", [Decimal("NaN"), Decimal("Infinity"), float("inf"), float("nan"), "abc", True]
    )
    async def test_non_finite_amount_rejected(self, db_session: AsyncMock, amount) -> None:
        service = LedgerService(db_session)

        with pytest.raises(ValidationError):
            await service.append(TRADER_KEY, "credit_add", amount, "bad")

        db_session.add.assert_not_called()

    async def test_unknown_kind_rejected(self, db_session: AsyncMock) -> None:
        service = LedgerService(db_session)

        with pytest.raises(ValidationError, match="Unknown transaction kind"):
            await service.append(TRADER_KEY, "refund", 5, "bad")

    async def test_long_description_rejected(self, db_session: AsyncMock) -> None:
        service = LedgerService(db_session)

        with pytest.raises(ValidationError):
            await service.append(TRADER_KEY, "credit_add", 5, "x" * 501)

        db_session.add.assert_not_called()

    async def test_unknown_trader_is_validation_error(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(one=None)
        service = LedgerService(db_session)

        with pytest.raises(TraderNotFoundError) as exc_info:
            await service.append("+254799999999", "credit_add", 5, "Top up")

        assert isinstance(exc_info.value, ValidationError)
        db_session.add.assert_not_called()

    async def test_rejected_append_leaves_ledger_unchanged(self, db_session: AsyncMock) -> None:
        """list_for returns the same rows before and after a rejected append."""
        rows = [create_mock_transaction(), create_mock_transaction(amount="5")]
        db_session.execute.side_effect = [make_result(many=rows), make_result(many=rows)]
        service = LedgerService(db_session)

        before = await service.list_for(TRADER_KEY)
        with pytest.raises(ValidationError):
            await service.append(TRADER_KEY, "voucher_purchase", Decimal("-1"), "bad")
        after = await service.list_for(TRADER_KEY)

        assert len(before) == len(after) == 2
        db_session.add.assert_not_called()

    async def test_missing_row_after_flush_rolls_back(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(one=create_mock_trader())
        db_session.get.return_value = None
        service = LedgerService(db_session)

        with pytest.raises(WriteVerificationError):
            await service.append(TRADER_KEY, "credit_add", 5, "Top up")

        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()

    async def test_amount_mismatch_rolls_back(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(one=create_mock_trader())
        db_session.get.return_value = create_mock_transaction(amount="99.00")
        service = LedgerService(db_session)

        with pytest.raises(WriteVerificationError, match="mismatch"):
            await service.append(TRADER_KEY, "credit_add", 5, "Top up")

        db_session.rollback.assert_awaited_once()

    async def test_database_error_becomes_persistence_error(
        self, db_session: AsyncMock
    ) -> None:
        db_session.execute.return_value = make_result(one=create_mock_trader())
        db_session.flush.side_effect = OperationalError("INSERT", {}, Exception("db down"))
        service = LedgerService(db_session)

        with pytest.raises(PersistenceError) as exc_info:
            await service.append(TRADER_KEY, "credit_add", 5, "Top up")

        assert "db down" not in str(exc_info.value)
        db_session.rollback.assert_awaited_once()


class TestBalanceOf:
    """Tests for LedgerService.balance_of."""

    async def test_no_transactions_is_exactly_zero(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(rows=[])
        service = LedgerService(db_session)

        balance = await service.balance_of(TRADER_KEY)

        assert balance == 0
        assert balance == Decimal("0.00")

    async def test_folds_rows(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(
            rows=[
                (TransactionKind.CREDIT_ADD, Decimal("100.00")),
                (TransactionKind.VOUCHER_PURCHASE, Decimal("12.50")),
            ]
        )
        service = LedgerService(db_session)

        assert await service.balance_of(TRADER_KEY) == Decimal("87.50")

    async def test_every_read_hits_the_store(self, db_session: AsyncMock) -> None:
        db_session.execute.side_effect = [
            make_result(rows=[(TransactionKind.CREDIT_ADD, Decimal("10"))]),
            make_result(
                rows=[
                    (TransactionKind.CREDIT_ADD, Decimal("10")),
                    (TransactionKind.CREDIT_ADD, Decimal("5")),
                ]
            ),
        ]
        service = LedgerService(db_session)

        first = await service.balance_of(TRADER_KEY)
        second = await service.balance_of(TRADER_KEY)

        assert first == Decimal("10.00")
        assert second == Decimal("15.00")
        assert db_session.execute.await_count == 2


class TestListFor:
    """Tests for LedgerService.list_for."""

    async def test_returns_domain_transactions(self, db_session: AsyncMock) -> None:
        rows = [
            create_mock_transaction(kind=TransactionKind.VOUCHER_PURCHASE, amount="10"),
            create_mock_transaction(),
        ]
        db_session.execute.return_value = make_result(many=rows)
        service = LedgerService(db_session)

        transactions = await service.list_for(TRADER_KEY, limit=2)

        assert [t.kind for t in transactions] == [
            TransactionKind.VOUCHER_PURCHASE,
            TransactionKind.CREDIT_ADD,
        ]
        assert transactions[0].transaction_id == rows[0].id

    async def test_negative_limit_rejected(self, db_session: AsyncMock) -> None:
        service = LedgerService(db_session)

        with pytest.raises(ValidationError):
            await service.list_for(TRADER_KEY, limit=-1)

        db_session.execute.assert_not_awaited()

    async def test_negative_offset_rejected(self, db_session: AsyncMock) -> None:
        with pytest.raises(ValidationError):
            await LedgerService(db_session).list_for(TRADER_KEY, offset=-1)

        db_session.execute.assert_not_awaited()

    async def test_unknown_kind_rejected(self, db_session: AsyncMock) -> None:
        with pytest.raises(ValidationError):
            await LedgerService(db_session).list_for(TRADER_KEY, kind="refund")

        db_session.execute.assert_not_awaited()

    async def test_kind_filter_and_offset_in_query(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(many=[])

        await LedgerService(db_session).list_for(
            TRADER_KEY, limit=10, offset=20, kind="voucher_purchase"
        )

        compiled = db_session.execute.call_args[0][0].compile()
        sql = str(compiled)
        assert "transactions.kind =" in sql
        assert "LIMIT" in sql
        assert "OFFSET" in sql
        params = list(compiled.params.values())
        assert TransactionKind.VOUCHER_PURCHASE in params
        assert 10 in params
        assert 20 in params

    async def test_no_offset_by_default(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(many=[])

        await LedgerService(db_session).list_for(TRADER_KEY)

        sql = str(db_session.execute.call_args[0][0])
        assert "OFFSET" not in sql
        assert "transactions.kind =" not in sql


class TestTotalSpent:
    """Tests for LedgerService.total_spent."""

    async def test_rounds_sum(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(total=Decimal("42.5"))
        service = LedgerService(db_session)

        assert await service.total_spent(TRADER_KEY) == Decimal("42.50")


class TestAddCredit:
    """Tests for LedgerService.add_credit."""

    def _configure(self, db_session: AsyncMock, prior: list[tuple]) -> None:
        db_session.execute.side_effect = [
            make_result(one=create_mock_trader()),
            make_result(rows=prior + [(TransactionKind.CREDIT_ADD, Decimal("50.00"))]),
        ]
        db_session.get.return_value = create_mock_transaction(amount="50.00")

    async def test_balance_is_reread_after_append(
        self, db_session: AsyncMock, recording_sink: RecordingSink
    ) -> None:
        self._configure(db_session, prior=[(TransactionKind.CREDIT_ADD, Decimal("100.00"))])
        service = LedgerService(db_session, recording_sink)

        result = await service.add_credit(TRADER_KEY, Decimal("50"))

        assert result.balance == Decimal("150.00")
        assert result.transaction.amount == Decimal("50.00")
        assert db_session.execute.await_count == 2

    async def test_default_description(self, db_session: AsyncMock) -> None:
        self._configure(db_session, prior=[])
        service = LedgerService(db_session)

        await service.add_credit(TRADER_KEY, 50)

        assert db_session.add.call_args[0][0].description == "Credit added: $50.00"

    async def test_notifies_trader(
        self, db_session: AsyncMock, recording_sink: RecordingSink
    ) -> None:
        self._configure(db_session, prior=[])
        service = LedgerService(db_session, recording_sink)

        await service.add_credit(TRADER_KEY, 50)

        assert len(recording_sink.messages) == 1
        target, text = recording_sink.messages[0]
        assert target == TRADER_KEY
        assert "Credit added: $50.00" in text
        assert "New balance: $50.00" in text

    async def test_notification_failure_does_not_undo_credit(
        self, db_session: AsyncMock, failing_sink: RecordingSink
    ) -> None:
        self._configure(db_session, prior=[])
        service = LedgerService(db_session, failing_sink)

        result = await service.add_credit(TRADER_KEY, 50)

        assert result.balance == Decimal("50.00")
        db_session.commit.assert_awaited_once()
        db_session.rollback.assert_not_awaited()

    @pytest.mark.parametrize("amount", [0, Decimal("0.00"), Decimal("0.004")])
    async def test_zero_credit_rejected(self, db_session: AsyncMock, amount) -> None:
        service = LedgerService(db_session)

        with pytest.raises(ValidationError):
            await service.add_credit(TRADER_KEY, amount)

        db_session.add.assert_not_called()


class TestRequireTrader:
    """Tests for the require_trader helper."""

    async def test_returns_trader(self, db_session: AsyncMock) -> None:
        trader = create_mock_trader()
        db_session.execute.return_value = make_result(one=trader)

        assert await require_trader(db_session, TRADER_KEY) is trader

    async def test_lock_adds_for_update(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(one=create_mock_trader())

        await require_trader(db_session, TRADER_KEY, lock=True)

        stmt = db_session.execute.call_args[0][0]
        assert stmt._for_update_arg is not None

    async def test_missing_trader(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(one=None)

        with pytest.raises(TraderNotFoundError):
            await require_trader(db_session, TRADER_KEY)
