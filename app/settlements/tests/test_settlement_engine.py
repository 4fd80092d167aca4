"""
Tests for SettlementEngine.

Covers the FIFO payout path end to end against the database: allocation
order, partial settlement, balance checks, the per-retailer lock, rollback
on write failures and the integrity block raised after an invariant
violation.
"""

from contextlib import contextmanager

import pytest
from django.db import DatabaseError
from django.db.models import Sum
from freezegun import freeze_time

from core.exceptions import NotFoundError, ValidationError
from settlements.allocation import plan_allocation as real_plan_allocation
from settlements.exceptions import (
    InsufficientBalanceError,
    InvariantViolationError,
    LockAcquisitionError,
    PersistenceError,
    SettlementBlockedError,
    StaleRecordError,
)
from settlements.models import (
    LedgerEntry,
    RetailerSettlementBlock,
    Settlement,
    SettlementLedgerMapping,
)
from settlements.services import LedgerService, SettlementEngine
from settlements.states import EntryType, LedgerStatus, PaymentMode
from settlements.stores import LedgerStore, SettlementStore
from settlements.tests.factories import (
    LedgerEntryFactory,
    RetailerSettlementBlockFactory,
)


@pytest.fixture
def engine():
    return SettlementEngine()


def settle(engine, retailer_id, amount_cents, **kwargs):
    kwargs.setdefault("payment_mode", PaymentMode.MANUAL_BANK_TRANSFER)
    kwargs.setdefault("actor_id", "admin-1")
    return engine.execute_settlement(
        retailer_id=retailer_id, amount_cents=amount_cents, **kwargs
    )


def balance_of(retailer_id):
    return LedgerService().get_available_balance(retailer_id).available_balance.cents


class TestFIFOSettlement:
    """Settlements consume the oldest credits first."""

    def test_partial_settlement_across_entries(self, engine, retailer_id, fifo_entries):
        first, second, third = fifo_entries

        summary = settle(engine, retailer_id, 45000, reference_number="UTR123")

        for entry in fifo_entries:
            entry.refresh_from_db()
        assert first.status == LedgerStatus.SETTLED
        assert first.settled_amount_cents == 20000
        assert second.status == LedgerStatus.PARTIALLY_SETTLED
        assert second.settled_amount_cents == 25000
        assert third.status == LedgerStatus.AVAILABLE
        assert third.settled_amount_cents == 0

        assert summary.amount.cents == 45000
        assert summary.entries_settled == 2
        assert summary.reference_number == "UTR123"
        assert summary.status == "COMPLETED"

    def test_mapping_rows_record_each_consumed_portion(
        self, engine, retailer_id, fifo_entries
    ):
        first, second, _ = fifo_entries

        summary = settle(engine, retailer_id, 45000)

        mappings = SettlementLedgerMapping.objects.filter(
            settlement_id=summary.settlement_id
        )
        applied = {m.ledger_entry_id: m.amount_applied_cents for m in mappings}
        assert applied == {first.id: 20000, second.id: 25000}
        assert sum(applied.values()) == 45000

    def test_next_settlement_continues_partial_entry(
        self, engine, retailer_id, fifo_entries
    ):
        _, second, third = fifo_entries
        settle(engine, retailer_id, 45000)

        summary = settle(engine, retailer_id, 10000)

        second.refresh_from_db()
        third.refresh_from_db()
        assert second.status == LedgerStatus.SETTLED
        assert third.settled_amount_cents == 5000
        assert third.status == LedgerStatus.PARTIALLY_SETTLED
        assert summary.entries_settled == 2

    def test_settling_full_balance_settles_every_credit(
        self, engine, retailer_id, fifo_entries
    ):
        settle(engine, retailer_id, 65000)

        statuses = set(
            LedgerEntry.objects.filter(retailer_id=retailer_id).values_list(
                "status", flat=True
            )
        )
        assert statuses == {LedgerStatus.SETTLED}
        assert balance_of(retailer_id) == 0

    def test_balance_drops_by_exactly_the_payout(
        self, engine, retailer_id, fifo_entries
    ):
        before = balance_of(retailer_id)

        settle(engine, retailer_id, 32150)

        assert balance_of(retailer_id) == before - 32150

    def test_settled_amount_matches_mapping_totals(
        self, engine, retailer_id, fifo_entries
    ):
        settle(engine, retailer_id, 25000)
        settle(engine, retailer_id, 25000)

        for entry in LedgerEntry.objects.filter(retailer_id=retailer_id):
            applied = entry.settlement_allocations.aggregate(
                total=Sum("amount_applied_cents")
            )["total"]
            assert (applied or 0) == entry.settled_amount_cents

    def test_debit_is_netted_not_consumed(self, engine, retailer_id, credit_with_fee):
        credit, debit = credit_with_fee

        settle(engine, retailer_id, 45000)

        credit.refresh_from_db()
        debit.refresh_from_db()
        assert credit.status == LedgerStatus.PARTIALLY_SETTLED
        assert credit.settled_amount_cents == 45000
        assert debit.status == LedgerStatus.AVAILABLE
        assert balance_of(retailer_id) == 0

    def test_other_retailers_untouched(self, engine, retailer_id, fifo_entries):
        other = LedgerEntryFactory(retailer_id="retailer-2", amount_cents=20000)

        settle(engine, retailer_id, 20000)

        other.refresh_from_db()
        assert other.status == LedgerStatus.AVAILABLE

    def test_same_timestamp_settles_in_creation_order(self, db, engine):
        ledger = LedgerService()
        retailers = [f"retailer-tie-{i}" for i in range(10)]

        with freeze_time("2024-03-01 09:30:00"):
            recorded = {
                retailer: [
                    ledger.record_manual_adjustment(
                        retailer_id=retailer,
                        amount_cents=100,
                        entry_type=EntryType.CREDIT,
                        notes=label,
                        actor_id="admin-1",
                    )
                    for label in ("first", "second")
                ]
                for retailer in retailers
            }

        for retailer, (first, second) in recorded.items():
            assert first.created_at == second.created_at
            settle(engine, retailer, 100)

            first.refresh_from_db()
            second.refresh_from_db()
            assert first.status == LedgerStatus.SETTLED
            assert second.status == LedgerStatus.AVAILABLE
            assert second.settled_amount_cents == 0

    def test_held_entries_are_not_settled(self, db, engine, retailer_id):
        LedgerEntryFactory(retailer_id=retailer_id, status=LedgerStatus.PENDING)

        with pytest.raises(InsufficientBalanceError):
            settle(engine, retailer_id, 100)


class TestSettlementRejections:
    """Rejected settlements leave no trace."""

    def test_insufficient_balance(self, engine, retailer_id, fifo_entries):
        with pytest.raises(InsufficientBalanceError) as exc_info:
            settle(engine, retailer_id, 65001)

        assert exc_info.value.required == 65001
        assert exc_info.value.available == 65000
        assert Settlement.objects.count() == 0
        assert not LedgerEntry.objects.exclude(status=LedgerStatus.AVAILABLE).exists()

    def test_empty_ledger(self, db, engine, retailer_id):
        with pytest.raises(InsufficientBalanceError) as exc_info:
            settle(engine, retailer_id, 1)

        assert exc_info.value.available == 0

    @pytest.mark.parametrize("amount", [0, -500, 10.5, True, None])
    def test_invalid_amount(
        self, engine, retailer_id, fifo_entries, mock_redis, amount
    ):
        with pytest.raises(ValidationError) as exc_info:
            settle(engine, retailer_id, amount)

        assert exc_info.value.error_code == "INVALID_AMOUNT"
        mock_redis.set.assert_not_called()

    def test_invalid_payment_mode(self, engine, retailer_id, fifo_entries):
        with pytest.raises(ValidationError) as exc_info:
            settle(engine, retailer_id, 1000, payment_mode="BITCOIN")

        assert exc_info.value.error_code == "INVALID_PAYMENT_MODE"

    def test_missing_actor(self, engine, retailer_id, fifo_entries):
        with pytest.raises(ValidationError) as exc_info:
            settle(engine, retailer_id, 1000, actor_id="")

        assert exc_info.value.details["missing"] == ["actor_id"]
        assert Settlement.objects.count() == 0


class TestSettlementLocking:
    """Settlements run under the retailer's distributed lock."""

    def test_lock_keyed_on_retailer(
        self, engine, retailer_id, fifo_entries, mock_redis
    ):
        settle(engine, retailer_id, 1000)

        key = mock_redis.set.call_args[0][0]
        assert key == f"lock:settlement:retailer:{retailer_id}"
        mock_redis.eval.assert_called_once()

    def test_lock_released_after_failure(
        self, engine, retailer_id, fifo_entries, mock_redis
    ):
        with pytest.raises(InsufficientBalanceError):
            settle(engine, retailer_id, 10**9)

        mock_redis.eval.assert_called_once()

    def test_lock_contention(
        self, engine, retailer_id, fifo_entries, mock_redis, settings
    ):
        settings.SETTLEMENT_LOCK_TIMEOUT_SECONDS = 0.1
        mock_redis.set.return_value = False

        with pytest.raises(LockAcquisitionError):
            settle(engine, retailer_id, 1000)

        assert Settlement.objects.count() == 0
        for entry in fifo_entries:
            entry.refresh_from_db()
            assert entry.settled_amount_cents == 0


class TestSettlementRollback:
    """Write failures roll back the settlement as one unit."""

    def assert_nothing_written(self, fifo_entries):
        assert Settlement.objects.count() == 0
        assert SettlementLedgerMapping.objects.count() == 0
        for entry in fifo_entries:
            entry.refresh_from_db()
            assert entry.status == LedgerStatus.AVAILABLE
            assert entry.settled_amount_cents == 0

    def test_stale_update_rolls_back(self, engine, retailer_id, fifo_entries, mocker):
        mocker.patch.object(
            LedgerStore,
            "apply_update",
            side_effect=StaleRecordError("Ledger entry changed", details={}),
        )

        with pytest.raises(PersistenceError) as exc_info:
            settle(engine, retailer_id, 45000)

        assert exc_info.value.details["cause"] == "STALE_RECORD"
        self.assert_nothing_written(fifo_entries)

    def test_concurrent_change_detected_by_conditional_update(
        self, engine, retailer_id, fifo_entries, mocker
    ):
        first = fifo_entries[0]

        def plan_then_interfere(retailer_id, entries, amount_cents):
            plan = real_plan_allocation(retailer_id, entries, amount_cents)
            LedgerEntry.objects.filter(id=first.id).update(
                settled_amount_cents=100,
                status=LedgerStatus.PARTIALLY_SETTLED,
            )
            return plan

        mocker.patch(
            "settlements.services.settlement_engine.plan_allocation",
            side_effect=plan_then_interfere,
        )

        with pytest.raises(PersistenceError):
            settle(engine, retailer_id, 45000)

        self.assert_nothing_written(fifo_entries)

    def test_database_error_rolls_back(self, engine, retailer_id, fifo_entries, mocker):
        mocker.patch.object(
            SettlementStore,
            "create_settlement",
            side_effect=DatabaseError("connection lost"),
        )

        with pytest.raises(PersistenceError) as exc_info:
            settle(engine, retailer_id, 45000)

        assert exc_info.value.details["cause"] == "DatabaseError"
        self.assert_nothing_written(fifo_entries)


class TestIntegrityBlock:
    """An invariant violation blocks the retailer until resolved."""

    @pytest.fixture
    def violating_plan(self, mocker, retailer_id):
        return mocker.patch(
            "settlements.services.settlement_engine.plan_allocation",
            side_effect=InvariantViolationError(
                "FIFO walk left 100 cents unallocated",
                details={"retailer_id": retailer_id, "unallocated_cents": 100},
            ),
        )

    def test_violation_blocks_retailer_and_alerts(
        self, engine, retailer_id, fifo_entries, violating_plan, mocker
    ):
        mock_logger = mocker.patch.object(SettlementEngine, "get_logger").return_value

        with pytest.raises(InvariantViolationError):
            settle(engine, retailer_id, 1000)

        block = RetailerSettlementBlock.objects.get(retailer_id=retailer_id)
        assert block.is_active
        assert block.reason == "LEDGER_INVARIANT_VIOLATION"
        assert block.details["unallocated_cents"] == 100

        mock_logger.critical.assert_called_once()
        extra = mock_logger.critical.call_args.kwargs["extra"]
        assert extra["alert"] == "ledger_integrity"
        assert Settlement.objects.count() == 0

    def test_block_recorded_before_lock_released(
        self, retailer_id, fifo_entries, violating_plan
    ):
        blocks_at_release = []

        @contextmanager
        def recording_lock(key):
            try:
                yield
            finally:
                blocks_at_release.append(
                    RetailerSettlementBlock.objects.filter(
                        retailer_id=key, resolved_at__isnull=True
                    ).count()
                )

        engine = SettlementEngine(lock_factory=recording_lock)

        with pytest.raises(InvariantViolationError):
            settle(engine, retailer_id, 1000)

        assert blocks_at_release == [1]
        with pytest.raises(SettlementBlockedError):
            settle(engine, retailer_id, 1000)

    def test_blocked_retailer_cannot_settle(self, engine, retailer_id, fifo_entries):
        block = RetailerSettlementBlockFactory(retailer_id=retailer_id)

        with pytest.raises(SettlementBlockedError) as exc_info:
            settle(engine, retailer_id, 1000)

        assert exc_info.value.details["block_id"] == str(block.id)
        assert Settlement.objects.count() == 0

    def test_block_does_not_affect_other_retailers(self, engine, fifo_entries):
        RetailerSettlementBlockFactory(retailer_id="retailer-2")

        summary = settle(engine, "retailer-1", 1000)

        assert summary.amount.cents == 1000

    def test_resolved_block_allows_settlement(self, engine, retailer_id, fifo_entries):
        RetailerSettlementBlockFactory(retailer_id=retailer_id)

        block = engine.resolve_block(
            retailer_id, actor_id="admin-2", notes="Rows fixed"
        )
        summary = settle(engine, retailer_id, 1000)

        assert block.resolved_by == "admin-2"
        assert block.resolution_notes == "Rows fixed"
        assert block.resolved_at is not None
        assert summary.amount.cents == 1000

    def test_resolve_without_active_block(self, db, engine, retailer_id):
        with pytest.raises(NotFoundError) as exc_info:
            engine.resolve_block(retailer_id, actor_id="admin-2")

        assert exc_info.value.error_code == "SETTLEMENT_BLOCK_NOT_FOUND"


class TestPreviewSettlement:
    def test_preview_plans_without_writing(
        self, engine, retailer_id, fifo_entries, mock_redis
    ):
        first, second, _ = fifo_entries

        plan = engine.preview_settlement(retailer_id, 45000)

        assert [line.entry_id for line in plan.allocations] == [first.id, second.id]
        assert plan.allocated_cents == 45000
        assert plan.available_cents == 65000
        assert Settlement.objects.count() == 0
        mock_redis.set.assert_not_called()

    def test_preview_rejects_overdraft(self, engine, retailer_id, fifo_entries):
        with pytest.raises(InsufficientBalanceError):
            engine.preview_settlement(retailer_id, 70000)
