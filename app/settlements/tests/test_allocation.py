"""
Tests for the pure FIFO allocator.

No database: entries are plain objects carrying the fields the allocator
reads.
"""

import uuid
from dataclasses import dataclass, field

import pytest

from settlements.allocation import calculate_available_balance, plan_allocation
from settlements.exceptions import InsufficientBalanceError, InvariantViolationError
from settlements.states import EntryType, LedgerStatus


@dataclass
class Entry:
    amount_cents: int
    entry_type: str = EntryType.CREDIT
    settled_amount_cents: int = 0
    status: str = LedgerStatus.AVAILABLE
    id: uuid.UUID = field(default_factory=uuid.uuid4)


class TestCalculateAvailableBalance:
    """Tests for calculate_available_balance()."""

    def test_empty_ledger_is_zero(self):
        assert calculate_available_balance([]) == 0

    def test_sums_remaining_credits(self):
        entries = [
            Entry(20000),
            Entry(
                30000,
                settled_amount_cents=10000,
                status=LedgerStatus.PARTIALLY_SETTLED,
            ),
        ]

        assert calculate_available_balance(entries) == 40000

    def test_debits_are_netted(self):
        entries = [Entry(50000), Entry(5000, entry_type=EntryType.DEBIT)]

        assert calculate_available_balance(entries) == 45000

    def test_balance_can_be_negative(self):
        entries = [Entry(1000), Entry(5000, entry_type=EntryType.DEBIT)]

        assert calculate_available_balance(entries) == -4000


class TestPlanAllocation:
    """Tests for plan_allocation()."""

    def test_fifo_order_partial_second_entry(self):
        """150 over three entries of 100 settles the first, half the second."""
        first, second, third = Entry(10000), Entry(10000), Entry(10000)

        plan = plan_allocation("r-1", [first, second, third], 15000)

        assert [line.entry_id for line in plan.allocations] == [first.id, second.id]
        assert [line.amount_applied_cents for line in plan.allocations] == [10000, 5000]
        assert plan.updates[0].new_status == LedgerStatus.SETTLED
        assert plan.updates[0].new_settled_cents == 10000
        assert plan.updates[1].new_status == LedgerStatus.PARTIALLY_SETTLED
        assert plan.updates[1].new_settled_cents == 5000
        assert third.id not in {u.entry_id for u in plan.updates}

    def test_allocations_sum_to_amount(self):
        entries = [Entry(20000), Entry(30000), Entry(15000)]

        plan = plan_allocation("r-1", entries, 45000)

        assert plan.allocated_cents == 45000
        assert plan.entries_touched == 2

    def test_exact_balance_settles_everything(self):
        entries = [Entry(20000), Entry(30000)]

        plan = plan_allocation("r-1", entries, 50000)

        assert all(u.new_status == LedgerStatus.SETTLED for u in plan.updates)
        assert plan.available_cents == 50000

    def test_continues_partially_settled_entry(self):
        entry = Entry(
            30000, settled_amount_cents=25000, status=LedgerStatus.PARTIALLY_SETTLED
        )

        plan = plan_allocation("r-1", [entry, Entry(15000)], 10000)

        assert plan.allocations[0].amount_applied_cents == 5000
        assert plan.updates[0].previous_settled_cents == 25000
        assert plan.updates[0].previous_status == LedgerStatus.PARTIALLY_SETTLED
        assert plan.updates[0].new_status == LedgerStatus.SETTLED
        assert plan.allocations[1].amount_applied_cents == 5000

    def test_debits_skipped_in_walk(self):
        credit = Entry(50000)
        debit = Entry(5000, entry_type=EntryType.DEBIT)

        plan = plan_allocation("r-1", [debit, credit], 45000)

        assert [u.entry_id for u in plan.updates] == [credit.id]
        assert plan.updates[0].new_settled_cents == 45000
        assert plan.updates[0].new_status == LedgerStatus.PARTIALLY_SETTLED

    def test_overdraft_rejected(self):
        entries = [Entry(5000), Entry(3000)]

        with pytest.raises(InsufficientBalanceError) as exc_info:
            plan_allocation("r-1", entries, 8001)

        assert exc_info.value.required == 8001
        assert exc_info.value.available == 8000
        assert exc_info.value.details["retailer_id"] == "r-1"
        assert exc_info.value.retry_safe is True

    def test_empty_ledger_rejected(self):
        with pytest.raises(InsufficientBalanceError):
            plan_allocation("r-1", [], 1)

    def test_negative_balance_rejected(self):
        entries = [Entry(1000), Entry(5000, entry_type=EntryType.DEBIT)]

        with pytest.raises(InsufficientBalanceError) as exc_info:
            plan_allocation("r-1", entries, 100)

        assert exc_info.value.available == -4000

    def test_unallocatable_amount_is_invariant_violation(self):
        """A corrupted debit inflates the balance beyond what credits cover."""
        # settled > amount: remaining is negative, so it adds to the balance
        corrupted_debit = Entry(
            1000,
            entry_type=EntryType.DEBIT,
            settled_amount_cents=6000,
            status=LedgerStatus.PARTIALLY_SETTLED,
        )
        credit = Entry(2000)

        with pytest.raises(InvariantViolationError) as exc_info:
            plan_allocation("r-1", [credit, corrupted_debit], 5000)

        details = exc_info.value.details
        assert details["requested_cents"] == 5000
        assert details["available_cents"] == 7000
        assert details["unallocated_cents"] == 3000
        assert exc_info.value.retry_safe is False
