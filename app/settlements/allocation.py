"""
FIFO allocation: pure functions, no database access.

Given a retailer's eligible ledger entries in FIFO order ``(created_at,
id)`` and a payout amount, compute exactly how much of each credit to
consume. The caller is responsible for reading the entries under the
retailer's lock and for committing the resulting plan atomically.

Rules:
    - Balance = Σ remaining(CREDIT) − Σ remaining(DEBIT)
    - A payout larger than the balance is rejected before any walk
    - DEBIT entries are netted in the balance and skipped in the walk
    - Each credit gives ``min(remaining payout, remaining on entry)``
    - An entry is SETTLED exactly when it is fully consumed
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Protocol

from .exceptions import InsufficientBalanceError, InvariantViolationError
from .states import EntryType, LedgerStatus
from .types import AllocationLine, AllocationPlan, LedgerUpdate

logger = logging.getLogger(__name__)


class AllocatableEntry(Protocol):
    """Fields of a ledger entry the allocator reads."""

    id: object
    entry_type: str
    amount_cents: int
    settled_amount_cents: int
    status: str


def remaining_cents(entry: AllocatableEntry) -> int:
    return entry.amount_cents - entry.settled_amount_cents


def calculate_available_balance(entries: Iterable[AllocatableEntry]) -> int:
    """
    Net amount payable from ``entries``, in minor units.

    Credits add their remaining amount and debits subtract theirs. The
    result is negative when debits outweigh credits.
    """
    balance = 0
    for entry in entries:
        if entry.entry_type == EntryType.CREDIT:
            balance += remaining_cents(entry)
        else:
            balance -= remaining_cents(entry)
    return balance


def plan_allocation(
    retailer_id: str,
    entries: Sequence[AllocatableEntry],
    amount_cents: int,
) -> AllocationPlan:
    """
    Compute the FIFO allocation of ``amount_cents`` across ``entries``.

    Args:
        retailer_id: Retailer being paid (for errors and logging)
        entries: Eligible entries, oldest first
        amount_cents: Payout amount, positive

    Returns:
        AllocationPlan whose allocations sum to ``amount_cents``

    Raises:
        InsufficientBalanceError: ``amount_cents`` exceeds the balance
        InvariantViolationError: The walk ran out of credit before
            covering an amount the balance check accepted
    """
    available = calculate_available_balance(entries)
    if amount_cents > available:
        raise InsufficientBalanceError(
            retailer_id, required=amount_cents, available=available
        )

    plan = AllocationPlan(
        retailer_id=retailer_id,
        amount_cents=amount_cents,
        available_cents=available,
    )
    outstanding = amount_cents

    for entry in entries:
        if outstanding == 0:
            break
        if entry.entry_type != EntryType.CREDIT:
            continue

        entry_remaining = remaining_cents(entry)
        if entry_remaining <= 0:
            continue

        applied = min(outstanding, entry_remaining)
        new_settled = entry.settled_amount_cents + applied
        new_status = (
            LedgerStatus.SETTLED
            if new_settled == entry.amount_cents
            else LedgerStatus.PARTIALLY_SETTLED
        )

        plan.updates.append(
            LedgerUpdate(
                entry_id=entry.id,
                previous_settled_cents=entry.settled_amount_cents,
                previous_status=entry.status,
                new_settled_cents=new_settled,
                new_status=new_status,
            )
        )
        plan.allocations.append(
            AllocationLine(entry_id=entry.id, amount_applied_cents=applied)
        )
        outstanding -= applied

    if outstanding > 0:
        raise InvariantViolationError(
            f"FIFO walk for retailer {retailer_id} left {outstanding} cents "
            f"unallocated after the balance check accepted {amount_cents} cents",
            details={
                "retailer_id": retailer_id,
                "requested_cents": amount_cents,
                "available_cents": available,
                "unallocated_cents": outstanding,
                "entry_ids": [str(entry.id) for entry in entries],
            },
        )

    logger.debug(
        "Planned FIFO allocation",
        extra={
            "retailer_id": retailer_id,
            "amount_cents": amount_cents,
            "available_cents": available,
            "entries_touched": plan.entries_touched,
        },
    )
    return plan
