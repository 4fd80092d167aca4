"""
Data types for ledger and settlement operations.

Dataclasses used for type-safe data transfer between the stores, the
services and the API layer.

Types:
    Money: An amount in minor units with its currency
    LedgerUpdate: Conditional write computed by the FIFO allocator
    AllocationLine: Portion of one ledger entry consumed by a settlement
    AllocationPlan: Complete write-set for one settlement
    SettlementSummary: Result of executing a settlement
    AvailableBalance: Retailer balance snapshot
    LedgerHistoryFilters / SettlementFilters: Query filters with pagination
    Page: One page of query results
    SettlementAllocation / SettlementBreakdown / SettlementDetails:
        Audit view of one settlement
    RetailerSummary / DashboardSummary: Admin and retailer overviews

Usage:
    from settlements.types import Money, to_minor_units

    amount = Money(cents=to_minor_units(Decimal("450.00")))
    print(amount)  # "450.00 INR"
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Generic, TypeVar

T = TypeVar("T")

# Minor units per major unit (paise per rupee)
MINOR_UNITS = 100

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def to_minor_units(amount: Decimal | int | str) -> int:
    """
    Convert a major-unit amount (e.g. rupees) to integer minor units.

    Values with more than two decimal places are rounded half-up.

    Example:
        to_minor_units(Decimal("12.50"))  # 1250
    """
    value = Decimal(str(amount)) * MINOR_UNITS
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(cents: int) -> Decimal:
    """Convert integer minor units to a two-place Decimal in major units."""
    return (Decimal(cents) / MINOR_UNITS).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class Money:
    """
    Represents a monetary amount.

    All amounts are kept in minor units (paise/cents) so arithmetic is
    exact. Negative values are allowed, e.g. a retailer whose debits
    exceed their credits.

    Attributes:
        cents: Amount in the smallest currency unit
        currency: ISO 4217 currency code (default: 'inr')
    """

    cents: int
    currency: str = "inr"

    def __str__(self) -> str:
        return f"{from_minor_units(self.cents)} {self.currency.upper()}"

    @property
    def amount(self) -> Decimal:
        """Amount in major units."""
        return from_minor_units(self.cents)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot add Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )
        return Money(cents=self.cents + other.cents, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot subtract Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )
        return Money(cents=self.cents - other.cents, currency=self.currency)


# =============================================================================
# Allocation
# =============================================================================


@dataclass(frozen=True)
class LedgerUpdate:
    """
    Conditional write against one ledger entry.

    Applied only if the row still holds ``previous_settled_cents`` and
    ``previous_status``; otherwise the settlement aborts.
    """

    entry_id: uuid.UUID
    previous_settled_cents: int
    previous_status: str
    new_settled_cents: int
    new_status: str


@dataclass(frozen=True)
class AllocationLine:
    """Portion of one ledger entry consumed by a settlement."""

    entry_id: uuid.UUID
    amount_applied_cents: int


@dataclass
class AllocationPlan:
    """
    Write-set produced by the FIFO allocator for one settlement.

    ``updates`` and ``allocations`` are in FIFO order and pair up one to
    one; their applied amounts sum to ``amount_cents``.
    """

    retailer_id: str
    amount_cents: int
    available_cents: int
    updates: list[LedgerUpdate] = field(default_factory=list)
    allocations: list[AllocationLine] = field(default_factory=list)

    @property
    def entries_touched(self) -> int:
        return len(self.updates)

    @property
    def allocated_cents(self) -> int:
        return sum(line.amount_applied_cents for line in self.allocations)


@dataclass(frozen=True)
class SettlementSummary:
    """Result of a successfully executed settlement."""

    settlement_id: uuid.UUID
    retailer_id: str
    amount: Money
    payment_mode: str
    reference_number: str | None
    status: str
    entries_settled: int


@dataclass(frozen=True)
class AvailableBalance:
    """
    Point-in-time balance snapshot for a retailer.

    Computed without locks; a concurrent settlement can change it at any
    moment.
    """

    retailer_id: str
    available_balance: Money
    entry_count: int


# =============================================================================
# Queries
# =============================================================================


def _clamp_pagination(page: int | None, limit: int | None) -> tuple[int, int]:
    page = max(1, page or 1)
    limit = min(MAX_PAGE_SIZE, max(1, limit or DEFAULT_PAGE_SIZE))
    return page, limit


@dataclass
class LedgerHistoryFilters:
    """Filters for ledger history; every field is optional."""

    retailer_id: str | None = None
    warehouse_id: str | None = None
    status: str | None = None
    transaction_type: str | None = None
    entry_type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE

    def __post_init__(self) -> None:
        self.page, self.limit = _clamp_pagination(self.page, self.limit)


@dataclass
class SettlementFilters:
    """Filters for settlement history; every field is optional."""

    retailer_id: str | None = None
    status: str | None = None
    payment_mode: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE

    def __post_init__(self) -> None:
        self.page, self.limit = _clamp_pagination(self.page, self.limit)


@dataclass
class Page(Generic[T]):
    """One page of results plus pagination metadata."""

    items: list[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total else 0


@dataclass(frozen=True)
class SettlementAllocation:
    """A mapping row joined to the ledger entry it consumed."""

    mapping_id: uuid.UUID
    ledger_entry: object
    amount_applied_cents: int


@dataclass(frozen=True)
class SettlementBreakdown:
    """
    Settlement amount bucketed by the transaction type of the consumed
    entries.

    Debits are netted in the balance rather than consumed, so deductions
    only appear here for debit entries an allocation actually touched.
    """

    gross_sales_cents: int = 0
    adjustments_cents: int = 0
    platform_fees_cents: int = 0
    returns_cents: int = 0

    @property
    def total_deductions_cents(self) -> int:
        return self.platform_fees_cents + self.returns_cents


@dataclass(frozen=True)
class SettlementDetails:
    """A settlement with its allocations in FIFO order and a breakdown."""

    settlement: object
    allocations: list[SettlementAllocation]
    breakdown: SettlementBreakdown


@dataclass(frozen=True)
class RetailerSummary:
    """
    Admin view of what a retailer is owed.

    Attributes:
        total_owed: Net balance of AVAILABLE and PARTIALLY_SETTLED entries
        pending_escrow: Net balance of entries still on hold
        lifetime_paid: Sum of all completed settlements
    """

    retailer_id: str
    total_owed: Money
    pending_escrow: Money
    lifetime_paid: Money


@dataclass(frozen=True)
class DashboardSummary:
    """
    Retailer dashboard figures for one warehouse.

    Attributes:
        total_orders: Distinct orders with recorded revenue
        total_sales: Gross revenue recorded
        to_be_settled: Net unsettled balance, held or available
        next_settlement_amount: Balance payable once the earliest pending
            hold expires
        next_settlement_date: Earliest pending trigger date
        last_settlement_date: Most recent payout to the retailer
    """

    retailer_id: str
    warehouse_id: str
    total_orders: int
    total_sales: Money
    to_be_settled: Money
    next_settlement_amount: Money
    next_settlement_date: datetime | None
    last_settlement_date: datetime | None
