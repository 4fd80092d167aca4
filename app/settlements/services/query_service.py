"""
Read-only queries over the ledger and settlement history.

Nothing here takes a lock: every figure is a snapshot that a concurrent
settlement may change a moment later.

Usage:
    from settlements.services import SettlementQueryService
    from settlements.types import LedgerHistoryFilters

    queries = SettlementQueryService()
    page = queries.get_ledger_history(
        LedgerHistoryFilters(retailer_id="ret-1", status="AVAILABLE", limit=50)
    )
    details = queries.get_settlement_details(settlement_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.core.paginator import Paginator

from core.exceptions import ValidationError
from core.services import BaseService

from ..exceptions import SettlementNotFoundError
from ..states import ELIGIBLE_STATUSES, UNSETTLED_STATUSES, LedgerStatus, TransactionType
from ..stores import LedgerStore, SettlementStore
from ..types import (
    DashboardSummary,
    Money,
    Page,
    RetailerSummary,
    SettlementAllocation,
    SettlementBreakdown,
    SettlementDetails,
)
from .ledger_service import LedgerService

if TYPE_CHECKING:
    import uuid

    from django.db.models import QuerySet

    from ..models import LedgerEntry, Settlement, SettlementLedgerMapping
    from ..types import AvailableBalance, LedgerHistoryFilters, SettlementFilters


def _paginate(queryset: QuerySet, page: int, limit: int) -> Page:
    paginator = Paginator(queryset, limit)
    # Past the last page is an empty page, not an error
    if page > max(paginator.num_pages, 1) or paginator.count == 0:
        return Page(items=[], page=page, limit=limit, total=paginator.count)
    return Page(
        items=list(paginator.page(page).object_list),
        page=page,
        limit=limit,
        total=paginator.count,
    )


def build_breakdown(allocations: list[SettlementLedgerMapping]) -> SettlementBreakdown:
    """Bucket a settlement's applied amounts by the entries' transaction type."""
    buckets = {
        TransactionType.ORDER_REVENUE: 0,
        TransactionType.MANUAL_ADJUSTMENT: 0,
        TransactionType.PLATFORM_FEE: 0,
        TransactionType.REFUND_CLAWBACK: 0,
    }
    for mapping in allocations:
        buckets[mapping.ledger_entry.transaction_type] += mapping.amount_applied_cents
    return SettlementBreakdown(
        gross_sales_cents=buckets[TransactionType.ORDER_REVENUE],
        adjustments_cents=buckets[TransactionType.MANUAL_ADJUSTMENT],
        platform_fees_cents=buckets[TransactionType.PLATFORM_FEE],
        returns_cents=buckets[TransactionType.REFUND_CLAWBACK],
    )


class SettlementQueryService(BaseService):
    """
    Ledger history, settlement history and balance summaries.

    Args:
        ledger_store: Ledger persistence (defaults to LedgerStore())
        settlement_store: Settlement persistence (defaults to SettlementStore())
    """

    def __init__(
        self,
        ledger_store: LedgerStore | None = None,
        settlement_store: SettlementStore | None = None,
    ) -> None:
        self.ledger_store = ledger_store or LedgerStore()
        self.settlement_store = settlement_store or SettlementStore()
        self.ledger_service = LedgerService(ledger_store=self.ledger_store)

    def _money(self, cents: int) -> Money:
        return Money(cents=cents, currency=self.ledger_service.currency)

    def get_ledger_history(self, filters: LedgerHistoryFilters) -> Page[LedgerEntry]:
        """Filtered ledger entries, newest first."""
        return _paginate(self.ledger_store.history(filters), filters.page, filters.limit)

    def get_settlements(self, filters: SettlementFilters) -> Page[Settlement]:
        """Filtered settlements, newest first."""
        return _paginate(
            self.settlement_store.list_settlements(filters), filters.page, filters.limit
        )

    def get_settlement_details(
        self, settlement_id: uuid.UUID, retailer_id: str | None = None
    ) -> SettlementDetails:
        """
        A settlement with the entries it consumed, oldest first.

        Args:
            settlement_id: Settlement to load
            retailer_id: When given, the settlement must belong to this
                retailer

        Raises:
            SettlementNotFoundError: Unknown id, or owned by another retailer
        """
        settlement = self.settlement_store.get(settlement_id, retailer_id=retailer_id)
        if settlement is None:
            raise SettlementNotFoundError(
                f"Settlement {settlement_id} not found",
                details={"settlement_id": str(settlement_id)},
            )

        mappings = self.settlement_store.get_allocations(settlement)
        return SettlementDetails(
            settlement=settlement,
            allocations=[
                SettlementAllocation(
                    mapping_id=mapping.id,
                    ledger_entry=mapping.ledger_entry,
                    amount_applied_cents=mapping.amount_applied_cents,
                )
                for mapping in mappings
            ],
            breakdown=build_breakdown(mappings),
        )

    def get_available_balance(self, retailer_id: str) -> AvailableBalance:
        return self.ledger_service.get_available_balance(retailer_id)

    # ==========================================================================
    # Retailer overviews
    # ==========================================================================

    def get_retailer_summary(self, retailer_id: str) -> RetailerSummary:
        """What the platform owes a retailer, has on hold and has paid."""
        self._require_retailer(retailer_id)
        return RetailerSummary(
            retailer_id=retailer_id,
            total_owed=self._money(
                self.ledger_store.net_remaining(retailer_id, ELIGIBLE_STATUSES)
            ),
            pending_escrow=self._money(
                self.ledger_store.net_remaining(retailer_id, [LedgerStatus.PENDING])
            ),
            lifetime_paid=self._money(self.settlement_store.lifetime_paid(retailer_id)),
        )

    def get_unsettled_entries(self, retailer_id: str) -> list[LedgerEntry]:
        """Held, available and partially settled entries, oldest first."""
        self._require_retailer(retailer_id)
        return self.ledger_store.get_unsettled(retailer_id)

    def get_settlement_history(self, retailer_id: str) -> list[Settlement]:
        """All settlements paid to a retailer, newest first."""
        self._require_retailer(retailer_id)
        return self.settlement_store.history_for_retailer(retailer_id)

    def get_dashboard_summary(
        self, retailer_id: str, warehouse_id: str
    ) -> DashboardSummary:
        """
        Retailer dashboard figures for one warehouse.

        ``next_settlement_amount`` is what the retailer could be paid once
        the earliest held entry matures: everything already available plus
        held entries maturing on or before that date.
        """
        self._require_retailer(retailer_id)
        if not warehouse_id:
            raise ValidationError(
                "Missing required fields: warehouse_id",
                error_code="MISSING_FIELDS",
                details={"missing": ["warehouse_id"]},
            )

        totals = self.ledger_store.revenue_totals(retailer_id, warehouse_id)
        to_be_settled = self.ledger_store.net_remaining(
            retailer_id, UNSETTLED_STATUSES, warehouse_id=warehouse_id
        )
        next_date = self.ledger_store.next_trigger_date(retailer_id, warehouse_id)

        next_amount = self.ledger_store.net_remaining(
            retailer_id, ELIGIBLE_STATUSES, warehouse_id=warehouse_id
        )
        if next_date is not None:
            next_amount += self.ledger_store.net_remaining(
                retailer_id,
                [LedgerStatus.PENDING],
                warehouse_id=warehouse_id,
                trigger_before=next_date,
            )

        return DashboardSummary(
            retailer_id=retailer_id,
            warehouse_id=warehouse_id,
            total_orders=totals["total_orders"],
            total_sales=self._money(totals["total_sales"]),
            to_be_settled=self._money(to_be_settled),
            next_settlement_amount=self._money(next_amount),
            next_settlement_date=next_date,
            last_settlement_date=self.settlement_store.last_settlement_at(retailer_id),
        )

    @staticmethod
    def _require_retailer(retailer_id: str) -> None:
        if not retailer_id:
            raise ValidationError(
                "Missing required fields: retailer_id",
                error_code="MISSING_FIELDS",
                details={"missing": ["retailer_id"]},
            )
