"""
Data-access layer for the ledger and settlement tables.

Stores hold no business rules: they insert, read in the orders the
services need, and apply the conditional writes the allocator computed.
Services receive store instances through their constructors so tests can
substitute them.

Classes:
    LedgerStore: Ledger entries (append, FIFO reads, conditional updates)
    SettlementStore: Settlements, allocation mappings and settlement blocks
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import BigIntegerField, Case, Count, F, Max, Min, Sum, Value, When
from django.db.models.functions import Coalesce
from django.utils import timezone

from .exceptions import StaleRecordError
from .models import (
    LedgerEntry,
    RetailerSettlementBlock,
    Settlement,
    SettlementLedgerMapping,
)
from .states import (
    ELIGIBLE_STATUSES,
    UNSETTLED_STATUSES,
    EntryType,
    LedgerStatus,
    SettlementStatus,
    TransactionType,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable
    from datetime import datetime

    from django.db.models import QuerySet

    from .types import (
        AllocationLine,
        LedgerHistoryFilters,
        LedgerUpdate,
        SettlementFilters,
    )

logger = logging.getLogger(__name__)


def _net_remaining():
    """Aggregate: Σ remaining(CREDIT) − Σ remaining(DEBIT), 0 when empty."""
    return Coalesce(
        Sum(
            Case(
                When(
                    entry_type=EntryType.CREDIT,
                    then=F("amount_cents") - F("settled_amount_cents"),
                ),
                default=F("settled_amount_cents") - F("amount_cents"),
                output_field=BigIntegerField(),
            )
        ),
        Value(0),
        output_field=BigIntegerField(),
    )


class LedgerStore:
    """Ledger entry persistence."""

    def create_entries(self, entries: list[LedgerEntry]) -> list[LedgerEntry]:
        """
        Insert unsaved entries in one transaction.

        Entries carrying an ``idempotency_key`` that already exists are not
        inserted again; the stored row is returned in their place.

        Returns:
            The stored entries, in input order
        """
        results: list[LedgerEntry] = []
        with transaction.atomic():
            for entry in entries:
                if entry.idempotency_key:
                    existing = LedgerEntry.objects.filter(
                        idempotency_key=entry.idempotency_key
                    ).first()
                    if existing is not None:
                        results.append(existing)
                        continue
                try:
                    with transaction.atomic():
                        entry.save(force_insert=True)
                except IntegrityError:
                    # Lost an insert race on the idempotency key
                    if not entry.idempotency_key:
                        raise
                    entry = LedgerEntry.objects.get(
                        idempotency_key=entry.idempotency_key
                    )
                results.append(entry)
        return results

    def get(self, entry_id: uuid.UUID, *, for_update: bool = False) -> LedgerEntry | None:
        queryset = LedgerEntry.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(id=entry_id).first()

    def get_eligible_for_settlement(
        self, retailer_id: str, *, for_update: bool = False
    ) -> list[LedgerEntry]:
        """
        Entries a settlement may draw on, oldest first.

        With ``for_update`` the rows stay locked until the surrounding
        transaction ends.
        """
        queryset = LedgerEntry.objects.filter(
            retailer_id=retailer_id,
            status__in=ELIGIBLE_STATUSES,
        ).order_by("created_at", "sequence")
        if for_update:
            queryset = queryset.select_for_update()
        return list(queryset)

    def get_unsettled(self, retailer_id: str) -> list[LedgerEntry]:
        """Held, available and partially settled entries, oldest first."""
        return list(
            LedgerEntry.objects.filter(
                retailer_id=retailer_id,
                status__in=UNSETTLED_STATUSES,
            ).order_by("created_at", "sequence")
        )

    def get_matured_pending(self, as_of: datetime, limit: int) -> list[LedgerEntry]:
        """Held entries whose trigger date has passed, earliest first."""
        return list(
            LedgerEntry.objects.filter(
                status=LedgerStatus.PENDING,
                trigger_date__lte=as_of,
            ).order_by("trigger_date", "sequence")[:limit]
        )

    def apply_update(self, update: LedgerUpdate) -> None:
        """
        Compare-and-set the settled amount and status of one entry.

        Raises:
            StaleRecordError: The entry no longer holds the values the
                update was computed from
        """
        rows = LedgerEntry.objects.filter(
            id=update.entry_id,
            settled_amount_cents=update.previous_settled_cents,
            status=update.previous_status,
        ).update(
            settled_amount_cents=update.new_settled_cents,
            status=update.new_status,
            updated_at=timezone.now(),
        )
        if rows != 1:
            current = (
                LedgerEntry.objects.filter(id=update.entry_id)
                .values("settled_amount_cents", "status")
                .first()
            )
            raise StaleRecordError(
                f"Ledger entry {update.entry_id} changed since it was read",
                details={
                    "entry_id": str(update.entry_id),
                    "expected_settled_cents": update.previous_settled_cents,
                    "expected_status": update.previous_status,
                    "current": current,
                },
            )

    def history(self, filters: LedgerHistoryFilters) -> QuerySet[LedgerEntry]:
        """Filtered entries, newest first."""
        queryset = LedgerEntry.objects.all()
        if filters.retailer_id:
            queryset = queryset.filter(retailer_id=filters.retailer_id)
        if filters.warehouse_id:
            queryset = queryset.filter(warehouse_id=filters.warehouse_id)
        if filters.status:
            queryset = queryset.filter(status=filters.status)
        if filters.transaction_type:
            queryset = queryset.filter(transaction_type=filters.transaction_type)
        if filters.entry_type:
            queryset = queryset.filter(entry_type=filters.entry_type)
        if filters.start_date:
            queryset = queryset.filter(created_at__gte=filters.start_date)
        if filters.end_date:
            queryset = queryset.filter(created_at__lte=filters.end_date)
        return queryset.order_by("-created_at", "-sequence")

    def net_remaining(
        self,
        retailer_id: str,
        statuses: Iterable[str],
        *,
        warehouse_id: str | None = None,
        trigger_before: datetime | None = None,
    ) -> int:
        """Net remaining amount of a retailer's entries in ``statuses``."""
        queryset = LedgerEntry.objects.filter(
            retailer_id=retailer_id, status__in=list(statuses)
        )
        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)
        if trigger_before is not None:
            queryset = queryset.filter(trigger_date__lte=trigger_before)
        return queryset.aggregate(net=_net_remaining())["net"]

    def revenue_totals(self, retailer_id: str, warehouse_id: str) -> dict:
        """Distinct order count and gross revenue for one warehouse."""
        return LedgerEntry.objects.filter(
            retailer_id=retailer_id,
            warehouse_id=warehouse_id,
            transaction_type=TransactionType.ORDER_REVENUE,
        ).aggregate(
            total_orders=Count("order_id", distinct=True),
            total_sales=Coalesce(
                Sum("amount_cents"), Value(0), output_field=BigIntegerField()
            ),
        )

    def next_trigger_date(
        self, retailer_id: str, warehouse_id: str | None = None
    ) -> datetime | None:
        """Earliest trigger date among the retailer's held entries."""
        queryset = LedgerEntry.objects.filter(
            retailer_id=retailer_id, status=LedgerStatus.PENDING
        )
        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)
        return queryset.aggregate(next_date=Min("trigger_date"))["next_date"]


class SettlementStore:
    """Settlement, mapping and block persistence."""

    def create_settlement(
        self,
        settlement: Settlement,
        allocations: list[AllocationLine],
    ) -> Settlement:
        """
        Insert a settlement and its mapping rows.

        Must run inside the caller's transaction so the ledger updates
        commit or roll back with it.
        """
        settlement.save(force_insert=True)
        SettlementLedgerMapping.objects.bulk_create(
            [
                SettlementLedgerMapping(
                    settlement=settlement,
                    ledger_entry_id=line.entry_id,
                    amount_applied_cents=line.amount_applied_cents,
                )
                for line in allocations
            ]
        )
        return settlement

    def get(
        self, settlement_id: uuid.UUID, retailer_id: str | None = None
    ) -> Settlement | None:
        queryset = Settlement.objects.filter(id=settlement_id)
        if retailer_id is not None:
            queryset = queryset.filter(retailer_id=retailer_id)
        return queryset.first()

    def get_allocations(self, settlement: Settlement) -> list[SettlementLedgerMapping]:
        """Mapping rows of a settlement with their entries, in FIFO order."""
        return list(
            SettlementLedgerMapping.objects.filter(settlement=settlement)
            .select_related("ledger_entry")
            .order_by("ledger_entry__created_at", "ledger_entry__sequence")
        )

    def list_settlements(self, filters: SettlementFilters) -> QuerySet[Settlement]:
        """Filtered settlements, newest first."""
        queryset = Settlement.objects.all()
        if filters.retailer_id:
            queryset = queryset.filter(retailer_id=filters.retailer_id)
        if filters.status:
            queryset = queryset.filter(status=filters.status)
        if filters.payment_mode:
            queryset = queryset.filter(payment_mode=filters.payment_mode)
        if filters.start_date:
            queryset = queryset.filter(created_at__gte=filters.start_date)
        if filters.end_date:
            queryset = queryset.filter(created_at__lte=filters.end_date)
        return queryset.order_by("-created_at", "-id")

    def history_for_retailer(self, retailer_id: str) -> list[Settlement]:
        return list(
            Settlement.objects.filter(retailer_id=retailer_id).order_by(
                "-created_at", "-id"
            )
        )

    def lifetime_paid(self, retailer_id: str) -> int:
        return Settlement.objects.filter(
            retailer_id=retailer_id,
            status=SettlementStatus.COMPLETED,
        ).aggregate(
            total=Coalesce(
                Sum("amount_cents"), Value(0), output_field=BigIntegerField()
            )
        )["total"]

    def last_settlement_at(self, retailer_id: str) -> datetime | None:
        return Settlement.objects.filter(retailer_id=retailer_id).aggregate(
            last=Max("created_at")
        )["last"]

    # ==========================================================================
    # Settlement blocks
    # ==========================================================================

    def get_active_block(self, retailer_id: str) -> RetailerSettlementBlock | None:
        return RetailerSettlementBlock.objects.filter(
            retailer_id=retailer_id, resolved_at__isnull=True
        ).first()

    def create_block(
        self, retailer_id: str, reason: str, details: dict
    ) -> RetailerSettlementBlock:
        """
        Record an active block, or return the one already in place.

        Runs in its own transaction so it survives the rollback of the
        settlement that triggered it.
        """
        with transaction.atomic():
            block, created = RetailerSettlementBlock.objects.get_or_create(
                retailer_id=retailer_id,
                resolved_at=None,
                defaults={"reason": reason, "details": details},
            )
        if not created:
            logger.warning(
                "Retailer already blocked from settlement",
                extra={"retailer_id": retailer_id, "block_id": str(block.id)},
            )
        return block

    def resolve_block(
        self, block: RetailerSettlementBlock, resolved_by: str, notes: str
    ) -> RetailerSettlementBlock:
        block.resolved_at = timezone.now()
        block.resolved_by = resolved_by
        block.resolution_notes = notes
        block.save(
            update_fields=["resolved_at", "resolved_by", "resolution_notes", "updated_at"]
        )
        return block
