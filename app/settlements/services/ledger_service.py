"""
Ledger service: records the economic facts a retailer is paid from.

All ledger writes go through this service so validation, hold windows
and logging are applied consistently. Inserts are append-only and take
no locks, so they run freely alongside settlements.

Usage:
    from settlements.services import LedgerService

    ledger = LedgerService()
    revenue, fee = ledger.record_order_revenue(
        order_id="ord-1",
        retailer_id="ret-1",
        warehouse_id="wh-1",
        gross_amount_cents=50000,
        platform_fee_cents=1000,
    )
    ledger.get_available_balance("ret-1")
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from core.exceptions import NotFoundError, ValidationError
from core.services import BaseService

from ..allocation import calculate_available_balance
from ..models import LedgerEntry
from ..states import EntryType, LedgerStatus, TransactionType
from ..stores import LedgerStore
from ..types import AvailableBalance, Money

if TYPE_CHECKING:
    import uuid


def _require(**fields) -> None:
    missing = [name for name, value in fields.items() if value in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            error_code="MISSING_FIELDS",
            details={"missing": missing},
        )


def _require_amount(name: str, value, *, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"{name} must be an integer amount in minor units",
            error_code="INVALID_AMOUNT",
            details={name: value},
        )
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(
            f"{name} must be {'non-negative' if allow_zero else 'positive'}",
            error_code="INVALID_AMOUNT",
            details={name: value},
        )


class LedgerService(BaseService):
    """
    Creates ledger entries and computes retailer balances.

    Entry lifecycle on creation:
        - Order revenue and its platform fee start PENDING with a trigger
          date ``LEDGER_HOLD_PERIOD_DAYS`` in the future
        - Manual adjustments and refund clawbacks start AVAILABLE

    Args:
        ledger_store: Ledger persistence (defaults to LedgerStore())
    """

    def __init__(self, ledger_store: LedgerStore | None = None) -> None:
        self.ledger_store = ledger_store or LedgerStore()

    @property
    def currency(self) -> str:
        return settings.LEDGER_CURRENCY

    def record_order_revenue(
        self,
        order_id: str,
        retailer_id: str,
        warehouse_id: str | None,
        gross_amount_cents: int,
        platform_fee_cents: int | None = None,
        notes: str | None = None,
        *,
        order_item_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> list[LedgerEntry]:
        """
        Record revenue for a delivered order item and the platform's fee.

        Inserts a CREDIT ORDER_REVENUE of ``gross_amount_cents`` and a
        DEBIT PLATFORM_FEE of the fee, both held until the hold window
        passes. A fee of zero records the revenue entry alone.

        Args:
            order_id: Order the item belongs to
            retailer_id: Retailer owed the revenue
            warehouse_id: Fulfilling warehouse
            gross_amount_cents: Item revenue in minor units, positive
            platform_fee_cents: Platform fee in minor units; defaults to
                ``LEDGER_DEFAULT_PLATFORM_FEE_CENTS``
            notes: Free-text provenance
            order_item_id: Delivered order item
            idempotency_key: Makes retries return the original entries

        Returns:
            [revenue_entry] or [revenue_entry, fee_entry]

        Raises:
            ValidationError: Missing ids, non-positive gross amount, or a
                fee that is negative or larger than the gross amount
        """
        _require(order_id=order_id, retailer_id=retailer_id)
        _require_amount("gross_amount_cents", gross_amount_cents)
        if platform_fee_cents is None:
            platform_fee_cents = settings.LEDGER_DEFAULT_PLATFORM_FEE_CENTS
        _require_amount("platform_fee_cents", platform_fee_cents, allow_zero=True)
        if platform_fee_cents > gross_amount_cents:
            raise ValidationError(
                "platform_fee_cents cannot exceed gross_amount_cents",
                error_code="INVALID_AMOUNT",
                details={
                    "gross_amount_cents": gross_amount_cents,
                    "platform_fee_cents": platform_fee_cents,
                },
            )

        now = timezone.now()
        trigger_date = now + timedelta(days=settings.LEDGER_HOLD_PERIOD_DAYS)
        common = {
            "retailer_id": retailer_id,
            "warehouse_id": warehouse_id or None,
            "order_id": order_id,
            "order_item_id": order_item_id,
            "currency": self.currency,
            "status": LedgerStatus.PENDING,
            "trigger_date": trigger_date,
            "created_at": now,
            "created_by": "order_fulfilment",
        }

        entries = [
            LedgerEntry(
                transaction_type=TransactionType.ORDER_REVENUE,
                entry_type=EntryType.CREDIT,
                amount_cents=gross_amount_cents,
                notes=notes or f"Revenue for order {order_id}",
                idempotency_key=(
                    f"{idempotency_key}:revenue" if idempotency_key else None
                ),
                **common,
            )
        ]
        if platform_fee_cents > 0:
            entries.append(
                LedgerEntry(
                    transaction_type=TransactionType.PLATFORM_FEE,
                    entry_type=EntryType.DEBIT,
                    amount_cents=platform_fee_cents,
                    notes=f"Platform fee for order {order_id}",
                    idempotency_key=(
                        f"{idempotency_key}:platform_fee" if idempotency_key else None
                    ),
                    **common,
                )
            )

        created = self.ledger_store.create_entries(entries)

        self.get_logger().info(
            "Order revenue recorded",
            extra={
                "order_id": order_id,
                "order_item_id": order_item_id,
                "retailer_id": retailer_id,
                "gross_amount_cents": gross_amount_cents,
                "platform_fee_cents": platform_fee_cents,
                "ledger_ids": [str(entry.id) for entry in created],
                "trigger_date": trigger_date.isoformat(),
            },
        )
        return created

    def record_manual_adjustment(
        self,
        retailer_id: str,
        amount_cents: int,
        entry_type: str,
        notes: str | None,
        actor_id: str,
        warehouse_id: str | None = None,
    ) -> LedgerEntry:
        """
        Record an administrator's bonus, penalty or correction.

        The entry is AVAILABLE immediately: the administrator asserts the
        amount directly, so no hold window applies.

        Raises:
            ValidationError: Missing retailer or actor, non-positive
                amount, or an entry type other than CREDIT/DEBIT
        """
        _require(retailer_id=retailer_id, actor_id=actor_id)
        _require_amount("amount_cents", amount_cents)
        if entry_type not in EntryType.values:
            raise ValidationError(
                "entry_type must be CREDIT or DEBIT",
                error_code="INVALID_ENTRY_TYPE",
                details={"entry_type": entry_type},
            )

        now = timezone.now()
        entry = LedgerEntry(
            retailer_id=retailer_id,
            warehouse_id=warehouse_id or None,
            transaction_type=TransactionType.MANUAL_ADJUSTMENT,
            entry_type=entry_type,
            amount_cents=amount_cents,
            currency=self.currency,
            status=LedgerStatus.AVAILABLE,
            trigger_date=now,
            created_at=now,
            notes=notes or f"Manual {entry_type.lower()} by admin {actor_id}",
            created_by=str(actor_id),
        )
        [entry] = self.ledger_store.create_entries([entry])

        self.get_logger().info(
            "Manual adjustment recorded",
            extra={
                "retailer_id": retailer_id,
                "entry_type": entry_type,
                "amount_cents": amount_cents,
                "actor_id": str(actor_id),
                "ledger_id": str(entry.id),
            },
        )
        return entry

    def record_refund_clawback(
        self,
        order_id: str,
        retailer_id: str,
        refund_amount_cents: int,
        warehouse_id: str | None = None,
        notes: str | None = None,
        *,
        order_item_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerEntry:
        """
        Record a DEBIT reversing revenue after a customer refund.

        Available immediately so the next settlement nets it against the
        retailer's credits.

        Raises:
            ValidationError: Missing ids or non-positive refund amount
        """
        _require(order_id=order_id, retailer_id=retailer_id)
        _require_amount("refund_amount_cents", refund_amount_cents)

        now = timezone.now()
        entry = LedgerEntry(
            retailer_id=retailer_id,
            warehouse_id=warehouse_id or None,
            order_id=order_id,
            order_item_id=order_item_id,
            transaction_type=TransactionType.REFUND_CLAWBACK,
            entry_type=EntryType.DEBIT,
            amount_cents=refund_amount_cents,
            currency=self.currency,
            status=LedgerStatus.AVAILABLE,
            trigger_date=now,
            created_at=now,
            notes=notes or f"Refund clawback for order {order_id}",
            created_by="order_fulfilment",
            idempotency_key=(
                f"{idempotency_key}:refund_clawback" if idempotency_key else None
            ),
        )
        [entry] = self.ledger_store.create_entries([entry])

        self.get_logger().info(
            "Refund clawback recorded",
            extra={
                "order_id": order_id,
                "retailer_id": retailer_id,
                "refund_amount_cents": refund_amount_cents,
                "ledger_id": str(entry.id),
            },
        )
        return entry

    def get_available_balance(self, retailer_id: str) -> AvailableBalance:
        """
        Net amount currently payable to a retailer.

        Σ remaining(CREDIT) − Σ remaining(DEBIT) over AVAILABLE and
        PARTIALLY_SETTLED entries. Takes no lock, so the figure is only a
        point-in-time estimate.
        """
        _require(retailer_id=retailer_id)
        entries = self.ledger_store.get_eligible_for_settlement(retailer_id)
        return AvailableBalance(
            retailer_id=retailer_id,
            available_balance=Money(
                cents=calculate_available_balance(entries), currency=self.currency
            ),
            entry_count=len(entries),
        )

    # ==========================================================================
    # Hold release
    # ==========================================================================

    def release_entry(self, entry_id: uuid.UUID) -> LedgerEntry:
        """
        Move one held entry to AVAILABLE once its trigger date has passed.

        Idempotent: an entry that is no longer PENDING is returned
        unchanged.

        Raises:
            NotFoundError: Unknown entry id
            ValidationError: The hold window has not passed yet
        """
        with transaction.atomic():
            entry = self.ledger_store.get(entry_id, for_update=True)
            if entry is None:
                raise NotFoundError(
                    f"Ledger entry {entry_id} not found",
                    error_code="LEDGER_ENTRY_NOT_FOUND",
                    details={"entry_id": str(entry_id)},
                )
            if entry.status != LedgerStatus.PENDING:
                return entry
            try:
                entry.release()
            except TransitionNotAllowed as e:
                raise ValidationError(
                    f"Ledger entry {entry_id} is still on hold",
                    error_code="HOLD_NOT_EXPIRED",
                    details={
                        "entry_id": str(entry_id),
                        "trigger_date": entry.trigger_date.isoformat(),
                    },
                ) from e
            entry.save(update_fields=["status", "updated_at"])

        self.get_logger().info(
            "Ledger entry released from hold",
            extra={"ledger_id": str(entry.id), "retailer_id": entry.retailer_id},
        )
        return entry

    def get_matured_entry_ids(self, limit: int = 100) -> list[uuid.UUID]:
        """Ids of held entries whose trigger date has passed, earliest first."""
        return [
            entry.id
            for entry in self.ledger_store.get_matured_pending(timezone.now(), limit)
        ]

    def release_matured_entries(self, limit: int = 100) -> int:
        """
        Release up to ``limit`` matured entries inline.

        Returns:
            Number of entries moved to AVAILABLE
        """
        released = 0
        for entry_id in self.get_matured_entry_ids(limit):
            entry = self.release_entry(entry_id)
            if entry.status == LedgerStatus.AVAILABLE:
                released += 1
        return released
