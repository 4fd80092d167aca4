"""
Settlement models: the seller ledger and the payouts drawn from it.

This module defines:
- LedgerEntry: One immutable economic fact (credit or debit) for one retailer
- LedgerSequence: Source of the insertion order that breaks FIFO ties
- Settlement: One payout event to one retailer
- SettlementLedgerMapping: How much of which entry a settlement consumed
- RetailerSettlementBlock: Stops settlement for a retailer after an
  integrity alert until an administrator resolves it

All amounts are integers in minor units (paise for INR) to keep the
arithmetic exact. ``status == SETTLED`` holds exactly when
``settled_amount_cents == amount_cents``; the database enforces it.

Usage:
    from settlements.models import LedgerEntry

    entry = LedgerEntry.objects.get(id=entry_id)
    entry.remaining_cents  # amount_cents - settled_amount_cents
"""

from __future__ import annotations

from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from .exceptions import ImmutableRecordError
from .states import (
    EntryType,
    LedgerStatus,
    PaymentMode,
    SettlementStatus,
    TransactionType,
)


class AppendOnlyModel(models.Model):
    """
    Abstract model for audit records that may not be edited or deleted.

    Subclasses list the fields that may still change after insert in
    ``MUTABLE_FIELDS``; an update must name them via ``update_fields``.
    """

    MUTABLE_FIELDS: frozenset[str] = frozenset()

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if update_fields is None or not set(update_fields) <= self.MUTABLE_FIELDS:
                raise ImmutableRecordError(
                    f"{self.__class__.__name__} {self.pk} is write-once",
                    details={
                        "pk": str(self.pk),
                        "update_fields": sorted(update_fields or []),
                        "mutable_fields": sorted(self.MUTABLE_FIELDS),
                    },
                )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError(
            f"{self.__class__.__name__} {self.pk} cannot be deleted",
            details={"pk": str(self.pk)},
        )


def hold_expired(entry: LedgerEntry) -> bool:
    """FSM condition: the entry's hold window has passed."""
    return entry.trigger_date <= timezone.now()


class LedgerSequence(models.Model):
    """
    Issues LedgerEntry creation sequence numbers.

    One row per number handed out. The database's auto-increment never
    reuses a value, so entries inserted at the same ``created_at`` still
    order by insertion.
    """

    id = models.BigAutoField(primary_key=True)

    @classmethod
    def next_value(cls) -> int:
        return cls.objects.create().pk


class LedgerEntry(UUIDPrimaryKeyMixin, AppendOnlyModel):
    """
    One credit or debit owed to (or by) a retailer.

    Only ``status`` and ``settled_amount_cents`` change after creation, and
    only through a release (PENDING → AVAILABLE) or a settlement's
    conditional update. Entries are never deleted.

    Fields:
        retailer_id: Owner of the entry
        warehouse_id: Fulfilling location (optional)
        order_id, order_item_id: Provenance (null for manual adjustments)
        transaction_type: Business event that produced the entry
        entry_type: CREDIT or DEBIT
        amount_cents: Fixed positive amount, never mutated
        settled_amount_cents: Portion consumed by settlements
        status: Lifecycle state (django-fsm)
        trigger_date: When the entry becomes eligible for release
        created_at: Creation time; with sequence, defines FIFO order
        sequence: Insertion order, breaks created_at ties
        notes: Free-text provenance
        created_by: Actor or service that recorded the entry
        idempotency_key: Optional key making workflow retries safe
    """

    MUTABLE_FIELDS = frozenset({"status", "settled_amount_cents", "updated_at"})

    retailer_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="External identifier of the retailer owning this entry",
    )
    warehouse_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="External identifier of the fulfilling warehouse",
    )
    order_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Order this entry originates from",
    )
    order_item_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Order item this entry originates from",
    )

    transaction_type = models.CharField(
        max_length=32,
        choices=TransactionType.choices,
        help_text="Business event that produced this entry",
    )
    entry_type = models.CharField(
        max_length=8,
        choices=EntryType.choices,
        help_text="CREDIT increases what the retailer is owed, DEBIT decreases it",
    )
    amount_cents = models.PositiveBigIntegerField(
        help_text="Amount in minor units (always positive, never mutated)",
    )
    settled_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Portion of amount_cents consumed by settlements",
    )
    currency = models.CharField(
        max_length=3,
        default="inr",
        help_text="ISO 4217 currency code",
    )

    status = FSMField(
        default=LedgerStatus.PENDING,
        choices=LedgerStatus.choices,
        db_index=True,
        help_text="Lifecycle state of this entry",
    )
    trigger_date = models.DateTimeField(
        db_index=True,
        help_text="Time after which the entry may be released from hold",
    )

    notes = models.TextField(
        blank=True,
        default="",
        help_text="Free-text provenance",
    )
    created_by = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Identifier of the admin or service that recorded this entry",
    )
    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Unique key preventing duplicate entries on retries",
    )

    created_at = models.DateTimeField(
        default=timezone.now,
        editable=False,
        db_index=True,
        help_text="Timestamp when this entry was recorded",
    )
    sequence = models.BigIntegerField(
        unique=True,
        editable=False,
        help_text="Insertion order; breaks created_at ties in FIFO order",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp of the last status or settled amount change",
    )

    class Meta:
        ordering = ["-created_at", "-sequence"]
        verbose_name_plural = "ledger entries"
        indexes = [
            models.Index(
                fields=["retailer_id", "status", "created_at", "sequence"],
                name="ledger_retailer_status_idx",
            ),
            models.Index(fields=["transaction_type"], name="ledger_txn_type_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_cents__gt=0),
                name="ledger_entry_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(settled_amount_cents__lte=F("amount_cents")),
                name="ledger_entry_settled_within_amount",
            ),
            models.CheckConstraint(
                condition=(
                    Q(
                        status__in=[LedgerStatus.PENDING, LedgerStatus.AVAILABLE],
                        settled_amount_cents=0,
                    )
                    | Q(
                        status=LedgerStatus.PARTIALLY_SETTLED,
                        settled_amount_cents__gt=0,
                        settled_amount_cents__lt=F("amount_cents"),
                    )
                    | Q(
                        status=LedgerStatus.SETTLED,
                        settled_amount_cents=F("amount_cents"),
                    )
                ),
                name="ledger_entry_status_matches_settled_amount",
            ),
        ]

    def save(self, *args, **kwargs):
        if self._state.adding and self.sequence is None:
            self.sequence = LedgerSequence.next_value()
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return (
            f"{self.get_entry_type_display()} {self.get_transaction_type_display()}: "
            f"{self.amount_cents} cents ({self.status})"
        )

    @property
    def remaining_cents(self) -> int:
        """Portion of the entry not yet consumed by settlements."""
        return self.amount_cents - self.settled_amount_cents

    @property
    def is_credit(self) -> bool:
        return self.entry_type == EntryType.CREDIT

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=LedgerStatus.PENDING,
        target=LedgerStatus.AVAILABLE,
        conditions=[hold_expired],
    )
    def release(self):
        """
        Release the entry from hold once its trigger date has passed.

        Settlement only ever consumes AVAILABLE and PARTIALLY_SETTLED
        entries, so this is what makes held revenue payable.
        """


class Settlement(UUIDPrimaryKeyMixin, AppendOnlyModel):
    """
    One payout to one retailer.

    Created together with its mapping rows and ledger updates in a single
    transaction; never edited afterwards. The sum of its mappings'
    ``amount_applied_cents`` equals ``amount_cents``.

    Fields:
        retailer_id: Retailer that was paid
        amount_cents: Total paid in minor units
        payment_mode: How the money was transferred
        reference_number: Bank/UPI transaction reference (UTR)
        receipt_url: Link to the transfer receipt
        notes: Free-text remarks
        status: Always COMPLETED
        settled_by: Identity of the administrator who executed it
        created_at: When the settlement was recorded
    """

    retailer_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="External identifier of the retailer that was paid",
    )
    amount_cents = models.PositiveBigIntegerField(
        help_text="Total paid in minor units",
    )
    currency = models.CharField(
        max_length=3,
        default="inr",
        help_text="ISO 4217 currency code",
    )
    payment_mode = models.CharField(
        max_length=32,
        choices=PaymentMode.choices,
        help_text="How the payout was transferred",
    )
    reference_number = models.CharField(
        max_length=128,
        null=True,
        blank=True,
        help_text="Bank or UPI transaction reference",
    )
    receipt_url = models.URLField(
        max_length=500,
        null=True,
        blank=True,
        help_text="Link to the transfer receipt",
    )
    notes = models.TextField(
        blank=True,
        default="",
        help_text="Free-text remarks",
    )
    status = models.CharField(
        max_length=16,
        choices=SettlementStatus.choices,
        default=SettlementStatus.COMPLETED,
        db_index=True,
        help_text="Settlement state",
    )
    settled_by = models.CharField(
        max_length=255,
        help_text="Identifier of the administrator who executed the payout",
    )
    created_at = models.DateTimeField(
        default=timezone.now,
        editable=False,
        db_index=True,
        help_text="Timestamp when this settlement was recorded",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["retailer_id", "created_at"],
                name="settlement_retailer_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_cents__gt=0),
                name="settlement_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Settlement {self.id}: {self.amount_cents} cents to {self.retailer_id}"


class SettlementLedgerMapping(UUIDPrimaryKeyMixin, AppendOnlyModel):
    """
    Audit trail of the FIFO allocation: one row per ledger entry touched
    by a settlement.

    For any ledger entry, the sum of ``amount_applied_cents`` across its
    mappings equals its ``settled_amount_cents``.
    """

    settlement = models.ForeignKey(
        Settlement,
        on_delete=models.PROTECT,
        related_name="allocations",
        help_text="Settlement that consumed the entry",
    )
    ledger_entry = models.ForeignKey(
        LedgerEntry,
        on_delete=models.PROTECT,
        related_name="settlement_allocations",
        help_text="Ledger entry that was consumed",
    )
    amount_applied_cents = models.PositiveBigIntegerField(
        help_text="Portion of the entry consumed by this settlement",
    )
    created_at = models.DateTimeField(
        default=timezone.now,
        editable=False,
        help_text="Timestamp when this mapping was recorded",
    )

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["settlement", "ledger_entry"],
                name="unique_settlement_ledger_entry",
            ),
            models.CheckConstraint(
                condition=Q(amount_applied_cents__gt=0),
                name="mapping_amount_applied_positive",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"{self.amount_applied_cents} cents of {self.ledger_entry_id} "
            f"→ settlement {self.settlement_id}"
        )


class RetailerSettlementBlock(UUIDPrimaryKeyMixin, BaseModel):
    """
    Prevents settlement for a retailer until an administrator resolves it.

    Recorded automatically when a settlement trips an integrity check.
    At most one unresolved block exists per retailer.
    """

    retailer_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Retailer whose settlements are blocked",
    )
    reason = models.CharField(
        max_length=64,
        help_text="Error code that triggered the block",
    )
    details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Context captured when the block was raised",
    )
    resolved_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When an administrator lifted the block",
    )
    resolved_by = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Administrator who lifted the block",
    )
    resolution_notes = models.TextField(
        blank=True,
        default="",
        help_text="Outcome of the investigation",
    )

    class Meta(BaseModel.Meta):
        constraints = [
            models.UniqueConstraint(
                fields=["retailer_id"],
                condition=Q(resolved_at__isnull=True),
                name="one_active_settlement_block_per_retailer",
            ),
        ]

    def __str__(self) -> str:
        state = "resolved" if self.resolved_at else "active"
        return f"Settlement block for {self.retailer_id} ({self.reason}, {state})"

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None
