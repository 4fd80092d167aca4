"""
Create the ledger and settlement tables.

Changes:
    - Create LedgerSequence, the insertion counter for ledger entries
    - Create LedgerEntry with FIFO and status indexes and the check
      constraints tying status to settled_amount_cents
    - Create Settlement and SettlementLedgerMapping (PROTECT foreign keys)
    - Create RetailerSettlementBlock with at most one active block per
      retailer
"""

import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="LedgerSequence",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
            ],
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "retailer_id",
                    models.CharField(
                        db_index=True,
                        help_text="External identifier of the retailer owning this entry",
                        max_length=64,
                    ),
                ),
                (
                    "warehouse_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="External identifier of the fulfilling warehouse",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "order_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Order this entry originates from",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "order_item_id",
                    models.CharField(
                        blank=True,
                        help_text="Order item this entry originates from",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("ORDER_REVENUE", "Order Revenue"),
                            ("PLATFORM_FEE", "Platform Fee"),
                            ("MANUAL_ADJUSTMENT", "Manual Adjustment"),
                            ("REFUND_CLAWBACK", "Refund Clawback"),
                        ],
                        help_text="Business event that produced this entry",
                        max_length=32,
                    ),
                ),
                (
                    "entry_type",
                    models.CharField(
                        choices=[("CREDIT", "Credit"), ("DEBIT", "Debit")],
                        help_text="CREDIT increases what the retailer is owed, DEBIT decreases it",
                        max_length=8,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Amount in minor units (always positive, never mutated)",
                    ),
                ),
                (
                    "settled_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Portion of amount_cents consumed by settlements",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="inr",
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("AVAILABLE", "Available"),
                            ("PARTIALLY_SETTLED", "Partially Settled"),
                            ("SETTLED", "Settled"),
                        ],
                        db_index=True,
                        default="PENDING",
                        help_text="Lifecycle state of this entry",
                        max_length=50,
                    ),
                ),
                (
                    "trigger_date",
                    models.DateTimeField(
                        db_index=True,
                        help_text="Time after which the entry may be released from hold",
                    ),
                ),
                (
                    "notes",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Free-text provenance",
                    ),
                ),
                (
                    "created_by",
                    models.CharField(
                        blank=True,
                        help_text="Identifier of the admin or service that recorded this entry",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Unique key preventing duplicate entries on retries",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        db_index=True,
                        default=django.utils.timezone.now,
                        editable=False,
                        help_text="Timestamp when this entry was recorded",
                    ),
                ),
                (
                    "sequence",
                    models.BigIntegerField(
                        editable=False,
                        help_text="Insertion order; breaks created_at ties in FIFO order",
                        unique=True,
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp of the last status or settled amount change",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "ledger entries",
                "ordering": ["-created_at", "-sequence"],
                "indexes": [
                    models.Index(
                        fields=["retailer_id", "status", "created_at", "sequence"],
                        name="ledger_retailer_status_idx",
                    ),
                    models.Index(
                        fields=["transaction_type"], name="ledger_txn_type_idx"
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="ledger_entry_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("settled_amount_cents__lte", models.F("amount_cents"))
                        ),
                        name="ledger_entry_settled_within_amount",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(
                                ("settled_amount_cents", 0),
                                ("status__in", ["PENDING", "AVAILABLE"]),
                            ),
                            models.Q(
                                ("settled_amount_cents__gt", 0),
                                ("settled_amount_cents__lt", models.F("amount_cents")),
                                ("status", "PARTIALLY_SETTLED"),
                            ),
                            models.Q(
                                ("settled_amount_cents", models.F("amount_cents")),
                                ("status", "SETTLED"),
                            ),
                            _connector="OR",
                        ),
                        name="ledger_entry_status_matches_settled_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Settlement",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "retailer_id",
                    models.CharField(
                        db_index=True,
                        help_text="External identifier of the retailer that was paid",
                        max_length=64,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Total paid in minor units",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="inr",
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "payment_mode",
                    models.CharField(
                        choices=[
                            ("MANUAL_BANK_TRANSFER", "Manual Bank Transfer"),
                            ("UPI", "UPI"),
                            ("CHEQUE", "Cheque"),
                            ("CASH", "Cash"),
                        ],
                        help_text="How the payout was transferred",
                        max_length=32,
                    ),
                ),
                (
                    "reference_number",
                    models.CharField(
                        blank=True,
                        help_text="Bank or UPI transaction reference",
                        max_length=128,
                        null=True,
                    ),
                ),
                (
                    "receipt_url",
                    models.URLField(
                        blank=True,
                        help_text="Link to the transfer receipt",
                        max_length=500,
                        null=True,
                    ),
                ),
                (
                    "notes",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Free-text remarks",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("COMPLETED", "Completed")],
                        db_index=True,
                        default="COMPLETED",
                        help_text="Settlement state",
                        max_length=16,
                    ),
                ),
                (
                    "settled_by",
                    models.CharField(
                        help_text="Identifier of the administrator who executed the payout",
                        max_length=255,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        db_index=True,
                        default=django.utils.timezone.now,
                        editable=False,
                        help_text="Timestamp when this settlement was recorded",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["retailer_id", "created_at"],
                        name="settlement_retailer_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="settlement_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SettlementLedgerMapping",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "amount_applied_cents",
                    models.PositiveBigIntegerField(
                        help_text="Portion of the entry consumed by this settlement",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        editable=False,
                        help_text="Timestamp when this mapping was recorded",
                    ),
                ),
                (
                    "ledger_entry",
                    models.ForeignKey(
                        help_text="Ledger entry that was consumed",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="settlement_allocations",
                        to="settlements.ledgerentry",
                    ),
                ),
                (
                    "settlement",
                    models.ForeignKey(
                        help_text="Settlement that consumed the entry",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="allocations",
                        to="settlements.settlement",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("settlement", "ledger_entry"),
                        name="unique_settlement_ledger_entry",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount_applied_cents__gt", 0)),
                        name="mapping_amount_applied_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RetailerSettlementBlock",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "retailer_id",
                    models.CharField(
                        db_index=True,
                        help_text="Retailer whose settlements are blocked",
                        max_length=64,
                    ),
                ),
                (
                    "reason",
                    models.CharField(
                        help_text="Error code that triggered the block",
                        max_length=64,
                    ),
                ),
                (
                    "details",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Context captured when the block was raised",
                    ),
                ),
                (
                    "resolved_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When an administrator lifted the block",
                        null=True,
                    ),
                ),
                (
                    "resolved_by",
                    models.CharField(
                        blank=True,
                        help_text="Administrator who lifted the block",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "resolution_notes",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Outcome of the investigation",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("resolved_at__isnull", True)),
                        fields=("retailer_id",),
                        name="one_active_settlement_block_per_retailer",
                    ),
                ],
            },
        ),
    ]
