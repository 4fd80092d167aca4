"""
DRF serializers for the settlements API.

This module provides serializers for:
- Request payloads (adjustments, settlement execution and preview, unblock)
- Query parameters for ledger and settlement history
- Ledger entries, settlements and their allocations
- Balance and summary figures

Amounts:
    Requests carry decimal amounts in major units (e.g. "450.00") which
    are converted to integer minor units during validation. Responses
    render every amount twice: ``amount`` as a decimal string and
    ``amount_cents`` as an integer.

Related files:
    - views.py: Settlement API views
    - types.py: Dataclasses rendered by the read serializers
"""

from __future__ import annotations

from decimal import Decimal

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema_field
from rest_framework import serializers

from settlements.models import LedgerEntry, RetailerSettlementBlock, Settlement
from settlements.states import (
    EntryType,
    LedgerStatus,
    PaymentMode,
    SettlementStatus,
    TransactionType,
)
from settlements.types import from_minor_units, to_minor_units

# =============================================================================
# Fields
# =============================================================================


@extend_schema_field(OpenApiTypes.DECIMAL)
class CentsAmountField(serializers.Field):
    """Read-only decimal string rendered from an integer minor-unit value."""

    def __init__(self, **kwargs):
        kwargs["read_only"] = True
        super().__init__(**kwargs)

    def to_representation(self, value):
        return str(from_minor_units(value))


def _amount_field(**kwargs) -> serializers.DecimalField:
    return serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        min_value=Decimal("0.01"),
        help_text="Amount in major units (e.g. 450.00)",
        **kwargs,
    )


# =============================================================================
# Request Serializers
# =============================================================================


class ManualAdjustmentRequestSerializer(serializers.Serializer):
    """
    Payload for recording a manual adjustment.

    Fields:
        retailer_id: Retailer the adjustment applies to
        amount: Positive decimal amount
        entry_type: CREDIT (bonus) or DEBIT (penalty)
        notes: Reason shown in the ledger
        warehouse_id: Optional warehouse attribution

    ``validated_data`` carries ``amount_cents`` instead of ``amount``.
    """

    retailer_id = serializers.CharField(max_length=64)
    amount = _amount_field()
    entry_type = serializers.ChoiceField(choices=EntryType.choices)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    warehouse_id = serializers.CharField(
        max_length=64, required=False, allow_null=True, default=None
    )

    def validate(self, attrs):
        attrs["amount_cents"] = to_minor_units(attrs.pop("amount"))
        return attrs


class ExecuteSettlementRequestSerializer(serializers.Serializer):
    """
    Payload for executing a settlement.

    Fields:
        retailer_id: Retailer to pay
        amount: Positive decimal payout
        payment_mode: How the money was sent
        reference_number: Bank/UPI transaction reference
        notes: Free-text remarks
        receipt_url: Link to the transfer receipt

    ``validated_data`` carries ``amount_cents`` instead of ``amount``.
    """

    retailer_id = serializers.CharField(max_length=64)
    amount = _amount_field()
    payment_mode = serializers.ChoiceField(choices=PaymentMode.choices)
    reference_number = serializers.CharField(
        max_length=128, required=False, allow_blank=True, allow_null=True, default=None
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    receipt_url = serializers.URLField(
        max_length=500, required=False, allow_blank=True, allow_null=True, default=None
    )

    def validate(self, attrs):
        attrs["amount_cents"] = to_minor_units(attrs.pop("amount"))
        return attrs


class PreviewSettlementRequestSerializer(serializers.Serializer):
    """Payload for a dry-run allocation."""

    retailer_id = serializers.CharField(max_length=64)
    amount = _amount_field()

    def validate(self, attrs):
        attrs["amount_cents"] = to_minor_units(attrs.pop("amount"))
        return attrs


class ResolveBlockRequestSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class PaginationQuerySerializer(serializers.Serializer):
    """Page/limit query parameters; out-of-range values are clamped later."""

    page = serializers.IntegerField(required=False, default=1)
    limit = serializers.IntegerField(required=False, default=20)


class LedgerHistoryQuerySerializer(PaginationQuerySerializer):
    retailer_id = serializers.CharField(required=False)
    warehouse_id = serializers.CharField(required=False)
    status = serializers.ChoiceField(choices=LedgerStatus.choices, required=False)
    transaction_type = serializers.ChoiceField(
        choices=TransactionType.choices, required=False
    )
    entry_type = serializers.ChoiceField(choices=EntryType.choices, required=False)
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)


class SettlementQuerySerializer(PaginationQuerySerializer):
    retailer_id = serializers.CharField(required=False)
    status = serializers.ChoiceField(choices=SettlementStatus.choices, required=False)
    payment_mode = serializers.ChoiceField(choices=PaymentMode.choices, required=False)
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)


class DashboardQuerySerializer(serializers.Serializer):
    warehouse_id = serializers.CharField(max_length=64)


# =============================================================================
# Model Serializers
# =============================================================================


class LedgerEntrySerializer(serializers.ModelSerializer):
    """
    Ledger entry for API responses.

    Adds decimal renderings of the amount, the settled amount and what is
    left to settle.
    """

    amount = CentsAmountField(source="amount_cents")
    settled_amount = CentsAmountField(source="settled_amount_cents")
    remaining_amount = CentsAmountField(source="remaining_cents")
    remaining_cents = serializers.IntegerField(read_only=True)

    class Meta:
        model = LedgerEntry
        fields = [
            "id",
            "retailer_id",
            "warehouse_id",
            "order_id",
            "order_item_id",
            "transaction_type",
            "entry_type",
            "amount",
            "amount_cents",
            "settled_amount",
            "settled_amount_cents",
            "remaining_amount",
            "remaining_cents",
            "currency",
            "status",
            "trigger_date",
            "notes",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class SettlementSerializer(serializers.ModelSerializer):
    amount = CentsAmountField(source="amount_cents")

    class Meta:
        model = Settlement
        fields = [
            "id",
            "retailer_id",
            "amount",
            "amount_cents",
            "currency",
            "payment_mode",
            "reference_number",
            "receipt_url",
            "notes",
            "status",
            "settled_by",
            "created_at",
        ]
        read_only_fields = fields


class RetailerSettlementBlockSerializer(serializers.ModelSerializer):
    class Meta:
        model = RetailerSettlementBlock
        fields = [
            "id",
            "retailer_id",
            "reason",
            "details",
            "created_at",
            "resolved_at",
            "resolved_by",
            "resolution_notes",
        ]
        read_only_fields = fields


# =============================================================================
# Result Serializers
# =============================================================================


class MoneySerializer(serializers.Serializer):
    """Renders a types.Money."""

    amount = serializers.DecimalField(max_digits=16, decimal_places=2, read_only=True)
    amount_cents = serializers.IntegerField(source="cents", read_only=True)
    currency = serializers.CharField(read_only=True)


class SettlementSummarySerializer(serializers.Serializer):
    settlement_id = serializers.UUIDField(read_only=True)
    retailer_id = serializers.CharField(read_only=True)
    amount = serializers.DecimalField(
        source="amount.amount", max_digits=16, decimal_places=2, read_only=True
    )
    amount_cents = serializers.IntegerField(source="amount.cents", read_only=True)
    currency = serializers.CharField(source="amount.currency", read_only=True)
    payment_mode = serializers.CharField(read_only=True)
    reference_number = serializers.CharField(read_only=True, allow_null=True)
    status = serializers.CharField(read_only=True)
    entries_settled = serializers.IntegerField(read_only=True)


class AllocationLineSerializer(serializers.Serializer):
    entry_id = serializers.UUIDField(read_only=True)
    amount_applied = CentsAmountField(source="amount_applied_cents")
    amount_applied_cents = serializers.IntegerField(read_only=True)


class LedgerUpdateSerializer(serializers.Serializer):
    entry_id = serializers.UUIDField(read_only=True)
    previous_status = serializers.CharField(read_only=True)
    new_status = serializers.CharField(read_only=True)
    previous_settled_cents = serializers.IntegerField(read_only=True)
    new_settled_cents = serializers.IntegerField(read_only=True)


class AllocationPlanSerializer(serializers.Serializer):
    """Dry-run allocation: what executing the payout would write."""

    retailer_id = serializers.CharField(read_only=True)
    amount = CentsAmountField(source="amount_cents")
    amount_cents = serializers.IntegerField(read_only=True)
    available = CentsAmountField(source="available_cents")
    available_cents = serializers.IntegerField(read_only=True)
    entries_touched = serializers.IntegerField(read_only=True)
    allocations = AllocationLineSerializer(many=True, read_only=True)
    updates = LedgerUpdateSerializer(many=True, read_only=True)


class SettlementAllocationSerializer(serializers.Serializer):
    mapping_id = serializers.UUIDField(read_only=True)
    ledger_entry = LedgerEntrySerializer(read_only=True)
    amount_applied = CentsAmountField(source="amount_applied_cents")
    amount_applied_cents = serializers.IntegerField(read_only=True)


class SettlementBreakdownSerializer(serializers.Serializer):
    gross_sales = CentsAmountField(source="gross_sales_cents")
    gross_sales_cents = serializers.IntegerField(read_only=True)
    adjustments = CentsAmountField(source="adjustments_cents")
    adjustments_cents = serializers.IntegerField(read_only=True)
    platform_fees = CentsAmountField(source="platform_fees_cents")
    platform_fees_cents = serializers.IntegerField(read_only=True)
    returns = CentsAmountField(source="returns_cents")
    returns_cents = serializers.IntegerField(read_only=True)
    total_deductions = CentsAmountField(source="total_deductions_cents")
    total_deductions_cents = serializers.IntegerField(read_only=True)


class SettlementDetailsSerializer(serializers.Serializer):
    settlement = SettlementSerializer(read_only=True)
    allocations = SettlementAllocationSerializer(many=True, read_only=True)
    breakdown = SettlementBreakdownSerializer(read_only=True)


class AvailableBalanceSerializer(serializers.Serializer):
    retailer_id = serializers.CharField(read_only=True)
    available_balance = MoneySerializer(read_only=True)
    entry_count = serializers.IntegerField(read_only=True)


class RetailerSummarySerializer(serializers.Serializer):
    retailer_id = serializers.CharField(read_only=True)
    total_owed = MoneySerializer(read_only=True)
    pending_escrow = MoneySerializer(read_only=True)
    lifetime_paid = MoneySerializer(read_only=True)


class DashboardSummarySerializer(serializers.Serializer):
    retailer_id = serializers.CharField(read_only=True)
    warehouse_id = serializers.CharField(read_only=True)
    total_orders = serializers.IntegerField(read_only=True)
    total_sales = MoneySerializer(read_only=True)
    to_be_settled = MoneySerializer(read_only=True)
    next_settlement_amount = MoneySerializer(read_only=True)
    next_settlement_date = serializers.DateTimeField(read_only=True, allow_null=True)
    last_settlement_date = serializers.DateTimeField(read_only=True, allow_null=True)
