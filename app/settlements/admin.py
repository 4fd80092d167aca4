"""
Django admin configuration for ledger and settlement models.

Every model here is an audit record written only through the services, so
the admin is read-only throughout. Settlement blocks are resolved through
the unblock API, which records who lifted the block and why.

Key features:
- Ledger entries, settlements and mappings cannot be added, edited or deleted
- Allocation mappings shown inline on each settlement
- Useful filters and search capabilities
"""

from django.contrib import admin

from .models import (
    LedgerEntry,
    RetailerSettlementBlock,
    Settlement,
    SettlementLedgerMapping,
)
from .types import Money


class ReadOnlyAdminMixin:
    """Disable add, change and delete."""

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(LedgerEntry)
class LedgerEntryAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for LedgerEntry.

    Corrections are made with new manual adjustment entries, never by
    editing existing ones.
    """

    list_display = [
        "id",
        "created_at",
        "retailer_id",
        "transaction_type",
        "entry_type",
        "amount_display",
        "settled_display",
        "status",
        "trigger_date",
    ]
    list_filter = ["status", "transaction_type", "entry_type", "created_at"]
    search_fields = ["id", "retailer_id", "order_id", "idempotency_key"]
    date_hierarchy = "created_at"
    ordering = ["-created_at", "-sequence"]

    fieldsets = (
        (
            "Entry Details",
            {
                "fields": (
                    "id",
                    "transaction_type",
                    "entry_type",
                    "amount_cents",
                    "settled_amount_cents",
                    "currency",
                    "status",
                    "trigger_date",
                ),
            },
        ),
        (
            "Reference",
            {
                "fields": (
                    "retailer_id",
                    "warehouse_id",
                    "order_id",
                    "order_item_id",
                    "idempotency_key",
                ),
            },
        ),
        (
            "Additional Info",
            {
                "fields": (
                    "notes",
                    "created_by",
                    "created_at",
                    "sequence",
                    "updated_at",
                ),
            },
        ),
    )

    @admin.display(description="Amount")
    def amount_display(self, obj: LedgerEntry) -> str:
        return str(Money(cents=obj.amount_cents, currency=obj.currency))

    @admin.display(description="Settled")
    def settled_display(self, obj: LedgerEntry) -> str:
        return str(Money(cents=obj.settled_amount_cents, currency=obj.currency))


class SettlementLedgerMappingInline(admin.TabularInline):
    model = SettlementLedgerMapping
    fields = ["ledger_entry", "amount_applied_cents", "created_at"]
    readonly_fields = fields
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Settlement)
class SettlementAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Admin configuration for Settlement with its allocations inline."""

    list_display = [
        "id",
        "created_at",
        "retailer_id",
        "amount_display",
        "payment_mode",
        "reference_number",
        "status",
        "settled_by",
    ]
    list_filter = ["payment_mode", "status", "created_at"]
    search_fields = ["id", "retailer_id", "reference_number"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [SettlementLedgerMappingInline]

    @admin.display(description="Amount")
    def amount_display(self, obj: Settlement) -> str:
        return str(Money(cents=obj.amount_cents, currency=obj.currency))


@admin.register(RetailerSettlementBlock)
class RetailerSettlementBlockAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for RetailerSettlementBlock.

    View only: lifting a block goes through
    POST /api/v1/settlements/admin/retailers/{retailer_id}/unblock/.
    """

    list_display = ["id", "retailer_id", "reason", "created_at", "resolved_at"]
    list_filter = ["reason", "resolved_at"]
    search_fields = ["retailer_id"]
    ordering = ["-created_at"]
